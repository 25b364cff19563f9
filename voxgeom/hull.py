"""Greedy incremental 3D convex hull and the expanding polytope algorithm.

The hull starts from a tetrahedron and repeatedly extrudes the face with the
largest rise, so a vertex limit gives a reduced hull that keeps the most
significant points.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from voxgeom.geometric import maxdir, normalize, tri_normal

_EPA_ITERATION_LIMIT = 1000


@dataclass(eq=False)
class _Tri:
    v: list[int]
    id: int
    n: list[int]
    vmax: int = -1
    rise: float = 0.0

    def dead(self) -> bool:
        return self.n[0] == -1

    def edge_slot(self, va: int, vb: int) -> int:
        """Index in n of the neighbour across edge va-vb (either order)."""
        for i in range(3):
            i1 = (i + 1) % 3
            i2 = (i + 2) % 3
            if self.v[i] == va and self.v[i1] == vb:
                return i2
            if self.v[i] == vb and self.v[i1] == va:
                return i2
        raise RuntimeError(f"triangle {self.v} has no edge {va}-{vb}")

    def neib(self, va: int, vb: int) -> int:
        return self.n[self.edge_slot(va, vb)]

    def set_neib(self, va: int, vb: int, value: int) -> None:
        self.n[self.edge_slot(va, vb)] = value


def _above(verts, t: Sequence[int], p, epsilon: float) -> bool:
    n = tri_normal(verts[t[0]], verts[t[1]], verts[t[2]])
    return float(np.dot(n, np.asarray(p) - verts[t[0]])) > epsilon


def _nnfix(tris: list[_Tri], k: int) -> None:
    """Make the neighbours of triangle k point back to k."""
    tri = tris[k]
    if tri.id == -1:
        return
    for i in range(3):
        i1 = (i + 1) % 3
        i2 = (i + 2) % 3
        if tri.n[i] != -1:
            tris[tri.n[i]].set_neib(tri.v[i2], tri.v[i1], k)


def _swapn(tris: list[_Tri], a: int, b: int) -> None:
    tris[a], tris[b] = tris[b], tris[a]
    tris[a].id, tris[b].id = tris[b].id, tris[a].id
    _nnfix(tris, a)
    _nnfix(tris, b)


def _b2bfix(tris: list[_Tri], s: int, t: int) -> None:
    """Join the neighbours of two back-to-back triangles and kill both."""
    for i in range(3):
        va = tris[s].v[(i + 1) % 3]
        vb = tris[s].v[(i + 2) % 3]
        tris[tris[s].neib(va, vb)].set_neib(vb, va, tris[t].neib(vb, va))
        tris[tris[t].neib(vb, va)].set_neib(va, vb, tris[s].neib(va, vb))
    tris[s].n = [-1, -1, -1]
    tris[t].n = [-1, -1, -1]


def _extrude(tris: list[_Tri], t0: int, v: int) -> None:
    t = list(tris[t0].v)
    n = list(tris[t0].n)
    b = len(tris)
    tris.append(_Tri([v, t[1], t[2]], b + 0, [n[0], b + 1, b + 2]))
    tris[n[0]].set_neib(t[1], t[2], b + 0)
    tris.append(_Tri([v, t[2], t[0]], b + 1, [n[1], b + 2, b + 0]))
    tris[n[1]].set_neib(t[2], t[0], b + 1)
    tris.append(_Tri([v, t[0], t[1]], b + 2, [n[2], b + 0, b + 1]))
    tris[n[2]].set_neib(t[0], t[1], b + 2)
    tris[t0].n = [-1, -1, -1]
    for k in range(3):
        if v in tris[n[k]].v:
            _b2bfix(tris, b + k, n[k])


def _extrudable(tris: list[_Tri], epsilon: float) -> int:
    t = -1
    for i, tri in enumerate(tris):
        if t < 0 or tris[t].rise < tri.rise:
            t = i
    return t if tris[t].rise > epsilon else -1


def _initial_tris(p: Sequence[int]) -> list[_Tri]:
    return [
        _Tri([p[2], p[3], p[1]], 0, [2, 3, 1]),
        _Tri([p[3], p[2], p[0]], 1, [3, 2, 0]),
        _Tri([p[0], p[1], p[3]], 2, [0, 1, 3]),
        _Tri([p[1], p[0], p[2]], 3, [1, 0, 2]),
    ]


def _fix_degenerate(tris: list[_Tri], verts, vid: int, center, epsilon: float) -> None:
    """Extrude into neighbours where a new face is flipped or very skinny."""
    j = len(tris)
    while j > 0:
        j -= 1
        tri = tris[j]
        if tri.dead():
            continue
        if vid not in tri.v:
            break
        nt = tri.v
        skinny = np.linalg.norm(np.cross(verts[nt[1]] - verts[nt[0]], verts[nt[2]] - verts[nt[1]]))
        if _above(verts, nt, center, 0.01 * epsilon) or skinny < epsilon * epsilon * 0.1:
            _extrude(tris, tri.n[0], vid)
            j = len(tris)


def _compress(tris: list[_Tri]) -> None:
    for j in reversed(range(len(tris))):
        if not tris[j].dead():
            continue
        _swapn(tris, j, len(tris) - 1)
        tris.pop()


def _expand(tris: list[_Tri], verts, vid: int, center, epsilon: float) -> None:
    for j in reversed(range(len(tris))):
        if tris[j].dead():
            continue
        if _above(verts, tris[j].v, verts[vid], 0.01 * epsilon):
            _extrude(tris, j, vid)
    _fix_degenerate(tris, verts, vid, center, epsilon)


def find_simplex(verts) -> tuple[int, int, int, int] | None:
    """Indices of four points spanning a positively oriented tetrahedron.

    Returns None when the points are too degenerate.
    """
    pts = np.asarray(verts, dtype=float)
    basis0 = np.array([0.01, 0.02, 1.0])
    p0 = maxdir(pts, basis0)
    p1 = maxdir(pts, -basis0)
    basis0 = pts[p0] - pts[p1]
    if p0 == p1 or not np.any(basis0):
        return None
    b1 = np.cross([1.0, 0.0, 0.0], basis0)
    b2 = np.cross([0.0, 1.0, 0.0], basis0)
    basis1 = normalize(b1 if np.linalg.norm(b1) > np.linalg.norm(b2) else b2)
    p2 = maxdir(pts, basis1)
    if p2 in (p0, p1):
        p2 = maxdir(pts, -basis1)
    if p2 in (p0, p1):
        return None
    basis1 = pts[p2] - pts[p0]
    basis2 = np.cross(basis1, basis0)
    p3 = maxdir(pts, basis2)
    if p3 in (p0, p1, p2):
        p3 = maxdir(pts, -basis2)
    if p3 in (p0, p1, p2):
        return None
    if np.dot(pts[p3] - pts[p0], np.cross(pts[p1] - pts[p0], pts[p2] - pts[p0])) < 0:
        p2, p3 = p3, p2
    return (p0, p1, p2, p3)


def expanding_polytope(verts, support: Callable[[np.ndarray], np.ndarray]) -> np.ndarray:
    """Plane (nx, ny, nz, w) of least penetration from a starting tetrahedron.

    verts are four points of a tetrahedron enclosing the origin, support maps a
    direction to the furthest point of the shape in that direction.
    """
    pts = [np.asarray(v, dtype=float) for v in verts]
    if len(pts) != 4:
        raise ValueError("expanding_polytope needs exactly four starting points")
    plane = np.array([0.0, 0.0, 0.0, -math.inf])
    epsilon = 0.001
    center = (pts[0] + pts[1] + pts[2] + pts[3]) / 4.0
    if np.dot(np.cross(pts[2] - pts[0], pts[1] - pts[0]), pts[3] - pts[0]) > 0.0:
        pts[2], pts[3] = pts[3], pts[2]
    tris = _initial_tris((0, 1, 2, 3))
    for _ in range(_EPA_ITERATION_LIMIT):
        face = np.array([0.0, 0.0, 0.0, -math.inf])
        for t in tris:
            n = tri_normal(pts[t.v[0]], pts[t.v[1]], pts[t.v[2]])
            d = -float(np.dot(n, pts[t.v[0]]))
            if d > face[3]:
                face = np.append(n, d)
        v = np.asarray(support(face[:3].copy()), dtype=float)
        p = np.append(face[:3], -np.dot(face[:3], v))
        if p[3] > plane[3]:
            plane = p
        if any(np.array_equal(v, e) for e in pts):
            return plane
        if plane[3] >= face[3] - epsilon:
            return plane
        vid = len(pts)
        pts.append(v)
        _expand(tris, pts, vid, center, epsilon)
        _compress(tris)
    return plane


def calchull(verts, vlimit: int = 0) -> tuple[np.ndarray, list[tuple[int, int, int]]]:
    """Convex hull of a point set using at most vlimit vertices (0: no limit).

    Returns the hull's points, in their input order, and outward (counter
    clockwise) triangles indexing them. Both are empty when no hull exists.
    """
    pts = np.array(verts, dtype=float).reshape(-1, 3)
    empty = (np.zeros((0, 3)), [])
    count = len(pts)
    if count < 4:
        return empty
    if vlimit == 0:
        vlimit = 1000000000
    bmin, bmax = pts.min(axis=0), pts.max(axis=0)
    epsilon = float(np.linalg.norm(bmax - bmin)) * 0.001

    p = find_simplex(pts)
    if p is None:
        return empty
    isextreme = [False] * count
    center = (pts[p[0]] + pts[p[1]] + pts[p[2]] + pts[p[3]]) / 4.0
    tris = _initial_tris(p)
    for i in p:
        isextreme[i] = True

    for t in tris:
        n = tri_normal(pts[t.v[0]], pts[t.v[1]], pts[t.v[2]])
        t.vmax = maxdir(pts, n)
        t.rise = float(np.dot(n, pts[t.vmax] - pts[t.v[0]]))

    vlimit -= 4
    while vlimit > 0:
        te = _extrudable(tris, epsilon)
        if te < 0:
            break
        v = tris[te].vmax
        isextreme[v] = True
        _expand(tris, pts, v, center, epsilon)
        for t in reversed(tris):
            if t.dead():
                continue
            if t.vmax >= 0:
                break
            n = tri_normal(pts[t.v[0]], pts[t.v[1]], pts[t.v[2]])
            t.vmax = maxdir(pts, n)
            if isextreme[t.vmax]:
                t.vmax = -1
            else:
                t.rise = float(np.dot(n, pts[t.vmax] - pts[t.v[0]]))
        _compress(tris)
        vlimit -= 1

    faces = [tuple(t.v) for t in tris]
    used = sorted({i for f in faces for i in f})
    remap = {old: new for new, old in enumerate(used)}
    return pts[used], [tuple(remap[i] for i in f) for f in faces]