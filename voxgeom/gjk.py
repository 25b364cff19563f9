"""GJK distance queries between convex shapes given as support functions.

A support function maps a direction to the point of the shape furthest along
it. Penetrating shapes are resolved with the expanding polytope algorithm,
and a swept query finds the time of impact along a motion ray.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Callable, Iterator

import numpy as np

from voxgeom.geometric import (
    Pose,
    barycentric,
    line_project_time,
    maxdir,
    normalize,
    orth,
    plane_line_intersection,
    plane_project_of,
    qconj,
    qrot,
    quat_from_to,
    qxdir,
    qydir,
    tri_interior,
    tri_normal,
)
from voxgeom.hull import expanding_polytope

SupportFunc = Callable[[np.ndarray], np.ndarray]

_EPS = 0.00001
_FLT_MIN = float(np.finfo(np.float32).tiny)
_SEPARATED_ITERATIONS = 50
_SWEEP_ITERATIONS = 100
_TUNNEL_ITERATIONS = 100
_ORIGIN = np.zeros(3)


def _zeros() -> np.ndarray:
    return np.zeros(3)


@dataclass(eq=False)
class Contact:
    """Result of a proximity query.

    ``normal`` points from the second shape towards the first. A contact is
    true when the shapes touch or overlap (separation <= 0).
    """

    type: int = -1
    v: list = field(default_factory=lambda: [np.zeros(3) for _ in range(4)])
    normal: np.ndarray = field(default_factory=_zeros)
    dist: float = 0.0
    impact: np.ndarray = field(default_factory=_zeros)
    separation: float = math.inf
    p0w: np.ndarray = field(default_factory=_zeros)
    p1w: np.ndarray = field(default_factory=_zeros)
    time: float = 0.0

    def __bool__(self) -> bool:
        return self.separation <= 0


@dataclass(frozen=True, eq=False)
class _MKPoint:
    a: np.ndarray
    b: np.ndarray
    p: np.ndarray
    t: float = 0.0

    def with_t(self, t: float) -> "_MKPoint":
        return replace(self, t=t)


@dataclass(eq=False)
class _Simplex:
    v: np.ndarray
    w: list = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.w)


def _pom(a: SupportFunc, b: SupportFunc, n, ray=None) -> _MKPoint:
    """Support point of the Minkowski difference a - b, optionally swept by ray."""
    n = np.asarray(n, dtype=float)
    pa = np.asarray(a(n), dtype=float)
    pb = np.asarray(b(-n), dtype=float)
    p = pa - pb
    if ray is not None and np.dot(n, ray) > 0.0:
        p = p + ray
    return _MKPoint(pa, pb, p)


def _single(w: _MKPoint) -> _Simplex:
    return _Simplex(w.p, [w.with_t(1.0)])


def _edge(keep: _MKPoint, t: float, w: _MKPoint, v) -> _Simplex:
    return _Simplex(v, [keep.with_t(t), w.with_t(1.0 - t)])


def _next0(src: _Simplex, w: _MKPoint):
    return _single(w), True


def _next1(src: _Simplex, w: _MKPoint):
    w0 = src.w[0]
    t = line_project_time(w.p, w0.p, _ORIGIN)
    if t < 0.0:
        return _single(w), True
    return _edge(w0, t, w, w.p + (w0.p - w.p) * t), True


def _next2(src: _Simplex, w: _MKPoint):
    q0, q1 = src.w
    w0, w1 = q0.p, q1.p
    t0 = line_project_time(w.p, w0, _ORIGIN)
    t1 = line_project_time(w.p, w1, _ORIGIN)
    v0 = w.p + (w0 - w.p) * t0
    v1 = w.p + (w1 - w.p) * t1
    ine0 = np.dot(-v0, w1 - v0) > 0.0
    ine1 = np.dot(-v1, w0 - v1) > 0.0
    if ine0 and ine1:
        return _Simplex(plane_project_of(w0, w1, w.p, _ORIGIN), [q0, q1, w]), True
    if not ine0 and t0 > 0.0:
        return _edge(q0, t0, w, v0), True
    if not ine1 and t1 > 0.0:
        return _edge(q1, t1, w, v1), True
    return _single(w), True


def _next3(src: _Simplex, w: _MKPoint):
    q0, q1, q2 = src.w
    w0, w1, w2 = q0.p, q1.p, q2.p
    t = [line_project_time(w.p, wi, _ORIGIN) for wi in (w0, w1, w2)]
    v = [w.p + (wi - w.p) * ti for wi, ti in zip((w0, w1, w2), t)]
    vc = [
        plane_project_of(w.p, w1, w2, _ORIGIN),
        plane_project_of(w.p, w2, w0, _ORIGIN),
        plane_project_of(w.p, w0, w1, _ORIGIN),
    ]
    inp0 = np.dot(-vc[0], w0 - vc[0]) > 0.0
    inp1 = np.dot(-vc[1], w1 - vc[1]) > 0.0
    inp2 = np.dot(-vc[2], w2 - vc[2]) > 0.0

    if inp0 and inp1 and inp2:
        return _Simplex(np.zeros(3), [q0, q1, q2, w]), False

    inp2e0 = np.dot(-v[0], w1 - v[0]) > 0.0
    inp2e1 = np.dot(-v[1], w0 - v[1]) > 0.0
    if not inp2 and inp2e0 and inp2e1:
        return _Simplex(plane_project_of(w0, w1, w.p, _ORIGIN), [q0, q1, w]), True
    inp0e1 = np.dot(-v[1], w2 - v[1]) > 0.0
    inp0e2 = np.dot(-v[2], w1 - v[2]) > 0.0
    if not inp0 and inp0e1 and inp0e2:
        return _Simplex(plane_project_of(w1, w2, w.p, _ORIGIN), [q1, q2, w]), True
    inp1e2 = np.dot(-v[2], w0 - v[2]) > 0.0
    inp1e0 = np.dot(-v[0], w2 - v[0]) > 0.0
    if not inp1 and inp1e2 and inp1e0:
        return _Simplex(plane_project_of(w2, w0, w.p, _ORIGIN), [q2, q0, w]), True

    if not inp1e0 and not inp2e0 and t[0] > 0.0:
        return _edge(q0, t[0], w, v[0]), True
    if not inp2e1 and not inp0e1 and t[1] > 0.0:
        return _edge(q1, t[1], w, v[1]), True
    if not inp0e2 and not inp1e2 and t[2] > 0.0:
        return _edge(q2, t[2], w, v[2]), True
    return _single(w), True


_NEXT_SIMPLEX = (_next0, _next1, _next2, _next3)


def _fill_hit_v(contact: Contact, src: _Simplex) -> None:
    """Classify a triangle simplex as point-plane, plane-point or edge-edge."""
    contact.type = -1
    if src.count != 3:
        return
    q0, q1, q2 = src.w
    eq = np.array_equal
    dp = float(np.dot(contact.normal, np.cross(q1.p - q0.p, q2.p - q0.p)))
    if eq(q0.a, q1.a) and eq(q0.a, q2.a):
        contact.type = 1
        contact.v = [q0.a.copy(), q0.b.copy(), q1.b.copy(), q2.b.copy()]
        if dp < 0:
            contact.v[1], contact.v[2] = contact.v[2], contact.v[1]
        return
    if eq(q0.b, q1.b) and eq(q0.b, q2.b):
        contact.type = 3
        contact.v = [q0.a.copy(), q1.a.copy(), q2.a.copy(), q2.b.copy()]
        if dp < 0:
            contact.v[1], contact.v[2] = contact.v[2], contact.v[1]
        return
    a_pair = eq(q0.a, q1.a) or eq(q0.a, q2.a) or eq(q1.a, q2.a)
    b_pair = eq(q0.b, q1.b) or eq(q0.b, q2.b) or eq(q1.b, q2.b)
    if a_pair and b_pair:
        contact.type = 2
        a1_differs = not eq(q1.a, q0.a)
        contact.v = [
            q0.a.copy(),
            (q1.a if a1_differs else q2.a).copy(),
            q0.b.copy(),
            (q1.b if not eq(q1.b, q0.b) else q2.b).copy(),
        ]
        if (dp < 0 and a1_differs) or (dp > 0 and not a1_differs):
            contact.v[2], contact.v[3] = contact.v[3], contact.v[2]


def _calcpoints(src: _Simplex) -> Contact:
    if src.count == 3:
        weights = barycentric(src.w[0].p, src.w[1].p, src.w[2].p, src.v)
    else:
        weights = [q.t for q in src.w]
    pa = np.zeros(3)
    pb = np.zeros(3)
    for wt, q in zip(weights, src.w):
        pa = pa + wt * q.a
        pb = pb + wt * q.b
    contact = Contact()
    contact.p0w = pa
    contact.p1w = pb
    contact.impact = (pa + pb) * 0.5
    contact.separation = float(np.linalg.norm(pa - pb)) + _FLT_MIN
    with np.errstate(divide="ignore", invalid="ignore"):
        contact.normal = normalize(src.v)
    contact.dist = -float(np.dot(contact.normal, contact.impact))
    _fill_hit_v(contact, src)
    return contact


def _penetration(a: SupportFunc, b: SupportFunc, nxt: _Simplex, last: _Simplex) -> Contact:
    simplex = list(nxt.w)
    if len(simplex) == 2:
        last = _Simplex(nxt.v, list(simplex))
        simplex.append(_pom(a, b, orth(simplex[0].p - simplex[1].p)))
    if len(simplex) == 3:
        last = _Simplex(nxt.v, list(simplex))
        simplex.append(_pom(a, b, tri_normal(simplex[0].p, simplex[1].p, simplex[2].p)))

    def minkowski(d):
        return np.asarray(a(d), dtype=float) - np.asarray(b(-d), dtype=float)

    plane = expanding_polytope([q.p for q in simplex], minkowski)
    contact = Contact()
    contact.normal = -plane[:3]
    contact.dist = -float(plane[3])
    contact.separation = min(0.0, float(plane[3]))
    m = np.vstack([np.column_stack([q.p for q in simplex]), np.ones(4)])
    weights = np.linalg.solve(m, np.array([0.0, 0.0, 0.0, 1.0]))
    contact.p0w = sum(wt * q.a for wt, q in zip(weights, simplex))
    contact.p1w = sum(wt * q.b for wt, q in zip(weights, simplex))
    contact.impact = (contact.p0w + contact.p1w) * 0.5
    _fill_hit_v(contact, last)
    return contact


def separated(a: SupportFunc, b: SupportFunc, findclosest: bool = True) -> Contact:
    """Closest points, or least penetration, between two convex shapes.

    With findclosest false the search stops at the first separating plane.
    """
    v = _pom(a, b, np.array([0.0, 0.0, 1.0])).p
    last = _Simplex(v)
    w = _pom(a, b, -v)
    nxt, _ = _next0(last, w)
    for i in range(_SEPARATED_ITERATIONS):
        if i and not (np.dot(w.p, v) < np.dot(v, v) - _EPS):
            break
        last = nxt
        v = last.v
        w = _pom(a, b, -v)
        vv = float(np.dot(v, v))
        wv = float(np.dot(w.p, v))
        if wv >= vv - _EPS - _EPS * vv:
            break
        if not findclosest and wv >= 0.0:
            break
        nxt, _ = _NEXT_SIMPLEX[last.count](last, w)
        if not np.any(nxt.v):
            return _penetration(a, b, nxt, last)
        if np.dot(nxt.v, nxt.v) >= np.dot(last.v, last.v):
            break
    return _calcpoints(last)


def _tunnel(a: SupportFunc, b: SupportFunc, ray: np.ndarray, start: _Simplex) -> Contact:
    faces = ((0, 1, 2), (1, 0, 3), (2, 1, 3), (0, 2, 3))
    found = None
    for face in faces:
        q = [start.w[i] for i in face]
        if tri_interior(q[0].p, q[1].p, q[2].p, ray):
            found = q
    if found is None:
        raise RuntimeError("sweep ray does not pass through the enclosing simplex")
    v0, v1, v2 = found
    n = tri_normal(v0.p, v1.p, v2.p)
    if np.dot(n, ray) < 0.0:
        n = -n
        v0, v1 = v1, v0
    v = _pom(a, b, n, ray)
    for _ in range(_TUNNEL_ITERATIONS):
        if any(np.array_equal(v.p, q.p) for q in (v0, v1, v2)):
            break
        if tri_interior(v0.p, v1.p, v.p, ray):
            v2 = v
        elif tri_interior(v1.p, v2.p, v.p, ray):
            v0 = v
        else:
            v1 = v
        n = tri_normal(v0.p, v1.p, v2.p)
        v = _pom(a, b, n, ray)
    contact = Contact()
    contact.normal = -n
    if np.dot(contact.normal, ray) > 0.0:
        contact.normal = -contact.normal
    contact.dist = -float(np.dot(contact.normal, v.p))
    hitpoint = plane_line_intersection(contact.normal, contact.dist, _ORIGIN, ray)
    time = 1.0 - math.sqrt(float(np.dot(hitpoint, hitpoint) / np.dot(ray, ray)))
    contact.time = time
    bc = barycentric(v0.p, v1.p, v2.p, hitpoint)
    contact.impact = bc[0] * v0.b + bc[1] * v1.b + bc[2] * v2.b
    contact.separation = time - 1.0
    return contact


def sweep(a: SupportFunc, b: SupportFunc, direction) -> Contact:
    """Move shape a along direction and report the first impact with b.

    On a hit the contact's time is the fraction of the motion completed.
    """
    ray = np.asarray(direction, dtype=float)
    v = _pom(a, b, np.array([0.0, 0.0, 1.0]), ray).p
    w = _pom(a, b, -v, ray)
    nxt, _ = _next0(_Simplex(v), w)
    last = nxt
    for _ in range(_SWEEP_ITERATIONS):
        if not (np.dot(w.p, v) < np.dot(v, v) - _EPS):
            break
        last = nxt
        v = last.v
        w = _pom(a, b, -v, ray)
        vv = float(np.dot(v, v))
        wv = float(np.dot(w.p, v))
        if wv >= vv - _EPS - _EPS * vv:
            break
        if wv >= 0.0:
            break
        nxt, isseparated = _NEXT_SIMPLEX[last.count](last, w)
        if not isseparated:
            return _tunnel(a, b, ray, nxt)
        if np.dot(nxt.v, nxt.v) >= np.dot(last.v, last.v):
            break
    return _calcpoints(last)


def support_func(points) -> SupportFunc:
    """Support function of a point cloud."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)

    def support(direction):
        return pts[maxdir(pts, direction)].copy()

    return support


def support_func_trans(position, orientation, sf: SupportFunc) -> SupportFunc:
    """Support function of a shape placed at position with orientation."""
    position = np.asarray(position, dtype=float)
    orientation = np.asarray(orientation, dtype=float)
    inverse = qconj(orientation)

    def support(direction):
        return position + qrot(orientation, sf(qrot(inverse, direction)))

    return support


def separated_points(a, b, findclosest: bool = True) -> Contact:
    """Run separated on two point clouds."""
    return separated(support_func(a), support_func(b), findclosest)


def separated_posed(a, ap, aq, b, bp, bq, findclosest: bool = True) -> Contact:
    """Run separated on two point clouds, each with its own pose."""
    return separated(
        support_func_trans(ap, aq, support_func(a)),
        support_func_trans(bp, bq, support_func(b)),
        findclosest,
    )


@dataclass(eq=False)
class Patch:
    """Contact samples approximating the touching area of two shapes."""

    closest: Contact | None = None
    contacts: list = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.contacts)

    def __iter__(self) -> Iterator[Contact]:
        return iter(self.contacts)

    def __getitem__(self, i: int) -> Contact:
        return self.contacts[i]

    def __bool__(self) -> bool:
        return bool(self.contacts)


def contact_patch(s0: SupportFunc, s1: SupportFunc, max_separation: float) -> Patch:
    """Sample the contact area by rocking s0 slightly about the contact.

    The patch is empty when the shapes are further apart than max_separation.
    """
    first = separated(s0, s1, True)
    patch = Patch(closest=first)
    if first.separation > max_separation:
        return patch
    n = first.normal
    patch.contacts.append(first)
    qs = quat_from_to(n, (0.0, 0.0, 1.0))
    tangent = qxdir(qs)
    bitangent = qydir(qs)
    identity = np.array([0.0, 0.0, 0.0, 1.0])
    jiggle_degrees = 4.0
    for raxis in (tangent, bitangent, -tangent, -bitangent):
        jiggle = normalize(np.append(raxis * math.sin(3.14 / 180.0 * jiggle_degrees / 2.0), 1.0))
        pivot = first.p0w
        ar = Pose(n * 0.2, identity) * Pose(-pivot, identity) * Pose(np.zeros(3), jiggle) * Pose(pivot, identity)
        hit = separated(support_func_trans(ar.position, ar.orientation, s0), s1, True)
        hit.normal = n
        hit.p0w = ar.inverse() * hit.p0w
        hit.separation = float(np.dot(n, hit.p0w - hit.p1w))
        match = any(
            np.linalg.norm(hit.p0w - c.p0w) < 0.05 or np.linalg.norm(hit.p1w - c.p1w) < 0.05
            for c in patch.contacts
        )
        if not match:
            patch.contacts.append(hit)
    return patch