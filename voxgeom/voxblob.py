"""Binary voxel blob turned into a triangle mesh with movable vertices.

Every grid cell stores the occupancy bits of its eight corners. That value
selects a cube configuration whose triangles sit on the filled corners. A
per-gridpoint offset lets the generated surface relax away from the lattice.
The blob can be carved and refilled, ray-cast and used for swept-sphere
navigation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterator

import numpy as np

from voxgeom.collide import hit_check_swept_sphere_tri, tri_hit
from voxgeom.cubes import MCube, build_cube_table
from voxgeom.geometric import project_onto_plane, quatfrommat, safenormalize

_CORNERS = np.array([[c & 1, (c >> 1) & 1, (c >> 2) & 1] for c in range(8)], dtype=int)
_AXES = np.eye(3, dtype=int)


def _vec(v) -> np.ndarray:
    return np.array(v, dtype=float).reshape(3)


@dataclass(eq=False)
class Vertex:
    position: np.ndarray
    orientation: np.ndarray
    texcoord: np.ndarray


@dataclass(eq=False)
class Mesh:
    verts: list = field(default_factory=list)
    tris: list = field(default_factory=list)


def _starting_hole(x, y, z):
    inner = (z >= 6) & (z <= 14) & (x >= 18) & (x <= 22) & (y >= 18) & (y <= 22)
    wide = (z >= 8) & (z <= 11) & (x >= 14) & (x <= 26) & (y >= 14) & (y <= 26)
    return inner | wide


def _clamp_mag(v: np.ndarray, m: float = 1.0) -> np.ndarray:
    d = float(np.linalg.norm(v))
    if d < m:
        return v
    return v * (m / d)


class VoxelBlob:
    """A voxel grid whose cells hold their corner-occupancy configuration."""

    def __init__(
        self,
        size=(64, 64, 24),
        *,
        perimeter: int = 255,
        starting_hole: bool = True,
        position=(0.0, 0.0, 0.0),
        scale: float = 1.0,
        texscale: float = 0.2,
        use_offset: bool = True,
        allow_singular_hole: bool = False,
        allow_singular_voxel: bool = False,
    ) -> None:
        self.size = tuple(int(s) for s in size)
        if len(self.size) != 3 or min(self.size) < 1:
            raise ValueError("size must be three positive integers")
        self.perimeter = int(perimeter)
        self.position = _vec(position)
        self.scale = float(scale)
        self.texscale = float(texscale)
        self.use_offset = use_offset
        self.allow_singular_hole = allow_singular_hole
        self.allow_singular_voxel = allow_singular_voxel
        self.enabled = True
        self.cubes: list[MCube] = build_cube_table()

        sx, sy, sz = self.size
        x, y, z = np.indices(self.size)
        blob = np.ones(self.size, dtype=np.uint8)
        if starting_hole:
            blob[_starting_hole(x, y, z)] = 0
        border = (z <= 1) | (x <= 1) | (y <= 1) | (x >= sx - 2) | (y >= sy - 2) | (z >= sz - 2)
        blob[border] = 1 if self.perimeter else 0
        self.blob = blob
        self._recompute_all()

        self.offset = np.zeros((sx + 1, sy + 1, sz + 1, 3))
        self.hit_voxel = np.zeros(3, dtype=int)
        self.voxhit = np.zeros(3, dtype=int)
        self.blobishit = False
        self.blobhitpoint = np.zeros(3)
        self.normalhack = np.zeros(3)
        self._local_hit = np.zeros(3, dtype=int)
        self.initialized = True

    # ------------------------------------------------------------------ grid

    def _recompute_all(self) -> None:
        sx, sy, sz = self.size
        solid = (self.blob & 1).astype(np.uint16)
        padded = np.pad(solid, ((0, 1), (0, 1), (0, 1)), constant_values=self.perimeter & 1)
        ids = np.zeros(self.size, dtype=np.uint16)
        for bit, (dx, dy, dz) in enumerate(_CORNERS):
            ids |= padded[dx:dx + sx, dy:dy + sy, dz:dz + sz] << bit
        self.blob = ids.astype(np.uint8)

    def getblob(self, x: int, y: int, z: int) -> int:
        """Configuration id of a cell; outside the grid the perimeter value."""
        sx, sy, sz = self.size
        if not (0 <= x < sx and 0 <= y < sy and 0 <= z < sz):
            return self.perimeter
        return int(self.blob[x, y, z])

    def blobat(self, x: int, y: int, z: int) -> int:
        """1 where the gridpoint is solid, else 0."""
        return self.getblob(x, y, z) & 1

    def compute(self, x: int, y: int, z: int) -> int:
        """Corner-occupancy bits of the cell at (x, y, z)."""
        return sum(
            1 << bit
            for bit, (dx, dy, dz) in enumerate(_CORNERS)
            if self.blobat(x + dx, y + dy, z + dz)
        )

    def _refresh(self, dx: int, dy: int, dz: int) -> None:
        for x in range(max(dx - 1, 0), dx + 1):
            for y in range(max(dy - 1, 0), dy + 1):
                for z in range(max(dz - 1, 0), dz + 1):
                    self.blob[x, y, z] = self.compute(x, y, z)

    def _near_edge(self, x: int, y: int, z: int) -> bool:
        sx, sy, sz = self.size
        return x <= 1 or y <= 1 or z <= 1 or x >= sx - 2 or y >= sy - 2 or z >= sz - 2

    @staticmethod
    def _run(steps: Callable[[int, int, int], Iterator], x: int, y: int, z: int) -> None:
        stack = [steps(x, y, z)]
        while stack:
            try:
                child = next(stack[-1])
            except StopIteration:
                stack.pop()
                continue
            stack.append(steps(*child))

    def _deblob_steps(self, x: int, y: int, z: int) -> Iterator[tuple[int, int, int]]:
        if not self.blobat(x, y, z) or self._near_edge(x, y, z):
            return
        self.blob[x, y, z] -= 1
        self._refresh(x, y, z)
        p = np.array([x, y, z])
        if not self.allow_singular_voxel:
            for e in _AXES:
                for s in (-1, 1):
                    if not self.blobat(*(p + 2 * s * e)):
                        yield tuple(int(c) for c in p + s * e)
        if not self.allow_singular_hole:
            for a, e in enumerate(_AXES):
                s = 1 if p[a] % 2 else -1
                if self.blobat(*(p + s * e)):
                    yield tuple(int(c) for c in p - s * e)

    def _terraform_steps(self, x: int, y: int, z: int) -> Iterator[tuple[int, int, int]]:
        if self.blobat(x, y, z) or self._near_edge(x, y, z):
            return
        self.blob[x, y, z] += 1
        self._refresh(x, y, z)
        p = np.array([x, y, z])
        if not self.allow_singular_hole:
            for e in _AXES:
                for s in (-1, 1):
                    if self.blobat(*(p + 2 * s * e)):
                        yield tuple(int(c) for c in p + s * e)
        if not self.allow_singular_voxel:
            for a, e in enumerate(_AXES):
                s = 1 if p[a] % 2 else -1
                if not self.blobat(*(p + s * e)):
                    yield tuple(int(c) for c in p - s * e)

    def deblob(self, x: int, y: int, z: int) -> None:
        """Empty a gridpoint, also clearing neighbours that would be left isolated."""
        self._run(self._deblob_steps, int(x), int(y), int(z))

    def terraform(self, x: int, y: int, z: int) -> None:
        """Fill a gridpoint, also filling neighbours that would leave single holes."""
        self._run(self._terraform_steps, int(x), int(y), int(z))

    # ------------------------------------------------------------ surface

    def _cells(self) -> Iterator[tuple[int, int, int]]:
        sx, sy, sz = self.size
        for x in range(sx):
            for y in range(sy):
                for z in range(sz):
                    yield x, y, z

    def _massage(self, cube: MCube, v: np.ndarray) -> None:
        for tri in cube.tris:
            idx = [tuple(int(c) for c in v + _CORNERS[k]) for k in tri]
            p = [np.array(i, dtype=float) for i in idx]
            o = [p[k] + self.offset[idx[k]] for k in range(3)]
            for k in range(3):
                k1, k2 = (k + 1) % 3, (k + 2) % 3
                self.offset[idx[k]] = (
                    self.offset[idx[k]] * 0.98 + (o[k1] - p[k]) * 0.01 + (o[k2] - p[k]) * 0.01
                )
            for i in idx:
                self.offset[i] = _clamp_mag(self.offset[i])

    def settle(self) -> None:
        """Relax gridpoint offsets towards their neighbours, smoothing the surface."""
        sx, sy, sz = self.size
        for z in range(sz):
            for y in range(sy):
                for x in range(sx):
                    cube = self.cubes[self.getblob(x, y, z)]
                    if cube.n:
                        self._massage(cube, np.array([x, y, z]))

    def _render(self, cube: MCube, p: np.ndarray, mesh: Mesh) -> None:
        for i, tri in enumerate(cube.tris):
            iv = [p + _CORNERS[c] for c in tri]
            fv = [c.astype(float) for c in iv]
            udir, vdir = cube.udir[i], cube.vdir[i]
            tex = [
                np.array([np.dot(v, udir) * self.texscale, np.dot(v, vdir) * self.texscale])
                for v in fv
            ]
            if self.use_offset:
                fv = [v + self.offset[tuple(c)] for v, c in zip(fv, iv)]
            facenrml = np.asarray(safenormalize(np.cross(fv[1] - fv[0], fv[2] - fv[1])), dtype=float)
            q = np.asarray(quatfrommat(np.array([udir, vdir, facenrml], dtype=float)), dtype=float)
            vc = len(mesh.verts)
            mesh.tris.append((vc, vc + 1, vc + 2))
            for v, t in zip(fv, tex):
                mesh.verts.append(Vertex(v * self.scale, q.copy(), t))

    def to_mesh(self) -> Mesh:
        """Triangle mesh of the blob's surface in blob space times scale."""
        mesh = Mesh()
        for x, y, z in self._cells():
            cube = self.cubes[self.getblob(x, y, z)]
            if cube.n:
                self._render(cube, np.array([x, y, z]), mesh)
        return mesh

    # -------------------------------------------------------- hit checks

    def _corner_points(self, base: np.ndarray, tri, with_offset: bool) -> list[np.ndarray]:
        pts = []
        for c in tri:
            ic = base.astype(int) + _CORNERS[c]
            pt = ic.astype(float)
            if with_offset:
                pt = pt + self.offset[tuple(ic)]
            pts.append(pt)
        return pts

    def _cube_hit(self, cube: MCube, base: np.ndarray, v1: np.ndarray, v2: np.ndarray):
        hit = False
        for tri in cube.tris:
            verts = self._corner_points(base, tri, self.use_offset)
            res = tri_hit(verts, v1, v2)
            if res is None:
                continue
            v2 = np.asarray(res[0], dtype=float)
            self.normalhack = np.asarray(res[1], dtype=float)
            hit = True
            k = int(np.argmin([np.linalg.norm(v2 - p) for p in verts]))
            self._local_hit = _CORNERS[tri[k]].copy()
        return v2 if hit else None

    def _span(self, c: float, limit: int) -> range:
        return range(max(0, int(c) - 2), min(limit - 1, int(c) + 2) + 1)

    def _neighbourhood(self, vmid: np.ndarray) -> Iterator[tuple[int, int, int]]:
        sx, sy, sz = self.size
        for x in self._span(vmid[0], sx):
            for y in self._span(vmid[1], sy):
                for z in self._span(vmid[2], sz):
                    yield x, y, z

    @staticmethod
    def _steps(v1: np.ndarray, v2: np.ndarray) -> tuple[int, np.ndarray]:
        n = int(np.linalg.norm(v2 - v1)) or 1
        return n, (v2 - v1) / n

    def hit_check_poly(self, v1, v2):
        """First point where the segment v1 -> v2 crosses the surface, or None.

        The grid cell hit is left in hit_voxel.
        """
        v1, v2 = _vec(v1), _vec(v2)
        n, dv = self._steps(v1, v2)
        if self.use_offset:
            hits = 0
            for i in range(0, n, 4):
                for x, y, z in self._neighbourhood(v1 + dv * i):
                    cube = self.cubes[self.getblob(x, y, z)]
                    if not cube.n:
                        continue
                    res = self._cube_hit(cube, np.array([x, y, z], dtype=float), v1, v2)
                    if res is not None:
                        v2 = res
                        self.hit_voxel = np.array([x, y, z]) + self._local_hit
                        hits += 1
                if hits:
                    return v2
            return None
        for i in range(n + 1):
            x, y, z = (int(c) for c in v1 + dv * i)
            cube = self.cubes[self.getblob(x, y, z)]
            if not cube.n:
                continue
            res = self._cube_hit(cube, np.array([x, y, z], dtype=float), v1, v2)
            if res is not None:
                self.hit_voxel = np.array([x, y, z]) + self._local_hit
                return res
        return None

    def hit_check_voxel(self, v1, v2, hittype: int = 1):
        """First gridpoint along v1 -> v2 whose occupancy equals hittype, or None."""
        v1, v2 = _vec(v1), _vec(v2)
        n, dv = self._steps(v1, v2)
        for i in range(n + 1):
            x, y, z = (int(0.5 + c) for c in v1 + dv * i)
            if self.blobat(x, y, z) == hittype:
                self.hit_voxel = np.array([x, y, z])
                return np.array([x, y, z], dtype=float)
        return None

    def hit_check_swept_sphere(self, radius: float, v0, v1):
        """First contact of a sphere moving v0 -> v1: (centre, normal) or None."""
        v0, v1 = _vec(v0), _vec(v1)
        if not self.use_offset:
            return None
        n, dv = self._steps(v0, v1)
        hits = 0
        normal = np.zeros(3)
        for i in range(0, n, 4):
            for x, y, z in self._neighbourhood(v0 + dv * i):
                cube = self.cubes[self.getblob(x, y, z)]
                base = np.array([x, y, z], dtype=float)
                for tri in cube.tris:
                    p = self._corner_points(base, tri, True)
                    res = hit_check_swept_sphere_tri(p[0], p[1], p[2], radius, v0, v1)
                    if res is not None:
                        hits += res[0]
                        v1 = np.asarray(res[1], dtype=float)
                        normal = np.asarray(res[2], dtype=float)
            if hits:
                return v1, normal
        return None

    def _to_local(self, v) -> np.ndarray:
        return (_vec(v) - self.position) / self.scale

    def _to_world(self, v) -> np.ndarray:
        return np.asarray(v, dtype=float) * self.scale + self.position

    def _in_grid(self, v: np.ndarray) -> bool:
        return bool(np.all((v >= 0.0) & (v <= np.array(self.size, dtype=float))))

    def hit_check_relative(self, v0, v1):
        """World-space ray cast against the surface; world impact or None."""
        if not self.enabled:
            return None
        impact = self.hit_check_poly(self._to_local(v0), self._to_local(v1))
        self.blobishit = impact is not None
        if impact is None:
            return None
        world = self._to_world(impact)
        self.blobhitpoint = world
        self.voxhit = self.hit_voxel.copy()
        return world

    def hit_check_swept_sphere_world(self, radius: float, v0, v1):
        """World-space swept sphere check: (world centre, normal) or None."""
        local1 = self._to_local(v1)
        if not self._in_grid(local1):
            return None
        res = self.hit_check_swept_sphere(radius / self.scale, self._to_local(v0), local1)
        if res is None:
            return None
        return self._to_world(res[0]), res[1]

    # ----------------------------------------------------------- navigation

    def _slide(self, check, v0, v1, off, plane_normal):
        hit = 0
        while hit < 3:
            res = check(v0 + off, v1 + off)
            if res is None:
                break
            hitpoint, normal = res if plane_normal is None else (res, self.normalhack)
            plane = np.append(normal, -np.dot(hitpoint, normal))
            v1 = np.asarray(project_onto_plane(plane, v1 + off), dtype=float) - off
            hit += 1
        while hit < 6:
            res = check(v0 + off, v1 + off)
            if res is None:
                break
            hitpoint = res if plane_normal is not None else res[0]
            v1 = np.asarray(hitpoint, dtype=float) - off
            hit += 1
        if hit == 6:
            v1 = v0.copy()
        return hit, v1

    def nav(self, r: float, h: float, v0, v1):
        """Move a capsule-like body of radius r and height h from v0 towards v1.

        Returns (hit count, adjusted world position or None when nothing hit).
        """
        if not self.initialized or not self.enabled:
            return 0, None
        v0, v1 = self._to_local(v0), self._to_local(v1)
        h /= self.scale
        r /= self.scale
        if not self._in_grid(v1):
            return 0, None
        up = np.array([0.0, 0.0, 1.0])
        count = 0
        hp = self.hit_check_poly(v0 + up * (h * 0.5), v0 + up * h)
        if hp is not None:
            count += 1
            dz = hp[2] - (v0[2] + h)
            v1[2] += dz
            v0[2] += dz
        hp = self.hit_check_poly(v0 + up * h, v0 + up * (h * 0.5))
        if hp is not None:
            count += 1
            dz = hp[2] - (v0[2] + h * 0.5)
            v1[2] += dz
            v0[2] += dz

        def sphere(a, b):
            return self.hit_check_swept_sphere(r, a, b)

        for off in (up * (h * 0.5 + r), up * (h - r)):
            hit, v1 = self._slide(sphere, v0, v1, off, None)
            count += hit
        return count, (self._to_world(v1) if count else None)

    def nav_old(self, r: float, h: float, v0, v1):
        """Older navigation using ray casts at three heights instead of spheres."""
        if not self.initialized or not self.enabled:
            return 0, None
        v0, v1 = self._to_local(v0), self._to_local(v1)
        if not self._in_grid(v1):
            return 0, None
        hh = h / self.scale
        up = np.array([0.0, 0.0, 1.0])
        count = 0
        hp = self.hit_check_poly(v0 + up * hh, v0)
        if hp is not None:
            count += 1
            dz = hp[2] - v0[2]
            v1[2] += dz
            v0[2] += dz
        hp = self.hit_check_poly(v0, v0 + up * hh)
        if hp is not None:
            count += 1
            dz = hp[2] - (v0[2] + hh)
            v1[2] += dz
            v0[2] += dz
        for i in range(3):
            off = up * (hh * i / 2.0)
            hit, v1 = self._slide(self.hit_check_poly, v0, v1, off, True)
            count += hit
        return count, (self._to_world(v1) if count else None)