"""Cube configuration table for the limit-of-marching-cubes surface.

Each of the 256 ways to fill the eight corners of a voxel cell gets up to
three triangles whose vertices sit on the filled corners. The table is built
from 13 base cases and their rotations.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from voxgeom.geometric import normalize, orth, safenormalize

Triangle = tuple[int, int, int]

# (id, triangles); one case is a hand-made mirror of another to keep winding simple
_BASE_CUBES: tuple[tuple[int, tuple[Triangle, ...]], ...] = (
    (7, ((0, 1, 2),)),
    (15, ((0, 1, 3), (0, 3, 2))),
    (23, ((1, 2, 4),)),
    (27, ((0, 4, 3), (1, 3, 4))),
    (29, ((0, 3, 4), (2, 4, 3))),
    (30, ((1, 3, 2),)),
    (31, ((1, 3, 2), (1, 2, 4))),
    (61, ((0, 3, 4), (2, 4, 3), (0, 4, 5))),
    (107, ((0, 5, 3),)),
    (63, ((2, 4, 5), (2, 5, 3))),
    (111, ((0, 5, 3), (0, 3, 6))),
    (126, ((1, 4, 2), (3, 6, 5))),
    (127, ((3, 6, 5),)),
)

RX = (2, 3, 6, 7, 0, 1, 4, 5)  # rotate 90 degrees about x
RY = (4, 0, 6, 2, 5, 1, 7, 3)
RZ = (1, 3, 0, 2, 5, 7, 4, 6)
MX = (1, 0, 3, 2, 5, 4, 7, 6)  # mirror along x


def _corner_offset(c: int) -> np.ndarray:
    return np.array([c & 1, (c >> 1) & 1, (c >> 2) & 1])


def _axis_step(x: float) -> int:
    return 1 if x > 0.5 else (-1 if x < -0.5 else 0)


@dataclass(eq=False)
class MCube:
    """One cube configuration: its triangles and per-triangle shading frames."""

    id: int
    tris: tuple[Triangle, ...] = ()
    nrml: list = field(init=False, default_factory=list)
    udir: list = field(init=False, default_factory=list)
    vdir: list = field(init=False, default_factory=list)
    color: list = field(init=False, default_factory=list)
    dir: list = field(init=False, default_factory=list)

    def __post_init__(self) -> None:
        self.tris = tuple(tuple(int(c) for c in t) for t in self.tris)
        for t in self.tris:
            p = [_corner_offset(c).astype(float) for c in t]
            n = normalize(np.cross(p[1] - p[0], p[2] - p[0]))
            u = orth(n)
            self.nrml.append(n)
            self.udir.append(u)
            self.vdir.append(safenormalize(np.cross(n, u)))
            self.dir.append(13 + _axis_step(n[0]) + 3 * _axis_step(n[1]) + 9 * _axis_step(n[2]))
            self.color.append((n + 1.0) * 0.5)

    @property
    def n(self) -> int:
        return len(self.tris)

    def corner(self, tri: int, k: int) -> np.ndarray:
        """Integer offset (0 or 1 per axis) of corner k of triangle tri."""
        return _corner_offset(self.tris[tri][k])


def permutation(oldid: int, tris, perm) -> tuple[int, tuple[Triangle, ...]]:
    """Apply a corner permutation to a configuration id and its triangles."""
    newid = 0
    for j in range(8):
        if (oldid >> j) & 1:
            newid |= 1 << perm[j]
    new_tris = tuple(tuple(perm[c] for c in t) for t in tris)
    return newid, new_tris


def bitcount(a: int) -> int:
    """Number of set bits in the low 8 bits."""
    return bin(a & 0xFF).count("1")


def build_cube_table() -> list[MCube]:
    """The 256 cube configurations, indexed by corner occupancy bits."""
    bases = dict(_BASE_CUBES)
    owner = [-1] * 256
    table: list[MCube | None] = [None] * 256
    for i in range(256):
        if owner[i] != -1:
            continue
        cid = i
        tris = bases.get(i, ())
        for _ in range(4):
            for _ in range(4):
                for _ in range(4):
                    if owner[cid] == -1:
                        owner[cid] = i
                        table[cid] = MCube(cid, tris)
                    cid, tris = permutation(cid, tris, RZ)
                cid, tris = permutation(cid, tris, RY)
            cid, tris = permutation(cid, tris, RX)
        if cid != i:
            raise RuntimeError("rotation group did not return to its start")
    return [cube for cube in table if cube is not None]