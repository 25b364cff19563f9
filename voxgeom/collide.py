"""Ray and swept-sphere intersection tests against spheres, cylinders and triangles.

Each test takes a motion segment v0 -> v1. On a hit it returns the impact
point and surface normal, otherwise None.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from voxgeom.geometric import (
    normalize,
    plane_line_intersection,
    poly_hit_check,
    poly_plane,
    qconj,
    qrot,
    quat_from_to,
)

Hit = tuple[np.ndarray, np.ndarray]

_UP = np.array([0.0, 0.0, 1.0])


def _vec(v) -> np.ndarray:
    return np.asarray(v, dtype=float).reshape(3)


@dataclass(frozen=True)
class QuadraticRoots:
    """Real roots ta <= tb of a quadratic; num is 0, 1 or 2."""

    num: int
    ta: float
    tb: float

    def __bool__(self) -> bool:
        return self.num != 0


def solve_quadratic(a: float, b: float, c: float) -> QuadraticRoots:
    """Solve a*x^2 + b*x + c == 0."""
    d = b * b - 4.0 * a * c
    if d < 0.0:
        return QuadraticRoots(0, 0.0, 0.0)
    sqd = math.sqrt(d)
    return QuadraticRoots(1 if d == 0.0 else 2, (-b - sqd) / (2.0 * a), (-b + sqd) / (2.0 * a))


def _pick_root(roots: QuadraticRoots) -> float | None:
    if 0.0 <= roots.ta <= 1.0 and (roots.ta <= roots.tb or roots.tb <= 0.0):
        return roots.ta
    if 0.0 <= roots.tb <= 1.0:
        return roots.tb
    return None


def hit_check_ray_sphere(center, radius: float, v0, v1) -> Hit | None:
    """Where a segment starting outside a sphere enters it."""
    start = _vec(v0)
    end = _vec(v1)
    dv = end - start
    local = start - _vec(center)
    if radius <= 0.0 or np.array_equal(start, end):
        return None
    a = float(np.dot(dv, dv))
    b = 2.0 * float(np.dot(dv, local))
    c = float(np.dot(local, local)) - radius * radius
    if c < 0.0:
        return None
    roots = solve_quadratic(a, b, c)
    if not roots:
        return None
    t = _pick_root(roots)
    if t is None:
        return None
    return start + dv * t, (local + dv * t) / radius


def hit_check_ray_cylinder(p0, p1, radius: float, v0, v1) -> Hit | None:
    """Where a segment enters the side of the cylinder with axis p0-p1 (caps ignored)."""
    base = _vec(p0)
    q = quat_from_to(_vec(p1) - base, _UP)
    back = qconj(q)
    h = float(qrot(q, _vec(p1) - base)[2])
    a0 = np.asarray(qrot(q, _vec(v0) - base), dtype=float)
    a1 = np.asarray(qrot(q, _vec(v1) - base), dtype=float)
    if a0[2] <= 0.0 and a1[2] <= 0.0:
        return None
    if a0[2] >= h and a1[2] >= h:
        return None
    if a0[2] < 0.0:
        a0 = np.asarray(plane_line_intersection(_UP, 0.0, a0, a1), dtype=float)
    if a1[2] < 0.0:
        a1 = np.asarray(plane_line_intersection(_UP, 0.0, a0, a1), dtype=float)
    if a0[2] > h:
        a0 = np.asarray(plane_line_intersection(_UP, -h, a0, a1), dtype=float)
    if a1[2] > h:
        a1 = np.asarray(plane_line_intersection(_UP, -h, a0, a1), dtype=float)
    if a0[0] == a1[0] and a0[1] == a1[1]:
        return None
    dv = a1 - a0
    a = dv[0] * dv[0] + dv[1] * dv[1]
    b = 2.0 * (dv[0] * a0[0] + dv[1] * a0[1])
    c = (a0[0] * a0[0] + a0[1] * a0[1]) - radius * radius
    if c < 0.0:
        return None
    roots = solve_quadratic(float(a), float(b), float(c))
    if not roots:
        return None
    t = _pick_root(roots)
    if t is None:
        return None
    impact = np.asarray(qrot(back, a0 + dv * t), dtype=float) + base
    radial = (np.array([a0[0], a0[1], 0.0]) + np.array([dv[0], dv[1], 0.0]) * t) / radius
    return impact, np.asarray(qrot(back, radial), dtype=float)


def hit_check_poly(verts, v0, v1) -> Hit | None:
    """Where a segment crosses a convex polygon from its front side."""
    pts = [_vec(v) for v in verts]
    hit = poly_hit_check(pts, _vec(v0), _vec(v1), poly_plane(pts))
    if not hit:
        return None
    return np.asarray(hit.impact, dtype=float), np.asarray(hit.normal, dtype=float)


def hit_check_swept_sphere_tri(p0, p1, p2, radius: float, v0, v1) -> tuple[int, np.ndarray, np.ndarray] | None:
    """First contact of a sphere moving v0 -> v1 with a triangle.

    Returns the number of features hit, the sphere centre at impact (nudged
    off the surface) and the contact normal.
    """
    a, b, c = _vec(p0), _vec(p1), _vec(p2)
    start = _vec(v0)
    end = _vec(v1)
    cp = np.cross(b - a, c - a)
    if float(np.dot(cp, end - start)) >= 0.0:
        return None
    n = normalize(cp)
    offset_tri = [a + n * radius, b + n * radius, c + n * radius]
    checks = [
        lambda e: hit_check_poly(offset_tri, start, e),
        lambda e: hit_check_ray_cylinder(a, b, radius, start, e),
        lambda e: hit_check_ray_cylinder(b, c, radius, start, e),
        lambda e: hit_check_ray_cylinder(c, a, radius, start, e),
        lambda e: hit_check_ray_sphere(a, radius, start, e),
        lambda e: hit_check_ray_sphere(b, radius, start, e),
        lambda e: hit_check_ray_sphere(c, radius, start, e),
    ]
    hits = 0
    normal = None
    for check in checks:
        result = check(end)
        if result is not None:
            end, normal = result
            hits += 1
    if not hits:
        return None
    return hits, end + normal * 0.001, normal


def tri_hit(verts, v1, v2) -> Hit | None:
    """Where a segment passes through a triangle from its front side.

    The impact is nudged slightly off the surface along the normal.
    """
    p = [_vec(v) for v in verts]
    start, end = _vec(v1), _vec(v2)
    normal = np.cross(p[1] - p[0], p[2] - p[1])
    if np.linalg.norm(normal) <= 0.0001:
        return None
    normal = normalize(normal)
    dist = -float(np.dot(normal, p[0]))
    if float(np.dot(start, normal)) + dist < 0 or float(np.dot(end, normal)) + dist > 0:
        return None
    point = np.asarray(plane_line_intersection(normal, dist, start, end), dtype=float)
    for j in range(3):
        pp1 = p[j]
        pp2 = p[(j + 1) % 3]
        side = np.cross(pp2 - pp1, point - pp1)
        if not float(np.dot(normal, side)) > 0.0:
            return None
    return point + normal * 0.001, normal