"""Vector, quaternion and geometric utility routines for 3D work.

Vectors are numpy arrays; quaternions are stored as (x, y, z, w).
Matrices are ordinary numpy arrays acting on column vectors (``m @ v``).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator, Sequence

import numpy as np

ArrayLike = Sequence[float] | np.ndarray


def _v(a: ArrayLike) -> np.ndarray:
    return np.asarray(a, dtype=float)


# --------------------------------------------------------------------------
# grid iteration

def rect_iteration(dims) -> Iterator[tuple[int, int]]:
    """Yield every (x, y) cell of a 2D grid, x varying fastest."""
    w, h = int(dims[0]), int(dims[1])
    for y in range(h):
        for x in range(w):
            yield (x, y)


def vol_iteration(dims) -> Iterator[tuple[int, int, int]]:
    """Yield every (x, y, z) cell of a 3D grid, x varying fastest."""
    w, h, d = int(dims[0]), int(dims[1]), int(dims[2])
    for z in range(d):
        for y in range(h):
            for x in range(w):
                yield (x, y, z)


# --------------------------------------------------------------------------
# basic vector helpers

def normalize(v: ArrayLike) -> np.ndarray:
    v = _v(v)
    return v / np.linalg.norm(v)


def safenormalize(v: ArrayLike) -> np.ndarray:
    """Normalize, mapping the zero vector to +z."""
    v = _v(v)
    if not np.any(v):
        return np.array([0.0, 0.0, 1.0])
    return normalize(v)


def clamp(a: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return min(max(a, lo), hi)


def within_range(v: ArrayLike, lo: ArrayLike, hi: ArrayLike) -> bool:
    v = _v(v)
    return bool(np.array_equal(v, np.minimum(np.maximum(v, _v(lo)), _v(hi))))


# --------------------------------------------------------------------------
# quaternions

def qconj(q: ArrayLike) -> np.ndarray:
    x, y, z, w = _v(q)
    return np.array([-x, -y, -z, w])


def qmul(a: ArrayLike, b: ArrayLike) -> np.ndarray:
    ax, ay, az, aw = _v(a)
    bx, by, bz, bw = _v(b)
    return np.array([
        ax * bw + aw * bx + ay * bz - az * by,
        ay * bw + aw * by + az * bx - ax * bz,
        az * bw + aw * bz + ax * by - ay * bx,
        aw * bw - ax * bx - ay * by - az * bz,
    ])


def qxdir(q: ArrayLike) -> np.ndarray:
    x, y, z, w = _v(q)
    return np.array([w * w + x * x - y * y - z * z, (x * y + z * w) * 2, (z * x - y * w) * 2])


def qydir(q: ArrayLike) -> np.ndarray:
    x, y, z, w = _v(q)
    return np.array([(x * y - z * w) * 2, w * w - x * x + y * y - z * z, (y * z + x * w) * 2])


def qzdir(q: ArrayLike) -> np.ndarray:
    x, y, z, w = _v(q)
    return np.array([(z * x + y * w) * 2, (y * z - x * w) * 2, w * w - x * x - y * y + z * z])


def qmat(q: ArrayLike) -> np.ndarray:
    """3x3 rotation matrix whose columns are the rotated x, y and z axes."""
    return np.column_stack((qxdir(q), qydir(q), qzdir(q)))


def qrot(q: ArrayLike, v: ArrayLike) -> np.ndarray:
    v = _v(v)
    return qxdir(q) * v[0] + qydir(q) * v[1] + qzdir(q) * v[2]


def quatfrommat(m: ArrayLike) -> np.ndarray:
    """Quaternion of a 3x3 rotation matrix."""
    c = _v(m).T  # c[i][j] is element j of column i
    magw = c[0][0] + c[1][1] + c[2][2]

    wvsz = magw > c[2][2]
    magzw = magw if wvsz else c[2][2]
    prezw = np.array([1.0, 1, 1]) if wvsz else np.array([-1.0, -1, 1])
    postzw = np.array([0.0, 0, 0, 1]) if wvsz else np.array([0.0, 0, 1, 0])

    xvsy = c[0][0] > c[1][1]
    magxy = c[0][0] if xvsy else c[1][1]
    prexy = np.array([1.0, -1, -1]) if xvsy else np.array([-1.0, 1, -1])
    postxy = np.array([1.0, 0, 0, 0]) if xvsy else np.array([0.0, 1, 0, 0])

    zwvsxy = magzw > magxy
    pre = prezw if zwvsxy else prexy
    post = postzw if zwvsxy else postxy

    t = pre[0] * c[0][0] + pre[1] * c[1][1] + pre[2] * c[2][2] + 1
    s = 1 / math.sqrt(t) / 2
    qp = np.array([
        (pre[1] * c[1][2] - pre[2] * c[2][1]) * s,
        (pre[2] * c[2][0] - pre[0] * c[0][2]) * s,
        (pre[0] * c[0][1] - pre[1] * c[1][0]) * s,
        t * s,
    ])
    return qmul(qp, post)


def quat_from_axis_angle(axis: ArrayLike, angle: float) -> np.ndarray:
    return np.append(_v(axis) * math.sin(angle / 2), math.cos(angle / 2))


# --------------------------------------------------------------------------
# 4x4 matrices

def matrix_from_rotation(q: ArrayLike) -> np.ndarray:
    m = np.eye(4)
    m[:3, :3] = qmat(q)
    return m


def matrix_from_translation(t: ArrayLike) -> np.ndarray:
    m = np.eye(4)
    m[:3, 3] = _v(t)
    return m


def matrix_from_rotation_translation(q: ArrayLike, t: ArrayLike) -> np.ndarray:
    m = matrix_from_rotation(q)
    m[:3, 3] = _v(t)
    return m


def matrix_from_projection_frustum(l, r, b, t, n, f) -> np.ndarray:
    return np.array([
        [2 * n / (r - l), 0, (r + l) / (r - l), 0],
        [0, 2 * n / (t - b), (t + b) / (t - b), 0],
        [0, 0, -(f + n) / (f - n), -2 * f * n / (f - n)],
        [0, 0, -1, 0],
    ], dtype=float)


def matrix_from_vfov_aspect(vfov, aspect, n, f) -> np.ndarray:
    y = n * math.tan(vfov / 2)
    x = y * aspect
    return matrix_from_projection_frustum(-x, x, -y, y, n, f)


def matrix_from_look_vector(fwd: ArrayLike, up: ArrayLike) -> np.ndarray:
    f = normalize(fwd)
    s = normalize(np.cross(f, _v(up)))
    u = np.cross(s, f)
    m = np.eye(4)
    m[0, :3] = s
    m[1, :3] = u
    m[2, :3] = -f
    return m


def matrix_from_look_at(eye: ArrayLike, center: ArrayLike, up: ArrayLike) -> np.ndarray:
    eye = _v(eye)
    return matrix_from_look_vector(_v(center) - eye, up) @ matrix_from_translation(-eye)


# --------------------------------------------------------------------------
# rigid transforms

@dataclass(eq=False)
class Pose:
    """Rigid transform: a translation and a rotation quaternion."""

    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, 0.0, 1.0]))

    def __post_init__(self) -> None:
        self.position = _v(self.position)
        self.orientation = _v(self.orientation)

    def inverse(self) -> "Pose":
        q = qconj(self.orientation)
        return Pose(qrot(q, -self.position), q)

    def matrix(self) -> np.ndarray:
        return matrix_from_rotation_translation(self.orientation, self.position)

    def transform_point(self, point: ArrayLike) -> np.ndarray:
        return self.position + qrot(self.orientation, point)

    def __mul__(self, other):
        if isinstance(other, Pose):
            return Pose(self.transform_point(other.position), qmul(self.orientation, other.orientation))
        return self.transform_point(other)

    def transform_plane(self, plane: ArrayLike) -> np.ndarray:
        plane = _v(plane)
        n = qrot(self.orientation, plane[:3])
        return np.append(n, plane[3] - np.dot(self.position, n))


# --------------------------------------------------------------------------
# lines, planes and triangles

def plane_line_intersection(n: ArrayLike, d: float, p0: ArrayLike, p1: ArrayLike) -> np.ndarray:
    """Point where the line through p0 and p1 meets the plane n.p + d = 0."""
    n, p0, p1 = _v(n), _v(p0), _v(p1)
    dif = p1 - p0
    t = -(d + np.dot(n, p0)) / np.dot(n, dif)
    return p0 + dif * t


def line_project_time(p0: ArrayLike, p1: ArrayLike, a: ArrayLike) -> float:
    p0 = _v(p0)
    d = _v(p1) - p0
    return float(np.dot(d, _v(a) - p0) / np.dot(d, d))


def line_project(p0: ArrayLike, p1: ArrayLike, a: ArrayLike) -> np.ndarray:
    p0 = _v(p0)
    return p0 + (_v(p1) - p0) * line_project_time(p0, p1, a)


def gradient(v0, v1, v2, t0: float, t1: float, t2: float) -> np.ndarray:
    """Gradient of a scalar linearly interpolated over a triangle."""
    v0, v1, v2 = _v(v0), _v(v1), _v(v2)
    e0 = v1 - v0
    e1 = v2 - v0
    d0 = t1 - t0
    d1 = t2 - t0
    pd = e1 * d0 - e0 * d1
    if not np.any(pd):
        return np.array([0.0, 0.0, 1.0])
    pd = normalize(pd)
    if abs(d0) > abs(d1):
        e0 = e0 - pd * np.dot(pd, e0)
        e0 = e0 * (1.0 / d0)
        return e0 * (1.0 / np.dot(e0, e0))
    e1 = e1 - pd * np.dot(pd, e1)
    e1 = e1 * (1.0 / d1)
    return e1 * (1.0 / np.dot(e1, e1))


def barycentric(v0, v1, v2, s) -> np.ndarray:
    v0, v1, v2, s = _v(v0), _v(v1), _v(v2), _v(s)
    m = np.column_stack((v0, v1, v2))
    if np.linalg.det(m) == 0:
        k = 1 if np.linalg.norm(v1 - v2) > np.linalg.norm(v0 - v2) else 0
        t = line_project_time(v2, (v0, v1)[k], s)
        return np.array([(1 - k) * t, k * t, 1 - t])
    return np.linalg.solve(m, s)


def tri_interior(v0, v1, v2, d) -> bool:
    b = barycentric(v0, v1, v2, d)
    return bool(b[0] >= 0.0 and b[1] >= 0.0 and b[2] >= 0.0)


def project_onto_plane(plane: ArrayLike, v: ArrayLike) -> np.ndarray:
    plane, v = _v(plane), _v(v)
    return v - plane[:3] * np.dot(plane, np.append(v, 1.0))


def plane_project_of(v0, v1, v2, point) -> np.ndarray:
    v0, v1, v2, point = _v(v0), _v(v1), _v(v2), _v(point)
    cp = np.cross(v2 - v0, v2 - v1)
    dtcpm = -np.dot(cp, v0)
    cpm2 = np.dot(cp, cp)
    if cpm2 == 0.0:
        far = v1 if np.linalg.norm(v1 - v0) > np.linalg.norm(v2 - v0) else v2
        return line_project(v0, far, point)
    return point - cp * (np.dot(cp, point) + dtcpm) / cpm2


def maxdir(points, direction: ArrayLike) -> int:
    """Index of the first point furthest along direction."""
    pts = np.asarray(points, dtype=float)
    if len(pts) == 0:
        raise ValueError("maxdir of an empty point set")
    return int(np.argmax(pts @ _v(direction)))


def tri_normal(v0, v1, v2) -> np.ndarray:
    v0, v1, v2 = _v(v0), _v(v1), _v(v2)
    cp = np.cross(v1 - v0, v2 - v1)
    m = np.linalg.norm(cp)
    if m == 0:
        return np.array([0.0, 0.0, 1.0])
    return cp / m


def plane_of(v0, v1, v2) -> np.ndarray:
    n = tri_normal(v0, v1, v2)
    return np.append(n, -np.dot(n, _v(v0)))


def poly_plane(verts) -> np.ndarray:
    """Best-fit plane of a polygon; all zeros if degenerate."""
    pts = np.asarray(verts, dtype=float)
    c = pts.mean(axis=0)
    n = np.zeros(3)
    for a, b in zip(pts, np.roll(pts, -1, axis=0)):
        n += np.cross(a - c, b - c)
    if not np.any(n):
        return np.zeros(4)
    n = normalize(n)
    return np.append(n, -np.dot(c, n))


@dataclass(eq=False)
class HitInfo:
    hit: bool
    impact: np.ndarray
    normal: np.ndarray

    def __bool__(self) -> bool:
        return bool(self.hit)


def poly_hit_check(verts, v0, v1, plane=None) -> HitInfo:
    """Check whether segment v0-v1 crosses into a polygon from its front side."""
    pts = np.asarray(verts, dtype=float)
    v0, v1 = _v(v0), _v(v1)
    plane = poly_plane(pts) if plane is None else _v(plane)
    d0 = float(np.dot(np.append(v0, 1.0), plane))
    d1 = float(np.dot(np.append(v1, 1.0), plane))
    hit = d0 > 0 and d1 < 0
    with np.errstate(divide="ignore", invalid="ignore"):
        impact = v0 + (v1 - v0) * np.float64(d0) / np.float64(d0 - d1)
    for a, b in zip(pts, np.roll(pts, -1, axis=0)):
        if not hit:
            break
        hit = np.linalg.det(np.column_stack((b - v0, a - v0, v1 - v0))) >= 0
    return HitInfo(bool(hit), impact, plane[:3].copy())


def _convex_hit_check(planes, v0, v1_) -> HitInfo:
    v0 = _v(v0)
    v1_ = _v(v1_)
    v1 = v1_.copy()
    n = np.zeros(3)
    for plane in planes:
        plane = _v(plane)
        d0 = float(np.dot(np.append(v0, 1.0), plane))
        d1 = float(np.dot(np.append(v1, 1.0), plane))
        if d0 >= 0 and d1 >= 0:
            return HitInfo(False, v1_, np.zeros(3))
        if d0 <= 0 and d1 <= 0:
            continue
        c = v0 + (v1 - v0) * d0 / (d0 - d1)
        if d0 >= 0:
            n = plane[:3].copy()
            v0 = c
        else:
            v1 = c
    return HitInfo(True, v0, n)


def convex_hit_check(planes, v0, v1, pose: Pose | None = None) -> HitInfo:
    """Clip segment v0-v1 against a convex region bounded by planes."""
    if pose is None:
        return _convex_hit_check(planes, v0, v1)
    inv = pose.inverse()
    h = _convex_hit_check(planes, inv * _v(v0), inv * _v(v1))
    return HitInfo(h.hit, pose * h.impact, qrot(pose.orientation, h.normal))


def argmax(values) -> int:
    vals = np.asarray(values, dtype=float)
    if len(vals) == 0:
        raise ValueError("argmax of an empty sequence")
    return int(np.argmax(vals))


def orth(v: ArrayLike) -> np.ndarray:
    """A unit vector orthogonal to v."""
    v = _v(v)
    u = np.ones(3)
    u[argmax(np.abs(v))] = 0.0
    return normalize(np.cross(u, v))


def quat_from_to(v0: ArrayLike, v1: ArrayLike) -> np.ndarray:
    """Shortest-arc rotation taking direction v0 to direction v1."""
    v0 = normalize(v0)
    v1 = normalize(v1)
    c = np.cross(v0, v1)
    d = float(np.dot(v0, v1))
    if d <= -1.0:
        return np.append(orth(v0), 0.0)
    s = math.sqrt((1 + d) * 2)
    return np.append(c / s, s / 2.0)


def virtual_trackball(cop, cor, dir1, dir2) -> np.ndarray:
    """Rotation for dragging a virtual sphere around cor seen from cop."""
    cop, cor = _v(cop), _v(cor)
    nrml = cor - cop
    fudge = 1.0 / (np.linalg.norm(nrml) * 0.25)
    nrml = normalize(nrml)
    dist = -np.dot(nrml, cor)

    def onsphere(direction):
        u = (plane_line_intersection(nrml, dist, cop, cop + _v(direction)) - cor) * fudge
        m = np.linalg.norm(u)
        return u / m if m > 1 else u - nrml * math.sqrt(1 - m * m)

    return quat_from_to(onsphere(dir1), onsphere(dir2))


def extents(verts) -> tuple[np.ndarray, np.ndarray]:
    """Componentwise minimum and maximum of a point set."""
    pts = np.asarray(verts, dtype=float)
    if len(pts) == 0:
        raise ValueError("extents of an empty point set")
    return pts.min(axis=0), pts.max(axis=0)


# --------------------------------------------------------------------------
# mass properties of closed triangle meshes

def _tri_corners(vertices, tris):
    pts = np.asarray(vertices, dtype=float)
    for t in tris:
        yield pts[t[0]], pts[t[1]], pts[t[2]]


def volume(vertices, tris) -> float:
    total = sum(np.linalg.det(np.column_stack(c)) for c in _tri_corners(vertices, tris))
    return float(total) / 6.0


def center_of_mass(vertices, tris) -> np.ndarray:
    com = np.zeros(3)
    vol = 0.0
    for a, b, c in _tri_corners(vertices, tris):
        d = np.linalg.det(np.column_stack((a, b, c)))
        com += d * (a + b + c)
        vol += d
    return com / (vol * 4.0)


def inertia(vertices, tris, com=None) -> np.ndarray:
    """Inertia tensor of a unit-mass solid about com (default origin)."""
    com = np.zeros(3) if com is None else _v(com)
    vol = 0.0
    diag = np.zeros(3)
    offd = np.zeros(3)
    for corners in _tri_corners(vertices, tris):
        a = [p - com for p in corners]
        d = np.linalg.det(np.column_stack(a))
        vol += d
        for j in range(3):
            j1 = (j + 1) % 3
            j2 = (j + 2) % 3
            diag[j] += (a[0][j] * a[1][j] + a[1][j] * a[2][j] + a[2][j] * a[0][j]
                        + a[0][j] ** 2 + a[1][j] ** 2 + a[2][j] ** 2) * d
            offd[j] += (a[0][j1] * a[1][j2] + a[1][j1] * a[2][j2] + a[2][j1] * a[0][j2]
                        + a[0][j1] * a[2][j2] + a[1][j1] * a[0][j2] + a[2][j1] * a[1][j2]
                        + a[0][j1] * a[0][j2] * 2 + a[1][j1] * a[1][j2] * 2
                        + a[2][j1] * a[2][j2] * 2) * d
    diag /= vol * (60.0 / 6.0)
    offd /= vol * (120.0 / 6.0)
    return np.array([
        [diag[1] + diag[2], -offd[2], -offd[1]],
        [-offd[2], diag[0] + diag[2], -offd[0]],
        [-offd[1], -offd[0], diag[0] + diag[1]],
    ])


def diagonal(m) -> np.ndarray:
    return np.diag(_v(m)).copy()


def _eigen_diag(q, a) -> np.ndarray:
    qm = qmat(q)
    return diagonal(qm.T @ a @ qm)


def diagonalizer(a) -> np.ndarray:
    """Quaternion q whose matrix Q makes Q^T A Q diagonal, for symmetric A.

    Eigenvalues come out ordered x >= y >= z.
    """
    a = _v(a)
    q = np.array([0.0, 0.0, 0.0, 1.0])
    for _ in range(24):
        qm = qmat(q)
        d = qm.T @ a @ qm
        off = np.array([d[1, 2], d[0, 2], d[0, 1]])
        om = np.abs(off)
        k = 0 if (om[0] > om[1] and om[0] > om[2]) else (1 if om[1] > om[2] else 2)
        k1 = (k + 1) % 3
        k2 = (k + 2) % 3
        if off[k] == 0.0:
            break
        thet = (d[k2, k2] - d[k1, k1]) / (2.0 * off[k])
        sgn = 1.0 if thet > 0.0 else -1.0
        thet *= sgn
        t = sgn / (thet + (math.sqrt(thet * thet + 1.0) if thet < 1e6 else thet))
        c = 1.0 / math.sqrt(t * t + 1.0)
        if c == 1.0:
            break
        jr = np.zeros(4)
        jr[k] = -sgn * math.sqrt((1.0 - c) / 2.0)
        jr[3] = math.sqrt(1.0 - jr[k] * jr[k])
        if jr[3] == 1.0:
            break
        q = normalize(qmul(q, jr))
    h = 1.0 / math.sqrt(2.0)
    if _eigen_diag(q, a)[0] < _eigen_diag(q, a)[2]:
        q = qmul(q, [0, h, 0, h])
    if _eigen_diag(q, a)[1] < _eigen_diag(q, a)[2]:
        q = qmul(q, [h, 0, 0, h])
    if _eigen_diag(q, a)[0] < _eigen_diag(q, a)[1]:
        q = qmul(q, [0, 0, h, h])
    if qzdir(q)[2] < 0:
        q = qmul(q, [1, 0, 0, 0])
    if qydir(q)[1] < 0:
        q = qmul(q, [0, 0, 1, 0])
    if q[3] < 0:
        q = -q
    return q


def diagonalizer_2x2(m) -> float:
    """Angle rotating a symmetric 2x2 matrix to diagonal with d00 > d11."""
    m = _v(m)
    d = m[1, 1] - m[0, 0]
    return math.atan2(d + math.sqrt(d * d + 4.0 * m[1, 0] * m[0, 1]), 2.0 * m[1, 0])


# --------------------------------------------------------------------------
# plane transforms

def plane_translate(plane, translation) -> np.ndarray:
    p = _v(plane).copy()
    p[3] -= np.dot(p[:3], _v(translation))
    return p


def plane_rotate(plane, rotation) -> np.ndarray:
    p = _v(plane).copy()
    p[:3] = qrot(rotation, p[:3])
    return p


def plane_scale(plane, scaling) -> np.ndarray:
    """Scale a plane uniformly (scalar) or per axis (3-vector)."""
    p = _v(plane).copy()
    if np.ndim(scaling) == 0:
        p[3] *= float(scaling)
        return p
    p[:3] = p[:3] / _v(scaling)
    return p / np.linalg.norm(p[:3])


# --------------------------------------------------------------------------
# misc

def box_edges() -> list[tuple[int, int]]:
    """The 12 edges of a box whose corners are indexed by 3 bits."""
    return [(i, j) for i in range(8) for j in range(i) if not ((i ^ j) & ((i ^ j) - 1))]


def deindex(verts, indices) -> list[np.ndarray]:
    """Replace each index tuple with the stacked vertices it refers to."""
    pts = np.asarray(verts, dtype=float)
    return [pts[list(idx)] for idx in indices]


def principal_axes(points) -> tuple[Pose, np.ndarray]:
    """Principal axes as a pose, plus the variance along its local axes."""
    pts = np.asarray(points, dtype=float)
    com = pts.mean(axis=0)
    centred = pts - com
    cov = centred.T @ centred / len(pts)
    q = diagonalizer(cov)
    return Pose(com, q), _eigen_diag(q, cov)