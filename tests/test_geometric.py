import math

import numpy as np
import pytest

from voxgeom.geometric import (
    HitInfo, Pose, argmax, barycentric, box_edges, center_of_mass, clamp,
    convex_hit_check, deindex, diagonal, diagonalizer, diagonalizer_2x2,
    extents, gradient, inertia, line_project, line_project_time,
    matrix_from_look_at, matrix_from_rotation, matrix_from_rotation_translation,
    matrix_from_translation, matrix_from_vfov_aspect, maxdir, normalize, orth,
    plane_line_intersection, plane_of, plane_project_of, plane_rotate,
    plane_scale, plane_translate, poly_hit_check, poly_plane, principal_axes,
    project_onto_plane, qconj, qmat, qmul, qrot, qxdir, qydir, qzdir,
    quat_from_axis_angle, quat_from_to, quatfrommat, rect_iteration,
    safenormalize, tri_interior, tri_normal, virtual_trackball, vol_iteration,
    volume, within_range,
)

IDENTITY = np.array([0.0, 0.0, 0.0, 1.0])
TET_VERTS = [(0, 0, 0), (1, 0, 0), (0, 1, 0), (0, 0, 1)]
TET_TRIS = [(1, 2, 3), (0, 2, 1), (0, 1, 3), (0, 3, 2)]


def random_quat(seed):
    rng = np.random.default_rng(seed)
    return normalize(rng.normal(size=4))


def test_rect_iteration_order_and_count():
    cells = list(rect_iteration((3, 2)))
    assert len(cells) == 6
    assert cells[:2] == [(0, 0), (1, 0)]
    assert cells[-1] == (2, 1)


def test_vol_iteration_covers_all():
    cells = list(vol_iteration((2, 3, 4)))
    assert len(cells) == 24
    assert len(set(cells)) == 24
    assert cells[-1] == (1, 2, 3)


def test_safenormalize_zero_and_nonzero():
    assert np.allclose(safenormalize([0, 0, 0]), [0, 0, 1])
    assert np.isclose(np.linalg.norm(safenormalize([3, -4, 2])), 1.0)


def test_clamp_and_within_range():
    assert clamp(5.0) == 1.0
    assert clamp(-2, -1, 3) == -1
    assert within_range([1, 2, 3], [0, 0, 0], [3, 3, 3])
    assert not within_range([1, 4, 3], [0, 0, 0], [3, 3, 3])


@pytest.mark.parametrize("seed", [1, 2, 3])
def test_quaternion_conjugate_and_rotation(seed):
    q = random_quat(seed)
    prod = qmul(q, qconj(q))
    assert np.allclose(prod, IDENTITY)
    v = np.array([0.3, -1.2, 2.0])
    r = qrot(q, v)
    assert np.isclose(np.linalg.norm(r), np.linalg.norm(v))
    assert np.allclose(qrot(qconj(q), r), v)
    assert np.allclose(qmat(q) @ v, r)


@pytest.mark.parametrize("seed", [4, 5, 6, 7])
def test_quatfrommat_roundtrip(seed):
    q = random_quat(seed)
    back = quatfrommat(qmat(q))
    assert np.allclose(back, q) or np.allclose(back, -q)


def test_axis_directions_are_orthonormal():
    q = random_quat(9)
    m = np.column_stack((qxdir(q), qydir(q), qzdir(q)))
    assert np.allclose(m.T @ m, np.eye(3))
    assert np.isclose(np.linalg.det(m), 1.0)


def test_quat_from_axis_angle_matches_rotation_axis():
    axis = normalize([1, 2, 3])
    q = quat_from_axis_angle(axis, 1.1)
    assert np.allclose(qrot(q, axis), axis)


def test_quat_from_to_maps_direction():
    v0, v1 = np.array([1.0, 2, 0.5]), np.array([-0.3, 0.4, 2.0])
    q = quat_from_to(v0, v1)
    assert np.allclose(qrot(q, normalize(v0)), normalize(v1))
    opposite = quat_from_to([1, 0, 0], [-1, 0, 0])
    assert np.allclose(qrot(opposite, [1, 0, 0]), [-1, 0, 0])


def test_orth_is_orthogonal_unit():
    v = np.array([0.2, -5.0, 1.0])
    o = orth(v)
    assert np.isclose(np.dot(o, v), 0.0)
    assert np.isclose(np.linalg.norm(o), 1.0)


def test_pose_inverse_and_compose():
    p = Pose([1, 2, 3], random_quat(11))
    pt = np.array([0.5, -0.7, 4.0])
    assert np.allclose(p.inverse() * (p * pt), pt)
    both = p * p.inverse()
    assert np.allclose(both.position, 0)
    assert np.allclose(np.abs(both.orientation), IDENTITY)


def test_pose_matrix_agrees_with_transform():
    p = Pose([1, -2, 0.5], random_quat(12))
    pt = np.array([3.0, 1.0, -1.0])
    assert np.allclose((p.matrix() @ np.append(pt, 1))[:3], p.transform_point(pt))
    assert np.allclose(p.matrix(), matrix_from_translation(p.position) @ matrix_from_rotation(p.orientation))
    assert np.allclose(matrix_from_rotation_translation(p.orientation, p.position), p.matrix())


def test_pose_transform_plane_keeps_points_on_plane():
    p = Pose([1, 2, 3], random_quat(13))
    plane = np.array([0.0, 0.0, 1.0, -2.0])
    point = np.array([5.0, -1.0, 2.0])
    moved = p.transform_plane(plane)
    assert np.isclose(np.dot(moved, np.append(p * point, 1)), 0.0)


def test_look_at_maps_eye_and_center():
    eye, center = np.array([1.0, 2, 3]), np.array([4.0, -1, 2])
    m = matrix_from_look_at(eye, center, [0, 0, 1])
    assert np.allclose((m @ np.append(eye, 1))[:3], 0)
    c = (m @ np.append(center, 1))[:3]
    assert np.allclose(c[:2], 0)
    assert np.isclose(c[2], -np.linalg.norm(center - eye))


def test_vfov_projection_maps_near_top_edge():
    n, f, vfov = 0.5, 20.0, 1.0
    m = matrix_from_vfov_aspect(vfov, 1.5, n, f)
    clip = m @ np.array([0, n * math.tan(vfov / 2), -n, 1])
    assert np.isclose(clip[1] / clip[3], 1.0)
    assert np.isclose(clip[2] / clip[3], -1.0)


def test_plane_line_intersection_on_plane():
    n, d = normalize([1, 1, 0]), -2.0
    p = plane_line_intersection(n, d, [0, 0, 0], [1, 0.3, 5])
    assert np.isclose(np.dot(n, p) + d, 0.0)


def test_line_project():
    p0, p1 = np.array([0.0, 0, 0]), np.array([2.0, 0, 0])
    assert line_project_time(p0, p1, [1, 5, 0]) == pytest.approx(0.5)
    proj = line_project([1, 1, 1], [3, 2, 0], [0, 4, 2])
    assert np.isclose(np.dot(proj - np.array([0, 4, 2]), np.array([2, 1, -1])), 0)


def test_gradient_recovers_linear_field():
    g = np.array([2.0, 3.0, 0.0])
    v = [np.array([0.0, 0, 0]), np.array([1.0, 0.2, 0]), np.array([0.3, 1.0, 0])]
    assert np.allclose(gradient(*v, *(np.dot(g, p) for p in v)), g)


def test_barycentric_reconstructs_point():
    v0, v1, v2 = np.array([1.0, 0, 0]), np.array([0.0, 2, 0]), np.array([0.5, 0.5, 3])
    s = np.array([0.4, 0.9, 1.1])
    b = barycentric(v0, v1, v2, s)
    assert np.allclose(b[0] * v0 + b[1] * v1 + b[2] * v2, s)


def test_tri_interior():
    v = ([1.0, 0, 1], [0.0, 1, 1], [-1.0, -1, 1])
    assert tri_interior(*v, [0, 0, 1])
    assert not tri_interior(*v, [5, 5, 1])


def test_tri_normal_and_plane_of():
    v = [np.array([1.0, 0, 2]), np.array([0.0, 3, 1]), np.array([2.0, 2, 2])]
    plane = plane_of(*v)
    for p in v:
        assert np.isclose(np.dot(plane, np.append(p, 1)), 0)
    assert np.allclose(tri_normal([0, 0, 0], [1, 1, 1], [2, 2, 2]), [0, 0, 1])
    assert np.allclose(poly_plane(v), plane)


def test_project_onto_plane_and_plane_project_of():
    plane = np.append(normalize([1, 2, 2]), -1.0)
    q = project_onto_plane(plane, [3, -1, 4])
    assert np.isclose(np.dot(plane, np.append(q, 1)), 0)
    v = [np.array([1.0, 0, 2]), np.array([0.0, 3, 1]), np.array([2.0, 2, 2])]
    r = plane_project_of(*v, [5, 5, 5])
    assert np.isclose(np.dot(plane_of(*v), np.append(r, 1)), 0)


def test_maxdir_and_argmax():
    pts = [(0, 0, 0), (1, 5, 0), (3, 1, 0), (1, 5, 0)]
    assert maxdir(pts, [0, 1, 0]) == 1
    assert maxdir(pts, [1, 0, 0]) == 2
    assert argmax([1.0, 7.0, 7.0]) == 1
    with pytest.raises(ValueError):
        maxdir([], [1, 0, 0])
    with pytest.raises(ValueError):
        argmax([])


def test_poly_hit_check():
    square = [(-1, -1, 0), (1, -1, 0), (1, 1, 0), (-1, 1, 0)]
    h = poly_hit_check(square, [0.2, 0.1, 1], [0.2, 0.1, -1])
    assert isinstance(h, HitInfo) and bool(h)
    assert np.allclose(h.impact, [0.2, 0.1, 0])
    assert np.allclose(h.normal, poly_plane(square)[:3])
    assert not poly_hit_check(square, [3, 0, 1], [3, 0, -1])
    assert not poly_hit_check(square, [0, 0, -1], [0, 0, 1])


def cube_planes():
    return [np.array([*n, -1.0]) for n in np.vstack((np.eye(3), -np.eye(3)))]


def test_convex_hit_check():
    h = convex_hit_check(cube_planes(), [3, 0.2, 0.1], [0, 0.2, 0.1])
    assert h.hit
    assert np.isclose(np.max(np.abs(h.impact)), 1.0)
    assert np.isclose(np.dot(h.normal, h.impact), 1.0)
    miss = convex_hit_check(cube_planes(), [3, 3, 0], [3, -3, 0])
    assert not miss
    assert np.allclose(miss.impact, [3, -3, 0])


def test_convex_hit_check_with_pose_matches_shift():
    shift = np.array([10.0, -4.0, 2.0])
    pose = Pose(shift, IDENTITY)
    base = convex_hit_check(cube_planes(), [3, 0.2, 0.1], [0, 0.2, 0.1])
    moved = convex_hit_check(cube_planes(), shift + [3, 0.2, 0.1], shift + [0, 0.2, 0.1], pose)
    assert moved.hit
    assert np.allclose(moved.impact, base.impact + shift)
    assert np.allclose(moved.normal, base.normal)


def test_virtual_trackball_no_motion_is_identity():
    q = virtual_trackball([0, 0, 5], [0, 0, 0], [0.1, 0.1, -1], [0.1, 0.1, -1])
    assert np.allclose(q, IDENTITY)
    q2 = virtual_trackball([0, 0, 5], [0, 0, 0], [0.1, 0, -1], [-0.1, 0, -1])
    assert np.isclose(np.linalg.norm(q2), 1.0)


def test_extents():
    lo, hi = extents([(1, 5, -2), (3, -1, 0), (2, 2, 2)])
    assert np.allclose(lo, [1, -1, -2]) and np.allclose(hi, [3, 5, 2])
    with pytest.raises(ValueError):
        extents([])


def test_volume_scale_and_translation():
    base = volume(TET_VERTS, TET_TRIS)
    verts = np.array(TET_VERTS, dtype=float)
    assert volume(verts * 2, TET_TRIS) == pytest.approx(8 * base)
    assert volume(verts + [3, -1, 2], TET_TRIS) == pytest.approx(base)


def test_center_of_mass_of_tetrahedron():
    verts = np.array(TET_VERTS, dtype=float) + [2, 1, -3]
    assert np.allclose(center_of_mass(verts, TET_TRIS), verts.mean(axis=0))


def test_inertia_symmetry_and_scaling():
    verts = np.array(TET_VERTS, dtype=float)
    com = center_of_mass(verts, TET_TRIS)
    i1 = inertia(verts, TET_TRIS, com)
    assert np.allclose(i1, i1.T)
    i2 = inertia(verts * 2, TET_TRIS, com * 2)
    assert np.allclose(i2, 4 * i1)
    assert np.allclose(inertia(verts + 5, TET_TRIS, com + 5), i1)


def test_diagonalizer_orders_eigenvalues():
    rng = np.random.default_rng(3)
    b = rng.normal(size=(3, 3))
    a = b @ b.T
    q = diagonalizer(a)
    m = qmat(q)
    d = m.T @ a @ m
    assert np.allclose(d - np.diag(diagonal(d)), 0, atol=1e-9)
    ev = diagonal(d)
    assert ev[0] >= ev[1] >= ev[2]
    assert np.allclose(sorted(ev), np.linalg.eigvalsh(a))
    assert q[3] >= 0


def test_diagonalizer_2x2_diagonalizes():
    m = np.array([[2.0, 0.7], [0.7, 1.0]])
    ang = diagonalizer_2x2(m)
    c, s = math.cos(ang), math.sin(ang)
    r = np.array([[c, -s], [s, c]])
    d = r.T @ m @ r
    assert abs(d[0, 1]) < 1e-9
    assert d[0, 0] > d[1, 1]


def test_plane_transforms():
    plane = np.array([0.0, 0.0, 1.0, -1.0])
    point = np.array([4.0, 2.0, 1.0])
    t = np.array([1.0, 2.0, 3.0])
    assert np.isclose(np.dot(plane_translate(plane, t), np.append(point + t, 1)), 0)
    q = random_quat(21)
    assert np.isclose(np.dot(plane_rotate(plane, q), np.append(qrot(q, point), 1)), 0)
    assert np.isclose(np.dot(plane_scale(plane, 3.0), np.append(point * 3, 1)), 0)
    sc = np.array([2.0, 3.0, 4.0])
    scaled = plane_scale(plane, sc)
    assert np.isclose(np.linalg.norm(scaled[:3]), 1)
    assert np.isclose(np.dot(scaled, np.append(point * sc, 1)), 0)


def test_box_edges():
    edges = box_edges()
    assert len(edges) == 12
    for i, j in edges:
        assert bin(i ^ j).count("1") == 1


def test_deindex():
    verts = [(0, 0, 0), (1, 0, 0), (0, 1, 0)]
    segs = deindex(verts, [(0, 2), (1, 0)])
    assert np.allclose(segs[0], [verts[0], verts[2]])
    tris = deindex(verts, [(2, 1, 0)])
    assert np.allclose(tris[0], [verts[2], verts[1], verts[0]])


def test_principal_axes():
    rng = np.random.default_rng(5)
    pts = rng.normal(size=(400, 3)) * [5.0, 1.0, 0.2] + [1, 2, 3]
    pose, var = principal_axes(pts)
    assert np.allclose(pose.position, pts.mean(axis=0))
    assert abs(np.dot(qxdir(pose.orientation), [1, 0, 0])) > 0.99
    assert var[0] >= var[1] >= var[2]
    assert np.isclose(var.sum(), np.var(pts, axis=0).sum())