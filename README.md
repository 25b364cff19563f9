# voxgeom

A small 3D geometry toolkit built on NumPy. Vectors are NumPy arrays, and
quaternions are stored as `(x, y, z, w)`. Matrices act on column vectors
(`m @ v`).

| Module | What it holds |
| --- | --- |
| `voxgeom.geometric` | Vectors, quaternions (`qmul`, `qrot`, `qmat`, `quat_from_to`, ...), `Pose`, 4x4 matrices, projections and intersections, plane utilities, `poly_hit_check` / `convex_hit_check`, mass properties of closed meshes (`volume`, `center_of_mass`, `inertia`), `diagonalizer` and `principal_axes` |
| `voxgeom.hull` | Greedy incremental convex hull (`calchull`), `find_simplex` and the expanding polytope algorithm (`expanding_polytope`) |
| `voxgeom.gjk` | GJK queries between convex shapes given as support functions: `separated`, `sweep`, `contact_patch`, with helpers `support_func`, `support_func_trans`, `separated_points` and `separated_posed` |
| `voxgeom.collide` | Segment tests against spheres, cylinder sides, polygons and triangles, and a swept sphere against a triangle |
| `voxgeom.cubes` | The 256-entry cube configuration table (`build_cube_table`, `MCube`) |
| `voxgeom.voxblob` | `VoxelBlob`: a binary voxel grid meshed from the cube table, which you can carve, refill, relax, turn into a `Mesh` and collide against |
| `voxgeom.bmp` | Reading and writing of uncompressed 24 bit BMP files, and lossless packing of 16 bit depth values into RGB |
| `voxgeom.cnn` | A minimal neural network with fully connected, convolution, pooling, activation, softmax and grouped cross-entropy layers |

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Examples

### Quaternions and poses

```python
import numpy as np
from voxgeom.geometric import Pose, quat_from_axis_angle, qrot

q = quat_from_axis_angle([0.0, 0.0, 1.0], np.pi / 2)
print(qrot(q, [1.0, 0.0, 0.0]))                  # approximately [0, 1, 0]

pose = Pose(np.array([1.0, 2.0, 3.0]), q)
p = pose * np.array([1.0, 0.0, 0.0])             # same as pose.transform_point(...)
print(pose.inverse() * p)                        # back to [1, 0, 0]
```

### Convex hull

```python
import numpy as np
from voxgeom.hull import calchull

points = np.random.default_rng(0).normal(size=(200, 3))
hull_points, tris = calchull(points, 0)   # 0 means no vertex limit
```

`calchull` leaves its input unchanged. It returns the points used by the hull,
in their input order, and outward-facing triangles that index into them. If
there are fewer than four points, or they are degenerate (flat, on a line), both
results are empty. A positive `vlimit` caps the hull's vertex count. The hull
then keeps the points that add the most volume.

### Separation of two point clouds

```python
import numpy as np
from voxgeom.gjk import separated_points, sweep, support_func

cube = np.array([[x, y, z] for x in (0, 1) for y in (0, 1) for z in (0, 1)], float)
contact = separated_points(cube, cube + [3.0, 0.0, 0.0])
print(contact.separation)    # about 2.0
print(bool(contact))         # False: a contact is true only when the shapes touch or overlap
```

`contact.normal` points from the second shape towards the first.
`contact.p0w` and `contact.p1w` are the closest points on each shape. If the
shapes overlap, `separation` is the negative penetration depth. `sweep(a, b,
direction)` moves shape `a` along `direction`. When `a` hits `b`,
`contact.time` is the fraction of the motion completed.

### Voxel blob

```python
from voxgeom.voxblob import VoxelBlob

blob = VoxelBlob()                      # 64 x 64 x 24 grid with a starting cavity
impact = blob.hit_check_poly([30.0, 30.0, 30.0], [30.0, 30.0, 0.0])
if impact is not None:
    blob.deblob(*blob.hit_voxel)        # carve out the gridpoint that was hit
blob.settle()                           # relax vertex offsets
mesh = blob.to_mesh()
print(len(mesh.verts), len(mesh.tris))
```

- `terraform` refills a gridpoint.
- `hit_check_swept_sphere` and `hit_check_swept_sphere_world` test a moving
  sphere against the surface.
- `nav` and `nav_old` slide a body along the surface. They return the hit count
  and the adjusted world position.

### BMP images

```python
from voxgeom.bmp import write_bmp, read_bmp

pixels = [(255, 0, 0)] * (4 * 2)
write_bmp("red.bmp", pixels, (4, 2))
image = read_bmp("red.bmp")
print(image.dim, image.image.shape)      # (4, 2) (8, 3)
```

Rows are written without padding. `bmp_from_short_r` and `bmp_from_short_c`
store 16 bit depth images: green holds the even bits and blue the odd bits.
Red holds a viewable shade. `rgb_to_short` decodes the values.

### Neural network

```python
from voxgeom.cnn import CNN

net = CNN([2, 4, 1])                     # fully connected layers, each followed by tanh
for _ in range(1000):
    net.train([0.0, 1.0], [0.5], 0.05)   # returns the mean square error
print(net.eval([0.0, 1.0]))
```

You can also build a network from layers directly:
`CNN(layers=[Conv(...), MaxPool(...), Full(...), Activation(ReLU)])`.
`init()` fills the weights from a fixed seed. Parameters are saved and loaded
as text with `save_text` / `load_text` or as little-endian float32 with
`save_binary` / `load_binary`.

## What it does not do

This package has no rendering, window, viewer or interactive demo. It has no
command-line program either. `VoxelBlob.to_mesh` produces plain vertex and
triangle data, and displaying it is up to the caller.