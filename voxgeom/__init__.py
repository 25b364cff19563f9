"""3D geometry, convex hulls, GJK collision, voxel meshing, BMP images and a small neural network."""

__version__ = "0.1.0"
__all__ = ["bmp", "cnn", "collide", "cubes", "geometric", "gjk", "hull", "voxblob"]