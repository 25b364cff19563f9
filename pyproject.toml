[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "voxgeom"
version = "0.1.0"
description = "3D geometry toolkit: vector and quaternion math, convex hulls, GJK collision, binary voxel meshing, BMP images and a small neural network"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "geometry",
    "quaternion",
    "convex hull",
    "gjk",
    "collision detection",
    "voxel",
    "marching cubes",
    "bmp",
    "neural network",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Graphics :: 3D Modeling",
    "Topic :: Scientific/Engineering :: Mathematics",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["voxgeom"]

[tool.hatch.build.targets.sdist]
include = [
    "voxgeom",
    "tests",
]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
