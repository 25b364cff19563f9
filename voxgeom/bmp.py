"""Minimal reading and writing of uncompressed 24 bit BMP images.

Images are numpy arrays of shape (N, 3) holding RGB bytes, row after row,
with no row padding. Depth images are uint16 arrays of length N.
"""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from typing import Callable

import numpy as np

_HEADER = struct.Struct("<6i2h6i")  # everything after the "BM" signature
_HEADER_END = 2 + _HEADER.size  # 54

PathLike = str | os.PathLike


@dataclass(eq=False)
class BMPImage:
    dim: tuple[int, int]
    image: np.ndarray


def mono_to_rgb(src) -> np.ndarray:
    """Grey levels to RGB triples."""
    c = np.asarray(src, dtype=np.uint8).reshape(-1)
    return np.repeat(c[:, None], 3, axis=1)


def short_to_rgb_ramp(src) -> np.ndarray:
    """Colour ramp for visualising depth values; zero stays black."""
    c = np.asarray(src, dtype=np.int64).reshape(-1)
    r = np.where(c > 512, 0, np.minimum(255, 512 - c))
    g = np.where(c > 512, 0, np.minimum(255, (512 - c) * 2))
    b = np.where(c > 768, 0, np.minimum(255, (768 - c) // 2))
    out = np.stack([r, g, b], axis=1)
    out[c == 0] = 0
    return out.astype(np.uint8)


def flip_v(image, dim) -> np.ndarray:
    """Copy of a row-major image with its rows in reverse order."""
    arr = np.asarray(image)
    w, h = int(dim[0]), int(dim[1])
    if len(arr) != w * h:
        raise ValueError(f"image has {len(arr)} pixels, expected {w * h}")
    rows = arr.reshape((h, w) + arr.shape[1:])
    return rows[::-1].reshape(arr.shape).copy()


def read_bmp(filename: PathLike) -> BMPImage:
    """Read a 24 bit BMP; a negative stored height is flipped to positive."""
    with open(filename, "rb") as fh:
        data = fh.read()
    if len(data) < _HEADER_END or data[:2] != b"BM":
        raise ValueError(f"{filename} is not a BMP file")
    fields = _HEADER.unpack_from(data, 2)
    w, h, size = fields[4], fields[5], fields[9]
    raw = data[_HEADER_END:_HEADER_END + size]
    if len(raw) < size:
        raise ValueError(f"{filename} is truncated")
    count = size // 3
    pixels = np.frombuffer(raw, dtype=np.uint8)[: count * 3].reshape(-1, 3)[:, ::-1].copy()
    if h < 0:
        h = -h
        pixels = flip_v(pixels, (w, h))
    return BMPImage((w, h), pixels)


def write_bmp(filename: PathLike, image, dim) -> None:
    """Write RGB pixels as a 24 bit BMP of the given width and height."""
    w, h = int(dim[0]), int(dim[1])
    pixels = np.asarray(image, dtype=np.uint8).reshape(-1, 3)
    count = abs(w * h)
    if len(pixels) != count:
        raise ValueError(f"image has {len(pixels)} pixels, expected {count}")
    size = count * 3
    header = _HEADER.pack(size + _HEADER_END, 0, _HEADER_END, 40, w, h, 1, 24, 0, size, 0, 0, 0, 0)
    with open(filename, "wb") as fh:
        fh.write(b"BM")
        fh.write(header)
        fh.write(np.ascontiguousarray(pixels[:, ::-1]).tobytes())


def _signed16(s: int) -> int:
    return s - 0x10000 if s >= 0x8000 else s


def short_to_rgb(src, f: Callable[[int], int]) -> np.ndarray:
    """Encode 16 bit values losslessly into RGB.

    Red holds f(value) for viewing, green the even bits and blue the odd bits.
    """
    s = np.asarray(src, dtype=np.uint32).reshape(-1)
    red = np.array([f(_signed16(int(x))) & 0xFF for x in s], dtype=np.uint32)
    green = np.zeros_like(s)
    blue = np.zeros_like(s)
    for i in range(8):
        green |= ((s >> (2 * i)) & 1) << i
        blue |= ((s >> (2 * i + 1)) & 1) << i
    return np.stack([red, green, blue], axis=1).astype(np.uint8)


def _default_r(s: int) -> int:
    return 0 if s >= 512 else 255 - ((s >> 1) & 255)


def _default_c(s: int) -> int:
    return 255 if s >= 1024 else (s >> 2) & 255


def bmp_from_short_r(filename: PathLike, src, dim, f: Callable[[int], int] | None = None) -> None:
    """Save depth values as a bottom-up BMP with a near-is-bright red channel."""
    write_bmp(filename, flip_v(short_to_rgb(src, f or _default_r), dim), dim)


def bmp_from_short_c(filename: PathLike, src, dim, f: Callable[[int], int] | None = None) -> None:
    """Save depth values as a bottom-up BMP with a far-is-bright red channel."""
    write_bmp(filename, flip_v(short_to_rgb(src, f or _default_c), dim), dim)


def rgb_to_short(src, dim) -> np.ndarray:
    """Decode values stored by short_to_rgb, undoing the vertical flip."""
    c = np.asarray(src, dtype=np.uint32).reshape(-1, 3)
    r = np.zeros(len(c), dtype=np.uint32)
    for i in range(8):
        r |= (c[:, 1] & (1 << i)) << i
        r |= (c[:, 2] & (1 << i)) << (i + 1)
    return flip_v(r.astype(np.uint16), dim)