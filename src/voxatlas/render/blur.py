"""Separable box blur used to soften hill-shading maps."""

from __future__ import annotations

import numpy as np


def _blur_axis(values: np.ndarray, half: int, axis: int) -> np.ndarray:
    moved = np.moveaxis(values, axis, 0)
    length = moved.shape[0]
    padded = np.zeros((length + 1,) + moved.shape[1:], dtype=np.int64)
    np.cumsum(moved, axis=0, out=padded[1:])
    index = np.arange(length)
    low = np.maximum(index - half, 0)
    high = np.minimum(index + half, length - 1)
    sums = padded[high + 1] - padded[low]
    counts = (high - low + 1).reshape((length,) + (1,) * (moved.ndim - 1))
    return np.moveaxis(sums // counts, 0, axis)


def box_blur(data: np.ndarray, blur_range: int) -> np.ndarray:
    """Blur horizontally then vertically with a ``blur_range // 2`` radius.

    Windows are clipped at the edges and averaged with integer division,
    so the output stays within the input's value range.
    """
    values = np.asarray(data, dtype=np.int64)
    half = blur_range // 2
    if half <= 0 or values.size == 0:
        return values.astype(np.uint8)
    horizontal = _blur_axis(values, half, axis=1)
    return _blur_axis(horizontal, half, axis=0).astype(np.uint8)
