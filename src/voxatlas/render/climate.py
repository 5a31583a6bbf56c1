"""Climate rasters and sample points derived from region climate maps."""

from __future__ import annotations

import numpy as np
from PIL import Image

from voxatlas.models import CHUNK_SIZE, ClimatePoint, RegionData
from voxatlas.render.images import encode_png

REGION_SIZE = 512
RASTER_SIZE = 512

TEMPERATURE_SCALE = 4.25
TEMPERATURE_OFFSET = 20.0


def unpack_climate(packed: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Split ``0xRRGGBB`` into temperature (R) and rainfall (G) byte planes."""
    packed = np.asarray(packed, dtype=np.uint32)
    temperature = ((packed >> 16) & 0xFF).astype(np.uint8)
    rainfall = ((packed >> 8) & 0xFF).astype(np.uint8)
    return temperature, rainfall


def temperature_celsius(value: float) -> float:
    return value / TEMPERATURE_SCALE - TEMPERATURE_OFFSET


def rainfall_fraction(value: float) -> float:
    return value / 255.0


def temperature_byte(celsius: float) -> int:
    return int(min(255, max(0, round((celsius + TEMPERATURE_OFFSET) * TEMPERATURE_SCALE))))


def rainfall_byte(fraction: float) -> int:
    return int(min(255, max(0, round(fraction * 255))))


def inner_climate(region: RegionData) -> np.ndarray:
    """Return the climate map with its padding border removed."""
    pad = region.padding
    climate = np.asarray(region.climate)
    if pad <= 0:
        return climate
    return climate[pad:-pad, pad:-pad]


def bilinear_resample(plane: np.ndarray, size: int = RASTER_SIZE) -> np.ndarray:
    """Sample ``plane`` at pixel centres ``(p + 0.5) / size`` with edge clamping.

    ``plane`` is indexed ``[z, x]``; the result is a ``(size, size)`` uint8
    array in the same orientation.
    """
    plane = np.asarray(plane, dtype=np.float32)
    rows, cols = plane.shape
    if rows == 0 or cols == 0:
        return np.zeros((size, size), dtype=np.uint8)
    centres = (np.arange(size, dtype=np.float32) + np.float32(0.5)) / np.float32(size)

    def axis(count: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        position = np.clip(centres * count, 0, count - 1)
        low = np.floor(position).astype(np.int64)
        high = np.minimum(low + 1, count - 1)
        return low, high, (position - low).astype(np.float32)

    z0, z1, fz = axis(rows)
    x0, x1, fx = axis(cols)
    top = plane[np.ix_(z0, x0)] * (1 - fx) + plane[np.ix_(z0, x1)] * fx
    bottom = plane[np.ix_(z1, x0)] * (1 - fx) + plane[np.ix_(z1, x1)] * fx
    result = top * (1 - fz[:, None]) + bottom * fz[:, None]
    return np.clip(np.rint(result), 0, 255).astype(np.uint8)


def render_region_rasters(region: RegionData, size: int = RASTER_SIZE) -> tuple[bytes, bytes]:
    """Return ``(temperature_png, rain_png)`` as opaque grayscale images."""
    temperature, rainfall = unpack_climate(inner_climate(region))
    temp_png = encode_png(Image.fromarray(bilinear_resample(temperature, size)))
    rain_png = encode_png(Image.fromarray(bilinear_resample(rainfall, size)))
    return temp_png, rain_png


def region_points(
    region: RegionData, *, map_size_x: int, map_size_z: int
) -> tuple[list[ClimatePoint], list[ClimatePoint]]:
    """One temperature and one rainfall point per unpadded cell, at the cell centre."""
    temperature, rainfall = unpack_climate(inner_climate(region))
    rows, cols = temperature.shape
    temperature_points: list[ClimatePoint] = []
    rainfall_points: list[ClimatePoint] = []
    if rows == 0 or cols == 0:
        return temperature_points, rainfall_points
    origin_x = region.position.x * REGION_SIZE
    origin_z = region.position.z * REGION_SIZE
    offset_x = map_size_x // 2
    offset_z = map_size_z // 2
    for row in range(rows):
        world_z = origin_z + int((row + 0.5) * REGION_SIZE / rows)
        for col in range(cols):
            world_x = origin_x + int((col + 0.5) * REGION_SIZE / cols)
            display_x = world_x - offset_x
            display_z = -(world_z - offset_z)
            temp_value = int(temperature[row, col])
            rain_value = int(rainfall[row, col])
            temperature_points.append(
                ClimatePoint(display_x, display_z, temp_value, temperature_celsius(temp_value))
            )
            rainfall_points.append(
                ClimatePoint(display_x, display_z, rain_value, rainfall_fraction(rain_value))
            )
    return temperature_points, rainfall_points


def sample_offsets(samples_per_chunk: int) -> list[int]:
    """In-chunk block offsets used by live sampling: ``i * step + step // 2``."""
    step = CHUNK_SIZE // samples_per_chunk
    return [index * step + step // 2 for index in range(samples_per_chunk)]
