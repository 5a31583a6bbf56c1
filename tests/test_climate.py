from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from tests.utils import make_region
from voxatlas.render.climate import (
    bilinear_resample,
    inner_climate,
    rainfall_byte,
    rainfall_fraction,
    region_points,
    render_region_rasters,
    sample_offsets,
    temperature_byte,
    temperature_celsius,
    unpack_climate,
)


def test_unpack_climate_channels() -> None:
    temperature, rainfall = unpack_climate(np.array([0x804011], dtype=np.uint32))
    assert temperature.tolist() == [0x80]
    assert rainfall.tolist() == [0x40]


def test_value_conversions() -> None:
    assert temperature_celsius(85) == pytest.approx(0.0)
    assert temperature_celsius(0) == pytest.approx(-20.0)
    assert rainfall_fraction(255) == pytest.approx(1.0)
    assert temperature_byte(0.0) == 85
    assert temperature_byte(500.0) == 255
    assert temperature_byte(-60.0) == 0
    assert rainfall_byte(1.5) == 255
    assert rainfall_byte(0.0) == 0


def test_inner_climate_strips_padding() -> None:
    region = make_region(0, 0, size=4, padding=1)
    assert inner_climate(region).shape == (4, 4)
    assert inner_climate(make_region(0, 0, size=3, padding=0)).shape == (3, 3)


def test_bilinear_resample_constant_plane() -> None:
    plane = np.full((4, 4), 77, dtype=np.uint8)
    result = bilinear_resample(plane, 16)
    assert result.shape == (16, 16)
    assert (result == 77).all()


def test_bilinear_resample_interpolates_and_clamps() -> None:
    plane = np.array([[0, 255], [0, 255]], dtype=np.uint8)
    result = bilinear_resample(plane, 4)
    assert result[0].tolist() == [64, 191, 255, 255]
    assert (result[:, 0] == 64).all()


def test_region_rasters_are_opaque_grayscale() -> None:
    temp_png, rain_png = render_region_rasters(make_region(0, 0, temperature=128, rain=64))
    for data, expected in ((temp_png, 128), (rain_png, 64)):
        with Image.open(io.BytesIO(data)) as image:
            assert image.format == "PNG"
            assert image.mode == "L"
            assert image.size == (512, 512)
            assert (np.asarray(image) == expected).all()


def test_region_points_use_cell_centres_in_display_coordinates() -> None:
    region = make_region(1, -1, size=2, padding=1, temperature=128, rain=51)
    temps, rains = region_points(region, map_size_x=1024, map_size_z=1024)
    assert [(point.x, point.z) for point in temps] == [
        (128, 896),
        (384, 896),
        (128, 640),
        (384, 640),
    ]
    assert [(point.x, point.z) for point in rains] == [(point.x, point.z) for point in temps]
    assert temps[0].value == 128
    assert temps[0].real_value == pytest.approx(128 / 4.25 - 20)
    assert rains[0].real_value == pytest.approx(0.2)


def test_sample_offsets() -> None:
    assert sample_offsets(1) == [16]
    assert sample_offsets(2) == [8, 24]
    assert sample_offsets(4) == [4, 12, 20, 28]
