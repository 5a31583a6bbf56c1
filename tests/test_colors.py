from __future__ import annotations

import json
from pathlib import Path

import numpy as np
import pytest

from tests.utils import DEFAULT_BLOCKS
from voxatlas.models import BlockInfo
from voxatlas.render.colors import (
    MAP_COLORS,
    BlockColorCache,
    argb_to_rgba,
    ensure_alpha,
    load_color_mappings,
    parse_hex_color,
)


def test_parse_hex_color() -> None:
    assert parse_hex_color("#AC8858") == 0xFFAC8858
    assert parse_hex_color("80112233") == 0x80112233
    assert parse_hex_color("#abc") == 0


def test_ensure_alpha_only_fills_missing() -> None:
    assert ensure_alpha(0x123456) == 0xFF123456
    assert ensure_alpha(0x40123456) == 0x40123456


def test_argb_to_rgba_channel_order() -> None:
    rgba = argb_to_rgba(np.array([0x80102030], dtype=np.uint32))
    assert rgba.tolist() == [[0x10, 0x20, 0x30, 0x80]]


def test_block_flags_from_materials() -> None:
    cache = BlockColorCache.from_blocks(DEFAULT_BLOCKS)
    assert cache.is_lake(3)
    assert not cache.is_lake(6)
    assert cache.is_snow(4)
    assert not cache.is_snow(1)
    assert cache.base_color(5) == MAP_COLORS["desert"]
    assert cache.base_color(7) == MAP_COLORS["forest"]
    assert cache.base_color(999) == MAP_COLORS["land"]
    assert not cache.is_lake(-1)


def test_non_glacier_ice_counts_as_lake() -> None:
    cache = BlockColorCache.from_blocks([BlockInfo(1, "game:lakeice", "ice")])
    assert cache.is_lake(1)


def test_medieval_colors_mark_water_edges() -> None:
    cache = BlockColorCache.from_blocks(DEFAULT_BLOCKS)
    assert cache.medieval_color(1) == MAP_COLORS["land"]
    assert cache.medieval_color(3) == MAP_COLORS["lake"]
    assert cache.medieval_color(3, is_water_edge=True) == MAP_COLORS["water-edge"]
    ids = np.array([[1, 3]])
    edges = np.array([[False, True]])
    assert cache.medieval_colors(ids, edges).tolist() == [
        [MAP_COLORS["land"], MAP_COLORS["water-edge"]]
    ]


def test_wildcard_mappings_match_whole_code() -> None:
    cache = BlockColorCache.from_blocks(
        DEFAULT_BLOCKS,
        {"*granite": [0x010203], "rock": [0x0A0B0C]},
    )
    assert cache.base_color(2) == 0xFF010203
    assert cache.base_color(5) == 0xFF010203
    assert cache.base_color(1) == MAP_COLORS["land"]


def test_exact_mapping_matches_path_without_domain() -> None:
    cache = BlockColorCache.from_blocks(DEFAULT_BLOCKS, {"leaves-grown-oak": [0xFF00FF00]})
    assert cache.base_color(7) == 0xFF00FF00


def test_random_variations_are_seeded() -> None:
    colors = [0xFF000001, 0xFF000002, 0xFF000003]
    cache = BlockColorCache.from_blocks(DEFAULT_BLOCKS, {"game:soil-*": colors})
    ids = np.ones((32, 32), dtype=np.int32)
    first = cache.random_variations(ids, np.random.default_rng(7))
    second = cache.random_variations(ids, np.random.default_rng(7))
    assert np.array_equal(first, second)
    assert set(np.unique(first).tolist()) <= set(colors)
    stone = cache.random_variations(np.full((2, 2), 2), np.random.default_rng(7))
    assert (stone == MAP_COLORS["land"]).all()
    assert cache.random_variation(1, np.random.default_rng(0)) in colors


def test_load_color_mappings(tmp_path: Path) -> None:
    path = tmp_path / "colors.json"
    path.write_text(
        json.dumps({"blocks": {"game:sand-*": ["#010203", 4278190080], "game:snowblock": "#FFFFFF"}}),
        encoding="utf-8",
    )
    mappings = load_color_mappings(path)
    assert mappings["game:sand-*"] == [0xFF010203, 0xFF000000]
    assert mappings["game:snowblock"] == [0xFFFFFFFF]


def test_load_color_mappings_rejects_lists(tmp_path: Path) -> None:
    path = tmp_path / "colors.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(TypeError):
        load_color_mappings(path)
