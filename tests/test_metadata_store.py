from __future__ import annotations

from pathlib import Path

import pytest

from voxatlas.models import ChunkPosition, ClimatePoint, GroupedChunkRegion, Trader
from voxatlas.storage.metadata import CLIMATE_BATCH_SIZE, MetadataStore


def test_traders_replace_and_live_updates(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path / "metadata.db")
    store.replace_traders(
        [
            Trader(5, "Bo", "foods", (1, 2, 3)),
            Trader(2, "Ada", "artisan", (-10, 100, 40)),
        ]
    )
    assert [trader.id for trader in store.get_traders()] == [2, 5]
    store.add_trader(Trader(5, "Bo", "foods", (7, 8, 9)))
    store.add_trader(Trader(9, "Cy", "luxuries", (0, 0, 0)))
    store.remove_trader(2)
    traders = store.get_traders()
    assert [trader.id for trader in traders] == [5, 9]
    assert traders[0].position == (7, 8, 9)
    assert store.replace_traders([]) == 0
    assert store.get_traders() == []


def test_climate_layer_is_replaced(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path / "metadata.db")
    store.store_climate_data("temperature", [ClimatePoint(0, 0, 0.5, 12.0)])
    store.store_climate_data(
        "temperature", [ClimatePoint(3, 1, 0.1, -4.0), ClimatePoint(-2, 1, 0.2, 1.0)]
    )
    store.store_climate_data("rainfall", [ClimatePoint(0, 0, 0.9, 0.9)])
    points = store.get_climate_data("temperature")
    assert [(point.x, point.z) for point in points] == [(-2, 1), (3, 1)]
    assert len(store.get_climate_data("rainfall")) == 1


def test_climate_replace_rolls_back_on_failure(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path / "metadata.db")
    original = [ClimatePoint(0, 0, 0.5, 12.0), ClimatePoint(1, 0, 0.6, 13.0)]
    store.store_climate_data("temperature", original)

    count = CLIMATE_BATCH_SIZE + 10
    broken = [ClimatePoint(index, 0, 0.1, 1.0) for index in range(count)]
    broken[-1] = ClimatePoint(count, 0, None, 1.0)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        store.store_climate_data("temperature", broken)

    assert store.get_climate_data("temperature") == original


def test_chunk_versions_round_trip(tmp_path: Path) -> None:
    store = MetadataStore(tmp_path / "metadata.db")
    groups = [
        GroupedChunkRegion("1.18.0", (ChunkPosition(0, 0), ChunkPosition(1, 0)), "#ff6a00"),
        GroupedChunkRegion("1.19.0", (ChunkPosition(5, 5),), "#004eff"),
    ]
    assert store.store_chunk_versions(groups) == 3
    assert store.get_chunk_versions() == groups
    store.store_chunk_versions(groups[1:])
    assert store.get_chunk_versions() == groups[1:]
    assert store.checkpoint() is True
