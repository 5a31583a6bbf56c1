from __future__ import annotations

import logging
from pathlib import Path

import pytest

from tests.utils import DEFAULT_BLOCKS, FakeRuntime, build_world, make_region, make_snapshot
from voxatlas.config import ClimateMode, ImageMode
from voxatlas.export.extractors import (
    ChunkVersionExtractor,
    ClimateExtractor,
    ExtractorBase,
    TileExtractor,
    TraderExtractor,
    extractor_names,
)
from voxatlas.models import ChunkPosition, ClimateSample, ExportProgress, TileCoordinate, Trader
from voxatlas.render.colors import BlockColorCache
from voxatlas.render.downsample import PyramidDownsampler
from voxatlas.render.renderer import TileRenderer
from voxatlas.storage.metadata import MetadataStore
from voxatlas.storage.tiles import TileCache
from voxatlas.world.repository import WorldDataRepository


@pytest.fixture()
def store(tmp_path: Path) -> MetadataStore:
    return MetadataStore(tmp_path / "data" / "metadata.db")


@pytest.fixture()
def cache(tmp_path: Path) -> TileCache:
    return TileCache(tmp_path / "data" / "tiles.mbtiles")


def _repository(tmp_path: Path, regions=()) -> WorldDataRepository:
    path = build_world(tmp_path / "world.db", [make_snapshot(0, 0)], regions=regions)
    return WorldDataRepository(path)


def test_base_extractor_hooks_are_noops() -> None:
    extractor = ExtractorBase()
    extractor.initialize(live=True)
    assert extractor.live is True
    assert extractor.process_chunk(make_snapshot(0, 0)) is None
    assert extractor.finalize() is None


def test_trader_conflicts_resolve_to_greatest_chunk(store: MetadataStore) -> None:
    early = Trader(1, "Ada", "artisan", (100, 50, -20))
    late = Trader(1, "Ada", "artisan", (5, 60, 7))
    other = Trader(2, "Bo", "foods", (0, 0, 0))
    for order in (1, -1):
        snapshots = [
            make_snapshot(3, -1, traders=[early]),
            make_snapshot(0, 0, traders=[late, other]),
        ][::order]
        extractor = TraderExtractor(store)
        extractor.initialize()
        for snapshot in snapshots:
            extractor.process_chunk(snapshot)
        assert extractor.traders == [late, other]
    extractor.finalize()
    assert store.get_traders() == [late, other]


def test_trader_live_mode_upserts(store: MetadataStore) -> None:
    existing = Trader(9, "Cy", "luxuries", (1, 1, 1))
    store.replace_traders([existing])
    extractor = TraderExtractor(store)
    extractor.initialize(live=True)
    moved = Trader(2, "Bo", "foods", (4, 4, 4))
    extractor.process_chunk(make_snapshot(0, 0, traders=[moved]))
    extractor.finalize()
    assert store.get_traders() == [moved, existing]


def test_climate_extractor_rejects_bad_settings(tmp_path: Path, store: MetadataStore, cache: TileCache) -> None:
    with _repository(tmp_path) as repository:
        with pytest.raises(ValueError):
            ClimateExtractor(ClimateMode.OFF, store, repository=repository, cache=cache)
        with pytest.raises(ValueError):
            ClimateExtractor(
                ClimateMode.FAST, store, repository=repository, cache=cache, samples_per_chunk=3
            )
        on_demand = ClimateExtractor(ClimateMode.ON_DEMAND, store, repository=repository, cache=cache)
        assert on_demand.requires_loaded_chunks
        with pytest.raises(ValueError):
            on_demand.initialize()


def test_fast_climate_writes_rasters_and_points(tmp_path: Path, store: MetadataStore, cache: TileCache) -> None:
    regions = [make_region(0, 0), make_region(-1, 0, temperature=85)]
    events: list[ExportProgress] = []
    with _repository(tmp_path, regions) as repository:
        extractor = ClimateExtractor(
            ClimateMode.FAST,
            store,
            repository=repository,
            cache=cache,
            map_size_x=1024,
            map_size_z=1024,
        )
        assert not extractor.requires_loaded_chunks
        extractor.initialize()
        extractor.process_chunk(make_snapshot(0, 0))
        extractor.finalize(progress=events.append)
    assert cache.get_temp_tile(0, 0) is not None
    assert cache.get_rain_tile(-1, 0) is not None
    temperature = store.get_climate_data("temperature")
    assert len(temperature) == 32
    assert len(store.get_climate_data("rainfall")) == 32
    assert [event.phase for event in events] == ["climate"]
    keys = [(point.z, point.x) for point in temperature]
    assert keys == sorted(keys)


def test_fast_climate_without_regions_stores_nothing(
    tmp_path: Path, store: MetadataStore, cache: TileCache, caplog
) -> None:
    store.store_climate_data("temperature", [])
    with _repository(tmp_path) as repository:
        extractor = ClimateExtractor(ClimateMode.FAST, store, repository=repository, cache=cache)
        extractor.initialize()
        with caplog.at_level(logging.WARNING):
            extractor.finalize()
    assert store.get_climate_data("temperature") == []
    assert any("No climate data" in record.getMessage() for record in caplog.records)


def test_on_demand_climate_samples_live_runtime(tmp_path: Path, store: MetadataStore, cache: TileCache) -> None:
    runtime = FakeRuntime(temperature=0.0, rainfall=1.0)
    with _repository(tmp_path, [make_region(0, 0)]) as repository:
        extractor = ClimateExtractor(
            ClimateMode.ON_DEMAND,
            store,
            repository=repository,
            cache=cache,
            runtime=runtime,
            samples_per_chunk=2,
            map_size_x=1024,
            map_size_z=1024,
        )
        extractor.initialize()
        extractor.process_chunk(make_snapshot(0, 0, height=100))
        extractor.finalize()
    assert sorted(runtime.climate_calls) == [(8, 100, 8), (8, 100, 24), (24, 100, 8), (24, 100, 24)]
    temperature = store.get_climate_data("temperature")
    assert [(point.x, point.z) for point in temperature] == [
        (-504, 488),
        (-488, 488),
        (-504, 504),
        (-488, 504),
    ]
    assert {point.value for point in temperature} == {85}
    assert {point.real_value for point in store.get_climate_data("rainfall")} == {1.0}
    assert cache.get_temp_tile(0, 0) is None


class _PatchyRuntime(FakeRuntime):
    def climate_at(self, x: int, y: int, z: int) -> ClimateSample:
        if x > 16:
            raise LookupError("chunk not generated")
        return super().climate_at(x, y, z)


def test_on_demand_climate_skips_failed_samples(tmp_path: Path, store: MetadataStore, cache: TileCache) -> None:
    with _repository(tmp_path) as repository:
        extractor = ClimateExtractor(
            ClimateMode.ON_DEMAND,
            store,
            repository=repository,
            cache=cache,
            runtime=_PatchyRuntime(),
        )
        extractor.initialize()
        extractor.process_chunk(make_snapshot(0, 0))
        extractor.finalize()
    assert len(store.get_climate_data("temperature")) == 2


def _tile_extractor(cache: TileCache, *, zoom_levels: bool = True) -> TileExtractor:
    renderer = TileRenderer(
        BlockColorCache.from_blocks(DEFAULT_BLOCKS),
        tile_size=256,
        image_mode=ImageMode.ONLY_ONE_COLOR,
    )
    downsampler = PyramidDownsampler(cache, tile_size=256, base_zoom=3)
    return TileExtractor(
        renderer,
        cache,
        base_zoom=3,
        downsampler=downsampler,
        create_zoom_levels=zoom_levels,
        jobs=1,
    )


def test_tile_extractor_renders_and_builds_pyramid(cache: TileCache) -> None:
    extractor = _tile_extractor(cache)
    extractor.initialize()
    extractor.complete_tile(TileCoordinate(3, 5, 5), [])
    extractor.complete_tile(TileCoordinate(3, 0, 0), [make_snapshot(0, 0)])
    assert extractor.rendered_tiles == [TileCoordinate(3, 0, 0)]
    extractor.finalize()
    assert cache.zoom_levels() == [0, 1, 2, 3]
    assert not cache.exists(3, 5, 5)


def test_tile_extractor_without_zoom_levels(cache: TileCache) -> None:
    extractor = _tile_extractor(cache, zoom_levels=False)
    extractor.initialize()
    extractor.complete_tile(TileCoordinate(3, 0, 0), [make_snapshot(0, 0)])
    extractor.finalize()
    assert cache.zoom_levels() == [3]


def test_tile_extractor_live_regenerates_parents_only(cache: TileCache) -> None:
    extractor = _tile_extractor(cache)
    extractor.initialize()
    extractor.complete_tile(TileCoordinate(3, 0, 0), [make_snapshot(0, 0)])
    extractor.complete_tile(TileCoordinate(3, 4, 0), [make_snapshot(32, 0)])
    extractor.finalize()
    untouched = cache.get(2, 2, 0)

    extractor.initialize(live=True)
    extractor.complete_tile(TileCoordinate(3, 1, 0), [make_snapshot(8, 0)])
    extractor.finalize()
    assert extractor.rendered_tiles == [TileCoordinate(3, 1, 0)]
    assert cache.get(2, 2, 0) == untouched
    assert cache.exists(0, 0, 0)


def test_chunk_version_extractor(store: MetadataStore) -> None:
    extractor = ChunkVersionExtractor(store)
    extractor.initialize()
    extractor.process_chunk(make_snapshot(0, 0, version="1.19.0"))
    extractor.process_chunk(make_snapshot(1, 0, version="1.19.0"))
    extractor.process_chunk(make_snapshot(2, 0))
    extractor.finalize()
    groups = store.get_chunk_versions()
    assert len(groups) == 1
    assert groups[0].positions == (ChunkPosition(0, 0), ChunkPosition(1, 0))


def test_extractor_names(store: MetadataStore) -> None:
    assert extractor_names([TraderExtractor(store), ChunkVersionExtractor(store)]) == [
        "traders",
        "chunk_versions",
    ]
