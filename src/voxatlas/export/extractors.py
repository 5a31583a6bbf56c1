"""Extractors that consume chunk snapshots during an export pass.

The orchestrator walks the world once and hands every snapshot to each
registered extractor. Extractors accumulate under a lock (tile units run in
parallel) and persist sorted results in ``finalize`` so the stored output
does not depend on scheduling.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Protocol, Sequence

from voxatlas.config import ClimateMode
from voxatlas.export.grouping import group_chunk_versions
from voxatlas.export.runtime import WorldRuntime
from voxatlas.models import (
    CHUNK_SIZE,
    ChunkPosition,
    ChunkSnapshot,
    ClimatePoint,
    ExportProgress,
    TileCoordinate,
    Trader,
)
from voxatlas.render.climate import (
    rainfall_byte,
    region_points,
    render_region_rasters,
    sample_offsets,
    temperature_byte,
)
from voxatlas.render.downsample import PyramidDownsampler
from voxatlas.render.renderer import TileRenderer
from voxatlas.storage.metadata import MetadataStore
from voxatlas.storage.tiles import TileCache
from voxatlas.world.repository import WorldDataRepository

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[ExportProgress], None]


class DataExtractor(Protocol):
    """Protocol implemented by every export extractor."""

    name: str
    requires_loaded_chunks: bool
    supports_live: bool

    def initialize(self, *, live: bool = False) -> None:
        ...

    def process_chunk(self, snapshot: ChunkSnapshot) -> None:
        ...

    def complete_tile(self, tile: TileCoordinate, snapshots: Sequence[ChunkSnapshot]) -> None:
        ...

    def finalize(self, progress: ProgressCallback | None = None) -> None:
        ...


class ExtractorBase:
    """No-op defaults for the extractor hooks."""

    name = "extractor"
    requires_loaded_chunks = False
    supports_live = False

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.live = False

    def initialize(self, *, live: bool = False) -> None:
        self.live = live

    def process_chunk(self, snapshot: ChunkSnapshot) -> None:
        return None

    def complete_tile(self, tile: TileCoordinate, snapshots: Sequence[ChunkSnapshot]) -> None:
        return None

    def finalize(self, progress: ProgressCallback | None = None) -> None:
        return None


class TraderExtractor(ExtractorBase):
    """Collect trader sightings; a trader seen in several chunks keeps the last one.

    "Last" is the sighting from the chunk with the greatest ``(z, x)``, which
    makes the result independent of tile processing order.
    """

    name = "traders"
    supports_live = True

    def __init__(self, store: MetadataStore) -> None:
        super().__init__()
        self.store = store
        self._traders: dict[int, tuple[tuple[int, int], Trader]] = {}

    def initialize(self, *, live: bool = False) -> None:
        super().initialize(live=live)
        with self._lock:
            self._traders.clear()

    def process_chunk(self, snapshot: ChunkSnapshot) -> None:
        if not snapshot.traders:
            return
        order = (snapshot.position.z, snapshot.position.x)
        with self._lock:
            for trader in snapshot.traders:
                current = self._traders.get(trader.id)
                if current is None or current[0] <= order:
                    self._traders[trader.id] = (order, trader)

    @property
    def traders(self) -> list[Trader]:
        with self._lock:
            return [entry[1] for _, entry in sorted(self._traders.items())]

    def finalize(self, progress: ProgressCallback | None = None) -> None:
        traders = self.traders
        if self.live:
            for trader in traders:
                self.store.add_trader(trader)
            LOGGER.info("Updated %s traders from loaded chunks", len(traders))
            return
        count = self.store.replace_traders(traders)
        LOGGER.info("Stored %s traders", count)


class ClimateExtractor(ExtractorBase):
    """Climate points and rasters, from region maps (FAST) or live sampling (ON_DEMAND)."""

    name = "climate"

    def __init__(
        self,
        mode: ClimateMode,
        store: MetadataStore,
        *,
        repository: WorldDataRepository,
        cache: TileCache,
        runtime: WorldRuntime | None = None,
        samples_per_chunk: int = 2,
        map_size_x: int = 1024000,
        map_size_z: int = 1024000,
    ) -> None:
        super().__init__()
        if mode is ClimateMode.OFF:
            raise ValueError("ClimateExtractor needs an active climate mode")
        if CHUNK_SIZE % samples_per_chunk:
            raise ValueError(f"samples_per_chunk must divide {CHUNK_SIZE}")
        self.mode = mode
        self.store = store
        self.repository = repository
        self.cache = cache
        self.runtime = runtime
        self.samples_per_chunk = samples_per_chunk
        self.map_size_x = map_size_x
        self.map_size_z = map_size_z
        self.requires_loaded_chunks = mode is ClimateMode.ON_DEMAND
        self._samples: dict[tuple[int, int], tuple[ClimatePoint, ClimatePoint]] = {}

    def initialize(self, *, live: bool = False) -> None:
        super().initialize(live=live)
        if self.requires_loaded_chunks and self.runtime is None:
            raise ValueError("On-demand climate sampling requires a world runtime")
        with self._lock:
            self._samples.clear()

    def _display(self, world_x: int, world_z: int) -> tuple[int, int]:
        return world_x - self.map_size_x // 2, -(world_z - self.map_size_z // 2)

    def process_chunk(self, snapshot: ChunkSnapshot) -> None:
        if self.mode is not ClimateMode.ON_DEMAND or self.runtime is None:
            return
        offsets = sample_offsets(self.samples_per_chunk)
        collected: dict[tuple[int, int], tuple[ClimatePoint, ClimatePoint]] = {}
        for local_z in offsets:
            for local_x in offsets:
                world_x = snapshot.world_x + local_x
                world_z = snapshot.world_z + local_z
                world_y = int(snapshot.heightmap[local_z, local_x])
                try:
                    sample = self.runtime.climate_at(world_x, world_y, world_z)
                except (LookupError, ValueError, RuntimeError) as exc:
                    LOGGER.debug("No climate at (%s,%s): %s", world_x, world_z, exc)
                    continue
                display_x, display_z = self._display(world_x, world_z)
                collected[(display_x, display_z)] = (
                    ClimatePoint(
                        display_x,
                        display_z,
                        temperature_byte(sample.temperature),
                        sample.temperature,
                    ),
                    ClimatePoint(
                        display_x, display_z, rainfall_byte(sample.rainfall), sample.rainfall
                    ),
                )
        with self._lock:
            self._samples.update(collected)

    def _collect_regions(self) -> None:
        rasters = 0
        for position in sorted(self.repository.list_region_positions(), key=lambda p: (p.z, p.x)):
            region = self.repository.get_region(position)
            if region is None:
                continue
            temp_png, rain_png = render_region_rasters(region)
            self.cache.put_temp_tile(position.x, position.z, temp_png)
            self.cache.put_rain_tile(position.x, position.z, rain_png)
            rasters += 1
            temperature, rainfall = region_points(
                region, map_size_x=self.map_size_x, map_size_z=self.map_size_z
            )
            with self._lock:
                for temp_point, rain_point in zip(temperature, rainfall):
                    self._samples[(temp_point.x, temp_point.z)] = (temp_point, rain_point)
        LOGGER.info("Rendered climate rasters for %s regions", rasters)

    def finalize(self, progress: ProgressCallback | None = None) -> None:
        if self.mode is ClimateMode.FAST:
            self._collect_regions()
        with self._lock:
            ordered = [self._samples[key] for key in sorted(self._samples, key=lambda k: (k[1], k[0]))]
        if not ordered:
            LOGGER.warning("No climate data extracted")
            return
        self.store.store_climate_data("temperature", [pair[0] for pair in ordered])
        self.store.store_climate_data("rainfall", [pair[1] for pair in ordered])
        if progress is not None:
            progress(ExportProgress("climate", len(ordered), len(ordered)))


class TileExtractor(ExtractorBase):
    """Render base-zoom tiles as each tile unit completes, then build the pyramid."""

    name = "tiles"
    supports_live = True

    def __init__(
        self,
        renderer: TileRenderer,
        cache: TileCache,
        *,
        base_zoom: int,
        downsampler: PyramidDownsampler | None = None,
        create_zoom_levels: bool = True,
        jobs: int = 0,
        should_stop: Callable[[], bool] | None = None,
    ) -> None:
        super().__init__()
        self.renderer = renderer
        self.cache = cache
        self.base_zoom = base_zoom
        self.downsampler = downsampler
        self.create_zoom_levels = create_zoom_levels
        self.jobs = jobs
        self.should_stop = should_stop
        self._rendered: set[TileCoordinate] = set()

    def initialize(self, *, live: bool = False) -> None:
        super().initialize(live=live)
        with self._lock:
            self._rendered.clear()

    @property
    def rendered_tiles(self) -> list[TileCoordinate]:
        with self._lock:
            return sorted(self._rendered)

    def complete_tile(self, tile: TileCoordinate, snapshots: Sequence[ChunkSnapshot]) -> None:
        data = self.renderer.render_tile(tile, snapshots)
        if data is None:
            LOGGER.debug("Tile produced no pixels", extra={"tile": tile.label()})
            return
        self.cache.put(tile.zoom, tile.x, tile.y, data)
        with self._lock:
            self._rendered.add(tile)

    def finalize(self, progress: ProgressCallback | None = None) -> None:
        if not self.create_zoom_levels or self.downsampler is None:
            return
        if self.live:
            count = self.downsampler.regenerate_parents(self.rendered_tiles, jobs=self.jobs)
            LOGGER.info("Regenerated %s parent tiles", count)
            return
        self.downsampler.generate_zoom_levels(
            jobs=self.jobs, progress=progress, should_stop=self.should_stop
        )


class ChunkVersionExtractor(ExtractorBase):
    """Record the game version of each chunk and store connected version groups."""

    name = "chunk_versions"

    def __init__(self, store: MetadataStore) -> None:
        super().__init__()
        self.store = store
        self._versions: dict[ChunkPosition, str] = {}

    def initialize(self, *, live: bool = False) -> None:
        super().initialize(live=live)
        with self._lock:
            self._versions.clear()

    def process_chunk(self, snapshot: ChunkSnapshot) -> None:
        if not snapshot.version:
            return
        with self._lock:
            self._versions[snapshot.position] = snapshot.version

    def finalize(self, progress: ProgressCallback | None = None) -> None:
        with self._lock:
            versions = dict(self._versions)
        groups = group_chunk_versions(versions)
        count = self.store.store_chunk_versions(groups)
        LOGGER.info(
            "Stored %s chunk versions in %s groups (%s distinct versions)",
            count,
            len(groups),
            len({group.version for group in groups}),
        )


def extractor_names(extractors: Iterable[DataExtractor]) -> list[str]:
    return [extractor.name for extractor in extractors]
