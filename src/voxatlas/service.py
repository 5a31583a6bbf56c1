"""Export use case and the serving facade over the tile cache."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from time import perf_counter
from typing import Callable

from voxatlas.config import ClimateMode, ExportConfig
from voxatlas.coords import CoordinateTransformService, MapConfig
from voxatlas.errors import ExportConflictError
from voxatlas.export.extractors import (
    ChunkVersionExtractor,
    ClimateExtractor,
    TileExtractor,
    TraderExtractor,
)
from voxatlas.export.orchestrator import ExportOrchestrator, ExportStats
from voxatlas.export.runtime import WorldRuntime
from voxatlas.models import ExportProgress, ExportResult, Trader
from voxatlas.perf import PerfTracker
from voxatlas.render.colors import BlockColorCache, load_color_mappings
from voxatlas.render.downsample import PyramidDownsampler
from voxatlas.render.renderer import TileRenderer
from voxatlas.storage.metadata import MetadataStore
from voxatlas.storage.tiles import TileCache
from voxatlas.world.repository import WorldDataRepository

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[ExportProgress], None]

_LAYER_ALIASES = {"rain": "rain", "rainfall": "rain", "temp": "temperature", "temperature": "temperature"}


@dataclass(frozen=True)
class ExportOptions:
    """Caller-facing switches for one export request."""

    save_mode: bool = False
    stop_on_done: bool = False
    report_progress: bool = True


def validate_export_options(options: ExportOptions) -> list[str]:
    errors: list[str] = []
    if options.stop_on_done and not options.save_mode:
        errors.append("stop_on_done requires save_mode")
    return errors


@dataclass(frozen=True)
class ServerHooks:
    """Optional callbacks into the hosting server around an export."""

    enter_save_mode: Callable[[], None] | None = None
    exit_save_mode: Callable[[], None] | None = None
    stop_server: Callable[[str], None] | None = None


ExportAction = Callable[[ExportOptions, ProgressCallback | None], ExportResult]


def _stats_metrics(stats: ExportStats) -> dict[str, object]:
    return {
        "cancelled": stats.cancelled,
        "failed_tiles": stats.failed_tiles,
        "failed_extractors": list(stats.failed_extractors),
    }


class ExportMapUseCase:
    """Validate options, guard against overlapping exports, and time the run."""

    def __init__(self, export_action: ExportAction, hooks: ServerHooks | None = None) -> None:
        self.export_action = export_action
        self.hooks = hooks or ServerHooks()
        self._lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def execute(
        self,
        options: ExportOptions | None = None,
        progress: ProgressCallback | None = None,
        *,
        action: ExportAction | None = None,
    ) -> ExportResult:
        """Run ``action`` (the configured export by default) under the single-run guard."""
        options = options or ExportOptions()
        action = action or self.export_action
        errors = validate_export_options(options)
        if errors:
            message = "; ".join(errors)
            LOGGER.error("Invalid export options: %s", message)
            return ExportResult.failed(f"Validation failed: {message}")
        with self._lock:
            if self._running:
                return ExportResult.failed("Export already running")
            self._running = True

        start = perf_counter()
        entered_save_mode = False
        try:
            if options.save_mode and self.hooks.enter_save_mode is not None:
                self.hooks.enter_save_mode()
                entered_save_mode = True
            result = action(options, progress if options.report_progress else None)
            duration = perf_counter() - start
            result = replace(result, duration=duration)
            if result.success:
                LOGGER.info("Map export completed in %.2fs", duration)
                if options.stop_on_done and self.hooks.stop_server is not None:
                    self.hooks.stop_server("Map export complete")
            return result
        except ExportConflictError as exc:
            return ExportResult.failed("Export already running", exc, perf_counter() - start)
        except Exception as exc:
            duration = perf_counter() - start
            LOGGER.error("Map export failed: %s", exc)
            return ExportResult.failed(f"Export failed: {exc}", exc, duration)
        finally:
            if entered_save_mode and self.hooks.exit_save_mode is not None:
                self.hooks.exit_save_mode()
            with self._lock:
                self._running = False


def build_color_cache(config: ExportConfig, repository: WorldDataRepository) -> BlockColorCache:
    mappings = None
    if config.color_mapping_path:
        mappings = load_color_mappings(Path(config.color_mapping_path))
    return BlockColorCache.from_blocks(repository.list_blocks(), mappings)


def build_orchestrator(
    config: ExportConfig,
    repository: WorldDataRepository,
    tile_cache: TileCache,
    metadata: MetadataStore,
    *,
    runtime: WorldRuntime | None = None,
    perf: PerfTracker | None = None,
) -> ExportOrchestrator:
    """Wire an orchestrator and the extractors enabled by ``config``."""
    orchestrator = ExportOrchestrator(
        repository,
        tile_cache,
        chunks_per_tile=config.chunks_per_tile,
        base_zoom=config.base_zoom_level,
        jobs=config.max_degree_of_parallelism,
        runtime=runtime,
        perf=perf,
    )
    if config.extract_world_map:
        renderer = TileRenderer(
            build_color_cache(config, repository),
            tile_size=config.tile_size,
            image_mode=config.image_mode,
            map_size_y=config.map_size_y,
            seed=config.render_seed,
        )
        downsampler = None
        if config.create_zoom_levels:
            downsampler = PyramidDownsampler(
                tile_cache, tile_size=config.tile_size, base_zoom=config.base_zoom_level
            )
        orchestrator.register(
            TileExtractor(
                renderer,
                tile_cache,
                base_zoom=config.base_zoom_level,
                downsampler=downsampler,
                create_zoom_levels=config.create_zoom_levels,
                jobs=config.max_degree_of_parallelism,
                should_stop=lambda: orchestrator.cancelled,
            )
        )
    if config.extract_climate and config.climate_mode is not ClimateMode.OFF:
        orchestrator.register(
            ClimateExtractor(
                config.climate_mode,
                metadata,
                repository=repository,
                cache=tile_cache,
                runtime=runtime,
                samples_per_chunk=config.climate_samples_per_chunk,
                map_size_x=config.map_size_x,
                map_size_z=config.map_size_z,
            )
        )
    if config.extract_traders:
        orchestrator.register(TraderExtractor(metadata))
    if config.extract_chunk_versions:
        orchestrator.register(ChunkVersionExtractor(metadata))
    return orchestrator


class MapService:
    """Serve cached tiles and layers, and trigger exports into that cache.

    Serving requests address tiles by grid coordinates relative to the map
    origin; the cache itself is keyed by absolute storage coordinates.
    """

    def __init__(
        self,
        config: ExportConfig,
        world_path: Path,
        *,
        runtime: WorldRuntime | None = None,
        hooks: ServerHooks | None = None,
    ) -> None:
        self.config = config
        self.world_path = Path(world_path)
        self.runtime = runtime
        self.tile_cache = TileCache(config.tile_cache_path)
        self.metadata = MetadataStore(config.metadata_path)
        self.transform = CoordinateTransformService(
            config.tile_size,
            config.base_zoom_level,
            MapConfig.for_world(config.map_size_x, config.map_size_z, config.base_zoom_level),
        )
        self.use_case = ExportMapUseCase(self._run_export, hooks)
        self._orchestrator: ExportOrchestrator | None = None
        self._trigger_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self.last_result: ExportResult | None = None

    def _open_repository(self) -> WorldDataRepository:
        return WorldDataRepository(
            self.world_path,
            pool_size=self.config.pool_size,
            pool_timeout=self.config.pool_timeout,
        )

    def _run_export(
        self, options: ExportOptions, progress: ProgressCallback | None
    ) -> ExportResult:
        perf = PerfTracker()
        perf.start()
        with self._open_repository() as repository:
            orchestrator = build_orchestrator(
                self.config,
                repository,
                self.tile_cache,
                self.metadata,
                runtime=self.runtime,
                perf=perf,
            )
            self._orchestrator = orchestrator
            try:
                stats = orchestrator.run(progress)
            finally:
                self._orchestrator = None
        self.tile_cache.set_metadata("tile_size", str(self.config.tile_size))
        self.tile_cache.set_metadata("base_zoom", str(self.config.base_zoom_level))
        self.metadata.checkpoint()
        perf.stop()
        summary = perf.summary()
        summary.update(_stats_metrics(stats))
        return ExportResult.ok(
            duration=perf.elapsed,
            tiles_processed=stats.tiles_processed,
            chunks_processed=stats.chunks_processed,
            metrics=summary,
        )

    def export(
        self, options: ExportOptions | None = None, progress: ProgressCallback | None = None
    ) -> ExportResult:
        """Run an export synchronously."""
        result = self.use_case.execute(options, progress)
        self.last_result = result
        return result

    def trigger_export(
        self, options: ExportOptions | None = None, progress: ProgressCallback | None = None
    ) -> bool:
        """Start an export in the background; False if one is already running."""
        with self._trigger_lock:
            if self.is_export_running():
                return False
            self._thread = threading.Thread(
                target=self.export, args=(options, progress), name="voxatlas-export", daemon=True
            )
            self._thread.start()
        return True

    def wait(self, timeout: float | None = None) -> ExportResult | None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self.last_result

    def cancel_export(self) -> None:
        orchestrator = self._orchestrator
        if orchestrator is not None:
            orchestrator.cancel()

    def is_export_running(self) -> bool:
        thread = self._thread
        return self.use_case.is_running or (thread is not None and thread.is_alive())

    def refresh_loaded_chunks(self, runtime: WorldRuntime | None = None) -> ExportResult:
        """Re-render the tiles under currently loaded chunks and their parents."""
        runtime = runtime or self.runtime
        if runtime is None:
            return ExportResult.failed("Live refresh requires a world runtime")

        def action(options: ExportOptions, progress: ProgressCallback | None) -> ExportResult:
            with self._open_repository() as repository:
                orchestrator = build_orchestrator(
                    self.config, repository, self.tile_cache, self.metadata, runtime=runtime
                )
                self._orchestrator = orchestrator
                try:
                    stats = orchestrator.run_live(runtime, progress)
                finally:
                    self._orchestrator = None
            return ExportResult.ok(
                duration=0.0,
                tiles_processed=stats.tiles_processed,
                chunks_processed=stats.chunks_processed,
                metrics=_stats_metrics(stats),
            )

        return self.use_case.execute(action=action)

    def get_tile_bytes(self, zoom: int, x: int, y: int) -> bytes | None:
        storage_x, storage_y = self.transform.grid_to_storage(zoom, x, y)
        return self.tile_cache.get(zoom, storage_x, storage_y)

    def get_climate_layer_bytes(self, layer: str, x: int, y: int) -> bytes | None:
        canonical = _LAYER_ALIASES.get(layer.strip().lower())
        if canonical is None:
            raise ValueError(f"Unknown climate layer: {layer}")
        return self.tile_cache.get_climate_tile(canonical, x, y)

    def get_traders(self) -> list[Trader]:
        return self.metadata.get_traders()

    def close(self) -> None:
        self.wait()
        self.tile_cache.close()
        self.metadata.close()
