"""Single-pass export pipeline driving every registered extractor."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Sequence

from voxatlas.errors import (
    ExportConflictError,
    InvalidConfigurationError,
    RepositoryBusyError,
    StorageError,
)
from voxatlas.export.extractors import DataExtractor, extractor_names
from voxatlas.export.runtime import WorldRuntime
from voxatlas.models import ChunkPosition, ChunkSnapshot, ExportProgress, TileCoordinate
from voxatlas.perf import PerfTracker
from voxatlas.render.downsample import coerce_jobs
from voxatlas.storage.tiles import TileCache
from voxatlas.world.repository import WorldDataRepository

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[ExportProgress], None]

LOAD_BATCH_SIZE = 500
LOAD_TIMEOUT = 5.0
PROGRESS_INTERVAL = 100

# Errors that abort the whole pass; anything else is contained per extractor or tile.
PASS_FATAL_ERRORS = (StorageError, RepositoryBusyError)


class ExportState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    PROCESSING_CHUNKS = "processing_chunks"
    FINALIZING = "finalizing"


@dataclass(frozen=True)
class ExportStats:
    """Counters for one orchestrated pass."""

    tiles_processed: int
    chunks_processed: int
    cancelled: bool = False
    failed_tiles: int = 0
    failed_extractors: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return bool(self.failed_tiles or self.failed_extractors)


def tile_coverage(positions: Iterable[ChunkPosition], chunks_per_tile: int) -> list[tuple[int, int]]:
    """Return the sorted base-zoom tiles touched by ``positions``."""
    tiles = {(pos.x // chunks_per_tile, pos.z // chunks_per_tile) for pos in positions}
    return sorted(tiles, key=lambda tile: (tile[1], tile[0]))


class ExportOrchestrator:
    """Walk the world once and feed each chunk to every extractor.

    Tiles are independent units of work run on a thread pool. Only one pass
    may run at a time; a second ``run`` raises ExportConflictError without
    touching any state.
    """

    def __init__(
        self,
        repository: WorldDataRepository,
        tile_cache: TileCache,
        *,
        chunks_per_tile: int,
        base_zoom: int,
        jobs: int = 0,
        runtime: WorldRuntime | None = None,
        perf: PerfTracker | None = None,
    ) -> None:
        self.repository = repository
        self.tile_cache = tile_cache
        self.chunks_per_tile = chunks_per_tile
        self.base_zoom = base_zoom
        self.jobs = jobs
        self.runtime = runtime
        self.perf = perf or PerfTracker(enabled=False)
        self._extractors: list[DataExtractor] = []
        self._state = ExportState.IDLE
        self._state_lock = threading.Lock()
        self._cancel = threading.Event()
        self._failure_lock = threading.Lock()
        self._failed_extractors: set[str] = set()
        self._failed_tiles = 0

    @property
    def state(self) -> ExportState:
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is not ExportState.IDLE

    @property
    def extractors(self) -> tuple[DataExtractor, ...]:
        return tuple(self._extractors)

    def register(self, extractor: DataExtractor) -> None:
        if extractor in self._extractors:
            return
        self._extractors.append(extractor)
        LOGGER.debug("Registered extractor %s", extractor.name)

    def cancel(self) -> None:
        """Request a stop; in-flight tiles finish and completed tiles remain."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _enter(self) -> None:
        with self._state_lock:
            if self._state is not ExportState.IDLE:
                raise ExportConflictError(f"Export already running ({self._state.value})")
            self._state = ExportState.INITIALIZING
        self._cancel.clear()
        with self._failure_lock:
            self._failed_extractors.clear()
            self._failed_tiles = 0

    def _set_state(self, state: ExportState) -> None:
        with self._state_lock:
            self._state = state

    def _record_failure(self, extractor: str | None = None) -> None:
        with self._failure_lock:
            if extractor is None:
                self._failed_tiles += 1
            else:
                self._failed_extractors.add(extractor)

    def _stats(self, tiles_done: int, chunks_done: int, *, cancelled: bool = False) -> ExportStats:
        with self._failure_lock:
            return ExportStats(
                tiles_done,
                chunks_done,
                cancelled=cancelled,
                failed_tiles=self._failed_tiles,
                failed_extractors=tuple(sorted(self._failed_extractors)),
            )

    @staticmethod
    def _report(progress: ProgressCallback | None, update: ExportProgress) -> None:
        if progress is None:
            return
        try:
            progress(update)
        except Exception as exc:
            LOGGER.warning("Progress callback failed: %s", exc)

    def _initialize_extractors(self, extractors: Sequence[DataExtractor], *, live: bool) -> None:
        for extractor in extractors:
            try:
                extractor.initialize(live=live)
            except PASS_FATAL_ERRORS:
                raise
            except Exception as exc:
                LOGGER.error("Failed to initialize extractor %s: %s", extractor.name, exc)
                self._record_failure(extractor.name)

    def _process_snapshot(self, extractors: Sequence[DataExtractor], snapshot: ChunkSnapshot) -> None:
        for extractor in extractors:
            try:
                extractor.process_chunk(snapshot)
            except Exception as exc:
                self._record_failure(extractor.name)
                LOGGER.error(
                    "Extractor %s failed on chunk (%s,%s): %s",
                    extractor.name,
                    snapshot.position.x,
                    snapshot.position.z,
                    exc,
                )

    def _process_tile(
        self,
        extractors: Sequence[DataExtractor],
        tile: TileCoordinate,
        *,
        process_chunks: bool,
        only: set[ChunkPosition] | None = None,
    ) -> int | None:
        """One tile unit; returns the chunk count or None when cancelled."""
        if self._cancel.is_set():
            return None
        snapshots = self.repository.get_tile_chunks(tile.x, tile.y, self.chunks_per_tile)
        processed = 0
        if process_chunks:
            for snapshot in snapshots:
                if only is not None and snapshot.position not in only:
                    continue
                self._process_snapshot(extractors, snapshot)
                processed += 1
        for extractor in extractors:
            try:
                extractor.complete_tile(tile, snapshots)
            except PASS_FATAL_ERRORS:
                raise
            except Exception as exc:
                LOGGER.error(
                    "Extractor %s failed on tile %s: %s",
                    extractor.name,
                    tile.label(),
                    exc,
                    extra={"tile": tile.label()},
                )
                self._record_failure(extractor.name)
        return processed

    def _run_tiles(
        self,
        extractors: Sequence[DataExtractor],
        tiles: list[tuple[int, int]],
        progress: ProgressCallback | None,
        *,
        process_chunks: bool,
        only: set[ChunkPosition] | None = None,
    ) -> tuple[int, int]:
        coordinates = [TileCoordinate(self.base_zoom, x, y) for x, y in tiles]
        total = len(coordinates)
        tiles_done = 0
        chunks_done = 0

        def work(tile: TileCoordinate) -> int | None:
            try:
                return self._process_tile(
                    extractors, tile, process_chunks=process_chunks, only=only
                )
            except PASS_FATAL_ERRORS:
                raise
            except Exception as exc:
                LOGGER.error(
                    "Failed to process tile %s: %s", tile.label(), exc, extra={"tile": tile.label()}
                )
                self._record_failure()
                return None

        def record(result: int | None) -> None:
            nonlocal tiles_done, chunks_done
            if result is None:
                return
            tiles_done += 1
            chunks_done += result
            if tiles_done % PROGRESS_INTERVAL == 0:
                LOGGER.info("Processed %s/%s tiles, %s chunks", tiles_done, total, chunks_done)
                self._report(
                    progress, ExportProgress("tiles", tiles_done, total, zoom=self.base_zoom)
                )

        workers = coerce_jobs(self.jobs, total)
        if workers == 1:
            for tile in coordinates:
                record(work(tile))
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                future_map = {executor.submit(work, tile): tile for tile in coordinates}
                try:
                    for future in future_map:
                        record(future.result())
                except BaseException:
                    for future in future_map:
                        future.cancel()
                    raise
        self._report(progress, ExportProgress("tiles", tiles_done, total, zoom=self.base_zoom))
        return tiles_done, chunks_done

    def _run_loaded_batches(
        self,
        extractors: Sequence[DataExtractor],
        positions: list[ChunkPosition],
        progress: ProgressCallback | None,
    ) -> int:
        """Feed chunks through the runtime in batches, for extractors needing live state."""
        runtime = self.runtime
        if runtime is None:
            raise InvalidConfigurationError("On-demand extraction requires a world runtime")
        processed = 0
        total = len(positions)
        for start in range(0, total, LOAD_BATCH_SIZE):
            if self._cancel.is_set():
                break
            batch = positions[start : start + LOAD_BATCH_SIZE]
            loaded = set(runtime.load_chunks(batch, timeout=LOAD_TIMEOUT))
            skipped = len(batch) - len(loaded.intersection(batch))
            if skipped:
                LOGGER.warning("%s chunks did not load in time and were skipped", skipped)
            try:
                for position in batch:
                    if position not in loaded:
                        continue
                    snapshot = self.repository.get_chunk(position)
                    if snapshot is None:
                        continue
                    self._process_snapshot(extractors, snapshot)
                    processed += 1
            finally:
                runtime.unload_chunks(sorted(loaded, key=lambda pos: (pos.z, pos.x)))
            self._report(progress, ExportProgress("chunks", min(start + len(batch), total), total))
        return processed

    def _finalize(self, extractors: Sequence[DataExtractor], progress: ProgressCallback | None) -> None:
        self._set_state(ExportState.FINALIZING)
        try:
            for extractor in extractors:
                LOGGER.info("Finalizing %s", extractor.name)
                try:
                    with self.perf.span(f"finalize:{extractor.name}"):
                        extractor.finalize(progress)
                except PASS_FATAL_ERRORS:
                    raise
                except Exception as exc:
                    LOGGER.error("Failed to finalize %s: %s", extractor.name, exc)
                    self._record_failure(extractor.name)
        finally:
            self.tile_cache.checkpoint()

    def run(self, progress: ProgressCallback | None = None) -> ExportStats:
        """Run a full export over every chunk in the world database."""
        extractors = list(self._extractors)
        needs_runtime = any(extractor.requires_loaded_chunks for extractor in extractors)
        if needs_runtime and self.runtime is None:
            raise InvalidConfigurationError("On-demand extraction requires a world runtime")
        self._enter()
        try:
            with self.perf.span("initialize"):
                self._initialize_extractors(extractors, live=False)
                positions = sorted(self.repository.list_chunk_positions(), key=lambda p: (p.z, p.x))
            LOGGER.info(
                "Exporting %s chunks with extractors: %s",
                len(positions),
                ", ".join(extractor_names(extractors)) or "none",
            )
            self._set_state(ExportState.PROCESSING_CHUNKS)
            tiles = tile_coverage(positions, self.chunks_per_tile)
            if needs_runtime:
                with self.perf.span("loaded_chunks"):
                    chunks_done = self._run_loaded_batches(extractors, positions, progress)
                with self.perf.span("tiles"):
                    tiles_done, _ = self._run_tiles(
                        extractors, tiles, progress, process_chunks=False
                    )
            else:
                with self.perf.span("tiles"):
                    tiles_done, chunks_done = self._run_tiles(
                        extractors, tiles, progress, process_chunks=True
                    )
            if self._cancel.is_set():
                LOGGER.warning("Export cancelled after %s/%s tiles", tiles_done, len(tiles))
                self.tile_cache.checkpoint()
                return self._stats(tiles_done, chunks_done, cancelled=True)
            self._finalize(extractors, progress)
            LOGGER.info("Export finished: %s tiles, %s chunks", tiles_done, chunks_done)
            return self._stats(tiles_done, chunks_done)
        finally:
            self._set_state(ExportState.IDLE)

    def run_live(
        self, runtime: WorldRuntime, progress: ProgressCallback | None = None
    ) -> ExportStats:
        """Refresh only the currently loaded chunks and the pyramid above them."""
        extractors = [extractor for extractor in self._extractors if extractor.supports_live]
        self._enter()
        try:
            self._initialize_extractors(extractors, live=True)
            loaded = set(runtime.loaded_chunk_positions())
            if not loaded:
                LOGGER.warning("No chunks currently loaded")
                return self._stats(0, 0)
            self._set_state(ExportState.PROCESSING_CHUNKS)
            tiles = tile_coverage(loaded, self.chunks_per_tile)
            with self.perf.span("live_tiles"):
                tiles_done, chunks_done = self._run_tiles(
                    extractors, tiles, progress, process_chunks=True, only=loaded
                )
            if self._cancel.is_set():
                self.tile_cache.checkpoint()
                return self._stats(tiles_done, chunks_done, cancelled=True)
            self._finalize(extractors, progress)
            LOGGER.info("Live extraction finished: %s tiles, %s chunks", tiles_done, chunks_done)
            return self._stats(tiles_done, chunks_done)
        finally:
            self._set_state(ExportState.IDLE)
