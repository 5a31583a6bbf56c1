"""Build lower zoom levels by compositing four child tiles into one."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable

from PIL import Image

from voxatlas.errors import InvalidZoomError
from voxatlas.models import ExportProgress, TileCoordinate
from voxatlas.render.images import decode_rgba, encode_png
from voxatlas.storage.tiles import TileCache

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[ExportProgress], None]


def coerce_jobs(jobs: int, work_count: int) -> int:
    """Normalize a worker count; ``jobs <= 0`` means one per CPU."""
    if work_count <= 0:
        return 1
    jobs = int(jobs)
    if jobs <= 0:
        return max(1, min(os.cpu_count() or 1, work_count))
    return min(jobs, work_count)


class PyramidDownsampler:
    """Produce ``(zoom, x, y)`` from its children at ``zoom + 1``.

    Quadrants are laid out ``row * 2 + col`` from the top-left. Missing or
    undecodable children leave their quadrant transparent; a tile with no
    children at all is never produced.
    """

    def __init__(self, cache: TileCache, *, tile_size: int, base_zoom: int) -> None:
        self.cache = cache
        self.tile_size = tile_size
        self.base_zoom = base_zoom

    def downsample(self, zoom: int, x: int, y: int) -> bytes | None:
        if not 0 <= zoom < self.base_zoom:
            raise InvalidZoomError(zoom, self.base_zoom - 1)
        tile = TileCoordinate(zoom, x, y)
        half = self.tile_size // 2
        canvas: Image.Image | None = None
        for index, child in enumerate(tile.children()):
            data = self.cache.get(child.zoom, child.x, child.y)
            if data is None:
                continue
            try:
                image = decode_rgba(data)
            except (OSError, ValueError) as exc:
                LOGGER.warning(
                    "Child tile %s could not be decoded: %s",
                    child.label(),
                    exc,
                    extra={"tile": tile.label()},
                )
                continue
            if canvas is None:
                canvas = Image.new("RGBA", (self.tile_size, self.tile_size), (0, 0, 0, 0))
            row, col = divmod(index, 2)
            scaled = image.resize((half, half), Image.Resampling.LANCZOS)
            canvas.paste(scaled, (col * half, row * half))
        if canvas is None:
            return None
        return encode_png(canvas)

    def _build(self, targets: list[TileCoordinate], jobs: int) -> int:
        def work(target: TileCoordinate) -> bytes | None:
            return self.downsample(target.zoom, target.x, target.y)

        written = 0
        workers = coerce_jobs(jobs, len(targets))
        if workers == 1:
            results = ((target, work(target)) for target in targets)
            for target, data in results:
                if data is not None:
                    self.cache.put(target.zoom, target.x, target.y, data)
                    written += 1
            return written
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_map = {executor.submit(work, target): target for target in targets}
            for future, target in future_map.items():
                data = future.result()
                if data is not None:
                    self.cache.put(target.zoom, target.x, target.y, data)
                    written += 1
        return written

    def generate_zoom_levels(
        self,
        jobs: int = 0,
        progress: ProgressCallback | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> dict[int, int]:
        """Fill zoom ``base - 1`` down to 0; each level completes before the next."""
        written: dict[int, int] = {}
        for zoom in range(self.base_zoom - 1, -1, -1):
            if should_stop is not None and should_stop():
                LOGGER.info("Zoom generation cancelled before zoom %s", zoom)
                break
            source = list(self.cache.tile_coordinates(zoom + 1))
            if not source:
                LOGGER.info("No tiles at zoom %s; skipping zoom %s", zoom + 1, zoom)
                continue
            targets = sorted({tile.parent() for tile in source})
            written[zoom] = self._build(targets, jobs)
            LOGGER.info("Zoom %s: generated %s tiles from %s children", zoom, written[zoom], len(source))
            if progress is not None:
                progress(ExportProgress("zoom", len(targets), len(targets), zoom=zoom))
        return written

    def regenerate_parents(self, tiles: Iterable[TileCoordinate], jobs: int = 0) -> int:
        """Rebuild every ancestor of ``tiles`` down to zoom 0."""
        current = sorted({tile for tile in tiles if tile.zoom > 0})
        total = 0
        while current:
            parents = sorted({tile.parent() for tile in current})
            total += self._build(parents, jobs)
            current = [tile for tile in parents if tile.zoom > 0]
        return total
