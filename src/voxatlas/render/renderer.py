"""Base-zoom tile rendering from chunk snapshots."""

from __future__ import annotations

import logging
from typing import Iterable

import numpy as np

from voxatlas.config import ImageMode
from voxatlas.models import CHUNK_SIZE, ChunkSnapshot, TileCoordinate
from voxatlas.render.blur import box_blur
from voxatlas.render.colors import BlockColorCache, argb_to_rgba
from voxatlas.render.images import encode_rgba

LOGGER = logging.getLogger(__name__)

SHADOW_BASE = 128
SHADOW_BLUR_RANGE = 2
SHADOW_SHARPEN = np.float32(1.4)

_SEED_MASK = (1 << 64) - 1


def tile_seed(seed: int, tile_x: int, tile_y: int) -> int:
    """Per-tile random seed; depends only on the seed and tile coordinate."""
    return (seed ^ (tile_x * 73856093) ^ (tile_y * 19349663)) & _SEED_MASK


def multiply_rgb(colors: np.ndarray, factor: np.ndarray | float) -> np.ndarray:
    """Scale the RGB channels of ARGB colours, clamping to 0..255 and keeping alpha."""
    colors = np.asarray(colors, dtype=np.uint32)
    factor = np.asarray(factor, dtype=np.float32)
    alpha = colors & np.uint32(0xFF000000)
    result = alpha
    for shift in (16, 8, 0):
        channel = ((colors >> shift) & 0xFF).astype(np.float32)
        scaled = np.clip(np.trunc(channel * factor), 0, 255).astype(np.uint32)
        result = result | (scaled << np.uint32(shift))
    return result


def slope_boost(nw_delta: np.ndarray, n_delta: np.ndarray, w_delta: np.ndarray) -> np.ndarray:
    """Brighten slopes facing north-west and darken the opposite ones."""
    direction = np.sign(nw_delta) + np.sign(n_delta) + np.sign(w_delta)
    steepness = np.maximum(np.maximum(np.abs(nw_delta), np.abs(n_delta)), np.abs(w_delta))
    slope = np.minimum(np.float32(0.5), steepness.astype(np.float32) / np.float32(10)) / np.float32(1.25)
    boost = np.ones(direction.shape, dtype=np.float32)
    boost = np.where(direction > 0, np.float32(1.08) + slope, boost)
    boost = np.where(direction < 0, np.float32(0.92) - slope, boost)
    return boost.astype(np.float32)


def _water_edges(surface: np.ndarray, heightmap: np.ndarray, lake: np.ndarray, colors: BlockColorCache) -> np.ndarray:
    """Lake pixels with a non-lake 4-neighbour; chunk border pixels never count."""
    neighbor_ids = np.where(heightmap == 0, 0, surface)
    neighbor_lake = colors.lake_mask(neighbor_ids)
    edges = np.zeros(lake.shape, dtype=bool)
    any_dry = (
        ~neighbor_lake[:-2, 1:-1]
        | ~neighbor_lake[2:, 1:-1]
        | ~neighbor_lake[1:-1, :-2]
        | ~neighbor_lake[1:-1, 2:]
    )
    edges[1:-1, 1:-1] = any_dry
    return edges & lake


class TileRenderer:
    """Turn one tile's chunk snapshots into PNG bytes.

    Each chunk occupies a 32x32 pixel square (one pixel per block). Output is
    deterministic: random colour variation is drawn from a generator seeded
    by :func:`tile_seed`, chunks are drawn in position order, and encoding
    settings are fixed.
    """

    def __init__(
        self,
        colors: BlockColorCache,
        *,
        tile_size: int,
        image_mode: ImageMode = ImageMode.COLOR_VARIATIONS_WITH_HILL_SHADING,
        map_size_y: int = 256,
        seed: int = 0,
    ) -> None:
        if tile_size % CHUNK_SIZE:
            raise ValueError(f"tile_size must be divisible by {CHUNK_SIZE}")
        self.colors = colors
        self.tile_size = tile_size
        self.image_mode = ImageMode(image_mode)
        self.map_size_y = map_size_y
        self.seed = seed

    @property
    def chunks_per_tile(self) -> int:
        return self.tile_size // CHUNK_SIZE

    def render_tile(self, tile: TileCoordinate, snapshots: Iterable[ChunkSnapshot]) -> bytes | None:
        """Render and encode a tile, or return None if no chunk lies inside it."""
        pixels = self.render_pixels(tile, snapshots)
        if pixels is None:
            return None
        return encode_rgba(pixels)

    def render_pixels(
        self, tile: TileCoordinate, snapshots: Iterable[ChunkSnapshot]
    ) -> np.ndarray | None:
        size = self.tile_size
        cpt = self.chunks_per_tile
        rgba = np.zeros((size, size, 4), dtype=np.uint8)
        painted = np.zeros((size, size), dtype=bool)
        shading = self.image_mode.hill_shading
        shadow = np.full((size, size), SHADOW_BASE, dtype=np.uint8) if shading else None
        rng = np.random.default_rng(tile_seed(self.seed, tile.x, tile.y))

        rendered = 0
        for snapshot in sorted(snapshots, key=lambda item: (item.position.z, item.position.x)):
            offset_x = (snapshot.position.x - tile.x * cpt) * CHUNK_SIZE
            offset_z = (snapshot.position.z - tile.y * cpt) * CHUNK_SIZE
            if not (0 <= offset_x < size and 0 <= offset_z < size):
                LOGGER.debug(
                    "Chunk (%s,%s) is outside the tile footprint",
                    snapshot.position.x,
                    snapshot.position.z,
                    extra={"tile": tile.label()},
                )
                continue
            window = (slice(offset_z, offset_z + CHUNK_SIZE), slice(offset_x, offset_x + CHUNK_SIZE))
            colors, mask, chunk_shadow = self._render_chunk(snapshot, rng)
            rgba[window][mask] = argb_to_rgba(colors[mask])
            painted[window] |= mask
            if shadow is not None and chunk_shadow is not None:
                shadow[window] = chunk_shadow
            rendered += 1

        if rendered == 0:
            return None
        if shadow is not None:
            self._apply_shadow(rgba, painted, shadow)
        return rgba

    def _render_chunk(
        self, snapshot: ChunkSnapshot, rng: np.random.Generator
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray | None]:
        colors_cache = self.colors
        raw_height = np.asarray(snapshot.heightmap, dtype=np.int64)
        height = np.clip(raw_height, 0, self.map_size_y - 1)
        surface = np.asarray(snapshot.surface, dtype=np.int64)
        snow = colors_cache.snow_mask(surface)
        block = np.where(snow, np.asarray(snapshot.below, dtype=np.int64), surface)
        height = height + snow.astype(np.int64)
        mask = block != 0

        mode = self.image_mode
        lake = colors_cache.lake_mask(block)
        if mode is ImageMode.ONLY_ONE_COLOR:
            colors = colors_cache.base_colors(block)
        elif mode is ImageMode.MEDIEVAL_STYLE_WITH_HILL_SHADING:
            colors = colors_cache.medieval_colors(
                block, _water_edges(surface, raw_height, lake, colors_cache)
            )
        else:
            colors = colors_cache.random_variations(block, rng)
            if mode is ImageMode.COLOR_VARIATIONS_WITH_HEIGHT:
                half = max(1, self.map_size_y // 2)
                colors = multiply_rgb(colors, height.astype(np.float32) / np.float32(half))

        chunk_shadow = None
        if mode.hill_shading:
            west = np.concatenate(([0], np.arange(CHUNK_SIZE - 1)))
            north = west
            nw_delta = height - raw_height[np.ix_(north, west)]
            n_delta = height - raw_height[north, :]
            w_delta = height - raw_height[:, west]
            boost = slope_boost(nw_delta, n_delta, w_delta)
            chunk_shadow = np.trunc(np.float32(SHADOW_BASE) * boost).astype(np.uint8)
            skip = ~mask
            if mode is ImageMode.MEDIEVAL_STYLE_WITH_HILL_SHADING:
                skip |= lake
            chunk_shadow[skip] = SHADOW_BASE
        return colors, mask, chunk_shadow

    @staticmethod
    def _apply_shadow(rgba: np.ndarray, painted: np.ndarray, shadow: np.ndarray) -> None:
        """Combine blurred and sharp shading and apply it to painted pixels."""
        blurred = box_blur(shadow, SHADOW_BLUR_RANGE).astype(np.float32) / np.float32(SHADOW_BASE) - 1
        sharp = shadow.astype(np.float32) / np.float32(SHADOW_BASE) - 1
        effect = np.trunc(blurred * 5) / np.float32(5) + np.fmod(sharp * 5, 1) / np.float32(5)
        target = painted & (effect != 0)
        if not target.any():
            return
        factor = effect[target] * SHADOW_SHARPEN + 1
        rgb = rgba[..., :3][target].astype(np.float32)
        scaled = np.clip(np.trunc(rgb * factor[:, None]), 0, 255).astype(np.uint8)
        rgba[..., :3][target] = scaled
        rgba[..., 3][target] = 255
