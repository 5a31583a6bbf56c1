"""Coordinate transforms between world blocks, display grid, and storage tiles.

Three coordinate spaces are in play:

* world blocks: the game's ``(x, z)`` block coordinates;
* storage tiles: absolute ``floor(block / (tile_size * resolution))`` numbers used
  as keys in the tile cache;
* grid tiles: zero-based coordinates relative to the map origin, as requested
  by map viewers.

``storage = origin_at(zoom) + grid`` at every zoom level.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Sequence

from voxatlas.errors import InvalidZoomError

LOGGER = logging.getLogger(__name__)


def resolution_table(base_zoom: int) -> tuple[int, ...]:
    """Return per-zoom resolutions, ``1`` at ``base_zoom`` and doubling below it."""
    if base_zoom < 0:
        raise InvalidZoomError(base_zoom, base_zoom)
    return tuple(2 ** (base_zoom - zoom) for zoom in range(base_zoom + 1))


@dataclass(frozen=True)
class MapConfig:
    """World layout consumed by the coordinate transforms."""

    world_origin: tuple[int, int]
    world_extent: tuple[int, int, int, int]
    tile_resolutions: tuple[int, ...]

    def __post_init__(self) -> None:
        resolutions = self.tile_resolutions
        if not resolutions or resolutions[-1] != 1:
            raise ValueError("tile_resolutions must end with 1 at the base zoom")
        for coarse, fine in zip(resolutions, resolutions[1:]):
            if coarse != fine * 2:
                raise ValueError("each resolution must be double the next")

    @property
    def base_zoom(self) -> int:
        return len(self.tile_resolutions) - 1

    @classmethod
    def for_world(cls, map_size_x: int, map_size_z: int, base_zoom: int) -> "MapConfig":
        return cls(
            world_origin=(-map_size_x, map_size_z),
            world_extent=(-map_size_x, -map_size_z, map_size_x, map_size_z),
            tile_resolutions=resolution_table(base_zoom),
        )


class CoordinateTransformService:
    """Stateless conversions parameterized by tile size and a MapConfig.

    When ``map_config`` is None grid and storage coordinates are treated as
    identical; this is logged once as a warning since it normally means the
    map layout has not been configured yet.
    """

    def __init__(
        self,
        tile_size: int,
        base_zoom: int,
        map_config: MapConfig | None = None,
    ) -> None:
        if map_config is not None and map_config.base_zoom != base_zoom:
            raise ValueError(
                f"map config covers zoom 0..{map_config.base_zoom}, expected 0..{base_zoom}"
            )
        self.tile_size = tile_size
        self.base_zoom = base_zoom
        self.map_config = map_config
        self._origins: dict[int, tuple[int, int]] = {}
        self._lock = threading.Lock()
        self._warned_identity = False

    @property
    def resolutions(self) -> Sequence[int]:
        if self.map_config is not None:
            return self.map_config.tile_resolutions
        return resolution_table(self.base_zoom)

    def is_zoom_level_valid(self, zoom: int) -> bool:
        return 0 <= zoom <= self.base_zoom

    def _check_zoom(self, zoom: int) -> None:
        if not self.is_zoom_level_valid(zoom):
            raise InvalidZoomError(zoom, self.base_zoom)

    def blocks_per_tile(self, zoom: int) -> int:
        self._check_zoom(zoom)
        return self.tile_size * self.resolutions[zoom]

    def _warn_identity(self) -> None:
        if not self._warned_identity:
            self._warned_identity = True
            LOGGER.warning("No map config available; grid coordinates used as storage coordinates.")

    def origin_at(self, zoom: int) -> tuple[int, int] | None:
        """Storage tile that grid ``(0, 0)`` maps to at ``zoom``."""
        self._check_zoom(zoom)
        if self.map_config is None:
            return None
        with self._lock:
            cached = self._origins.get(zoom)
            if cached is None:
                size = self.blocks_per_tile(zoom)
                origin_x, origin_z = self.map_config.world_origin
                cached = (origin_x // size, origin_z // size)
                self._origins[zoom] = cached
        return cached

    def grid_to_storage(self, zoom: int, grid_x: int, grid_y: int) -> tuple[int, int]:
        origin = self.origin_at(zoom)
        if origin is None:
            self._warn_identity()
            return grid_x, grid_y
        return origin[0] + grid_x, origin[1] + grid_y

    def storage_to_grid(self, zoom: int, storage_x: int, storage_y: int) -> tuple[int, int]:
        origin = self.origin_at(zoom)
        if origin is None:
            self._warn_identity()
            return storage_x, storage_y
        return storage_x - origin[0], storage_y - origin[1]

    @staticmethod
    def game_to_display(x: int, z: int) -> tuple[int, int]:
        """World block ``(x, z)`` to north-up display ``(x, y)``."""
        return x, -z

    @staticmethod
    def display_to_game(x: int, y: int) -> tuple[int, int]:
        return x, -y

    def block_to_tile(self, block_x: int, block_z: int, zoom: int) -> tuple[int, int]:
        size = self.blocks_per_tile(zoom)
        return block_x // size, block_z // size

    def tile_to_block(self, tile_x: int, tile_z: int, zoom: int) -> tuple[int, int]:
        size = self.blocks_per_tile(zoom)
        return tile_x * size, tile_z * size

    def grid_to_world_blocks(self, zoom: int, grid_x: int, grid_y: int) -> tuple[int, int]:
        storage_x, storage_y = self.grid_to_storage(zoom, grid_x, grid_y)
        return self.tile_to_block(storage_x, storage_y, zoom)

    def world_blocks_to_grid(self, block_x: int, block_z: int, zoom: int) -> tuple[int, int]:
        tile_x, tile_z = self.block_to_tile(block_x, block_z, zoom)
        return self.storage_to_grid(zoom, tile_x, tile_z)

    def is_tile_in_bounds(self, tile_x: int, tile_z: int, zoom: int) -> bool:
        """Check a storage tile's top-left block against the world extent."""
        if self.map_config is None:
            return True
        block_x, block_z = self.tile_to_block(tile_x, tile_z, zoom)
        min_x, min_z, max_x, max_z = self.map_config.world_extent
        return min_x <= block_x <= max_x and min_z <= block_z <= max_z

    def describe_transformation(self, zoom: int, grid_x: int, grid_y: int) -> str:
        storage_x, storage_y = self.grid_to_storage(zoom, grid_x, grid_y)
        block_x, block_z = self.tile_to_block(storage_x, storage_y, zoom)
        return (
            f"Zoom {zoom}: Grid({grid_x},{grid_y}) -> Storage({storage_x},{storage_y})"
            f" -> Blocks({block_x},{block_z})"
        )
