"""Data models shared across the tile pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Tuple

import numpy as np

CHUNK_SIZE = 32

BlockPosition = Tuple[int, int, int]


@dataclass(frozen=True, order=True)
class ChunkPosition:
    """Horizontal chunk coordinate (chunk units, not blocks)."""

    x: int
    z: int

    def neighbors(self) -> tuple["ChunkPosition", ...]:
        """Return the four edge-adjacent chunk positions."""
        return (
            ChunkPosition(self.x + 1, self.z),
            ChunkPosition(self.x - 1, self.z),
            ChunkPosition(self.x, self.z + 1),
            ChunkPosition(self.x, self.z - 1),
        )


@dataclass(frozen=True, order=True)
class TileCoordinate:
    """Identify one cached raster tile by absolute storage coordinates."""

    zoom: int
    x: int
    y: int

    def parent(self) -> "TileCoordinate":
        return TileCoordinate(self.zoom - 1, self.x // 2, self.y // 2)

    def children(self) -> tuple["TileCoordinate", ...]:
        """Return children in quadrant order (row * 2 + col)."""
        zoom = self.zoom + 1
        return tuple(
            TileCoordinate(zoom, self.x * 2 + col, self.y * 2 + row)
            for row in (0, 1)
            for col in (0, 1)
        )

    def label(self) -> str:
        return f"{self.zoom}/{self.x}/{self.y}"


@dataclass(frozen=True)
class TileExtent:
    """Bounding box of populated tiles at one zoom level (inclusive)."""

    min_x: int
    max_x: int
    min_y: int
    max_y: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    def as_dict(self) -> dict[str, int]:
        return {
            "min_x": self.min_x,
            "max_x": self.max_x,
            "min_y": self.min_y,
            "max_y": self.max_y,
        }


@dataclass(frozen=True)
class Trader:
    """Trader sighting extracted from chunk data."""

    id: int
    name: str
    type: str
    position: BlockPosition

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Trader":
        x, y, z = (int(value) for value in data["position"])
        return cls(
            id=int(data["id"]),
            name=str(data.get("name", "")),
            type=str(data.get("type", "")),
            position=(x, y, z),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "position": list(self.position),
        }


@dataclass(frozen=True)
class BlockInfo:
    """Block registry entry from the world database."""

    id: int
    code: str
    material: str


def _frozen_view(array: np.ndarray) -> np.ndarray:
    view = np.asarray(array).view()
    view.flags.writeable = False
    return view


@dataclass(frozen=True)
class ChunkSnapshot:
    """Decoded, read-only payload for one chunk column.

    ``heightmap``, ``surface`` and ``below`` are ``(32, 32)`` arrays indexed as
    ``[z, x]``. ``surface`` holds the block id at the heightmap top and
    ``below`` the block id one layer down (used when the top block is snow).
    """

    position: ChunkPosition
    heightmap: np.ndarray
    surface: np.ndarray
    below: np.ndarray
    version: str | None = None
    traders: tuple[Trader, ...] = ()

    def __post_init__(self) -> None:
        shape = (CHUNK_SIZE, CHUNK_SIZE)
        for name in ("heightmap", "surface", "below"):
            array = np.asarray(getattr(self, name))
            if array.shape != shape:
                raise ValueError(f"{name} must have shape {shape}, got {array.shape}")
            object.__setattr__(self, name, _frozen_view(array))

    @property
    def world_x(self) -> int:
        return self.position.x * CHUNK_SIZE

    @property
    def world_z(self) -> int:
        return self.position.z * CHUNK_SIZE


@dataclass(frozen=True)
class RegionData:
    """Coarse map region carrying a packed world-gen climate map."""

    position: ChunkPosition
    climate: np.ndarray
    padding: int = 0

    @property
    def inner_size(self) -> int:
        return int(self.climate.shape[0]) - 2 * self.padding


@dataclass(frozen=True)
class ClimatePoint:
    """One climate sample in display coordinates."""

    x: int
    z: int
    value: float
    real_value: float


@dataclass(frozen=True)
class ClimateSample:
    """Live climate reading: temperature in Celsius, rainfall in 0..1."""

    temperature: float
    rainfall: float


@dataclass(frozen=True)
class GroupedChunkRegion:
    """Connected component of chunks sharing a game version."""

    version: str
    positions: tuple[ChunkPosition, ...]
    color: str = ""


@dataclass(frozen=True)
class ExportProgress:
    """Best-effort progress snapshot for an export pass."""

    phase: str
    processed: int
    total: int
    zoom: int | None = None

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.processed * 100.0 / self.total


@dataclass(frozen=True)
class ExportResult:
    """Outcome of one export pass."""

    success: bool
    error_message: str | None = None
    exception: BaseException | None = None
    duration: float = 0.0
    tiles_processed: int = 0
    chunks_processed: int = 0
    metrics: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        *,
        duration: float,
        tiles_processed: int,
        chunks_processed: int,
        metrics: dict[str, Any] | None = None,
    ) -> "ExportResult":
        return cls(
            success=True,
            duration=duration,
            tiles_processed=tiles_processed,
            chunks_processed=chunks_processed,
            metrics=dict(metrics or {}),
        )

    @classmethod
    def failed(
        cls,
        message: str,
        exception: BaseException | None = None,
        duration: float = 0.0,
    ) -> "ExportResult":
        return cls(
            success=False,
            error_message=message,
            exception=exception,
            duration=duration,
        )
