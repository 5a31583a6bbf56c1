"""Protocol for a running world that can load chunks and answer climate queries."""

from __future__ import annotations

from typing import Iterable, Protocol

from voxatlas.models import ChunkPosition, ClimateSample


class WorldRuntime(Protocol):
    """Live world handle used by on-demand climate sampling and live extraction."""

    def load_chunks(
        self, positions: Iterable[ChunkPosition], timeout: float = 5.0
    ) -> set[ChunkPosition]:
        """Load ``positions`` and return the subset that finished loading in time."""
        ...

    def unload_chunks(self, positions: Iterable[ChunkPosition]) -> None:
        ...

    def climate_at(self, x: int, y: int, z: int) -> ClimateSample:
        ...

    def loaded_chunk_positions(self) -> list[ChunkPosition]:
        ...
