"""Read-mostly access to the persisted world database."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Iterator, Mapping

from voxatlas.errors import CorruptRecordError, StorageError
from voxatlas.models import BlockInfo, ChunkPosition, ChunkSnapshot, RegionData
from voxatlas.world.codec import (
    decode_chunk,
    decode_region,
    encode_chunk,
    pack_position,
    unpack_position,
)
from voxatlas.world.pool import ConnectionPool

LOGGER = logging.getLogger(__name__)

WORLD_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS mapchunk (position INTEGER PRIMARY KEY, data BLOB)",
    "CREATE TABLE IF NOT EXISTS mapregion (position INTEGER PRIMARY KEY, data BLOB)",
    "CREATE TABLE IF NOT EXISTS blocks (id INTEGER PRIMARY KEY, code TEXT NOT NULL, material TEXT NOT NULL)",
)


def create_world_database(path: Path) -> None:
    """Create an empty world database (used by tooling and tests)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(path)
    try:
        with connection:
            for statement in WORLD_SCHEMA:
                connection.execute(statement)
    finally:
        connection.close()


class WorldDataRepository:
    """Facade over the world's chunk, region, and block tables.

    Reads go through a bounded ConnectionPool; absent and undecodable records
    are both reported as ``None``.
    """

    def __init__(self, path: Path, *, pool_size: int = 4, pool_timeout: float = 30.0) -> None:
        self.path = Path(path)
        self.pool = ConnectionPool(self.path, size=pool_size, timeout=pool_timeout)

    def close(self) -> None:
        self.pool.close()

    def __enter__(self) -> "WorldDataRepository":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _positions(self, table: str) -> Iterator[ChunkPosition]:
        with self.pool.connection() as connection:
            rows = connection.execute(f"SELECT position FROM {table} ORDER BY position").fetchall()
        for (packed,) in rows:
            yield unpack_position(int(packed))

    def list_chunk_positions(self) -> Iterator[ChunkPosition]:
        """Yield every stored chunk position; re-queries on each call."""
        return self._positions("mapchunk")

    def list_region_positions(self) -> Iterator[ChunkPosition]:
        return self._positions("mapregion")

    def _fetch(self, table: str, position: ChunkPosition) -> bytes | None:
        key = pack_position(position.x, position.z)
        with self.pool.connection() as connection:
            row = connection.execute(
                f"SELECT data FROM {table} WHERE position = ?", (key,)
            ).fetchone()
        if row is None or row[0] is None:
            return None
        return bytes(row[0])

    def get_chunk(self, position: ChunkPosition) -> ChunkSnapshot | None:
        data = self._fetch("mapchunk", position)
        if data is None:
            return None
        try:
            return decode_chunk(position, data)
        except CorruptRecordError as exc:
            LOGGER.warning("Skipping corrupt chunk: %s", exc)
            return None

    def get_region(self, position: ChunkPosition) -> RegionData | None:
        data = self._fetch("mapregion", position)
        if data is None:
            return None
        try:
            return decode_region(position, data)
        except CorruptRecordError as exc:
            LOGGER.warning("Skipping corrupt region: %s", exc)
            return None

    def get_tile_chunks(
        self, tile_x: int, tile_z: int, chunks_per_tile: int
    ) -> list[ChunkSnapshot]:
        """Return the present chunks inside one base-zoom tile footprint."""
        start_x = tile_x * chunks_per_tile
        start_z = tile_z * chunks_per_tile
        snapshots: list[ChunkSnapshot] = []
        for offset_z in range(chunks_per_tile):
            for offset_x in range(chunks_per_tile):
                snapshot = self.get_chunk(ChunkPosition(start_x + offset_x, start_z + offset_z))
                if snapshot is not None:
                    snapshots.append(snapshot)
        return snapshots

    def list_blocks(self) -> list[BlockInfo]:
        with self.pool.connection() as connection:
            rows = connection.execute("SELECT id, code, material FROM blocks ORDER BY id").fetchall()
        return [BlockInfo(id=int(row[0]), code=str(row[1]), material=str(row[2])) for row in rows]

    def save_chunks(self, batch: Mapping[ChunkPosition, ChunkSnapshot]) -> None:
        """Write a batch of chunks atomically; nothing is written on failure."""
        if not batch:
            return
        rows = [
            (pack_position(position.x, position.z), encode_chunk(snapshot))
            for position, snapshot in batch.items()
        ]
        try:
            connection = sqlite3.connect(self.path, timeout=30.0)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open {self.path} for writing: {exc}") from exc
        try:
            connection.execute("PRAGMA busy_timeout=30000")
            with connection:
                connection.executemany(
                    "INSERT OR REPLACE INTO mapchunk (position, data) VALUES (?, ?)", rows
                )
        except sqlite3.Error as exc:
            LOGGER.error("Failed to save %s chunks: %s", len(rows), exc)
            raise StorageError(f"Failed to save chunks: {exc}") from exc
        finally:
            connection.close()
        LOGGER.debug("Saved %s chunks", len(rows))
