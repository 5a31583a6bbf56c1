"""Persistent store for traders, climate points, and chunk version groups."""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Sequence

from voxatlas.errors import StorageError
from voxatlas.models import ChunkPosition, ClimatePoint, GroupedChunkRegion, Trader
from voxatlas.storage.sqlite_utils import checkpoint_wal, connect, enable_wal

LOGGER = logging.getLogger(__name__)

CLIMATE_BATCH_SIZE = 1000

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS traders (
        id INTEGER PRIMARY KEY,
        name TEXT,
        type TEXT,
        pos TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS climate_data (
        layer_type TEXT NOT NULL,
        x INTEGER NOT NULL,
        z INTEGER NOT NULL,
        value REAL NOT NULL,
        real_value REAL NOT NULL,
        PRIMARY KEY (layer_type, x, z)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_climate_layer ON climate_data(layer_type)",
    """
    CREATE TABLE IF NOT EXISTS chunk_versions (
        x INTEGER NOT NULL,
        z INTEGER NOT NULL,
        version TEXT NOT NULL,
        group_id INTEGER NOT NULL,
        color TEXT NOT NULL,
        PRIMARY KEY (x, z)
    )
    """,
)


def _format_pos(position: Sequence[int]) -> str:
    return ",".join(str(int(value)) for value in position)


def _parse_pos(text: str) -> tuple[int, int, int]:
    x, y, z = (int(part) for part in text.split(","))
    return x, y, z


class MetadataStore:
    """Traders, climate points, and version groups in one WAL-mode SQLite file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._write_lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with connect(self.path) as connection:
                enable_wal(connection)
                with connection:
                    for statement in _SCHEMA:
                        connection.execute(statement)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not initialize metadata store {self.path}: {exc}") from exc

    def add_trader(self, trader: Trader) -> None:
        with self._write_lock, connect(self.path) as connection:
            with connection:
                connection.execute(
                    "INSERT OR REPLACE INTO traders (id, name, type, pos) VALUES (?, ?, ?, ?)",
                    (trader.id, trader.name, trader.type, _format_pos(trader.position)),
                )

    def remove_trader(self, trader_id: int) -> None:
        with self._write_lock, connect(self.path) as connection:
            with connection:
                connection.execute("DELETE FROM traders WHERE id = ?", (trader_id,))

    def replace_traders(self, traders: Iterable[Trader]) -> int:
        """Replace the trader table contents in one transaction."""
        rows = [
            (trader.id, trader.name, trader.type, _format_pos(trader.position))
            for trader in sorted(traders, key=lambda item: item.id)
        ]
        with self._write_lock, connect(self.path) as connection:
            try:
                with connection:
                    connection.execute("DELETE FROM traders")
                    connection.executemany(
                        "INSERT INTO traders (id, name, type, pos) VALUES (?, ?, ?, ?)", rows
                    )
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to store traders: {exc}") from exc
        return len(rows)

    def get_traders(self) -> list[Trader]:
        with connect(self.path) as connection:
            rows = connection.execute(
                "SELECT id, name, type, pos FROM traders ORDER BY id"
            ).fetchall()
        traders: list[Trader] = []
        for trader_id, name, trader_type, pos in rows:
            try:
                position = _parse_pos(pos or "")
            except ValueError:
                LOGGER.warning("Trader %s has malformed position %r", trader_id, pos)
                continue
            traders.append(Trader(int(trader_id), name or "", trader_type or "", position))
        return traders

    def store_climate_data(self, layer: str, points: Sequence[ClimatePoint]) -> int:
        """Atomically replace every point of ``layer``.

        The delete and all insert batches share one transaction; any failure
        rolls back to the previous complete dataset.
        """
        with self._write_lock, connect(self.path) as connection:
            try:
                connection.execute("BEGIN")
                connection.execute("DELETE FROM climate_data WHERE layer_type = ?", (layer,))
                for start in range(0, len(points), CLIMATE_BATCH_SIZE):
                    batch = points[start : start + CLIMATE_BATCH_SIZE]
                    connection.executemany(
                        "INSERT OR REPLACE INTO climate_data"
                        " (layer_type, x, z, value, real_value) VALUES (?, ?, ?, ?, ?)",
                        [
                            (layer, point.x, point.z, float(point.value), float(point.real_value))
                            for point in batch
                        ],
                    )
                connection.commit()
            except Exception as exc:
                connection.rollback()
                LOGGER.error("Climate layer %s write rolled back: %s", layer, exc)
                if isinstance(exc, sqlite3.Error):
                    raise StorageError(f"Failed to store climate layer {layer}: {exc}") from exc
                raise
        LOGGER.info("Stored %s %s climate points", len(points), layer)
        return len(points)

    def get_climate_data(self, layer: str) -> list[ClimatePoint]:
        with connect(self.path) as connection:
            rows = connection.execute(
                "SELECT x, z, value, real_value FROM climate_data WHERE layer_type = ?"
                " ORDER BY z, x",
                (layer,),
            ).fetchall()
        return [ClimatePoint(int(x), int(z), value, real_value) for x, z, value, real_value in rows]

    def store_chunk_versions(self, groups: Sequence[GroupedChunkRegion]) -> int:
        rows = [
            (position.x, position.z, group.version, group_id, group.color)
            for group_id, group in enumerate(groups)
            for position in group.positions
        ]
        with self._write_lock, connect(self.path) as connection:
            try:
                with connection:
                    connection.execute("DELETE FROM chunk_versions")
                    connection.executemany(
                        "INSERT INTO chunk_versions (x, z, version, group_id, color)"
                        " VALUES (?, ?, ?, ?, ?)",
                        rows,
                    )
            except sqlite3.Error as exc:
                raise StorageError(f"Failed to store chunk versions: {exc}") from exc
        return len(rows)

    def get_chunk_versions(self) -> list[GroupedChunkRegion]:
        with connect(self.path) as connection:
            rows = connection.execute(
                "SELECT group_id, version, color, x, z FROM chunk_versions"
                " ORDER BY group_id, z, x"
            ).fetchall()
        grouped: dict[int, tuple[str, str, list[ChunkPosition]]] = {}
        for group_id, version, color, x, z in rows:
            entry = grouped.setdefault(int(group_id), (version, color, []))
            entry[2].append(ChunkPosition(int(x), int(z)))
        return [
            GroupedChunkRegion(version=version, positions=tuple(positions), color=color)
            for _, (version, color, positions) in sorted(grouped.items())
        ]

    def checkpoint(self) -> bool:
        with self._write_lock:
            return checkpoint_wal(self.path)

    def close(self) -> None:
        self.checkpoint()
