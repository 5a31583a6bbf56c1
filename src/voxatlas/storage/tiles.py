"""Single-file tile cache in MBTiles layout.

Tiles are keyed by absolute storage coordinates ``(zoom, x, y)`` exactly as
produced by the renderer; no TMS row flip or zoom-relative normalization is
applied on write or read. Climate rasters live in a separate ``climate_tiles``
keyspace addressed by ``(layer, x, y)``.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Iterator

from voxatlas.errors import StorageError
from voxatlas.models import TileCoordinate, TileExtent
from voxatlas.storage.sqlite_utils import checkpoint_wal, connect, enable_wal

LOGGER = logging.getLogger(__name__)

CLIMATE_LAYERS = ("rain", "temperature")

DEFAULT_METADATA = {
    "name": "voxatlas map",
    "type": "baselayer",
    "version": "1.0",
    "description": "Voxel world map",
    "format": "png",
}

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS tiles (
        zoom_level INTEGER NOT NULL,
        tile_column INTEGER NOT NULL,
        tile_row INTEGER NOT NULL,
        tile_data BLOB NOT NULL,
        PRIMARY KEY (zoom_level, tile_column, tile_row)
    )
    """,
    "CREATE INDEX IF NOT EXISTS tiles_zoom_idx ON tiles(zoom_level)",
    "CREATE TABLE IF NOT EXISTS metadata (name TEXT PRIMARY KEY, value TEXT)",
    """
    CREATE TABLE IF NOT EXISTS climate_tiles (
        layer TEXT NOT NULL,
        x INTEGER NOT NULL,
        y INTEGER NOT NULL,
        tile_data BLOB NOT NULL,
        PRIMARY KEY (layer, x, y)
    )
    """,
)


def _widen_zoom_bounds(connection: sqlite3.Connection, zoom: int) -> None:
    rows = dict(
        connection.execute(
            "SELECT name, value FROM metadata WHERE name IN ('minzoom', 'maxzoom')"
        ).fetchall()
    )
    current_min = rows.get("minzoom")
    current_max = rows.get("maxzoom")
    if current_min is None or zoom < int(current_min):
        connection.execute(
            "INSERT OR REPLACE INTO metadata (name, value) VALUES ('minzoom', ?)", (str(zoom),)
        )
    if current_max is None or zoom > int(current_max):
        connection.execute(
            "INSERT OR REPLACE INTO metadata (name, value) VALUES ('maxzoom', ?)", (str(zoom),)
        )


class TileCache:
    """Coordinate-addressed persistent store for rendered tile bytes."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._write_lock = threading.Lock()
        self._initialize()

    def _initialize(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with connect(self.path) as connection:
                enable_wal(connection)
                with connection:
                    for statement in _SCHEMA:
                        connection.execute(statement)
                    connection.executemany(
                        "INSERT OR IGNORE INTO metadata (name, value) VALUES (?, ?)",
                        sorted(DEFAULT_METADATA.items()),
                    )
        except sqlite3.Error as exc:
            raise StorageError(f"Could not initialize tile cache {self.path}: {exc}") from exc
        LOGGER.debug("Tile cache ready at %s", self.path)

    def _write(self, statement: str, params: tuple, *, zoom: int | None = None) -> None:
        with self._write_lock:
            try:
                with connect(self.path) as connection:
                    with connection:
                        connection.execute(statement, params)
                        if zoom is not None:
                            _widen_zoom_bounds(connection, zoom)
            except sqlite3.Error as exc:
                raise StorageError(f"Tile cache write failed: {exc}") from exc

    def _read_one(self, statement: str, params: tuple = ()) -> tuple | None:
        try:
            with connect(self.path) as connection:
                return connection.execute(statement, params).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Tile cache read failed: {exc}") from exc

    def put(self, zoom: int, x: int, y: int, data: bytes) -> None:
        """Upsert tile bytes; last write wins and zoom bounds only widen."""
        self._write(
            "INSERT OR REPLACE INTO tiles (zoom_level, tile_column, tile_row, tile_data)"
            " VALUES (?, ?, ?, ?)",
            (zoom, x, y, sqlite3.Binary(data)),
            zoom=zoom,
        )

    def put_many(self, tiles: Iterable[tuple[TileCoordinate, bytes]]) -> int:
        """Upsert a batch of tiles in a single transaction."""
        rows = [(tile.zoom, tile.x, tile.y, sqlite3.Binary(data)) for tile, data in tiles]
        if not rows:
            return 0
        zooms = {row[0] for row in rows}
        with self._write_lock:
            try:
                with connect(self.path) as connection:
                    with connection:
                        connection.executemany(
                            "INSERT OR REPLACE INTO tiles"
                            " (zoom_level, tile_column, tile_row, tile_data) VALUES (?, ?, ?, ?)",
                            rows,
                        )
                        for zoom in sorted(zooms):
                            _widen_zoom_bounds(connection, zoom)
            except sqlite3.Error as exc:
                raise StorageError(f"Tile cache batch write failed: {exc}") from exc
        return len(rows)

    def get(self, zoom: int, x: int, y: int) -> bytes | None:
        row = self._read_one(
            "SELECT tile_data FROM tiles WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (zoom, x, y),
        )
        return bytes(row[0]) if row else None

    def exists(self, zoom: int, x: int, y: int) -> bool:
        row = self._read_one(
            "SELECT 1 FROM tiles WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (zoom, x, y),
        )
        return row is not None

    def delete(self, zoom: int, x: int, y: int) -> None:
        self._write(
            "DELETE FROM tiles WHERE zoom_level = ? AND tile_column = ? AND tile_row = ?",
            (zoom, x, y),
        )

    def count(self, zoom: int | None = None) -> int:
        if zoom is None:
            row = self._read_one("SELECT COUNT(*) FROM tiles")
        else:
            row = self._read_one("SELECT COUNT(*) FROM tiles WHERE zoom_level = ?", (zoom,))
        return int(row[0]) if row else 0

    def extent(self, zoom: int) -> TileExtent | None:
        """Bounding box of stored tiles at ``zoom``, computed from the rows."""
        row = self._read_one(
            "SELECT MIN(tile_column), MAX(tile_column), MIN(tile_row), MAX(tile_row)"
            " FROM tiles WHERE zoom_level = ?",
            (zoom,),
        )
        if row is None or row[0] is None:
            return None
        return TileExtent(min_x=row[0], max_x=row[1], min_y=row[2], max_y=row[3])

    def tile_coordinates(self, zoom: int) -> Iterator[TileCoordinate]:
        """Yield the coordinates of every tile stored at ``zoom``."""
        try:
            with connect(self.path) as connection:
                rows = connection.execute(
                    "SELECT tile_column, tile_row FROM tiles WHERE zoom_level = ?"
                    " ORDER BY tile_row, tile_column",
                    (zoom,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Tile cache read failed: {exc}") from exc
        for x, y in rows:
            yield TileCoordinate(zoom, x, y)

    def zoom_levels(self) -> list[int]:
        try:
            with connect(self.path) as connection:
                rows = connection.execute(
                    "SELECT DISTINCT zoom_level FROM tiles ORDER BY zoom_level"
                ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Tile cache read failed: {exc}") from exc
        return [int(row[0]) for row in rows]

    def _check_layer(self, layer: str) -> None:
        if layer not in CLIMATE_LAYERS:
            raise ValueError(f"Unknown climate layer: {layer}")

    def put_climate_tile(self, layer: str, x: int, y: int, data: bytes) -> None:
        self._check_layer(layer)
        self._write(
            "INSERT OR REPLACE INTO climate_tiles (layer, x, y, tile_data) VALUES (?, ?, ?, ?)",
            (layer, x, y, sqlite3.Binary(data)),
        )

    def get_climate_tile(self, layer: str, x: int, y: int) -> bytes | None:
        self._check_layer(layer)
        row = self._read_one(
            "SELECT tile_data FROM climate_tiles WHERE layer = ? AND x = ? AND y = ?",
            (layer, x, y),
        )
        return bytes(row[0]) if row else None

    def put_rain_tile(self, x: int, y: int, data: bytes) -> None:
        self.put_climate_tile("rain", x, y, data)

    def put_temp_tile(self, x: int, y: int, data: bytes) -> None:
        self.put_climate_tile("temperature", x, y, data)

    def get_rain_tile(self, x: int, y: int) -> bytes | None:
        return self.get_climate_tile("rain", x, y)

    def get_temp_tile(self, x: int, y: int) -> bytes | None:
        return self.get_climate_tile("temperature", x, y)

    def get_metadata(self, name: str) -> str | None:
        row = self._read_one("SELECT value FROM metadata WHERE name = ?", (name,))
        return str(row[0]) if row and row[0] is not None else None

    def set_metadata(self, name: str, value: str) -> None:
        self._write(
            "INSERT OR REPLACE INTO metadata (name, value) VALUES (?, ?)", (name, str(value))
        )

    def metadata(self) -> dict[str, str]:
        try:
            with connect(self.path) as connection:
                rows = connection.execute("SELECT name, value FROM metadata").fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Tile cache read failed: {exc}") from exc
        return {str(name): str(value) for name, value in rows}

    def checkpoint(self) -> bool:
        """Flush the WAL so checkpointed tiles survive a crash."""
        with self._write_lock:
            return checkpoint_wal(self.path)

    def vacuum(self) -> None:
        with self._write_lock:
            try:
                with connect(self.path) as connection:
                    connection.execute("VACUUM")
            except sqlite3.Error as exc:
                raise StorageError(f"Tile cache vacuum failed: {exc}") from exc

    def database_size(self) -> int:
        return self.path.stat().st_size if self.path.exists() else 0

    def close(self) -> None:
        self.checkpoint()
