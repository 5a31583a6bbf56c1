"""Shared SQLite connection setup for the tile cache and metadata store."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from voxatlas.errors import StorageError

LOGGER = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 30000


def open_connection(path: Path) -> sqlite3.Connection:
    """Open a connection with the busy timeout every store relies on."""
    try:
        connection = sqlite3.connect(path, timeout=BUSY_TIMEOUT_MS / 1000)
        connection.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    except sqlite3.Error as exc:
        raise StorageError(f"Could not open {path}: {exc}") from exc
    return connection


def enable_wal(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA journal_mode=WAL")
    connection.execute("PRAGMA synchronous=NORMAL")


@contextmanager
def connect(path: Path) -> Iterator[sqlite3.Connection]:
    """Yield a short-lived connection and always close it."""
    connection = open_connection(path)
    try:
        yield connection
    finally:
        connection.close()


def checkpoint_wal(path: Path) -> bool:
    """Flush the WAL into the main database file; returns False when busy."""
    with connect(path) as connection:
        try:
            busy, _, _ = connection.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
        except sqlite3.Error as exc:
            LOGGER.warning("WAL checkpoint failed for %s: %s", path, exc)
            return False
    if busy:
        LOGGER.warning("WAL checkpoint for %s could not complete (database busy)", path)
        return False
    return True
