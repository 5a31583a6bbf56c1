"""Bounded pool of read-only SQLite connections."""

from __future__ import annotations

import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from voxatlas.errors import RepositoryBusyError, StorageError

LOGGER = logging.getLogger(__name__)


def open_readonly(path: Path) -> sqlite3.Connection:
    """Open a read-only connection usable from any worker thread."""
    uri = f"{path.resolve().as_uri()}?mode=ro"
    connection = sqlite3.connect(uri, uri=True, check_same_thread=False, timeout=30.0)
    connection.execute("PRAGMA busy_timeout=30000")
    return connection


class ConnectionPool:
    """Fixed set of connections handed out one lease at a time.

    ``connection()`` blocks while every connection is leased and raises
    RepositoryBusyError if none frees up within ``timeout`` seconds.
    """

    def __init__(self, path: Path, size: int = 4, timeout: float = 30.0) -> None:
        if size < 1:
            raise ValueError("pool size must be >= 1")
        if not path.exists():
            raise StorageError(f"World database not found: {path}")
        self.path = path
        self.size = size
        self.timeout = timeout
        self._idle: queue.Queue[sqlite3.Connection] = queue.Queue(maxsize=size)
        self._all: list[sqlite3.Connection] = []
        self._closed = False
        self._lock = threading.Lock()
        try:
            for _ in range(size):
                connection = open_readonly(path)
                self._all.append(connection)
                self._idle.put_nowait(connection)
        except sqlite3.Error as exc:
            self.close()
            raise StorageError(f"Could not open world database {path}: {exc}") from exc
        LOGGER.debug("Opened %s read-only connections to %s", size, path)

    @property
    def available(self) -> int:
        return self._idle.qsize()

    @contextmanager
    def connection(self, timeout: float | None = None) -> Iterator[sqlite3.Connection]:
        """Lease a connection for the duration of the ``with`` block."""
        if self._closed:
            raise StorageError("Connection pool is closed")
        wait = self.timeout if timeout is None else timeout
        try:
            connection = self._idle.get(timeout=wait)
        except queue.Empty as exc:
            raise RepositoryBusyError(
                f"No world database connection available after {wait:.1f}s"
            ) from exc
        try:
            yield connection
        finally:
            self._idle.put_nowait(connection)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for connection in self._all:
                connection.close()
            self._all.clear()

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
