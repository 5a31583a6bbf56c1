"""Error types raised by the tile pipeline."""

from __future__ import annotations


class VoxAtlasError(Exception):
    """Base class for voxatlas failures."""


class NotFoundError(VoxAtlasError):
    """A chunk, region, or tile does not exist."""


class RepositoryBusyError(VoxAtlasError):
    """No pooled connection became available before the timeout."""


class CorruptRecordError(VoxAtlasError):
    """A stored record could not be decoded."""


class InvalidConfigurationError(VoxAtlasError, ValueError):
    """Configuration values are inconsistent or out of range."""


class InvalidZoomError(InvalidConfigurationError):
    """A zoom level falls outside ``[0, base_zoom_level]``."""

    def __init__(self, zoom: int, base_zoom: int) -> None:
        super().__init__(f"Zoom level {zoom} outside [0, {base_zoom}]")
        self.zoom = zoom
        self.base_zoom = base_zoom


class ExportConflictError(VoxAtlasError):
    """An export was requested while another one is running."""


class StorageError(VoxAtlasError):
    """The tile cache or metadata store could not be written."""
