"""Persistent tile cache and metadata store."""

from voxatlas.storage.metadata import MetadataStore
from voxatlas.storage.tiles import CLIMATE_LAYERS, TileCache

__all__ = ["CLIMATE_LAYERS", "MetadataStore", "TileCache"]
