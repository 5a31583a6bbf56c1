"""Export pipeline: extractors, orchestration, and the world runtime protocol."""

from voxatlas.export.extractors import (
    ChunkVersionExtractor,
    ClimateExtractor,
    DataExtractor,
    TileExtractor,
    TraderExtractor,
)
from voxatlas.export.grouping import group_chunk_versions
from voxatlas.export.orchestrator import ExportOrchestrator, ExportState, ExportStats
from voxatlas.export.runtime import WorldRuntime

__all__ = [
    "ChunkVersionExtractor",
    "ClimateExtractor",
    "DataExtractor",
    "ExportOrchestrator",
    "ExportState",
    "ExportStats",
    "TileExtractor",
    "TraderExtractor",
    "WorldRuntime",
    "group_chunk_versions",
]
