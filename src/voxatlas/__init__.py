"""Voxel world tile pyramid generation and caching."""

__version__ = "0.3.0"
