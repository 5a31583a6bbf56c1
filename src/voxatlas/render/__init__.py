"""Tile rendering, block colours, downsampling, and climate rasters."""

from voxatlas.render.climate import region_points, render_region_rasters
from voxatlas.render.colors import BlockColorCache, load_color_mappings
from voxatlas.render.downsample import PyramidDownsampler
from voxatlas.render.renderer import TileRenderer, tile_seed

__all__ = [
    "BlockColorCache",
    "PyramidDownsampler",
    "TileRenderer",
    "load_color_mappings",
    "region_points",
    "render_region_rasters",
    "tile_seed",
]
