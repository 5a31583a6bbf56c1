"""Block colour lookup for terrain rendering.

Colours are 32-bit ``0xAARRGGBB`` integers. The cache is built once from the
world's block registry (plus optional custom mappings) and is read-only
afterwards, so it can be shared across render workers.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import numpy as np

from voxatlas.models import BlockInfo

LOGGER = logging.getLogger(__name__)

HEX_COLORS_BY_CODE: dict[str, str] = {
    "ink": "#483018",
    "settlement": "#856844",
    "water-edge": "#483018",
    "land": "#AC8858",
    "desert": "#C4A468",
    "forest": "#98844C",
    "road": "#805030",
    "plant": "#808650",
    "lake": "#CCC890",
    "ocean": "#CCC890",
    "glacier": "#E0E0C0",
    "devastation": "#755c3c",
}

MATERIAL_COLOR_CODES: dict[str, str] = {
    "soil": "land",
    "sand": "desert",
    "ore": "land",
    "gravel": "desert",
    "stone": "land",
    "leaves": "forest",
    "plant": "plant",
    "wood": "forest",
    "snow": "glacier",
    "liquid": "lake",
    "ice": "glacier",
    "lava": "lava",
}


def parse_hex_color(text: str) -> int:
    """Parse ``#RRGGBB`` or ``#AARRGGBB`` into ARGB; unsupported input gives 0."""
    value = text.strip().lstrip("#")
    if len(value) == 6:
        return 0xFF000000 | int(value, 16)
    if len(value) == 8:
        return int(value, 16)
    return 0


MAP_COLORS: dict[str, int] = {code: parse_hex_color(value) for code, value in HEX_COLORS_BY_CODE.items()}
PALETTE_CODES: tuple[str, ...] = tuple(MAP_COLORS)
LAND_INDEX = PALETTE_CODES.index("land")


def color_code_for_material(material: str) -> str:
    return MATERIAL_COLOR_CODES.get(material.strip().lower(), "land")


def ensure_alpha(color: int) -> int:
    color &= 0xFFFFFFFF
    return color | 0xFF000000 if color & 0xFF000000 == 0 else color


def argb_to_rgba(colors: np.ndarray) -> np.ndarray:
    """Split an ARGB uint32 array into a trailing RGBA uint8 axis."""
    colors = np.asarray(colors, dtype=np.uint32)
    return np.stack(
        (
            (colors >> 16) & 0xFF,
            (colors >> 8) & 0xFF,
            colors & 0xFF,
            (colors >> 24) & 0xFF,
        ),
        axis=-1,
    ).astype(np.uint8)


def load_color_mappings(path: Path) -> dict[str, list[int]]:
    """Load ``{block code or wildcard: [colour, ...]}`` from JSON.

    Colours may be integers or hex strings.
    """
    payload = json.loads(path.read_text(encoding="utf-8"))
    blocks = payload.get("blocks", payload) if isinstance(payload, Mapping) else None
    if not isinstance(blocks, Mapping):
        raise TypeError("Color mapping file must be a JSON object.")
    mappings: dict[str, list[int]] = {}
    for code, values in blocks.items():
        if not isinstance(values, list):
            values = [values]
        mappings[str(code)] = [
            parse_hex_color(value) if isinstance(value, str) else int(value) for value in values
        ]
    return mappings


def _code_matches(pattern: str, code: str) -> bool:
    if "*" in pattern:
        regex = re.escape(pattern).replace(r"\*", ".*")
        return re.fullmatch(regex, code) is not None or re.fullmatch(
            regex, code.split(":", 1)[-1]
        ) is not None
    return pattern == code or pattern == code.split(":", 1)[-1]


class BlockColorCache:
    """Per-block palette index, lake/snow flags, and custom colour variations."""

    def __init__(
        self,
        palette_index: np.ndarray,
        is_lake: np.ndarray,
        is_snow: np.ndarray,
        variations: Mapping[int, Sequence[int]] | None = None,
    ) -> None:
        self._palette = np.array([MAP_COLORS[code] for code in PALETTE_CODES], dtype=np.uint32)
        self._palette_index = np.asarray(palette_index, dtype=np.uint8)
        self._is_lake = np.asarray(is_lake, dtype=bool)
        self._is_snow = np.asarray(is_snow, dtype=bool)
        self._variations = {
            int(block_id): tuple(int(color) for color in colors)
            for block_id, colors in (variations or {}).items()
            if colors
        }
        size = len(self._palette_index)
        width = max((len(colors) for colors in self._variations.values()), default=0)
        self._variation_counts = np.zeros(size, dtype=np.int64)
        self._variation_table = np.zeros((size, max(width, 1)), dtype=np.uint32)
        for block_id, colors in self._variations.items():
            if 0 <= block_id < size:
                self._variation_counts[block_id] = len(colors)
                self._variation_table[block_id, : len(colors)] = colors
        base = self._palette[self._palette_index]
        has_variation = self._variation_counts > 0
        base[has_variation] = self._variation_table[has_variation, 0]
        self._base = base

    @classmethod
    def from_blocks(
        cls,
        blocks: Iterable[BlockInfo],
        custom_mappings: Mapping[str, Sequence[int]] | None = None,
    ) -> "BlockColorCache":
        block_list = [block for block in blocks if block.id > 0]
        size = max((block.id for block in block_list), default=0) + 2
        palette_index = np.full(size, LAND_INDEX, dtype=np.uint8)
        is_lake = np.zeros(size, dtype=bool)
        is_snow = np.zeros(size, dtype=bool)
        for block in block_list:
            code = color_code_for_material(block.material)
            palette_index[block.id] = PALETTE_CODES.index(code) if code in MAP_COLORS else LAND_INDEX
            material = block.material.strip().lower()
            is_lake[block.id] = material == "liquid" or (
                material == "ice" and block.code.split(":", 1)[-1] != "glacierice"
            )
            is_snow[block.id] = material == "snow"

        variations: dict[int, list[int]] = {}
        applied = 0
        for pattern, colors in (custom_mappings or {}).items():
            normalized = [ensure_alpha(color) for color in colors]
            if not normalized:
                continue
            for block in block_list:
                if _code_matches(pattern, block.code):
                    variations[block.id] = normalized
                    applied += 1
        cache = cls(palette_index, is_lake, is_snow, variations)
        LOGGER.info(
            "Block color cache ready: %s blocks, %s custom mappings applied, %s lake blocks",
            len(block_list),
            applied,
            int(is_lake.sum()),
        )
        return cache

    @property
    def size(self) -> int:
        return len(self._palette_index)

    def _in_range(self, block_id: int) -> bool:
        return 0 <= block_id < self.size

    def base_color(self, block_id: int) -> int:
        if not self._in_range(block_id):
            return MAP_COLORS["land"]
        return int(self._base[block_id])

    def is_lake(self, block_id: int) -> bool:
        return self._in_range(block_id) and bool(self._is_lake[block_id])

    def is_snow(self, block_id: int) -> bool:
        return self._in_range(block_id) and bool(self._is_snow[block_id])

    def medieval_color(self, block_id: int, is_water_edge: bool = False) -> int:
        if not self._in_range(block_id):
            return MAP_COLORS["land"]
        if is_water_edge:
            return MAP_COLORS["water-edge"]
        return int(self._palette[self._palette_index[block_id]])

    def random_variation(self, block_id: int, rng: np.random.Generator) -> int:
        colors = self._variations.get(block_id)
        if not colors:
            return self.base_color(block_id)
        return colors[int(rng.integers(len(colors)))]

    def _clip_ids(self, block_ids: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        ids = np.asarray(block_ids, dtype=np.int64)
        valid = (ids >= 0) & (ids < self.size)
        return np.where(valid, ids, 0), valid

    def base_colors(self, block_ids: np.ndarray) -> np.ndarray:
        ids, valid = self._clip_ids(block_ids)
        return np.where(valid, self._base[ids], np.uint32(MAP_COLORS["land"])).astype(np.uint32)

    def medieval_colors(self, block_ids: np.ndarray, water_edge: np.ndarray) -> np.ndarray:
        ids, valid = self._clip_ids(block_ids)
        colors = self._palette[self._palette_index[ids]]
        colors = np.where(water_edge, np.uint32(MAP_COLORS["water-edge"]), colors)
        return np.where(valid, colors, np.uint32(MAP_COLORS["land"])).astype(np.uint32)

    def random_variations(self, block_ids: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """Pick one variation per pixel; draws exactly one random per pixel."""
        ids, valid = self._clip_ids(block_ids)
        draws = rng.random(ids.shape)
        counts = np.where(valid, self._variation_counts[ids], 0)
        choice = np.minimum((draws * counts).astype(np.int64), np.maximum(counts - 1, 0))
        picked = self._variation_table[ids, choice]
        return np.where(counts > 0, picked, self.base_colors(block_ids)).astype(np.uint32)

    def lake_mask(self, block_ids: np.ndarray) -> np.ndarray:
        ids, valid = self._clip_ids(block_ids)
        return valid & self._is_lake[ids]

    def snow_mask(self, block_ids: np.ndarray) -> np.ndarray:
        ids, valid = self._clip_ids(block_ids)
        return valid & self._is_snow[ids]
