"""Export configuration loading, normalization, and validation."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, replace
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Mapping

from jsonschema import ValidationError

from voxatlas.contracts import validate_export_config as validate_export_schema
from voxatlas.errors import InvalidConfigurationError
from voxatlas.models import CHUNK_SIZE


class ImageMode(IntEnum):
    """Pixel colouring strategy used by the tile renderer."""

    COLOR_VARIATIONS = 0
    COLOR_VARIATIONS_WITH_HEIGHT = 1
    ONLY_ONE_COLOR = 2
    COLOR_VARIATIONS_WITH_HILL_SHADING = 3
    MEDIEVAL_STYLE_WITH_HILL_SHADING = 4

    @property
    def hill_shading(self) -> bool:
        return self in (
            ImageMode.COLOR_VARIATIONS_WITH_HILL_SHADING,
            ImageMode.MEDIEVAL_STYLE_WITH_HILL_SHADING,
        )


class ClimateMode(str, Enum):
    FAST = "fast"
    ON_DEMAND = "on_demand"
    OFF = "off"


@dataclass(frozen=True)
class ExportConfig:
    """Normalized export configuration."""

    tile_size: int = 256
    base_zoom_level: int = 9
    max_degree_of_parallelism: int = 0
    climate_mode: ClimateMode = ClimateMode.FAST
    climate_samples_per_chunk: int = 2
    image_mode: ImageMode = ImageMode.COLOR_VARIATIONS_WITH_HILL_SHADING
    output_directory: str = "."
    extract_world_map: bool = True
    create_zoom_levels: bool = True
    extract_traders: bool = True
    extract_climate: bool = True
    extract_chunk_versions: bool = False
    map_size_x: int = 1024000
    map_size_y: int = 256
    map_size_z: int = 1024000
    render_seed: int = 0
    color_mapping_path: str | None = None
    pool_size: int = 4
    pool_timeout: float = 30.0

    @property
    def chunks_per_tile(self) -> int:
        return self.tile_size // CHUNK_SIZE

    @property
    def data_dir(self) -> Path:
        return Path(self.output_directory) / "data"

    @property
    def tile_cache_path(self) -> Path:
        return self.data_dir / "tiles.mbtiles"

    @property
    def metadata_path(self) -> Path:
        return self.data_dir / "metadata.db"

    def with_overrides(self, **changes: Any) -> "ExportConfig":
        """Return a copy with non-None overrides applied and re-validated."""
        updates = {key: value for key, value in changes.items() if value is not None}
        if not updates:
            return self
        payload = self.as_dict()
        payload.update(updates)
        return normalize_export_config(payload)

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["climate_mode"] = self.climate_mode.value
        payload["image_mode"] = int(self.image_mode)
        return payload


_ALIASES = {
    "tileSize": "tile_size",
    "baseZoomLevel": "base_zoom_level",
    "maxDegreeOfParallelism": "max_degree_of_parallelism",
    "climateMode": "climate_mode",
    "climateSamplesPerChunk": "climate_samples_per_chunk",
    "mode": "image_mode",
    "imageMode": "image_mode",
    "outputDirectory": "output_directory",
    "output": "output_directory",
    "extractWorldMap": "extract_world_map",
    "createZoomLevels": "create_zoom_levels",
    "extractTraders": "extract_traders",
    "extractClimate": "extract_climate",
    "extractChunkVersions": "extract_chunk_versions",
    "mapSizeX": "map_size_x",
    "mapSizeY": "map_size_y",
    "mapSizeZ": "map_size_z",
    "renderSeed": "render_seed",
    "colorMappingPath": "color_mapping_path",
    "poolSize": "pool_size",
    "poolTimeout": "pool_timeout",
}


def _canonical_keys(payload: Mapping[str, Any]) -> dict[str, Any]:
    canonical: dict[str, Any] = {}
    for key, value in payload.items():
        canonical[_ALIASES.get(key, key)] = value
    return canonical


def _normalize_image_mode(value: object) -> ImageMode:
    if isinstance(value, ImageMode):
        return value
    if isinstance(value, str):
        name = value.strip().upper().replace("-", "_")
        if name.isdigit():
            return ImageMode(int(name))
        try:
            return ImageMode[name]
        except KeyError as exc:
            raise InvalidConfigurationError(f"Unknown image mode: {value}") from exc
    try:
        return ImageMode(int(value))  # type: ignore[arg-type]
    except ValueError as exc:
        raise InvalidConfigurationError(f"Unknown image mode: {value}") from exc


def _normalize_climate_mode(value: object) -> ClimateMode:
    if isinstance(value, ClimateMode):
        return value
    text = str(value).strip().lower().replace("-", "_")
    if text == "ondemand":
        text = ClimateMode.ON_DEMAND.value
    try:
        return ClimateMode(text)
    except ValueError as exc:
        raise InvalidConfigurationError(f"Unknown climate mode: {value}") from exc


def validate_export_config(config: ExportConfig) -> None:
    """Raise InvalidConfigurationError when values are inconsistent."""
    errors: list[str] = []
    if config.tile_size % CHUNK_SIZE != 0:
        errors.append(f"tile_size must be divisible by {CHUNK_SIZE}")
    if not 32 <= config.tile_size <= 1024:
        errors.append("tile_size must be between 32 and 1024")
    if not 1 <= config.base_zoom_level <= 15:
        errors.append("base_zoom_level must be between 1 and 15")
    if not str(config.output_directory).strip():
        errors.append("output_directory must not be empty")
    if config.create_zoom_levels and not config.extract_world_map:
        errors.append("create_zoom_levels requires extract_world_map")
    samples = config.climate_samples_per_chunk
    if not 1 <= samples <= CHUNK_SIZE or CHUNK_SIZE % samples != 0:
        errors.append(f"climate_samples_per_chunk must divide {CHUNK_SIZE}")
    if config.pool_size < 1:
        errors.append("pool_size must be >= 1")
    if config.pool_timeout <= 0:
        errors.append("pool_timeout must be > 0")
    if errors:
        raise InvalidConfigurationError("; ".join(errors))


def normalize_export_config(payload: Mapping[str, Any]) -> ExportConfig:
    """Normalize a raw payload (snake or camel case) into an ExportConfig."""
    data = _canonical_keys(payload)
    data.pop("schema_version", None)
    known = set(ExportConfig.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise InvalidConfigurationError(f"Unknown config keys: {', '.join(unknown)}")
    if "image_mode" in data:
        data["image_mode"] = _normalize_image_mode(data["image_mode"])
    if "climate_mode" in data:
        data["climate_mode"] = _normalize_climate_mode(data["climate_mode"])
    if "output_directory" in data and data["output_directory"] is not None:
        data["output_directory"] = str(data["output_directory"])
    config = replace(ExportConfig(), **data)
    validate_export_config(config)
    return config


def load_export_config(path: Path) -> ExportConfig:
    """Load, schema-check, and validate an export config file."""
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, Mapping):
        raise InvalidConfigurationError("Export config must be a JSON object.")
    canonical = _canonical_keys(payload)
    try:
        validate_export_schema(canonical)
    except ValidationError as exc:
        raise InvalidConfigurationError(f"Export config schema error: {exc.message}") from exc
    return normalize_export_config(canonical)
