from __future__ import annotations

import json
from pathlib import Path

import pytest

from voxatlas.config import (
    ClimateMode,
    ExportConfig,
    ImageMode,
    load_export_config,
    normalize_export_config,
    validate_export_config,
)
from voxatlas.errors import InvalidConfigurationError


def test_defaults_are_valid() -> None:
    config = ExportConfig()
    validate_export_config(config)
    assert config.tile_size == 256
    assert config.base_zoom_level == 9
    assert config.chunks_per_tile == 8
    assert config.climate_mode is ClimateMode.FAST
    assert config.image_mode is ImageMode.COLOR_VARIATIONS_WITH_HILL_SHADING


def test_data_paths_live_under_output_data(tmp_path: Path) -> None:
    config = ExportConfig(output_directory=str(tmp_path))
    assert config.tile_cache_path == tmp_path / "data" / "tiles.mbtiles"
    assert config.metadata_path == tmp_path / "data" / "metadata.db"


def test_normalize_accepts_camel_case_aliases() -> None:
    config = normalize_export_config(
        {
            "tileSize": 512,
            "baseZoomLevel": 7,
            "climateMode": "OnDemand",
            "mode": "medieval_style_with_hill_shading",
            "extractChunkVersions": True,
        }
    )
    assert config.tile_size == 512
    assert config.base_zoom_level == 7
    assert config.climate_mode is ClimateMode.ON_DEMAND
    assert config.image_mode is ImageMode.MEDIEVAL_STYLE_WITH_HILL_SHADING
    assert config.extract_chunk_versions is True


def test_normalize_image_mode_from_digit_string() -> None:
    assert normalize_export_config({"image_mode": "2"}).image_mode is ImageMode.ONLY_ONE_COLOR


@pytest.mark.parametrize(
    "payload",
    [
        {"tile_size": 100},
        {"tile_size": 2048},
        {"base_zoom_level": 0},
        {"base_zoom_level": 16},
        {"output_directory": "  "},
        {"extract_world_map": False, "create_zoom_levels": True},
        {"climate_samples_per_chunk": 3},
        {"climate_samples_per_chunk": 64},
        {"pool_size": 0},
    ],
)
def test_invalid_values_rejected(payload: dict) -> None:
    with pytest.raises(InvalidConfigurationError):
        normalize_export_config(payload)


def test_unknown_keys_rejected() -> None:
    with pytest.raises(InvalidConfigurationError, match="bogus"):
        normalize_export_config({"bogus": 1})


def test_unknown_modes_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        normalize_export_config({"image_mode": 9})
    with pytest.raises(InvalidConfigurationError):
        normalize_export_config({"climate_mode": "sometimes"})


def test_with_overrides_skips_none_and_revalidates() -> None:
    config = ExportConfig()
    assert config.with_overrides(tile_size=None) is config
    updated = config.with_overrides(max_degree_of_parallelism=3, climate_mode="off")
    assert updated.max_degree_of_parallelism == 3
    assert updated.climate_mode is ClimateMode.OFF
    with pytest.raises(InvalidConfigurationError):
        config.with_overrides(tile_size=33)


def test_as_dict_is_json_serializable() -> None:
    payload = ExportConfig().as_dict()
    assert json.loads(json.dumps(payload))["climate_mode"] == "fast"
    assert payload["image_mode"] == 3


def test_load_export_config_reads_json(tmp_path: Path) -> None:
    path = tmp_path / "export.json"
    path.write_text(
        json.dumps({"schema_version": "1", "tileSize": 128, "renderSeed": 7}),
        encoding="utf-8",
    )
    config = load_export_config(path)
    assert config.tile_size == 128
    assert config.render_seed == 7


def test_load_export_config_schema_error(tmp_path: Path) -> None:
    path = tmp_path / "export.json"
    path.write_text(json.dumps({"tile_size": "big"}), encoding="utf-8")
    with pytest.raises(InvalidConfigurationError, match="schema"):
        load_export_config(path)


def test_load_export_config_requires_object(tmp_path: Path) -> None:
    path = tmp_path / "export.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(InvalidConfigurationError):
        load_export_config(path)
