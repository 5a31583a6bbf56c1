"""Schema validation helpers for configuration payloads."""

from __future__ import annotations

import json
from importlib import resources
from typing import Any, Mapping

import jsonschema

SCHEMA_VERSION = "1"


def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema bundled in the package."""
    with resources.files("voxatlas.schemas").joinpath(name).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_export_config(payload: Mapping[str, Any]) -> None:
    """Validate a normalized export config against the schema."""
    schema = _load_schema("export_config.schema.json")
    jsonschema.validate(dict(payload), schema)
