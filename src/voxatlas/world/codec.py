"""Encoding of world database positions and chunk/region records."""

from __future__ import annotations

import io
import json
import zipfile
from typing import Any, Mapping

import numpy as np

from voxatlas.errors import CorruptRecordError
from voxatlas.models import ChunkPosition, ChunkSnapshot, RegionData, Trader

_MASK32 = 0xFFFFFFFF


def _to_int32(value: int) -> int:
    value &= _MASK32
    return value - (1 << 32) if value & 0x80000000 else value


def pack_position(x: int, z: int) -> int:
    """Pack two int32 coordinates into the signed int64 row key."""
    packed = ((z & _MASK32) << 32) | (x & _MASK32)
    return packed - (1 << 64) if packed & (1 << 63) else packed


def unpack_position(packed: int) -> ChunkPosition:
    packed &= (1 << 64) - 1
    return ChunkPosition(_to_int32(packed), _to_int32(packed >> 32))


def _json_array(value: Any) -> np.ndarray:
    return np.array(json.dumps(value))


def _read_json(archive: Mapping[str, np.ndarray], name: str, default: Any) -> Any:
    if name not in archive:
        return default
    return json.loads(str(archive[name][()]))


def encode_chunk(snapshot: ChunkSnapshot) -> bytes:
    buffer = io.BytesIO()
    np.savez_compressed(
        buffer,
        heightmap=np.asarray(snapshot.heightmap, dtype=np.int32),
        surface=np.asarray(snapshot.surface, dtype=np.int32),
        below=np.asarray(snapshot.below, dtype=np.int32),
        version=_json_array(snapshot.version),
        traders=_json_array([trader.to_dict() for trader in snapshot.traders]),
    )
    return buffer.getvalue()


def decode_chunk(position: ChunkPosition, data: bytes) -> ChunkSnapshot:
    """Decode a chunk record; raises CorruptRecordError on any malformed input."""
    try:
        with np.load(io.BytesIO(data), allow_pickle=False) as archive:
            heightmap = np.array(archive["heightmap"], dtype=np.int32)
            surface = np.array(archive["surface"], dtype=np.int32)
            below = (
                np.array(archive["below"], dtype=np.int32)
                if "below" in archive
                else surface.copy()
            )
            version = _read_json(archive, "version", None)
            traders = tuple(
                Trader.from_dict(item) for item in _read_json(archive, "traders", [])
            )
        return ChunkSnapshot(
            position=position,
            heightmap=heightmap,
            surface=surface,
            below=below,
            version=str(version) if version is not None else None,
            traders=traders,
        )
    except (OSError, ValueError, KeyError, TypeError, zipfile.BadZipFile) as exc:
        raise CorruptRecordError(
            f"chunk ({position.x},{position.z}) could not be decoded: {exc}"
        ) from exc


def encode_region(region: RegionData) -> bytes:
    buffer = io.BytesIO()
    np.savez_compressed(
        buffer,
        climate=np.asarray(region.climate, dtype=np.uint32),
        padding=np.array(region.padding, dtype=np.int32),
    )
    return buffer.getvalue()


def decode_region(position: ChunkPosition, data: bytes) -> RegionData:
    try:
        with np.load(io.BytesIO(data), allow_pickle=False) as archive:
            climate = np.array(archive["climate"], dtype=np.uint32)
            padding = int(archive["padding"][()]) if "padding" in archive else 0
    except (OSError, ValueError, KeyError, TypeError, zipfile.BadZipFile) as exc:
        raise CorruptRecordError(
            f"region ({position.x},{position.z}) could not be decoded: {exc}"
        ) from exc
    if climate.ndim != 2 or climate.shape[0] != climate.shape[1]:
        raise CorruptRecordError(f"region ({position.x},{position.z}) climate map is not square")
    if padding < 0 or climate.shape[0] - 2 * padding < 1:
        raise CorruptRecordError(f"region ({position.x},{position.z}) has invalid padding")
    return RegionData(position=position, climate=climate, padding=padding)
