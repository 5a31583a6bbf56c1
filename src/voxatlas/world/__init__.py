"""World database access: connection pooling, record codecs, repository."""

from voxatlas.world.codec import (
    decode_chunk,
    decode_region,
    encode_chunk,
    encode_region,
    pack_position,
    unpack_position,
)
from voxatlas.world.pool import ConnectionPool
from voxatlas.world.repository import WorldDataRepository, create_world_database

__all__ = [
    "ConnectionPool",
    "WorldDataRepository",
    "create_world_database",
    "decode_chunk",
    "decode_region",
    "encode_chunk",
    "encode_region",
    "pack_position",
    "unpack_position",
]
