"""Group chunks into connected same-version regions and colour them by age."""

from __future__ import annotations

import re
from typing import Mapping

from voxatlas.models import ChunkPosition, GroupedChunkRegion

OLDEST_COLOR = (255, 106, 0)
NEWEST_COLOR = (0, 78, 255)

_NUMBER = re.compile(r"\d+")


def version_key(version: str) -> tuple[tuple[int, ...], str]:
    """Sort key treating dotted numeric parts as integers (``1.9`` < ``1.10``)."""
    return tuple(int(part) for part in _NUMBER.findall(version)), version


def gradient_color(index: int, count: int) -> str:
    """Interpolate from the oldest colour to the newest; a single version is oldest."""
    if count <= 1:
        red, green, blue = OLDEST_COLOR
    else:
        ratio = index / (count - 1)
        red, green, blue = (
            int(start + (end - start) * ratio) for start, end in zip(OLDEST_COLOR, NEWEST_COLOR)
        )
    return f"#{red:02x}{green:02x}{blue:02x}"


def group_chunk_versions(versions: Mapping[ChunkPosition, str]) -> list[GroupedChunkRegion]:
    """Split chunks into 4-connected components sharing a version.

    Groups come back ordered by version age, then by their first position, so
    the result does not depend on the mapping's insertion order.
    """
    visited: set[ChunkPosition] = set()
    components: list[tuple[str, tuple[ChunkPosition, ...]]] = []
    for start in sorted(versions, key=lambda pos: (pos.z, pos.x)):
        if start in visited:
            continue
        version = versions[start]
        visited.add(start)
        stack = [start]
        members: list[ChunkPosition] = []
        while stack:
            current = stack.pop()
            members.append(current)
            for neighbor in current.neighbors():
                if neighbor not in visited and versions.get(neighbor) == version:
                    visited.add(neighbor)
                    stack.append(neighbor)
        members.sort(key=lambda pos: (pos.z, pos.x))
        components.append((version, tuple(members)))

    ordered_versions = sorted({version for version, _ in components}, key=version_key)
    rank = {version: index for index, version in enumerate(ordered_versions)}
    components.sort(key=lambda item: (rank[item[0]], item[1][0].z, item[1][0].x))
    return [
        GroupedChunkRegion(
            version=version,
            positions=positions,
            color=gradient_color(rank[version], len(ordered_versions)),
        )
        for version, positions in components
    ]
