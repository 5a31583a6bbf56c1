from __future__ import annotations

import os
import sqlite3
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

from voxatlas.models import CHUNK_SIZE, BlockInfo, ChunkPosition, ChunkSnapshot, ClimateSample, RegionData, Trader
from voxatlas.world.codec import encode_region, pack_position
from voxatlas.world.repository import WorldDataRepository, create_world_database

DEFAULT_BLOCKS = (
    BlockInfo(1, "game:soil-medium-normal", "soil"),
    BlockInfo(2, "game:rock-granite", "stone"),
    BlockInfo(3, "game:water-still-7", "liquid"),
    BlockInfo(4, "game:snowblock", "snow"),
    BlockInfo(5, "game:sand-granite", "sand"),
    BlockInfo(6, "game:glacierice", "ice"),
    BlockInfo(7, "game:leaves-grown-oak", "leaves"),
)


def make_snapshot(
    x: int,
    z: int,
    *,
    block: int = 1,
    height: int | np.ndarray = 100,
    below: int = 2,
    version: str | None = None,
    traders: Sequence[Trader] = (),
) -> ChunkSnapshot:
    """Build a chunk filled with ``block`` at a flat (or given) height."""
    shape = (CHUNK_SIZE, CHUNK_SIZE)
    if isinstance(height, np.ndarray):
        heightmap = height.astype(np.int32)
    else:
        heightmap = np.full(shape, height, dtype=np.int32)
    return ChunkSnapshot(
        position=ChunkPosition(x, z),
        heightmap=heightmap,
        surface=np.full(shape, block, dtype=np.int32),
        below=np.full(shape, below, dtype=np.int32),
        version=version,
        traders=tuple(traders),
    )


def sloped_heightmap(base: int = 90) -> np.ndarray:
    """Heights rising towards the south-east so hill shading has work to do."""
    rows, cols = np.indices((CHUNK_SIZE, CHUNK_SIZE))
    return (base + (rows + cols) // 4).astype(np.int32)


def insert_blocks(path: Path, blocks: Iterable[BlockInfo] = DEFAULT_BLOCKS) -> None:
    connection = sqlite3.connect(path)
    try:
        with connection:
            connection.executemany(
                "INSERT OR REPLACE INTO blocks (id, code, material) VALUES (?, ?, ?)",
                [(block.id, block.code, block.material) for block in blocks],
            )
    finally:
        connection.close()


def insert_regions(path: Path, regions: Iterable[RegionData]) -> None:
    connection = sqlite3.connect(path)
    try:
        with connection:
            connection.executemany(
                "INSERT OR REPLACE INTO mapregion (position, data) VALUES (?, ?)",
                [
                    (pack_position(region.position.x, region.position.z), encode_region(region))
                    for region in regions
                ],
            )
    finally:
        connection.close()


def insert_raw_chunk(path: Path, position: ChunkPosition, data: bytes) -> None:
    connection = sqlite3.connect(path)
    try:
        with connection:
            connection.execute(
                "INSERT OR REPLACE INTO mapchunk (position, data) VALUES (?, ?)",
                (pack_position(position.x, position.z), data),
            )
    finally:
        connection.close()


def make_region(x: int, z: int, *, size: int = 4, padding: int = 1, temperature: int = 128, rain: int = 64) -> RegionData:
    """Region with a uniform climate map of ``size`` cells plus padding."""
    total = size + 2 * padding
    packed = (temperature << 16) | (rain << 8)
    return RegionData(
        position=ChunkPosition(x, z),
        climate=np.full((total, total), packed, dtype=np.uint32),
        padding=padding,
    )


def build_world(
    path: Path,
    snapshots: Iterable[ChunkSnapshot],
    *,
    regions: Iterable[RegionData] = (),
    blocks: Iterable[BlockInfo] = DEFAULT_BLOCKS,
) -> Path:
    """Create a world database holding ``snapshots``, ``regions`` and ``blocks``."""
    create_world_database(path)
    insert_blocks(path, blocks)
    insert_regions(path, regions)
    batch = {snapshot.position: snapshot for snapshot in snapshots}
    if batch:
        repository = WorldDataRepository(path, pool_size=1)
        try:
            repository.save_chunks(batch)
        finally:
            repository.close()
    return path


class FakeRuntime:
    """In-memory world runtime with a configurable set of unloadable chunks."""

    def __init__(
        self,
        *,
        loaded: Iterable[ChunkPosition] = (),
        unloadable: Iterable[ChunkPosition] = (),
        temperature: float = 10.0,
        rainfall: float = 0.5,
    ) -> None:
        self.loaded = set(loaded)
        self.unloadable = set(unloadable)
        self.temperature = temperature
        self.rainfall = rainfall
        self.load_calls: list[list[ChunkPosition]] = []
        self.unload_calls: list[list[ChunkPosition]] = []
        self.climate_calls: list[tuple[int, int, int]] = []

    def load_chunks(self, positions: Iterable[ChunkPosition], timeout: float = 5.0) -> set[ChunkPosition]:
        batch = list(positions)
        self.load_calls.append(batch)
        return {position for position in batch if position not in self.unloadable}

    def unload_chunks(self, positions: Iterable[ChunkPosition]) -> None:
        self.unload_calls.append(list(positions))

    def climate_at(self, x: int, y: int, z: int) -> ClimateSample:
        self.climate_calls.append((x, y, z))
        return ClimateSample(temperature=self.temperature, rainfall=self.rainfall)

    def loaded_chunk_positions(self) -> list[ChunkPosition]:
        return sorted(self.loaded)


def with_src_env(base_env: dict[str, str] | None = None) -> dict[str, str]:
    """Return an environment with repo src/ on PYTHONPATH."""
    env = dict(base_env or os.environ)
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if src_path.exists():
        existing = env.get("PYTHONPATH", "")
        entries = [entry for entry in existing.split(os.pathsep) if entry]
        src_str = str(src_path)
        if src_str not in entries:
            entries.insert(0, src_str)
        env["PYTHONPATH"] = os.pathsep.join(entries)
    return env
