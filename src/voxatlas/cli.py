"""Command-line interface for voxatlas."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from voxatlas import __version__
from voxatlas.config import ClimateMode, ExportConfig, ImageMode, load_export_config
from voxatlas.errors import InvalidConfigurationError, StorageError
from voxatlas.logging_utils import LogOptions, configure_logging
from voxatlas.models import ExportProgress, ExportResult
from voxatlas.perf import resolve_metrics_path
from voxatlas.service import MapService
from voxatlas.storage.tiles import TileCache

LOGGER = logging.getLogger("voxatlas.cli")

CLIMATE_MODE_CHOICES = tuple(mode.value for mode in ClimateMode)


def _add_export_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the export subcommand."""
    export = subparsers.add_parser("export", help="Render a world database into a tile cache.")
    export.add_argument("--world", required=True, help="World database (SQLite) to read.")
    export.add_argument("--output", required=True, help="Output directory for data files.")
    export.add_argument("--config", help="Optional export config JSON file.")
    export.add_argument(
        "--jobs",
        type=int,
        help="Worker threads for tile rendering (0 = auto).",
    )
    export.add_argument(
        "--climate-mode",
        choices=CLIMATE_MODE_CHOICES,
        help="Climate extraction strategy.",
    )
    export.add_argument(
        "--image-mode",
        type=int,
        choices=[int(mode) for mode in ImageMode],
        help="Pixel colouring mode (0-4).",
    )
    export.add_argument(
        "--no-zoom-levels",
        action="store_true",
        help="Skip generating zoom levels below the base zoom.",
    )
    export.add_argument(
        "--metrics-json",
        help="Optional path to write export timing metrics.",
    )


def _add_tile_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the tile dump subcommand."""
    tile = subparsers.add_parser("tile", help="Write one cached tile (storage coordinates) to a file.")
    tile.add_argument("--output", required=True, help="Output directory holding the tile cache.")
    tile.add_argument("--zoom", type=int, required=True, help="Zoom level.")
    tile.add_argument("--x", type=int, required=True, help="Storage tile column.")
    tile.add_argument("--y", type=int, required=True, help="Storage tile row.")
    tile.add_argument("--dest", required=True, help="Destination PNG path.")


def _add_info_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the cache summary subcommand."""
    info = subparsers.add_parser("info", help="Print a JSON summary of the tile cache.")
    info.add_argument("--output", required=True, help="Output directory holding the tile cache.")


def _add_vacuum_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the cache maintenance subcommand."""
    vacuum = subparsers.add_parser("vacuum", help="Checkpoint and compact the tile cache.")
    vacuum.add_argument("--output", required=True, help="Output directory holding the tile cache.")


def _add_version_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the version subcommand."""
    subparsers.add_parser("version", help="Print the current version.")


def _config_from_args(args: argparse.Namespace) -> ExportConfig:
    base = load_export_config(Path(args.config)) if args.config else ExportConfig()
    return base.with_overrides(
        output_directory=args.output,
        max_degree_of_parallelism=args.jobs,
        climate_mode=args.climate_mode,
        image_mode=args.image_mode,
        create_zoom_levels=False if args.no_zoom_levels else None,
    )


def _log_progress(update: ExportProgress) -> None:
    if update.zoom is not None:
        LOGGER.info(
            "%s: %s/%s (%.1f%%) at zoom %s",
            update.phase,
            update.processed,
            update.total,
            update.percent,
            update.zoom,
        )
    else:
        LOGGER.info("%s: %s/%s (%.1f%%)", update.phase, update.processed, update.total, update.percent)


def _write_metrics(path: Path, result: ExportResult) -> None:
    payload = {
        "success": result.success,
        "duration": round(result.duration, 6),
        "tiles_processed": result.tiles_processed,
        "chunks_processed": result.chunks_processed,
        "metrics": result.metrics,
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    LOGGER.info("Wrote export metrics to %s", path)


def _run_export(args: argparse.Namespace) -> int:
    world_path = Path(args.world)
    if not world_path.exists():
        LOGGER.error("World database not found: %s", world_path)
        return 1
    try:
        config = _config_from_args(args)
    except (InvalidConfigurationError, OSError, json.JSONDecodeError) as exc:
        LOGGER.error("Invalid export configuration: %s", exc)
        return 1
    service = MapService(config, world_path)
    try:
        result = service.export(progress=_log_progress)
    finally:
        service.close()
    metrics_path = resolve_metrics_path(Path(args.output), args.metrics_json)
    if metrics_path is not None:
        _write_metrics(metrics_path, result)
    if not result.success:
        LOGGER.error("Export failed: %s", result.error_message)
        return 1
    LOGGER.info(
        "Export complete: %s tiles, %s chunks in %.2fs",
        result.tiles_processed,
        result.chunks_processed,
        result.duration,
    )
    return 0


def _open_existing_cache(output: str) -> TileCache | None:
    path = ExportConfig(output_directory=output).tile_cache_path
    if not path.exists():
        LOGGER.error("Tile cache not found: %s", path)
        return None
    return TileCache(path)


def _cache_summary(cache: TileCache) -> dict[str, object]:
    zooms: dict[str, object] = {}
    for zoom in cache.zoom_levels():
        extent = cache.extent(zoom)
        zooms[str(zoom)] = {
            "count": cache.count(zoom),
            "extent": extent.as_dict() if extent else None,
        }
    return {
        "path": str(cache.path),
        "size_bytes": cache.database_size(),
        "tiles": cache.count(),
        "zoom_levels": zooms,
        "metadata": cache.metadata(),
    }


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="voxatlas",
        description="Voxel world tile pyramid exporter",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_export_parser(subparsers)
    _add_tile_parser(subparsers)
    _add_info_parser(subparsers)
    _add_vacuum_parser(subparsers)
    _add_version_parser(subparsers)

    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    log_options = LogOptions(
        verbose=getattr(args, "verbose", 0) or 0,
        quiet=bool(getattr(args, "quiet", False)),
        log_file=Path(log_file_value) if log_file_value else None,
        json_console=bool(getattr(args, "log_json", False)),
    )
    configure_logging(log_options)

    if args.command == "version":
        print(__version__)
        return 0
    if args.command == "export":
        if args.jobs is not None and args.jobs < 0:
            parser.error("--jobs must be >= 0")
        return _run_export(args)

    cache = _open_existing_cache(args.output)
    if cache is None:
        return 1
    try:
        if args.command == "tile":
            data = cache.get(args.zoom, args.x, args.y)
            if data is None:
                LOGGER.error("Tile %s/%s/%s not found", args.zoom, args.x, args.y)
                return 1
            dest = Path(args.dest)
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
            LOGGER.info("Wrote %s bytes to %s", len(data), dest)
            return 0
        if args.command == "info":
            print(json.dumps(_cache_summary(cache), indent=2, sort_keys=True))
            return 0
        if args.command == "vacuum":
            before = cache.database_size()
            cache.checkpoint()
            cache.vacuum()
            LOGGER.info("Vacuumed tile cache: %s -> %s bytes", before, cache.database_size())
            return 0
    except StorageError as exc:
        LOGGER.error("Tile cache error: %s", exc)
        return 1
    finally:
        cache.close()
    parser.error(f"Unknown command: {args.command}")
    return 2
