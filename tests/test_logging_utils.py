from __future__ import annotations

import json
import logging
from pathlib import Path

from voxatlas.logging_utils import HumanFormatter, JsonFormatter, LogOptions, configure_logging


def _record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("voxatlas.test", logging.WARNING, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_configure_logging_writes_json(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "voxatlas.jsonl"
    configure_logging(LogOptions(log_file=log_path))
    logger = logging.getLogger("voxatlas.test")
    logger.info("hello", extra={"tile": "9/3/4"})
    logging.shutdown()

    lines = log_path.read_text(encoding="utf-8").strip().splitlines()
    assert lines
    payload = json.loads(lines[-1])
    assert payload["message"] == "hello"
    assert payload["level"] == "info"
    assert payload["extra"]["tile"] == "9/3/4"


def test_human_formatter_prefixes_tile() -> None:
    formatter = HumanFormatter("%(levelname)s: %(message)s")
    assert formatter.format(_record("decode failed", tile="8/1/2")) == "[8/1/2] WARNING: decode failed"
    assert formatter.format(_record("plain")) == "WARNING: plain"


def test_json_formatter_omits_empty_extra() -> None:
    payload = json.loads(JsonFormatter().format(_record("no extras")))
    assert "extra" not in payload
    assert payload["logger"] == "voxatlas.test"


def test_quiet_sets_warning_level() -> None:
    root = configure_logging(LogOptions(quiet=True))
    assert root.handlers[0].level == logging.WARNING
    root = configure_logging(LogOptions(verbose=1))
    assert root.handlers[0].level == logging.DEBUG
