"""Phase timing for export runs."""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from time import perf_counter
from typing import Any, Iterator

PROFILE_DIR_ENV = "VOXATLAS_PROFILE_DIR"


@dataclass(frozen=True)
class PerfSpan:
    name: str
    seconds: float


class PerfTracker:
    """Collect named timing spans; safe to use from worker threads."""

    def __init__(self, *, enabled: bool = True) -> None:
        self.enabled = enabled
        self._lock = threading.Lock()
        self._spans: list[PerfSpan] = []
        self._totals: dict[str, float] = {}
        self._counts: dict[str, int] = {}
        self._start_time: float | None = None
        self._end_time: float | None = None

    def start(self) -> None:
        if self.enabled:
            self._start_time = perf_counter()
            self._end_time = None

    def stop(self) -> None:
        if self.enabled and self._end_time is None:
            self._end_time = perf_counter()

    @property
    def elapsed(self) -> float:
        if self._start_time is None:
            return 0.0
        end = self._end_time if self._end_time is not None else perf_counter()
        return max(0.0, end - self._start_time)

    @contextmanager
    def span(self, name: str) -> Iterator[None]:
        """Measure a named span of work."""
        if not self.enabled:
            yield
            return
        start = perf_counter()
        try:
            yield
        finally:
            elapsed = perf_counter() - start
            with self._lock:
                self._spans.append(PerfSpan(name=name, seconds=elapsed))
                self._totals[name] = self._totals.get(name, 0.0) + elapsed
                self._counts[name] = self._counts.get(name, 0) + 1

    def summary(self) -> dict[str, Any]:
        """Return a JSON-serializable summary of captured spans."""
        if not self.enabled:
            return {}
        with self._lock:
            spans = {
                name: {"seconds": round(total, 6), "count": self._counts.get(name, 0)}
                for name, total in sorted(self._totals.items())
            }
            events = [
                {"name": span.name, "seconds": round(span.seconds, 6)} for span in self._spans
            ]
        return {
            "total_seconds": round(self.elapsed, 6),
            "spans": spans,
            "events": events,
        }


def resolve_metrics_path(output_dir: Path, metrics_json: str | None) -> Path | None:
    """Resolve where export metrics should be written, if anywhere."""
    if metrics_json:
        return Path(metrics_json)
    profile_dir = os.environ.get(PROFILE_DIR_ENV)
    if profile_dir:
        return Path(profile_dir) / "export_metrics.json"
    return None
