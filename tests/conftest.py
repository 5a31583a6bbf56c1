from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

import pytest  # noqa: E402

from voxatlas.perf import PROFILE_DIR_ENV  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_profile_dir(monkeypatch) -> None:
    """Prevent a local profiling directory from redirecting metrics output."""
    monkeypatch.delenv(PROFILE_DIR_ENV, raising=False)
