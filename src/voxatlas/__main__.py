"""Module entrypoint for `python -m voxatlas`."""

from __future__ import annotations

from voxatlas.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
