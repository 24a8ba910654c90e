"""Effort Logger: timed-effort photo sessions with face and field cameras."""

from __future__ import annotations

from importlib import metadata
from typing import Optional, Sequence

from .app.master import main
from .app.master import run as _run_master

try:
    __version__ = metadata.version("effort-logger")
except metadata.PackageNotFoundError:  # pragma: no cover - local dev
    __version__ = "0.0.0"


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Convenience wrapper that runs the async entry point and returns the exit code."""
    return _run_master(list(argv) if argv is not None else None)


__all__ = ["__version__", "main", "run"]
