"""Application entrypoints for Effort Logger."""

from .master import cli, main, parse_args, run

__all__ = ["cli", "main", "parse_args", "run"]
