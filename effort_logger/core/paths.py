"""Centralized path constants for Effort Logger."""

from __future__ import annotations

import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
PROJECT_ROOT = PACKAGE_ROOT.parent

# Configuration
CONFIG_PATH = PROJECT_ROOT / "config.txt"

# Logging
LOGS_DIR = PROJECT_ROOT / "logs"
MASTER_LOG_FILE = LOGS_DIR / "effort_logger.log"

# Default archive destination (relative to the working directory)
DEFAULT_OUTPUT_DIR = Path("data")

# Per-installation state: counters and remembered camera selections
_USER_STATE_ENV = os.environ.get("EFFORT_LOGGER_STATE_DIR")
USER_STATE_DIR = Path(_USER_STATE_ENV).expanduser() if _USER_STATE_ENV else (Path.home() / ".effort_logger")
STATE_FILE = USER_STATE_DIR / "state.json"


def ensure_directories() -> None:
    """Create the log and user-state directories if they are missing."""
    for directory in (LOGS_DIR, USER_STATE_DIR):
        directory.mkdir(parents=True, exist_ok=True)


__all__ = [
    "CONFIG_PATH",
    "DEFAULT_OUTPUT_DIR",
    "LOGS_DIR",
    "MASTER_LOG_FILE",
    "PACKAGE_ROOT",
    "PROJECT_ROOT",
    "STATE_FILE",
    "USER_STATE_DIR",
    "ensure_directories",
]
