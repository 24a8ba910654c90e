import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import aiofiles

from effort_logger.core.logging_utils import get_module_logger


logger = get_module_logger("ConfigManager")


class ConfigManager:
    """Reads ``key = value`` config files.

    Lines starting with ``#`` are comments, trailing ``# ...`` is stripped and
    surrounding quotes are removed. Values stay strings; the typed getters
    coerce them and fall back to the default on bad input.
    """

    def __init__(self):
        self.logger = get_module_logger("ConfigManager")
        self.lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Parsing

    @staticmethod
    def parse_lines(lines: Iterable[str]) -> Dict[str, str]:
        config: Dict[str, str] = {}

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.split('#', 1)[0].strip()

            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]

            if key:
                config[key] = value

        return config

    # ------------------------------------------------------------------
    # Reading

    def read_config(self, config_path: Path) -> Dict[str, str]:
        """Synchronous read; a missing file yields an empty mapping."""
        config_path = Path(config_path)
        if not config_path.exists():
            self.logger.debug("Config file %s not found; using defaults", config_path)
            return {}

        try:
            with open(config_path, 'r', encoding='utf-8') as fh:
                return self.parse_lines(fh)
        except OSError as e:
            self.logger.error("Failed to read config %s: %s", config_path, e)
            return {}

    async def read_config_async(self, config_path: Path) -> Dict[str, str]:
        config_path = Path(config_path)
        if not await asyncio.to_thread(config_path.exists):
            self.logger.debug("Config file %s not found; using defaults", config_path)
            return {}

        async with self.lock:
            try:
                async with aiofiles.open(config_path, 'r', encoding='utf-8') as fh:
                    lines = await fh.readlines()
            except OSError as e:
                self.logger.error("Failed to read config %s: %s", config_path, e)
                return {}

        return self.parse_lines(lines)

    # ------------------------------------------------------------------
    # Typed getters

    def get_bool(self, config: Dict[str, str], key: str, default: bool = False) -> bool:
        if key not in config:
            return default
        return config[key].strip().lower() in ('true', '1', 'yes', 'on')

    def get_int(self, config: Dict[str, str], key: str, default: int = 0) -> int:
        if key not in config:
            return default

        try:
            return int(config[key])
        except ValueError:
            self.logger.warning("Invalid int value for %s: %s, using default %d", key, config[key], default)
            return default

    def get_float(self, config: Dict[str, str], key: str, default: float = 0.0) -> float:
        if key not in config:
            return default

        try:
            return float(config[key])
        except ValueError:
            self.logger.warning("Invalid float value for %s: %s, using default %s", key, config[key], default)
            return default

    def get_str(self, config: Dict[str, str], key: str, default: str = "") -> str:
        return config.get(key, default)

    def get_list(self, config: Dict[str, str], key: str, default: Optional[List[str]] = None) -> List[str]:
        """Comma separated list; blank entries are dropped."""
        if key not in config:
            return list(default or [])
        return [item.strip() for item in config[key].split(',') if item.strip()]


_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    return _config_manager


def stringify(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)
