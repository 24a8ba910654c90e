"""Durable JSON state shared by the counter store and camera selection."""

from __future__ import annotations

import asyncio
import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .logging_utils import LoggerLike, ensure_structured_logger

STATE_SCHEMA_VERSION = 1


class JsonStateStore:
    """One JSON document split into namespaces (``counters``, ``camera_selection``...).

    Reads are lazy and cached. Every write replaces the whole file atomically
    (temp file in the same directory, then ``os.replace``) from a worker
    thread, serialized by an ``asyncio.Lock``.
    """

    def __init__(self, path: Path, *, logger: LoggerLike = None) -> None:
        self._path = Path(path)
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self._lock = asyncio.Lock()
        self._data: Dict[str, Dict[str, Any]] = {}
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Public API

    async def load(self) -> None:
        if self._loaded:
            return
        async with self._lock:
            if self._loaded:
                return
            self._data = await self._read_file()
            self._loaded = True
            self._logger.debug("State loaded from %s (%d namespaces)", self._path, len(self._data))

    async def get_namespace(self, namespace: str) -> Dict[str, Any]:
        await self.load()
        return copy.deepcopy(self._data.get(namespace, {}))

    async def set_namespace(self, namespace: str, values: Dict[str, Any]) -> bool:
        """Replace ``namespace`` and persist. Returns False when the write failed."""
        await self.load()
        async with self._lock:
            self._data[namespace] = copy.deepcopy(dict(values))
            return await self._write_file(self._data)

    async def update(self, namespace: str, key: str, value: Any) -> bool:
        await self.load()
        async with self._lock:
            self._data.setdefault(namespace, {})[key] = copy.deepcopy(value)
            return await self._write_file(self._data)

    async def snapshot(self) -> Dict[str, Dict[str, Any]]:
        await self.load()
        return copy.deepcopy(self._data)

    # ------------------------------------------------------------------
    # IO helpers

    async def _read_file(self) -> Dict[str, Dict[str, Any]]:
        if not await asyncio.to_thread(self._path.exists):
            return {}
        try:
            text = await asyncio.to_thread(self._path.read_text, "utf-8")
            parsed = json.loads(text)
        except (OSError, ValueError):
            self._logger.warning("State file %s unreadable; starting fresh", self._path)
            return {}

        if not isinstance(parsed, dict):
            return {}
        schema_version = int(parsed.get("schema", 0) or 0)
        if schema_version != STATE_SCHEMA_VERSION:
            self._logger.info("State file schema %s not supported; ignoring old data", schema_version)
            return {}

        namespaces = parsed.get("namespaces") or {}
        if not isinstance(namespaces, dict):
            return {}
        return {key: value for key, value in namespaces.items() if isinstance(value, dict)}

    async def _write_file(self, data: Dict[str, Dict[str, Any]]) -> bool:
        payload = {"schema": STATE_SCHEMA_VERSION, "namespaces": data}
        text = json.dumps(payload, indent=2, sort_keys=True)
        path = self._path

        def write_file() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path: Optional[Path] = None
            try:
                with tempfile.NamedTemporaryFile(
                    "w",
                    dir=str(path.parent),
                    prefix=f".{path.name}.",
                    delete=False,
                    encoding="utf-8",
                ) as tmp:
                    tmp_path = Path(tmp.name)
                    tmp.write(text)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_path, path)
                tmp_path = None
            finally:
                if tmp_path is not None:
                    try:
                        tmp_path.unlink()
                    except FileNotFoundError:
                        pass

        try:
            await asyncio.to_thread(write_file)
        except OSError:
            self._logger.warning("Failed to write state file %s", path, exc_info=True)
            return False
        return True


__all__ = ["JsonStateStore", "STATE_SCHEMA_VERSION"]
