"""Per-category session counters persisted in the user state file."""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable

from effort_logger.core.errors import UnknownCategory
from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger
from effort_logger.core.state_store import JsonStateStore

COUNTER_NAMESPACE = "counters"


class CounterStore:
    """Monotonic ``category -> int`` counters.

    A category that was never incremented reads as 0. ``set`` refuses to move
    a counter backwards; ``increment`` is the only call made per completed
    session.
    """

    def __init__(
        self,
        store: JsonStateStore,
        categories: Iterable[str],
        *,
        logger: LoggerLike = None,
    ) -> None:
        self._store = store
        self._categories = tuple(categories)
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self._lock = asyncio.Lock()

    @property
    def categories(self) -> tuple[str, ...]:
        return self._categories

    def _check(self, category: str) -> None:
        if category not in self._categories:
            raise UnknownCategory(category, self._categories)

    async def _load(self) -> Dict[str, int]:
        raw = await self._store.get_namespace(COUNTER_NAMESPACE)
        counters: Dict[str, int] = {}
        for category, value in raw.items():
            try:
                counters[category] = max(0, int(value))
            except (TypeError, ValueError):
                self._logger.warning("Ignoring invalid counter %s=%r", category, value)
        return counters

    async def get(self, category: str) -> int:
        self._check(category)
        return (await self._load()).get(category, 0)

    async def set(self, category: str, value: int) -> int:
        self._check(category)
        value = int(value)
        async with self._lock:
            current = (await self._load()).get(category, 0)
            if value < current:
                raise ValueError(f"Counter for {category} cannot decrease ({current} -> {value})")
            await self._store.update(COUNTER_NAMESPACE, category, value)
        return value

    async def increment(self, category: str) -> int:
        self._check(category)
        async with self._lock:
            value = (await self._load()).get(category, 0) + 1
            if not await self._store.update(COUNTER_NAMESPACE, category, value):
                self._logger.warning("Counter %s=%d kept in memory only", category, value)
        self._logger.info("Counter %s -> %d", category, value)
        return value

    async def snapshot(self) -> Dict[str, int]:
        counters = await self._load()
        return {category: counters.get(category, 0) for category in self._categories}

    async def next_archive_name(self, category: str) -> str:
        return f"{category}-{await self.get(category) + 1}"


__all__ = ["COUNTER_NAMESPACE", "CounterStore"]
