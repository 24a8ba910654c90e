"""Unit tests for the persisted per-category counters."""

import json
import logging
from unittest.mock import AsyncMock

import pytest

from effort_logger.core.errors import UnknownCategory
from effort_logger.core.state_store import JsonStateStore
from effort_logger.modules.Experiment.counter_store import CounterStore


class TestCounterStore:

    @pytest.mark.asyncio
    async def test_fresh_counters_are_zero(self, state_store):
        counters = CounterStore(state_store, ("M", "F"))

        assert await counters.get("M") == 0
        assert await counters.snapshot() == {"M": 0, "F": 0}
        assert await counters.next_archive_name("M") == "M-1"

    @pytest.mark.asyncio
    async def test_increment_persists(self, state_store):
        counters = CounterStore(state_store, ("M", "F"))

        assert await counters.increment("M") == 1
        assert await counters.increment("M") == 2

        payload = json.loads(state_store.path.read_text(encoding="utf-8"))
        assert payload["namespaces"]["counters"] == {"M": 2}

        reloaded = CounterStore(JsonStateStore(state_store.path), ("M", "F"))
        assert await reloaded.snapshot() == {"M": 2, "F": 0}
        assert await reloaded.next_archive_name("M") == "M-3"

    @pytest.mark.asyncio
    async def test_set_rejects_decrease(self, state_store):
        counters = CounterStore(state_store, ("M",))
        await counters.set("M", 5)

        with pytest.raises(ValueError):
            await counters.set("M", 4)
        assert await counters.set("M", 5) == 5
        assert await counters.get("M") == 5

    @pytest.mark.asyncio
    async def test_unknown_category(self, state_store):
        counters = CounterStore(state_store, ("M",))
        with pytest.raises(UnknownCategory):
            await counters.increment("F")

    @pytest.mark.asyncio
    async def test_invalid_stored_values_ignored(self, state_store):
        await state_store.set_namespace("counters", {"M": "lots", "F": 3})
        counters = CounterStore(state_store, ("M", "F"))

        assert await counters.snapshot() == {"M": 0, "F": 3}

    @pytest.mark.asyncio
    async def test_failed_write_keeps_value_in_memory(self, state_store, caplog):
        counters = CounterStore(state_store, ("M",))
        state_store._write_file = AsyncMock(return_value=False)

        with caplog.at_level(logging.WARNING):
            assert await counters.increment("M") == 1
        assert await counters.get("M") == 1
        assert any("memory only" in record.getMessage() for record in caplog.records)
