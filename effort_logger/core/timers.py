"""Cancellable countdown timers for phase dwell times."""

from __future__ import annotations

import asyncio
import math
from typing import Awaitable, Callable, Optional, Union

from .asyncio_utils import create_logged_task
from .logging_utils import LoggerLike, ensure_structured_logger

TickCallback = Callable[[int], None]
ExpireCallback = Callable[[], Union[Awaitable[None], None]]


class Countdown:
    """A single countdown task: ``steps`` ticks spread over ``duration_s``.

    ``on_tick(remaining)`` fires at the start of every step (remaining counts
    down to 1); ``on_expire`` fires once after the last step unless the
    countdown was cancelled first. ``cancel`` is safe to call from inside
    either callback: the running task is then flagged rather than cancelled,
    so a transition triggered by the expiry is not interrupted.
    """

    def __init__(
        self,
        duration_s: float,
        on_expire: ExpireCallback,
        *,
        on_tick: Optional[TickCallback] = None,
        steps: Optional[int] = None,
        name: str = "countdown",
        logger: LoggerLike = None,
    ) -> None:
        if duration_s < 0:
            raise ValueError("duration_s must be >= 0")
        self.duration_s = float(duration_s)
        self.steps = max(1, steps if steps is not None else math.ceil(self.duration_s) or 1)
        self.name = name
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._logger = ensure_structured_logger(logger, fallback_name="Countdown")
        self._task: Optional[asyncio.Task] = None
        self._remaining = self.steps
        self._cancelled = False
        self._expired = False

    # ------------------------------------------------------------------ state

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def expired(self) -> bool:
        return self._expired

    # ------------------------------------------------------------------ control

    def start(self) -> "Countdown":
        if self._task is not None:
            raise RuntimeError(f"Countdown {self.name} already started")
        self._task = create_logged_task(self._run(), logger=self._logger, context=f"countdown:{self.name}")
        return self

    def cancel(self) -> None:
        if self._cancelled or self._expired:
            return
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        self._logger.debug("Countdown %s cancelled with %d step(s) left", self.name, self._remaining)

    async def wait(self) -> None:
        """Wait for the countdown task to finish (expired or cancelled)."""
        if self._task is None:
            return
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    # ------------------------------------------------------------------ loop

    async def _run(self) -> None:
        step_s = self.duration_s / self.steps
        while self._remaining > 0:
            if self._on_tick is not None:
                self._on_tick(self._remaining)
            await asyncio.sleep(step_s)
            if self._cancelled:
                return
            self._remaining -= 1

        self._expired = True
        result = self._on_expire()
        if asyncio.iscoroutine(result):
            await result


__all__ = ["Countdown"]
