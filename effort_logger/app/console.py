"""Terminal view and operator input for the session runner."""

from __future__ import annotations

import asyncio
import sys
import threading
from typing import Optional, TextIO

from effort_logger.core.logging_utils import get_module_logger
from effort_logger.modules.Experiment.state_machine import Phase, PhaseSnapshot

logger = get_module_logger("Console")

PHASE_PROMPTS = {
    Phase.TRAINING_INSTRUCTION: "Practice round: follow the target shown for each squeeze.",
    Phase.TRAINING_REST: "Relax.",
    Phase.TRAINING_COMPLETE: "Practice finished. Press Enter to continue or type 'r' to practice again.",
    Phase.NEUTRAL_INSTRUCTION: "Look at the camera and keep a neutral expression.",
    Phase.NEUTRAL_READY: "Press Enter when the participant is ready.",
    Phase.NEUTRAL_CAPTURE: "Capturing neutral images...",
    Phase.REST: "Rest.",
    Phase.COMPLETE: "Session complete. Packaging images...",
}


class StdinReader:
    """Feeds stdin lines into an asyncio.Queue from a daemon thread.

    A daemon thread is used so a pending ``readline`` never blocks interpreter
    shutdown. ``None`` is queued on EOF.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream or sys.stdin
        self.lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "StdinReader":
        self._loop = asyncio.get_running_loop()
        self._thread = threading.Thread(target=self._run, name="stdin-reader", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        assert self._loop is not None
        while True:
            try:
                line = self._stream.readline()
            except (OSError, ValueError):
                line = ""
            if not line:
                self._loop.call_soon_threadsafe(self.lines.put_nowait, None)
                return
            self._loop.call_soon_threadsafe(self.lines.put_nowait, line.strip())

    async def readline(self) -> Optional[str]:
        return await self.lines.get()


class ConsoleView:
    """Prints phase changes and countdowns from engine snapshots."""

    def __init__(self, out: Optional[TextIO] = None) -> None:
        self._out = out or sys.stdout
        self._last_phase: Optional[Phase] = None
        self._last_countdown: Optional[int] = None

    def __call__(self, snapshot: PhaseSnapshot) -> None:
        if snapshot.phase is not self._last_phase:
            self._last_phase = snapshot.phase
            self._last_countdown = None
            self._print(self.describe(snapshot))
            return
        if snapshot.countdown and snapshot.countdown != self._last_countdown:
            self._last_countdown = snapshot.countdown
            if snapshot.phase in (Phase.TASK, Phase.TRAINING_TASK):
                self._print(f"  {snapshot.countdown}...")

    @staticmethod
    def describe(snapshot: PhaseSnapshot) -> str:
        phase = snapshot.phase
        if phase in (Phase.TASK, Phase.TRAINING_TASK) and snapshot.trial is not None:
            prefix = "Practice" if phase is Phase.TRAINING_TASK else f"Trial {snapshot.trial_index + 1}/{snapshot.trial_count}"
            return f"{prefix}: squeeze to {snapshot.trial.target_marker} ({snapshot.trial.effort_level.value} effort)"
        if phase is Phase.REST and snapshot.trial_count:
            return f"Rest. Next: trial {snapshot.trial_index + 1}/{snapshot.trial_count}"
        return PHASE_PROMPTS.get(phase, phase.value)

    def _print(self, text: str) -> None:
        print(text, file=self._out, flush=True)


__all__ = ["ConsoleView", "PHASE_PROMPTS", "StdinReader"]
