"""
Experiment phase state machine.

One ``ExperimentStateMachine`` drives one session at a time through

    category-selection -> [training loop] -> neutral-instruction ->
    neutral-ready -> neutral-capture -> rest -> task -> (rest -> task)* ->
    complete

Every transition goes through ``_enter``: it cancels the current phase
timer, bumps the epoch, notifies listeners and runs the entry action of
the new phase. Timer expiries and capture results carry the epoch they
were issued for and are ignored once the machine has moved on.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from effort_logger.core.asyncio_utils import create_logged_task
from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger
from effort_logger.core.timers import Countdown
from effort_logger.modules.Cameras.camera_models import CameraRole
from effort_logger.modules.Cameras.frame_capture import (
    CaptureFailure,
    CaptureFailureReason,
    CaptureSuccess,
    FrameCaptureService,
)

from .artifacts import ArchiveResult, ArchiveSink, ArtifactCollector
from .config import ExperimentConfig
from .counter_store import CounterStore
from .session import ExperimentSession, SessionSummary, make_session_id
from .trial_sequencer import Trial, TrialSequencer


class Phase(str, Enum):
    CATEGORY_SELECTION = "category-selection"
    TRAINING_INSTRUCTION = "training-instruction"
    TRAINING_TASK = "training-task"
    TRAINING_REST = "training-rest"
    TRAINING_COMPLETE = "training-complete"
    NEUTRAL_INSTRUCTION = "neutral-instruction"
    NEUTRAL_READY = "neutral-ready"
    NEUTRAL_CAPTURE = "neutral-capture"
    REST = "rest"
    TASK = "task"
    COMPLETE = "complete"

    @property
    def terminal(self) -> bool:
        return self is Phase.COMPLETE


@dataclass(frozen=True, slots=True)
class PhaseSnapshot:
    phase: Phase
    epoch: int
    category: Optional[str] = None
    trial: Optional[Trial] = None
    trial_index: int = 0
    trial_count: int = 0
    countdown: Optional[int] = None
    images: int = 0
    degraded: bool = False
    finalized: bool = False
    archive: Optional[ArchiveResult] = None


PhaseListener = Callable[[PhaseSnapshot], None]


class ExperimentStateMachine:

    def __init__(
        self,
        config: ExperimentConfig,
        capture: FrameCaptureService,
        counter: CounterStore,
        sink: ArchiveSink,
        *,
        sequencer: Optional[TrialSequencer] = None,
        degraded: bool = False,
        logger: LoggerLike = None,
    ) -> None:
        self._config = config
        self._capture = capture
        self._counter = counter
        self._sink = sink
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self._sequencer = sequencer or TrialSequencer(config)
        self._degraded = degraded

        self._phase = Phase.CATEGORY_SELECTION
        self._epoch = 0
        self._session: Optional[ExperimentSession] = None
        self._timer: Optional[Countdown] = None
        self._countdown: Optional[int] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[PhaseListener] = []
        self._phase_waiters: List[Tuple[Phase, asyncio.Future]] = []
        self._finalized = asyncio.Event()

    # ------------------------------------------------------------------
    # Read-only views

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def config(self) -> ExperimentConfig:
        return self._config

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def timer(self) -> Optional[Countdown]:
        return self._timer

    @property
    def capture_roles(self) -> Tuple[CameraRole, ...]:
        """``face`` always; ``field`` only while it is bound and the session is not degraded."""
        if self._degraded or not self._capture.has_stream(CameraRole.FIELD):
            return (CameraRole.FACE,)
        return (CameraRole.FACE, CameraRole.FIELD)

    def session_summary(self) -> Optional[SessionSummary]:
        return self._session.summary() if self._session else None

    def snapshot(self) -> PhaseSnapshot:
        session = self._session
        if session is None:
            return PhaseSnapshot(phase=self._phase, epoch=self._epoch, countdown=self._countdown, degraded=self._degraded)

        if self._phase in (Phase.TRAINING_TASK, Phase.TRAINING_REST, Phase.TRAINING_INSTRUCTION):
            trial = session.current_training_trial
        else:
            trial = session.current_trial
        return PhaseSnapshot(
            phase=self._phase,
            epoch=self._epoch,
            category=session.category,
            trial=trial,
            trial_index=session.cursor,
            trial_count=session.trial_count,
            countdown=self._countdown,
            images=session.archive.image_count if session.archive else session.collector.count,
            degraded=session.degraded,
            finalized=session.archive is not None,
            archive=session.archive,
        )

    def subscribe(self, listener: PhaseListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def set_degraded(self, degraded: bool) -> None:
        """Capture ``face`` only from the next session on."""
        self._degraded = degraded

    # ------------------------------------------------------------------
    # Signals

    def select_category(self, category: str, *, training: bool = False) -> bool:
        if self._phase is not Phase.CATEGORY_SELECTION:
            return self._reject("select_category")

        self._config.check_category(category)
        trials = self._sequencer.plan(category, self._config.repetitions)
        training_trials = self._sequencer.training_plan(category)
        self._session = ExperimentSession(
            session_id=make_session_id(category),
            category=category,
            trials=tuple(trials),
            training_trials=tuple(training_trials),
            collector=ArtifactCollector(self._counter, self._sink),
            degraded=self._degraded,
        )
        self._finalized.clear()
        self._logger.info(
            "Session %s started: category=%s trials=%d training=%s degraded=%s",
            self._session.session_id, category, len(trials), training, self._degraded,
        )
        self._enter(Phase.TRAINING_INSTRUCTION if training else Phase.NEUTRAL_INSTRUCTION)
        return True

    def advance(self) -> bool:
        if self._phase is not Phase.NEUTRAL_READY:
            return self._reject("advance")
        self._enter(Phase.NEUTRAL_CAPTURE)
        return True

    def repeat_training(self) -> bool:
        if self._phase is not Phase.TRAINING_COMPLETE or self._session is None:
            return self._reject("repeat_training")
        self._session.restart_training()
        self._enter(Phase.TRAINING_INSTRUCTION)
        return True

    def continue_after_training(self) -> bool:
        if self._phase is not Phase.TRAINING_COMPLETE:
            return self._reject("continue_after_training")
        self._enter(Phase.NEUTRAL_INSTRUCTION)
        return True

    def abort(self) -> bool:
        if self._phase.terminal or self._phase is Phase.CATEGORY_SELECTION:
            return self._reject("abort")
        session = self._session
        self._session = None
        if session is not None:
            self._logger.warning(
                "Session %s aborted in %s; discarding %d image(s)",
                session.session_id, self._phase.value, session.collector.count,
            )
            session.collector.reset()
        self._enter(Phase.CATEGORY_SELECTION)
        return True

    def reset(self) -> bool:
        session = self._session
        self._session = None
        if session is not None and session.archive is None and not session.finalize_started:
            session.collector.reset()
        self._logger.info("Reset from %s", self._phase.value)
        self._enter(Phase.CATEGORY_SELECTION)
        return True

    def _reject(self, signal: str) -> bool:
        self._logger.info("Ignoring %s in phase %s", signal, self._phase.value)
        return False

    # ------------------------------------------------------------------
    # Waiting helpers

    async def wait_for_phase(self, phase: Phase, timeout: Optional[float] = None) -> PhaseSnapshot:
        if self._phase is phase:
            return self.snapshot()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        waiter = (phase, future)
        self._phase_waiters.append(waiter)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            if waiter in self._phase_waiters:
                self._phase_waiters.remove(waiter)

    async def wait_finalized(self, timeout: Optional[float] = None) -> Optional[ArchiveResult]:
        await asyncio.wait_for(self._finalized.wait(), timeout)
        return self._session.archive if self._session else None

    async def close(self) -> None:
        """Stop the timer and let in-flight captures and packaging finish."""
        self._cancel_timer()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Transitions

    def _enter(self, phase: Phase) -> None:
        self._cancel_timer()
        previous = self._phase
        self._epoch += 1
        self._phase = phase
        self._countdown = None
        self._logger.info("Phase %s -> %s (epoch %d)", previous.value, phase.value, self._epoch)

        snapshot = self.snapshot()
        self._notify(snapshot)
        self._resolve_waiters(snapshot)

        entry = self._entry_actions.get(phase)
        if entry is not None:
            entry(self)

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()

    def _start_timer(self, duration_s: float, action: Callable[[], None], *, name: str) -> None:
        epoch = self._epoch

        def on_tick(remaining: int) -> None:
            if epoch != self._epoch:
                return
            self._countdown = remaining
            self._logger.debug("%s countdown %d", name, remaining)
            self._notify(self.snapshot())

        def on_expire() -> None:
            if epoch != self._epoch:
                self._logger.debug("Ignoring stale %s timer (epoch %d, now %d)", name, epoch, self._epoch)
                return
            self._countdown = 0
            action()

        self._timer = Countdown(
            duration_s,
            on_expire,
            on_tick=on_tick,
            steps=self._config.steps_for(duration_s),
            name=name,
            logger=self._logger,
        ).start()

    def _notify(self, snapshot: PhaseSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                self._logger.exception("Phase listener failed")

    def _resolve_waiters(self, snapshot: PhaseSnapshot) -> None:
        for waiter in list(self._phase_waiters):
            phase, future = waiter
            if phase is snapshot.phase and not future.done():
                future.set_result(snapshot)
                self._phase_waiters.remove(waiter)

    # ------------------------------------------------------------------
    # Entry actions

    def _enter_training_instruction(self) -> None:
        self._start_timer(
            self._config.instruction_dwell_s,
            lambda: self._enter(Phase.TRAINING_TASK),
            name="training-instruction",
        )

    def _enter_training_task(self) -> None:
        self._start_timer(self._config.task_countdown_s, self._finish_training_trial, name="training-task")

    def _finish_training_trial(self) -> None:
        session = self._session
        if session is None:
            return
        session.advance_training()
        if session.current_training_trial is not None:
            self._enter(Phase.TRAINING_REST)
        else:
            self._enter(Phase.TRAINING_COMPLETE)

    def _enter_training_rest(self) -> None:
        self._start_timer(
            self._config.training_rest_s,
            lambda: self._enter(Phase.TRAINING_TASK),
            name="training-rest",
        )

    def _enter_training_complete(self) -> None:
        if self._config.unattended:
            self._start_timer(
                self._config.ready_delay_s,
                lambda: self._enter(Phase.NEUTRAL_INSTRUCTION),
                name="training-complete",
            )

    def _enter_neutral_instruction(self) -> None:
        self._start_timer(
            self._config.instruction_dwell_s,
            lambda: self._enter(Phase.NEUTRAL_READY),
            name="neutral-instruction",
        )

    def _enter_neutral_ready(self) -> None:
        if self._config.unattended:
            self._start_timer(
                self._config.ready_delay_s,
                lambda: self._enter(Phase.NEUTRAL_CAPTURE),
                name="neutral-ready",
            )

    def _enter_neutral_capture(self) -> None:
        labels = self._phase_labels(lambda role: f"{role.value}_neutral")
        self._spawn(self._neutral_capture(self._epoch, labels), "neutral-capture")

    def _enter_rest(self) -> None:
        self._start_timer(self._config.rest_s, lambda: self._enter(Phase.TASK), name="rest")

    def _enter_task(self) -> None:
        self._start_timer(self._config.task_countdown_s, self._on_task_countdown, name="task")

    def _on_task_countdown(self) -> None:
        session = self._session
        trial = session.current_trial if session else None
        if trial is None:
            self._enter(Phase.COMPLETE)
            return
        labels = self._phase_labels(lambda role: trial.capture_label(role.value))
        self._spawn(self._task_capture(self._epoch, labels), f"task:{trial.label}")

    def _enter_complete(self) -> None:
        session = self._session
        if session is None or session.finalize_started:
            return
        session.finalize_started = True
        self._spawn(self._finalize(session), "finalize")

    _entry_actions: Dict[Phase, Callable[["ExperimentStateMachine"], None]] = {
        Phase.TRAINING_INSTRUCTION: _enter_training_instruction,
        Phase.TRAINING_TASK: _enter_training_task,
        Phase.TRAINING_REST: _enter_training_rest,
        Phase.TRAINING_COMPLETE: _enter_training_complete,
        Phase.NEUTRAL_INSTRUCTION: _enter_neutral_instruction,
        Phase.NEUTRAL_READY: _enter_neutral_ready,
        Phase.NEUTRAL_CAPTURE: _enter_neutral_capture,
        Phase.REST: _enter_rest,
        Phase.TASK: _enter_task,
        Phase.COMPLETE: _enter_complete,
    }

    # ------------------------------------------------------------------
    # Background work

    def _spawn(self, coro, context: str) -> asyncio.Task:
        return create_logged_task(coro, logger=self._logger, context=context, pending=self._tasks)

    def _phase_labels(self, label_for: Callable[[CameraRole], str]) -> Dict[CameraRole, str]:
        roles = self.capture_roles
        if not self._degraded and CameraRole.FIELD not in roles:
            self._logger.warning("Field camera not bound; capturing %s with face only", self._phase.value)
        return {role: label_for(role) for role in roles}

    async def _neutral_capture(self, epoch: int, labels: Dict[CameraRole, str]) -> None:
        if await self._capture_phase(epoch, Phase.NEUTRAL_CAPTURE, labels):
            self._enter(Phase.REST)

    async def _task_capture(self, epoch: int, labels: Dict[CameraRole, str]) -> None:
        if not await self._capture_phase(epoch, Phase.TASK, labels):
            return
        session = self._session
        if session is None:
            return
        session.advance_cursor()
        if session.current_trial is None:
            self._enter(Phase.COMPLETE)
        else:
            self._enter(Phase.REST)

    async def _capture_phase(self, epoch: int, phase: Phase, labels: Dict[CameraRole, str]) -> bool:
        """Capture every role in ``labels``, retrying failed roles only.

        Returns False when the results went stale; True once the phase may
        advance (all roles captured or attempts exhausted).
        """
        pending = dict(labels)
        attempts = self._config.phase_capture_attempts

        for attempt in range(1, attempts + 1):
            roles: Sequence[CameraRole] = list(pending)
            results = await asyncio.gather(
                *(self._capture.capture(role, pending[role]) for role in roles),
                return_exceptions=True,
            )
            if epoch != self._epoch or self._session is None:
                self._logger.warning(
                    "Discarding %d stale capture result(s) for %s (epoch %d, now %d)",
                    len(results), phase.value, epoch, self._epoch,
                )
                return False

            session = self._session
            for role, result in zip(roles, results):
                if isinstance(result, BaseException):
                    self._logger.error(
                        "Capture %s raised unexpectedly", pending[role], exc_info=result,
                    )
                    continue
                session.record_capture(phase.value, result)
                if isinstance(result, CaptureSuccess):
                    if session.collector.add(result.image):
                        pending.pop(role, None)
                elif _field_stream_lost(result):
                    self._logger.warning("Field stream lost during %s; not retrying field", phase.value)
                    pending.pop(role, None)
            self._notify(self.snapshot())

            if not pending:
                return True
            if attempt < attempts:
                self._logger.warning(
                    "Retrying %s capture for %s in %.2fs (attempt %d/%d)",
                    phase.value, ", ".join(role.value for role in pending),
                    self._config.phase_retry_delay_s, attempt + 1, attempts,
                )
                await asyncio.sleep(self._config.phase_retry_delay_s)
                if epoch != self._epoch:
                    self._logger.warning("Capture retry for %s abandoned; phase moved on", phase.value)
                    return False

        self._logger.error(
            "Giving up on %s capture for %s after %d attempts",
            phase.value, ", ".join(pending.values()), attempts,
        )
        return True

    async def _finalize(self, session: ExperimentSession) -> None:
        try:
            result = await session.collector.finalize(session.category)
            session.archive = result
            if result.fallback:
                self._logger.warning(
                    "Session %s finalized without archive (%d file(s) delivered individually)",
                    session.session_id, len(result.fallback_locations),
                )
            else:
                self._logger.info("Session %s finalized as %s", session.session_id, result.filename)
        finally:
            if session is self._session:
                self._finalized.set()
                self._notify(self.snapshot())


def _field_stream_lost(result) -> bool:
    return (
        isinstance(result, CaptureFailure)
        and result.role is CameraRole.FIELD
        and result.reason is CaptureFailureReason.NO_ACTIVE_STREAM
    )


__all__ = ["ExperimentStateMachine", "Phase", "PhaseListener", "PhaseSnapshot"]
