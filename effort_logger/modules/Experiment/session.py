"""Per-session state owned by the experiment state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from effort_logger.modules.Cameras.frame_capture import CaptureResult, CaptureSuccess

from .artifacts import ArchiveResult, ArtifactCollector
from .trial_sequencer import Trial


def make_session_id(category: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"session_{category}_{stamp}"


@dataclass(frozen=True, slots=True)
class CaptureRecord:
    phase: str
    role: str
    label: str
    ok: bool
    attempts: int
    filename: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SessionSummary:
    session_id: str
    category: str
    trials: Tuple[Trial, ...]
    cursor: int
    training_rounds: int
    images_collected: int
    captures_ok: int
    captures_failed: int
    degraded: bool
    finalized: bool
    archive: Optional[ArchiveResult]


@dataclass(slots=True)
class ExperimentSession:
    session_id: str
    category: str
    trials: Tuple[Trial, ...]
    training_trials: Tuple[Trial, ...]
    collector: ArtifactCollector
    degraded: bool = False
    cursor: int = 0
    training_cursor: int = 0
    training_rounds: int = 0
    finalize_started: bool = False
    archive: Optional[ArchiveResult] = None
    capture_log: List[CaptureRecord] = field(default_factory=list)

    # ------------------------------------------------------------------ measured trials

    @property
    def trial_count(self) -> int:
        return len(self.trials)

    @property
    def current_trial(self) -> Optional[Trial]:
        if self.cursor >= len(self.trials):
            return None
        return self.trials[self.cursor]

    @property
    def trials_remaining(self) -> int:
        return len(self.trials) - self.cursor

    def advance_cursor(self) -> int:
        if self.cursor < len(self.trials):
            self.cursor += 1
        return self.cursor

    # ------------------------------------------------------------------ training

    @property
    def current_training_trial(self) -> Optional[Trial]:
        if self.training_cursor >= len(self.training_trials):
            return None
        return self.training_trials[self.training_cursor]

    def advance_training(self) -> int:
        if self.training_cursor < len(self.training_trials):
            self.training_cursor += 1
        return self.training_cursor

    def restart_training(self) -> None:
        self.training_cursor = 0
        self.training_rounds += 1

    # ------------------------------------------------------------------ captures

    def record_capture(self, phase: str, result: CaptureResult) -> CaptureRecord:
        if isinstance(result, CaptureSuccess):
            record = CaptureRecord(
                phase=phase,
                role=result.role.value,
                label=result.label,
                ok=True,
                attempts=result.attempts,
                filename=result.image.filename,
            )
        else:
            record = CaptureRecord(
                phase=phase,
                role=result.role.value,
                label=result.label,
                ok=False,
                attempts=result.attempts,
                reason=result.reason.value,
            )
        self.capture_log.append(record)
        return record

    def summary(self) -> SessionSummary:
        return SessionSummary(
            session_id=self.session_id,
            category=self.category,
            trials=self.trials,
            cursor=self.cursor,
            training_rounds=self.training_rounds,
            images_collected=self.archive.image_count if self.archive else self.collector.count,
            captures_ok=sum(1 for record in self.capture_log if record.ok),
            captures_failed=sum(1 for record in self.capture_log if not record.ok),
            degraded=self.degraded,
            finalized=self.archive is not None,
            archive=self.archive,
        )


__all__ = ["CaptureRecord", "ExperimentSession", "SessionSummary", "make_session_id"]
