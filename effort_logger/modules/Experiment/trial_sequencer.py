"""Trial planning: balanced low/high effort trials in a random order."""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger

from .config import ExperimentConfig


class EffortLevel(str, Enum):
    LOW = "low"
    HIGH = "high"


class TrialKind(str, Enum):
    TRAINING = "training"
    MEASURED = "measured"


@dataclass(frozen=True, slots=True)
class Trial:
    effort_level: EffortLevel
    target_marker: str
    repetition_index: int
    kind: TrialKind = TrialKind.MEASURED

    @property
    def label(self) -> str:
        return f"{self.effort_level.value}_rep{self.repetition_index}"

    def capture_label(self, role: str) -> str:
        return f"{role}_{self.label}"


class TrialSequencer:
    """Derives the per-session trial plan.

    Each repetition contributes one ``low`` and one ``high`` trial; the whole
    list is then permuted once with ``random.Random.shuffle`` (Fisher-Yates).
    Pass ``seed`` or ``rng`` for a reproducible order.
    """

    def __init__(
        self,
        config: ExperimentConfig,
        *,
        seed: Optional[int] = None,
        rng: Optional[random.Random] = None,
        logger: LoggerLike = None,
    ) -> None:
        self._config = config
        self._rng = rng if rng is not None else random.Random(seed)
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    def plan(self, category: str, repetitions: Optional[int] = None) -> List[Trial]:
        reps = self._config.repetitions if repetitions is None else repetitions
        if reps <= 0:
            raise ValueError(f"repetitions must be > 0, got {reps}")
        self._config.check_category(category)

        trials: List[Trial] = []
        for index in range(1, reps + 1):
            for level in (EffortLevel.LOW, EffortLevel.HIGH):
                trials.append(
                    Trial(
                        effort_level=level,
                        target_marker=self._config.marker_for(category, level.value),
                        repetition_index=index,
                    )
                )
        self._rng.shuffle(trials)
        self._logger.info(
            "Planned %d trials for %s: %s", len(trials), category, " ".join(t.label for t in trials)
        )
        return trials

    def training_plan(self, category: str) -> List[Trial]:
        self._config.check_category(category)
        return [
            Trial(
                effort_level=level,
                target_marker=self._config.marker_for(category, level.value),
                repetition_index=1,
                kind=TrialKind.TRAINING,
            )
            for level in (EffortLevel.LOW, EffortLevel.HIGH)
        ]


__all__ = ["EffortLevel", "Trial", "TrialKind", "TrialSequencer"]
