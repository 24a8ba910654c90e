"""Typed configuration for experiment sessions."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from effort_logger.core.config_manager import ConfigManager, get_config_manager, stringify
from effort_logger.core.errors import ConfigurationError, UnknownCategory
from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger

EFFORT_LEVELS = ("low", "high")

DEFAULT_CATEGORIES: Tuple[str, ...] = ("M", "F")
DEFAULT_MARKERS = {"low": "30%", "high": "70%"}
DEFAULT_REPETITIONS = 4
DEFAULT_INSTRUCTION_DWELL_S = 5.0
DEFAULT_READY_DELAY_S = 2.0
DEFAULT_REST_S = 10.0
DEFAULT_TRAINING_REST_S = 5.0
DEFAULT_TASK_COUNTDOWN_S = 3.0
DEFAULT_TICK_S = 1.0
DEFAULT_CAPTURE_ATTEMPTS = 5
DEFAULT_CAPTURE_RETRY_DELAY_S = 0.2
DEFAULT_PHASE_CAPTURE_ATTEMPTS = 3
DEFAULT_PHASE_RETRY_DELAY_S = 1.0
DEFAULT_BIND_ATTEMPTS = 3
DEFAULT_BIND_RETRY_DELAY_S = 1.0
DEFAULT_FALLBACK_SIZE = (640, 480)
DEFAULT_JPEG_QUALITY = 95
DEFAULT_OUTPUT_DIR = Path("./data")
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True, slots=True)
class ExperimentConfig:
    categories: Tuple[str, ...] = DEFAULT_CATEGORIES
    markers: Mapping[str, Mapping[str, str]] = field(default_factory=dict)
    repetitions: int = DEFAULT_REPETITIONS
    instruction_dwell_s: float = DEFAULT_INSTRUCTION_DWELL_S
    ready_delay_s: float = DEFAULT_READY_DELAY_S
    rest_s: float = DEFAULT_REST_S
    training_rest_s: float = DEFAULT_TRAINING_REST_S
    task_countdown_s: float = DEFAULT_TASK_COUNTDOWN_S
    tick_s: float = DEFAULT_TICK_S
    unattended: bool = False
    capture_attempts: int = DEFAULT_CAPTURE_ATTEMPTS
    capture_retry_delay_s: float = DEFAULT_CAPTURE_RETRY_DELAY_S
    phase_capture_attempts: int = DEFAULT_PHASE_CAPTURE_ATTEMPTS
    phase_retry_delay_s: float = DEFAULT_PHASE_RETRY_DELAY_S
    bind_attempts: int = DEFAULT_BIND_ATTEMPTS
    bind_retry_delay_s: float = DEFAULT_BIND_RETRY_DELAY_S
    fallback_width: int = DEFAULT_FALLBACK_SIZE[0]
    fallback_height: int = DEFAULT_FALLBACK_SIZE[1]
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    output_dir: Path = DEFAULT_OUTPUT_DIR
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        if not self.categories:
            raise ConfigurationError("At least one category is required")
        if len(set(self.categories)) != len(self.categories):
            raise ConfigurationError(f"Duplicate categories: {', '.join(self.categories)}")
        if self.repetitions <= 0:
            raise ConfigurationError("repetitions must be > 0")
        for name in ("capture_attempts", "phase_capture_attempts", "bind_attempts"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1")
        for name in (
            "instruction_dwell_s", "ready_delay_s", "rest_s", "training_rest_s",
            "task_countdown_s", "capture_retry_delay_s", "phase_retry_delay_s", "bind_retry_delay_s",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0")
        if self.tick_s <= 0:
            raise ConfigurationError("tick_s must be > 0")
        if not 1 <= self.jpeg_quality <= 100:
            raise ConfigurationError("jpeg_quality must be within 1..100")
        if self.fallback_width <= 0 or self.fallback_height <= 0:
            raise ConfigurationError("fallback resolution must be positive")

    # ------------------------------------------------------------------

    @property
    def fallback_size(self) -> Tuple[int, int]:
        return (self.fallback_width, self.fallback_height)

    def check_category(self, category: str) -> str:
        if category not in self.categories:
            raise UnknownCategory(category, tuple(self.categories))
        return category

    def marker_for(self, category: str, effort_level: str) -> str:
        self.check_category(category)
        if effort_level not in EFFORT_LEVELS:
            raise ConfigurationError(f"Unknown effort level {effort_level!r}")
        return self.markers.get(category, {}).get(effort_level, DEFAULT_MARKERS[effort_level])

    def steps_for(self, duration_s: float) -> int:
        """Countdown ticks for a phase of ``duration_s`` at ``tick_s`` resolution."""
        steps = int(round(duration_s / self.tick_s)) if duration_s > 0 else 1
        return max(1, steps)

    def with_overrides(self, **overrides: Any) -> "ExperimentConfig":
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, str],
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        manager: Optional[ConfigManager] = None,
        logger: LoggerLike = None,
    ) -> "ExperimentConfig":
        return load_config(config, overrides, manager=manager, logger=logger)


def load_config(
    config: Mapping[str, str],
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    manager: Optional[ConfigManager] = None,
    logger: LoggerLike = None,
) -> ExperimentConfig:
    """Build a validated ExperimentConfig from parsed ``config.txt`` values + overrides."""

    log = ensure_structured_logger(logger, fallback_name=__name__)
    mgr = manager or get_config_manager()

    merged: Dict[str, str] = dict(config)
    if overrides:
        for key, value in overrides.items():
            if value is not None:
                merged[key] = stringify(value)

    categories = tuple(item.upper() for item in mgr.get_list(merged, "categories", list(DEFAULT_CATEGORIES)))

    markers: Dict[str, Dict[str, str]] = {}
    for category in categories:
        for level in EFFORT_LEVELS:
            key = f"marker_{category}_{level}"
            if key in merged:
                markers.setdefault(category, {})[level] = mgr.get_str(merged, key)

    result = ExperimentConfig(
        categories=categories,
        markers=markers,
        repetitions=mgr.get_int(merged, "repetitions", DEFAULT_REPETITIONS),
        instruction_dwell_s=mgr.get_float(merged, "instruction_dwell_s", DEFAULT_INSTRUCTION_DWELL_S),
        ready_delay_s=mgr.get_float(merged, "ready_delay_s", DEFAULT_READY_DELAY_S),
        rest_s=mgr.get_float(merged, "rest_s", DEFAULT_REST_S),
        training_rest_s=mgr.get_float(merged, "training_rest_s", DEFAULT_TRAINING_REST_S),
        task_countdown_s=mgr.get_float(merged, "task_countdown_s", DEFAULT_TASK_COUNTDOWN_S),
        tick_s=mgr.get_float(merged, "tick_s", DEFAULT_TICK_S),
        unattended=mgr.get_bool(merged, "unattended", False),
        capture_attempts=mgr.get_int(merged, "capture_attempts", DEFAULT_CAPTURE_ATTEMPTS),
        capture_retry_delay_s=mgr.get_float(merged, "capture_retry_delay_s", DEFAULT_CAPTURE_RETRY_DELAY_S),
        phase_capture_attempts=mgr.get_int(merged, "phase_capture_attempts", DEFAULT_PHASE_CAPTURE_ATTEMPTS),
        phase_retry_delay_s=mgr.get_float(merged, "phase_retry_delay_s", DEFAULT_PHASE_RETRY_DELAY_S),
        bind_attempts=mgr.get_int(merged, "bind_attempts", DEFAULT_BIND_ATTEMPTS),
        bind_retry_delay_s=mgr.get_float(merged, "bind_retry_delay_s", DEFAULT_BIND_RETRY_DELAY_S),
        fallback_width=mgr.get_int(merged, "fallback_width", DEFAULT_FALLBACK_SIZE[0]),
        fallback_height=mgr.get_int(merged, "fallback_height", DEFAULT_FALLBACK_SIZE[1]),
        jpeg_quality=mgr.get_int(merged, "jpeg_quality", DEFAULT_JPEG_QUALITY),
        output_dir=Path(mgr.get_str(merged, "output_dir", str(DEFAULT_OUTPUT_DIR))).expanduser(),
        log_level=mgr.get_str(merged, "log_level", DEFAULT_LOG_LEVEL).upper(),
    )
    log.debug(
        "Experiment config: categories=%s repetitions=%d unattended=%s",
        ",".join(result.categories), result.repetitions, result.unattended,
    )
    return result


__all__ = ["EFFORT_LEVELS", "ExperimentConfig", "load_config"]
