"""Component-scoped logging helpers for Effort Logger."""

from __future__ import annotations

import logging
from typing import Optional, Union

LOGGER_NAMESPACE = "effort_logger"
DEFAULT_COMPONENT = "Core"


def _qualify(name: Optional[str]) -> str:
    if not name:
        return LOGGER_NAMESPACE
    if name == LOGGER_NAMESPACE or name.startswith(f"{LOGGER_NAMESPACE}."):
        return name
    return f"{LOGGER_NAMESPACE}.{name}"


def _component_from(name: str) -> str:
    if name.startswith(LOGGER_NAMESPACE):
        tail = name[len(LOGGER_NAMESPACE):].lstrip(".")
        # effort_logger.modules.Cameras.registry -> registry
        return tail.rsplit(".", 1)[-1] if tail else DEFAULT_COMPONENT
    return name or DEFAULT_COMPONENT


class StructuredLogger:
    """Wraps a stdlib logger and tags every message with ``[Component]``."""

    __slots__ = ("_logger", "_component")

    def __init__(self, logger: logging.Logger, component: Optional[str] = None) -> None:
        self._logger = logger
        self._component = component or _component_from(logger.name)

    def __getattr__(self, item):
        return getattr(self._logger, item)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"StructuredLogger({self._logger.name!r}, component={self._component!r})"

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def component(self) -> str:
        return self._component

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def _tag(self, message: object) -> str:
        text = str(message)
        prefix = f"[{self._component}]"
        return text if text.startswith(prefix) else f"{prefix} {text}"

    def log(self, level: int, message: object, *args, **kwargs) -> None:
        self._logger.log(level, self._tag(message), *args, **kwargs)

    def debug(self, message: object, *args, **kwargs) -> None:
        self._logger.debug(self._tag(message), *args, **kwargs)

    def info(self, message: object, *args, **kwargs) -> None:
        self._logger.info(self._tag(message), *args, **kwargs)

    def warning(self, message: object, *args, **kwargs) -> None:
        self._logger.warning(self._tag(message), *args, **kwargs)

    def error(self, message: object, *args, **kwargs) -> None:
        self._logger.error(self._tag(message), *args, **kwargs)

    def exception(self, message: object, *args, **kwargs) -> None:
        kwargs.setdefault("exc_info", True)
        self._logger.error(self._tag(message), *args, **kwargs)

    def critical(self, message: object, *args, **kwargs) -> None:
        self._logger.critical(self._tag(message), *args, **kwargs)

    def getChild(self, suffix: str) -> "StructuredLogger":
        return StructuredLogger(self._logger.getChild(suffix), component=f"{self._component}.{suffix}")


LoggerLike = Union[StructuredLogger, logging.Logger, logging.LoggerAdapter, None]


def ensure_structured_logger(
    logger: LoggerLike,
    *,
    component: Optional[str] = None,
    fallback_name: Optional[str] = None,
) -> StructuredLogger:
    """Return ``logger`` as a StructuredLogger, creating one when None."""

    if isinstance(logger, StructuredLogger):
        return logger
    if isinstance(logger, logging.LoggerAdapter):
        return StructuredLogger(logger.logger, component=component)
    if isinstance(logger, logging.Logger):
        return StructuredLogger(logger, component=component)
    return get_module_logger(fallback_name)


def get_module_logger(name: Optional[str] = None) -> StructuredLogger:
    """Return a structured logger inside the ``effort_logger`` namespace."""
    return StructuredLogger(logging.getLogger(_qualify(name)))


__all__ = [
    "LOGGER_NAMESPACE",
    "LoggerLike",
    "StructuredLogger",
    "ensure_structured_logger",
    "get_module_logger",
]
