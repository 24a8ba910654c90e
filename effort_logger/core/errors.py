"""Error taxonomy for the experiment engine.

Only ``PermissionDenied``, ``DeviceUnavailable`` (for the face role) and
``ConfigurationError`` are expected to reach the operator. The capture and
packaging errors are caught inside the engine and turned into logged,
bounded fallbacks.
"""

from __future__ import annotations

from typing import Optional


class EffortLoggerError(Exception):
    """Base class for every error raised by effort_logger."""


class PermissionDenied(EffortLoggerError):
    """Camera access was refused by the operating system or the user."""


class DeviceUnavailable(EffortLoggerError):
    """A stream could not be acquired for a device."""

    def __init__(self, role: Optional[str], device_id: Optional[str], reason: str = "") -> None:
        self.role = role
        self.device_id = device_id
        self.reason = reason
        target = device_id or "default device"
        message = f"Camera {target} unavailable for role {role or '?'}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NoActiveStream(EffortLoggerError):
    """Capture was requested for a role that has no bound stream."""


class FrameNotReady(EffortLoggerError):
    """The bound stream has not decoded a frame yet."""


class CaptureEncodingFailure(EffortLoggerError):
    """A frame could not be encoded to an image file."""


class PackagingFailure(EffortLoggerError):
    """The session archive could not be built or delivered."""


class ConfigurationError(EffortLoggerError):
    """Invalid or inconsistent configuration."""


class UnknownCategory(ConfigurationError):
    """A category outside the configured closed set was used."""

    def __init__(self, category: object, known: tuple[str, ...] = ()) -> None:
        self.category = category
        self.known = known
        expected = ", ".join(known) if known else "none configured"
        super().__init__(f"Unknown category {category!r} (expected one of: {expected})")


__all__ = [
    "CaptureEncodingFailure",
    "ConfigurationError",
    "DeviceUnavailable",
    "EffortLoggerError",
    "FrameNotReady",
    "NoActiveStream",
    "PackagingFailure",
    "PermissionDenied",
    "UnknownCategory",
]
