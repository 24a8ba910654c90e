"""Camera value types shared by the registry, backends and capture service."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

import numpy as np


class CameraRole(str, Enum):
    """Logical camera slot. ``face`` is mandatory, ``field`` optional."""

    FACE = "face"
    FIELD = "field"

    @classmethod
    def parse(cls, value: "CameraRole | str") -> "CameraRole":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown camera role {value!r}") from None


@dataclass(frozen=True, slots=True)
class CameraDevice:
    """A capture device as reported by enumeration."""

    id: str
    label: str = ""

    def display_label(self, index: int) -> str:
        return self.label or f"Camera {index + 1}"


class FrameSource(abc.ABC):
    """Live stream handle for one acquired device.

    ``read`` returns the most recent decoded BGR frame or raises
    ``FrameNotReady``. ``frame_size`` is ``(0, 0)`` until the decoder has
    reported dimensions.
    """

    device_id: Optional[str] = None

    @abc.abstractmethod
    def read(self) -> np.ndarray:
        ...

    @property
    @abc.abstractmethod
    def frame_size(self) -> Tuple[int, int]:
        ...

    @property
    @abc.abstractmethod
    def closed(self) -> bool:
        ...


@dataclass(slots=True)
class CameraBinding:
    role: CameraRole
    device_id: Optional[str]
    stream: FrameSource


@dataclass(frozen=True, slots=True)
class CapturedImage:
    """One encoded still; ``data`` holds the JPEG bytes."""

    filename: str
    data: bytes
    role: CameraRole
    label: str
    captured_at: datetime
    width: int
    height: int

    @property
    def size_bytes(self) -> int:
        return len(self.data)


__all__ = [
    "CameraBinding",
    "CameraDevice",
    "CameraRole",
    "CapturedImage",
    "FrameSource",
]
