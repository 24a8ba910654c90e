"""Contract between the camera registry and the platform capture layer."""

from __future__ import annotations

import abc
from typing import List, Optional

from ..camera_models import CameraDevice, FrameSource


class CameraBackend(abc.ABC):
    """Platform capture layer.

    ``acquire_stream(None)`` requests an unconstrained default device; it is
    also how the registry obtains the temporary grant used for enumeration.
    Implementations raise ``PermissionError`` when access is refused and any
    other exception when the device cannot be opened.
    """

    name = "backend"

    @abc.abstractmethod
    async def list_devices(self) -> List[CameraDevice]:
        ...

    @abc.abstractmethod
    async def acquire_stream(self, device_id: Optional[str] = None) -> FrameSource:
        ...

    @abc.abstractmethod
    async def release(self, stream: FrameSource) -> None:
        ...


__all__ = ["CameraBackend"]
