"""
Synthetic camera backend for development and tests.

Frames are generated with numpy; faults (permission denial, devices that fail
to open, frames that are not ready yet, undecoded dimensions) are injected
through constructor arguments. Every acquired stream is tracked so callers
can check that nothing is left open.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from effort_logger.core.errors import FrameNotReady
from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger

from ..camera_models import CameraDevice, FrameSource
from .base import CameraBackend

DEFAULT_MOCK_DEVICES = (
    CameraDevice(id="mock-0", label="Mock Camera A"),
    CameraDevice(id="mock-1", label="Mock Camera B"),
)


class MockStream(FrameSource):

    def __init__(
        self,
        device_id: str,
        *,
        frame_shape: Tuple[int, int] = (480, 640),
        not_ready_reads: int = 0,
        zero_dimensions: bool = False,
        blank: bool = False,
    ) -> None:
        self.device_id = device_id
        self._frame_shape = frame_shape
        self._not_ready_reads = not_ready_reads
        self._zero_dimensions = zero_dimensions
        self._blank = blank
        self._closed = False
        self.read_calls = 0

    def read(self) -> np.ndarray:
        self.read_calls += 1
        if self._closed:
            raise FrameNotReady(f"Stream {self.device_id} is closed")
        if self.read_calls <= self._not_ready_reads:
            raise FrameNotReady(f"Stream {self.device_id} warming up")
        height, width = self._frame_shape
        if self._blank:
            return np.zeros((height, width, 3), dtype=np.uint8)
        frame = np.empty((height, width, 3), dtype=np.uint8)
        frame[..., 0] = np.linspace(0, 255, width, dtype=np.uint8)[np.newaxis, :]
        frame[..., 1] = np.linspace(0, 255, height, dtype=np.uint8)[:, np.newaxis]
        frame[..., 2] = (self.read_calls * 17) % 256
        return frame

    @property
    def frame_size(self) -> Tuple[int, int]:
        if self._zero_dimensions:
            return (0, 0)
        height, width = self._frame_shape
        return (width, height)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True


class MockCameraBackend(CameraBackend):
    name = "mock"

    def __init__(
        self,
        devices: Optional[Iterable[CameraDevice]] = None,
        *,
        deny_permission: bool = False,
        failing_devices: Iterable[str] = (),
        not_ready_reads: int = 0,
        zero_dimensions: bool = False,
        blank_frames: bool = False,
        frame_shape: Tuple[int, int] = (480, 640),
        acquire_delay_s: float = 0.0,
        logger: LoggerLike = None,
    ) -> None:
        self.devices: List[CameraDevice] = list(DEFAULT_MOCK_DEVICES if devices is None else devices)
        self.deny_permission = deny_permission
        self.failing_devices: Set[str] = set(failing_devices)
        self.not_ready_reads = not_ready_reads
        self.zero_dimensions = zero_dimensions
        self.blank_frames = blank_frames
        self.frame_shape = frame_shape
        self.acquire_delay_s = acquire_delay_s
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self._active: Dict[int, MockStream] = {}
        self.acquire_count = 0
        self.release_count = 0

    @property
    def active_streams(self) -> List[MockStream]:
        return list(self._active.values())

    async def list_devices(self) -> List[CameraDevice]:
        if self.deny_permission:
            raise PermissionError("Camera access denied (mock)")
        return list(self.devices)

    async def acquire_stream(self, device_id: Optional[str] = None) -> FrameSource:
        if self.acquire_delay_s:
            await asyncio.sleep(self.acquire_delay_s)
        if self.deny_permission:
            raise PermissionError("Camera access denied (mock)")

        if not device_id:
            if not self.devices:
                raise RuntimeError("No cameras available")
            device_id = self.devices[0].id
        elif device_id not in {device.id for device in self.devices}:
            raise RuntimeError(f"Unknown device {device_id}")

        if device_id in self.failing_devices:
            raise RuntimeError(f"Device {device_id} failed to open")

        stream = MockStream(
            device_id,
            frame_shape=self.frame_shape,
            not_ready_reads=self.not_ready_reads,
            zero_dimensions=self.zero_dimensions,
            blank=self.blank_frames,
        )
        self._active[id(stream)] = stream
        self.acquire_count += 1
        self._logger.debug("Acquired mock stream %s (%d active)", device_id, len(self._active))
        return stream

    async def release(self, stream: FrameSource) -> None:
        if not isinstance(stream, MockStream):
            return
        if self._active.pop(id(stream), None) is not None:
            self.release_count += 1
        stream.close()


__all__ = ["DEFAULT_MOCK_DEVICES", "MockCameraBackend", "MockStream"]
