"""OpenCV camera backend: V4L2 discovery on Linux, index probing elsewhere."""

from __future__ import annotations

import asyncio
import contextlib
import glob
import os
import sys
import threading
import time
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import cv2
import numpy as np

from effort_logger.core.errors import FrameNotReady
from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger

from ..camera_models import CameraDevice, FrameSource
from .base import CameraBackend

DEFAULT_MAX_DEVICES = 8
READ_ERROR_BACKOFF_S = 0.05


class OpenCVStream(FrameSource):
    """``cv2.VideoCapture`` with a daemon reader thread keeping the latest frame."""

    def __init__(self, device_id: str, cap: "cv2.VideoCapture", *, logger: LoggerLike = None) -> None:
        self.device_id = device_id
        self._cap = cap
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self._lock = threading.Lock()
        self._frame: Optional[np.ndarray] = None
        self._frame_count = 0
        self._closed = False
        self._size = (
            int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
            int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
        )
        self._thread = threading.Thread(target=self._reader_loop, name=f"camera-{device_id}", daemon=True)
        self._thread.start()

    # ------------------------------------------------------------------ FrameSource

    def read(self) -> np.ndarray:
        with self._lock:
            frame = self._frame
        if self._closed or frame is None:
            raise FrameNotReady(f"No frame decoded yet from {self.device_id}")
        return frame.copy()

    @property
    def frame_size(self) -> Tuple[int, int]:
        return self._size

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def frame_count(self) -> int:
        return self._frame_count

    # ------------------------------------------------------------------ lifecycle

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=1.0)
        with contextlib.suppress(Exception):
            self._cap.release()
        self._logger.debug("Closed stream %s after %d frames", self.device_id, self._frame_count)

    def _reader_loop(self) -> None:
        while not self._closed:
            success, frame = self._cap.read()
            if not success or frame is None:
                time.sleep(READ_ERROR_BACKOFF_S)
                continue
            with self._lock:
                self._frame = frame
                self._frame_count += 1
            if self._size == (0, 0):
                height, width = frame.shape[:2]
                reported = (
                    int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
                    int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
                )
                self._size = reported if all(reported) else (width, height)


class OpenCVCameraBackend(CameraBackend):
    name = "opencv"

    def __init__(
        self,
        *,
        max_devices: int = DEFAULT_MAX_DEVICES,
        resolution: Optional[Tuple[int, int]] = None,
        logger: LoggerLike = None,
    ) -> None:
        self._max_devices = max_devices
        self._resolution = resolution
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)
        self._open_ids: set[str] = set()

    # ------------------------------------------------------------------ discovery

    async def list_devices(self) -> List[CameraDevice]:
        return await asyncio.to_thread(self._discover)

    def _discover(self) -> List[CameraDevice]:
        if sys.platform == "linux":
            devices = _discover_linux(self._max_devices)
        else:
            devices = _discover_by_index(self._max_devices, busy=set(self._open_ids))
        self._logger.debug("Discovered %d camera(s): %s", len(devices), [d.id for d in devices])
        return devices

    # ------------------------------------------------------------------ streams

    async def acquire_stream(self, device_id: Optional[str] = None) -> FrameSource:
        return await asyncio.to_thread(self._open, device_id)

    def _open(self, device_id: Optional[str]) -> OpenCVStream:
        target = device_id or self._default_device()
        if target.startswith("/dev/") and os.path.exists(target) and not os.access(target, os.R_OK):
            raise PermissionError(f"No read access to {target}")

        source = int(target) if target.isdigit() else target
        api = getattr(cv2, "CAP_V4L2", None) if sys.platform == "linux" else None
        cap = cv2.VideoCapture(source, api) if api is not None else cv2.VideoCapture(source)
        if not cap or not cap.isOpened():
            if cap:
                cap.release()
            raise RuntimeError(f"Failed to open camera {target}")

        if self._resolution:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._resolution[0])
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._resolution[1])

        self._logger.info("Opened camera %s", target)
        self._open_ids.add(target)
        return OpenCVStream(target, cap, logger=self._logger)

    def _default_device(self) -> str:
        if sys.platform == "linux":
            nodes = _capture_nodes()
            if nodes:
                return f"/dev/video{nodes[0]}"
        return "0"

    async def release(self, stream: FrameSource) -> None:
        if isinstance(stream, OpenCVStream):
            await asyncio.to_thread(stream.close)
            self._open_ids.discard(stream.device_id)


def _capture_nodes() -> list[int]:
    """Numeric indices of /dev/video* nodes that are capture devices."""

    indices: list[int] = []
    for path in sorted(glob.glob("/dev/video*")):
        try:
            index = int(Path(path).name.replace("video", ""))
        except ValueError:
            continue
        if _is_capture_node(index):
            indices.append(index)
    return sorted(indices)


def _is_capture_node(index: int) -> bool:
    # UVC cameras expose a metadata node next to the capture node; only index 0 captures.
    index_file = Path(f"/sys/class/video4linux/video{index}/index")
    try:
        if index_file.exists():
            return index_file.read_text(encoding="utf-8").strip() == "0"
    except OSError:
        return True
    return True


def _read_sysfs_name(index: int) -> Optional[str]:
    sys_name = Path(f"/sys/class/video4linux/video{index}/name")
    try:
        if sys_name.exists():
            text = sys_name.read_text(encoding="utf-8").strip()
            return text or None
    except OSError:
        return None
    return None


def _discover_linux(max_devices: int) -> List[CameraDevice]:
    devices: list[CameraDevice] = []
    for index in _capture_nodes()[:max_devices]:
        dev_path = f"/dev/video{index}"
        devices.append(CameraDevice(id=dev_path, label=_read_sysfs_name(index) or ""))
    return devices


def _discover_by_index(max_devices: int, busy: Iterable[str] = ()) -> List[CameraDevice]:
    """Probe indices 0..max_devices-1; indices in ``busy`` are already open here and are not reopened."""

    busy = set(busy)
    devices: list[CameraDevice] = []
    for index in range(max_devices):
        if str(index) in busy:
            devices.append(CameraDevice(id=str(index), label=""))
            continue
        cap = cv2.VideoCapture(index)
        opened = bool(cap and cap.isOpened())
        if cap:
            cap.release()
        if not opened:
            continue
        devices.append(CameraDevice(id=str(index), label=""))
    return devices


__all__ = ["OpenCVCameraBackend", "OpenCVStream"]
