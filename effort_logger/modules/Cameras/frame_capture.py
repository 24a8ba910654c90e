"""Single-still capture from a bound camera role.

``FrameCaptureService.capture`` never raises for the expected failure
modes; it returns a tagged ``CaptureSuccess`` / ``CaptureFailure`` so the
caller decides whether to retry the phase or move on.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Protocol, Tuple, Union

import cv2
import numpy as np

from effort_logger.core.errors import CaptureEncodingFailure, FrameNotReady
from effort_logger.core.logging_utils import LoggerLike, ensure_structured_logger

from .camera_models import CameraRole, CapturedImage, FrameSource

DEFAULT_JPEG_QUALITY = 95
DEFAULT_FALLBACK_SIZE = (640, 480)

Clock = Callable[[], datetime]


class StreamLookup(Protocol):
    def stream_for(self, role: CameraRole | str) -> Optional[FrameSource]:
        ...


class CaptureFailureReason(str, Enum):
    NO_ACTIVE_STREAM = "no_active_stream"
    EXHAUSTED = "exhausted"
    ENCODING_FAILED = "encoding_failed"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 5
    delay_s: float = 0.2

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_s < 0:
            raise ValueError("delay_s must be >= 0")


@dataclass(frozen=True, slots=True)
class CaptureSuccess:
    image: CapturedImage
    attempts: int

    ok = True

    @property
    def role(self) -> CameraRole:
        return self.image.role

    @property
    def label(self) -> str:
        return self.image.label


@dataclass(frozen=True, slots=True)
class CaptureFailure:
    reason: CaptureFailureReason
    role: CameraRole
    label: str
    attempts: int = 0
    detail: str = ""

    ok = False


CaptureResult = Union[CaptureSuccess, CaptureFailure]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_label(label: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "_", label or "").strip("_")
    return cleaned or "capture"


def capture_filename(label: str, when: datetime) -> str:
    """``face_neutral`` at 10:00:00.123 UTC -> ``face_neutral-2024-05-01T10-00-00-123Z.jpg``."""
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    when = when.astimezone(timezone.utc)
    stamp = f"{when.strftime('%Y-%m-%dT%H-%M-%S')}-{when.microsecond // 1000:03d}Z"
    return f"{sanitize_label(label)}-{stamp}.jpg"


def encode_jpeg(frame: np.ndarray, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    params = [cv2.IMWRITE_JPEG_QUALITY, int(quality)]
    try:
        success, encoded = cv2.imencode(".jpg", frame, params)
    except cv2.error as exc:
        raise CaptureEncodingFailure(str(exc)) from exc
    if not success:
        raise CaptureEncodingFailure("Failed to encode frame as JPEG")
    return encoded.tobytes()


class FrameCaptureService:

    def __init__(
        self,
        streams: StreamLookup,
        *,
        retry: Optional[RetryPolicy] = None,
        fallback_size: Tuple[int, int] = DEFAULT_FALLBACK_SIZE,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        clock: Optional[Clock] = None,
        logger: LoggerLike = None,
    ) -> None:
        self._streams = streams
        self.retry = retry or RetryPolicy()
        self.fallback_size = fallback_size
        self.jpeg_quality = jpeg_quality
        self._clock = clock or utc_now
        self._logger = ensure_structured_logger(logger, fallback_name=__name__)

    def has_stream(self, role: CameraRole | str) -> bool:
        return self._streams.stream_for(CameraRole.parse(role)) is not None

    async def capture(self, role: CameraRole | str, label: str) -> CaptureResult:
        role = CameraRole.parse(role)
        frame: Optional[np.ndarray] = None
        stream: Optional[FrameSource] = None
        attempts = 0

        while attempts < self.retry.max_attempts:
            stream = self._streams.stream_for(role)
            if stream is None:
                self._logger.warning("No active %s stream for %s", role.value, label)
                return CaptureFailure(CaptureFailureReason.NO_ACTIVE_STREAM, role, label, attempts)
            attempts += 1
            try:
                frame = stream.read()
                break
            except FrameNotReady:
                self._logger.debug(
                    "%s frame not ready for %s (attempt %d/%d)",
                    role.value, label, attempts, self.retry.max_attempts,
                )
                if attempts < self.retry.max_attempts:
                    await asyncio.sleep(self.retry.delay_s)

        if frame is None or stream is None:
            self._logger.warning("%s capture for %s exhausted after %d attempts", role.value, label, attempts)
            return CaptureFailure(
                CaptureFailureReason.EXHAUSTED, role, label, attempts, "frame never became ready",
            )

        width, height = stream.frame_size
        if not width or not height:
            width, height = self.fallback_size
            self._logger.warning(
                "%s stream reported no dimensions; using fallback %dx%d", role.value, width, height,
            )
            frame = cv2.resize(frame, (width, height))
        else:
            height, width = frame.shape[:2]

        if not frame.any():
            self._logger.warning("%s capture for %s is blank", role.value, label)

        try:
            data = await asyncio.to_thread(encode_jpeg, frame, self.jpeg_quality)
        except CaptureEncodingFailure as exc:
            self._logger.error("Encoding %s capture for %s failed: %s", role.value, label, exc)
            return CaptureFailure(CaptureFailureReason.ENCODING_FAILED, role, label, attempts, str(exc))

        captured_at = self._clock()
        image = CapturedImage(
            filename=capture_filename(label, captured_at),
            data=data,
            role=role,
            label=label,
            captured_at=captured_at,
            width=width,
            height=height,
        )
        self._logger.info("Captured %s (%dx%d, %d bytes)", image.filename, width, height, len(data))
        return CaptureSuccess(image=image, attempts=attempts)


__all__ = [
    "CaptureFailure",
    "CaptureFailureReason",
    "CaptureResult",
    "CaptureSuccess",
    "FrameCaptureService",
    "RetryPolicy",
    "capture_filename",
    "encode_jpeg",
    "sanitize_label",
    "utc_now",
]
