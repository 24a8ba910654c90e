"""Camera sources for the effort logger: registry, backends and still capture."""

from .backends import CameraBackend, MockCameraBackend, OpenCVCameraBackend
from .camera_models import CameraBinding, CameraDevice, CameraRole, CapturedImage, FrameSource
from .frame_capture import (
    CaptureFailure,
    CaptureFailureReason,
    CaptureResult,
    CaptureSuccess,
    FrameCaptureService,
    RetryPolicy,
    capture_filename,
)
from .registry import CameraRegistry
from .selection import CameraSelectionStore, resolve_selection

__all__ = [
    "CameraBackend",
    "CameraBinding",
    "CameraDevice",
    "CameraRegistry",
    "CameraRole",
    "CameraSelectionStore",
    "CapturedImage",
    "CaptureFailure",
    "CaptureFailureReason",
    "CaptureResult",
    "CaptureSuccess",
    "FrameCaptureService",
    "FrameSource",
    "MockCameraBackend",
    "OpenCVCameraBackend",
    "RetryPolicy",
    "capture_filename",
    "resolve_selection",
]
