from .base import CameraBackend
from .mock_backend import MockCameraBackend, MockStream
from .opencv_backend import OpenCVCameraBackend, OpenCVStream

__all__ = [
    "CameraBackend",
    "MockCameraBackend",
    "MockStream",
    "OpenCVCameraBackend",
    "OpenCVStream",
]
