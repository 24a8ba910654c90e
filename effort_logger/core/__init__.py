from .asyncio_utils import add_task_exception_logger, cancel_and_wait, create_logged_task
from .config_manager import ConfigManager, get_config_manager
from .errors import (
    CaptureEncodingFailure,
    ConfigurationError,
    DeviceUnavailable,
    EffortLoggerError,
    FrameNotReady,
    NoActiveStream,
    PackagingFailure,
    PermissionDenied,
    UnknownCategory,
)
from .logging_config import configure_logging
from .logging_utils import LoggerLike, StructuredLogger, ensure_structured_logger, get_module_logger
from .state_store import JsonStateStore
from .timers import Countdown

__all__ = [
    'add_task_exception_logger',
    'cancel_and_wait',
    'create_logged_task',
    'ConfigManager',
    'get_config_manager',
    'CaptureEncodingFailure',
    'ConfigurationError',
    'DeviceUnavailable',
    'EffortLoggerError',
    'FrameNotReady',
    'NoActiveStream',
    'PackagingFailure',
    'PermissionDenied',
    'UnknownCategory',
    'configure_logging',
    'LoggerLike',
    'StructuredLogger',
    'ensure_structured_logger',
    'get_module_logger',
    'JsonStateStore',
    'Countdown',
]
