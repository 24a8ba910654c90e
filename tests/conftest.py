"""Shared pytest configuration and fixtures for the Effort Logger test suite."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring a physical camera"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require a physical camera",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def fast_config():
    """Experiment config with millisecond phase timings."""
    from effort_logger.modules.Experiment.config import ExperimentConfig

    return ExperimentConfig(
        categories=("M", "F"),
        repetitions=4,
        instruction_dwell_s=0.01,
        ready_delay_s=0.01,
        rest_s=0.01,
        training_rest_s=0.01,
        task_countdown_s=0.03,
        tick_s=0.01,
        unattended=True,
        capture_attempts=3,
        capture_retry_delay_s=0.001,
        phase_capture_attempts=2,
        phase_retry_delay_s=0.001,
        bind_attempts=2,
        bind_retry_delay_s=0.001,
    )


@pytest.fixture
def state_store(tmp_path):
    """JSON state store backed by a temporary file."""
    from effort_logger.core.state_store import JsonStateStore

    return JsonStateStore(tmp_path / "state" / "state.json")


@pytest.fixture
def mock_backend():
    """Two synthetic cameras with small frames."""
    from effort_logger.modules.Cameras.backends.mock_backend import MockCameraBackend

    return MockCameraBackend(frame_shape=(48, 64))


@pytest.fixture
def fixed_clock():
    """Clock returning 2024-05-01T10:00:00.123Z."""
    stamp = datetime(2024, 5, 1, 10, 0, 0, 123000, tzinfo=timezone.utc)
    return lambda: stamp
