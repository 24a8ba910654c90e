"""Unit tests for the command-line session runner."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from effort_logger.app import master
from effort_logger.core.paths import CONFIG_PATH
from effort_logger.modules.Cameras.backends import MockCameraBackend, OpenCVCameraBackend
from effort_logger.modules.Cameras.registry import CameraRegistry
from effort_logger.modules.Experiment.artifacts import DirectoryArchiveSink
from effort_logger.modules.Experiment.camera_setup import CameraSetupManager
from effort_logger.modules.Experiment.counter_store import CounterStore

FAST_CONFIG = """
instruction_dwell_s = 0.01
ready_delay_s = 0.01
rest_s = 0.01
training_rest_s = 0.01
task_countdown_s = 0.03
tick_s = 0.01
capture_retry_delay_s = 0.001
phase_retry_delay_s = 0.001
bind_retry_delay_s = 0.001
"""


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Keep state, logs and config inside tmp_path."""
    monkeypatch.setattr(master, "STATE_FILE", tmp_path / "state" / "state.json")
    monkeypatch.setattr(master, "ensure_directories", lambda: None)
    monkeypatch.setattr(master, "configure_logging", MagicMock())
    config = tmp_path / "config.txt"
    config.write_text(FAST_CONFIG, encoding="utf-8")
    return tmp_path


class SlowArchiveSink(DirectoryArchiveSink):
    """Fires ``on_deliver`` when packaging reaches the sink, then writes after a delay."""

    def __init__(self, out_dir, on_deliver, delay_s=0.05):
        super().__init__(out_dir)
        self.on_deliver = on_deliver
        self.delay_s = delay_s

    async def deliver_archive(self, filename, data):
        self.on_deliver()
        await asyncio.sleep(self.delay_s)
        return await super().deliver_archive(filename, data)


async def prepare_session(fast_config, state_store):
    config = fast_config.with_overrides(repetitions=1)
    registry = CameraRegistry(MockCameraBackend(frame_shape=(48, 64)))
    cameras = await CameraSetupManager(registry, config).prepare()
    counter = CounterStore(state_store, config.categories)
    return config, registry, cameras, counter


class TestParseArgs:

    def test_defaults(self):
        args = master.parse_args([])

        assert args.category is None
        assert args.repetitions is None
        assert args.unattended is None
        assert not args.training
        assert not args.mock_cameras
        assert args.config == CONFIG_PATH
        assert args.seed is None

    def test_flags(self):
        args = master.parse_args(
            ["--category", "f", "--repetitions", "2", "--unattended", "--training",
             "--face-camera", "/dev/video2", "--output-dir", "out", "--log-level", "debug", "--seed", "9"]
        )

        assert args.category == "F"
        assert args.repetitions == 2
        assert args.unattended is True
        assert args.training
        assert args.face_camera == "/dev/video2"
        assert args.output_dir == Path("out")
        assert args.log_level == "debug"
        assert args.seed == 9

    def test_invalid_log_level(self):
        with pytest.raises(SystemExit):
            master.parse_args(["--log-level", "loud"])

    def test_backend_choice(self):
        assert isinstance(master.build_backend(master.parse_args(["--mock-cameras"])), MockCameraBackend)
        assert isinstance(master.build_backend(master.parse_args([])), OpenCVCameraBackend)


class TestLoadExperimentConfig:

    @pytest.mark.asyncio
    async def test_cli_overrides_config_file(self, isolated):
        args = master.parse_args(
            ["--config", str(isolated / "config.txt"), "--repetitions", "2", "--unattended",
             "--output-dir", str(isolated / "out"), "--log-level", "warning"]
        )

        config = await master.load_experiment_config(args)

        assert config.repetitions == 2
        assert config.unattended
        assert config.rest_s == 0.01
        assert config.output_dir == isolated / "out"
        assert config.log_level == "WARNING"


class TestMain:

    @pytest.mark.asyncio
    async def test_list_cameras(self, isolated, capsys):
        code = await master.main(["--mock-cameras", "--list-cameras", "--config", str(isolated / "config.txt")])

        assert code == master.EXIT_OK
        out = capsys.readouterr().out
        assert "mock-0\tMock Camera A" in out
        assert "mock-1\tMock Camera B" in out

    @pytest.mark.asyncio
    async def test_unattended_session_writes_archive(self, isolated, capsys):
        out_dir = isolated / "out"
        code = await master.main(
            ["--mock-cameras", "--unattended", "--category", "M", "--repetitions", "1", "--seed", "4",
             "--config", str(isolated / "config.txt"), "--output-dir", str(out_dir)]
        )

        assert code == master.EXIT_OK
        assert (out_dir / "M-1.zip").exists()
        assert "Saved M-1.zip (6 images)" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_unattended_requires_category(self, isolated):
        code = await master.main(["--mock-cameras", "--unattended", "--config", str(isolated / "config.txt")])

        assert code == master.EXIT_FAILED

    @pytest.mark.asyncio
    async def test_denied_camera_access(self, isolated, monkeypatch):
        monkeypatch.setattr(master, "build_backend", lambda args: MockCameraBackend(deny_permission=True))

        code = await master.main(["--unattended", "--category", "M", "--config", str(isolated / "config.txt")])

        assert code == master.EXIT_NO_CAMERA

    @pytest.mark.asyncio
    async def test_missing_face_camera(self, isolated, monkeypatch):
        monkeypatch.setattr(master, "build_backend", lambda args: MockCameraBackend(devices=[]))

        code = await master.main(["--unattended", "--category", "M", "--config", str(isolated / "config.txt")])

        assert code == master.EXIT_NO_CAMERA

    @pytest.mark.asyncio
    async def test_invalid_config(self, isolated):
        (isolated / "config.txt").write_text("repetitions = 0\n", encoding="utf-8")

        code = await master.main(["--mock-cameras", "--config", str(isolated / "config.txt")])

        assert code == master.EXIT_FAILED


class TestRunSession:

    @pytest.mark.asyncio
    async def test_abort_while_archive_is_written_reports_archive(self, fast_config, state_store, tmp_path, capsys):
        config, registry, cameras, counter = await prepare_session(fast_config, state_store)
        abort_event = asyncio.Event()
        sink = SlowArchiveSink(tmp_path, abort_event.set)
        args = master.parse_args(["--category", "M", "--seed", "2"])

        code = await master.run_session(args, config, registry, counter, cameras, None, sink=sink, abort_event=abort_event)

        assert abort_event.is_set()
        assert code == master.EXIT_OK
        assert (tmp_path / "M-1.zip").exists()
        assert await counter.get("M") == 1
        out = capsys.readouterr().out
        assert "Saved M-1.zip (6 images)" in out
        assert "no archive written" not in out
        await registry.unbind_all()

    @pytest.mark.asyncio
    async def test_abort_before_complete_writes_nothing(self, fast_config, state_store, tmp_path, capsys):
        config, registry, cameras, counter = await prepare_session(fast_config, state_store)
        abort_event = asyncio.Event()
        abort_event.set()
        sink = DirectoryArchiveSink(tmp_path)
        args = master.parse_args(["--category", "M"])

        code = await master.run_session(args, config, registry, counter, cameras, None, sink=sink, abort_event=abort_event)

        assert code == master.EXIT_FAILED
        assert list(tmp_path.glob("*.zip")) == []
        assert await counter.get("M") == 0
        assert "Session aborted; no archive written." in capsys.readouterr().out
        await registry.unbind_all()
