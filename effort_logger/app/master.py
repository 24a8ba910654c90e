import argparse
import asyncio
import contextlib
import signal
import sys
from pathlib import Path
from typing import Optional

from effort_logger.core.asyncio_utils import cancel_and_wait, create_logged_task
from effort_logger.core.config_manager import get_config_manager
from effort_logger.core.errors import ConfigurationError, DeviceUnavailable, PermissionDenied
from effort_logger.core.logging_config import configure_logging
from effort_logger.core.logging_utils import get_module_logger
from effort_logger.core.paths import CONFIG_PATH, MASTER_LOG_FILE, STATE_FILE, ensure_directories
from effort_logger.core.state_store import JsonStateStore
from effort_logger.modules.Cameras.backends import CameraBackend, MockCameraBackend, OpenCVCameraBackend
from effort_logger.modules.Cameras.frame_capture import FrameCaptureService, RetryPolicy
from effort_logger.modules.Cameras.registry import CameraRegistry
from effort_logger.modules.Cameras.selection import CameraSelectionStore
from effort_logger.modules.Experiment.artifacts import ArchiveSink, DirectoryArchiveSink
from effort_logger.modules.Experiment.camera_setup import CameraSetupManager, CameraSetupResult
from effort_logger.modules.Experiment.config import ExperimentConfig, load_config
from effort_logger.modules.Experiment.counter_store import CounterStore
from effort_logger.modules.Experiment.state_machine import ExperimentStateMachine, Phase
from effort_logger.modules.Experiment.trial_sequencer import TrialSequencer

from .console import ConsoleView, StdinReader


logger = get_module_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_CAMERA = 2


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments. Unset options fall back to config.txt."""
    parser = argparse.ArgumentParser(
        prog="effort-logger",
        description="Effort Logger - timed-effort photo sessions with face and field cameras",
    )

    parser.add_argument(
        "--category",
        type=str.upper,
        default=None,
        help="Participant category (prompted when omitted)"
    )

    parser.add_argument(
        "--repetitions",
        type=int,
        default=None,
        help="Repetitions per effort level (default from config)"
    )

    parser.add_argument(
        "--training",
        action="store_true",
        help="Run the practice loop before the measured trials"
    )

    parser.add_argument(
        "--unattended",
        action="store_true",
        default=None,
        help="Advance decision points automatically"
    )

    parser.add_argument("--face-camera", type=str, default=None, help="Device id for the face camera")
    parser.add_argument("--field-camera", type=str, default=None, help="Device id for the field camera")

    parser.add_argument(
        "--mock-cameras",
        action="store_true",
        help="Use synthetic cameras instead of real devices"
    )

    parser.add_argument(
        "--list-cameras",
        action="store_true",
        help="List available cameras and exit"
    )

    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory receiving session archives (default: data/)"
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=CONFIG_PATH,
        help=f"Config file (default: {CONFIG_PATH})"
    )

    parser.add_argument(
        "--log-level",
        choices=['debug', 'info', 'warning', 'error', 'critical'],
        default=None,
        help="Logging level (default from config, else info)"
    )

    parser.add_argument(
        "--log-file",
        type=Path,
        default=MASTER_LOG_FILE,
        help="Rotating log file"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the trial order (random when omitted)"
    )

    return parser.parse_args(argv)


async def load_experiment_config(args: argparse.Namespace) -> ExperimentConfig:
    config_map = await get_config_manager().read_config_async(args.config)
    overrides = {
        "repetitions": args.repetitions,
        "unattended": args.unattended,
        "output_dir": args.output_dir,
        "log_level": args.log_level,
    }
    return load_config(config_map, overrides)


def build_backend(args: argparse.Namespace) -> CameraBackend:
    if args.mock_cameras:
        return MockCameraBackend()
    return OpenCVCameraBackend()


async def list_cameras(registry: CameraRegistry) -> int:
    try:
        devices = await registry.enumerate()
    except PermissionDenied as exc:
        print(f"Camera access denied: {exc}", file=sys.stderr)
        return EXIT_NO_CAMERA

    if not devices:
        print("No cameras found")
        return EXIT_NO_CAMERA
    for index, device in enumerate(devices):
        print(f"{device.id}\t{device.display_label(index)}")
    return EXIT_OK


async def choose_category(config: ExperimentConfig, counter: CounterStore, reader: StdinReader) -> Optional[str]:
    options = []
    for category in config.categories:
        options.append(f"{category} (next: {await counter.next_archive_name(category)})")
    print("Categories: " + ", ".join(options))

    while True:
        print("Category: ", end="", flush=True)
        line = await reader.readline()
        if line is None:
            return None
        choice = line.strip().upper()
        if choice in config.categories:
            return choice
        print(f"Unknown category '{line}'. Choose one of: {', '.join(config.categories)}")


async def operator_input(machine: ExperimentStateMachine, reader: StdinReader, abort_event: asyncio.Event) -> None:
    """Map operator lines to engine signals for the current phase."""
    while True:
        line = await reader.readline()
        if line is None:
            return
        text = line.strip().lower()
        if text in ("q", "quit", "abort"):
            abort_event.set()
            return
        phase = machine.phase
        if phase is Phase.NEUTRAL_READY:
            machine.advance()
        elif phase is Phase.TRAINING_COMPLETE:
            if text in ("r", "repeat"):
                machine.repeat_training()
            else:
                machine.continue_after_training()


async def run_session(
    args: argparse.Namespace,
    config: ExperimentConfig,
    registry: CameraRegistry,
    counter: CounterStore,
    cameras: CameraSetupResult,
    reader: Optional[StdinReader],
    *,
    sink: Optional[ArchiveSink] = None,
    abort_event: Optional[asyncio.Event] = None,
) -> int:
    capture = FrameCaptureService(
        registry,
        retry=RetryPolicy(config.capture_attempts, config.capture_retry_delay_s),
        fallback_size=config.fallback_size,
        jpeg_quality=config.jpeg_quality,
    )
    machine = ExperimentStateMachine(
        config,
        capture,
        counter,
        sink or DirectoryArchiveSink(config.output_dir),
        sequencer=TrialSequencer(config, seed=args.seed),
        degraded=cameras.degraded,
    )
    machine.subscribe(ConsoleView())

    category = args.category
    if category is None:
        if reader is None:
            raise ConfigurationError("--category is required in unattended mode")
        category = await choose_category(config, counter, reader)
        if category is None:
            return EXIT_FAILED

    if abort_event is None:
        abort_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, abort_event.set)
        except NotImplementedError:
            pass  # Windows doesn't support add_signal_handler

    input_task: Optional[asyncio.Task] = None
    if reader is not None:
        input_task = create_logged_task(operator_input(machine, reader, abort_event), logger=logger, context="operator-input")
    finalized_task = asyncio.create_task(machine.wait_finalized())
    abort_task = asyncio.create_task(abort_event.wait())

    try:
        machine.select_category(category, training=args.training)
        await asyncio.wait({finalized_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)

        if not finalized_task.done():
            if machine.abort() or machine.phase is not Phase.COMPLETE:
                logger.warning("Session aborted by operator")
                print("Session aborted; no archive written.")
                return EXIT_FAILED
            logger.info("Abort ignored; session is complete and its archive is being written")
            await finalized_task

        archive = finalized_task.result()
        if archive is None:
            return EXIT_FAILED
        if archive.fallback:
            print(f"Archive {archive.filename} could not be built; images saved individually in {config.output_dir}")
        else:
            print(f"Saved {archive.filename} ({archive.image_count} images) to {archive.location}")
        return EXIT_OK
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
        await cancel_and_wait(input_task)
        await cancel_and_wait(finalized_task)
        await cancel_and_wait(abort_task)
        await machine.close()


async def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for an Effort Logger session.

    Exit codes: 0 when an archive was produced, 1 when the session was
    aborted or failed, 2 when camera access was denied or no face camera
    could be opened.
    """
    args = parse_args(argv)

    ensure_directories()

    try:
        config = await load_experiment_config(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_FAILED

    configure_logging(config.log_level, force=True, log_file=args.log_file)

    logger.info("=" * 60)
    logger.info("Effort Logger starting")
    logger.info("Config: %s", args.config)
    logger.info("Output directory: %s", config.output_dir)
    logger.info("State file: %s", STATE_FILE)
    logger.info("=" * 60)

    registry = CameraRegistry(build_backend(args))
    if args.list_cameras:
        return await list_cameras(registry)

    state = JsonStateStore(STATE_FILE)
    counter = CounterStore(state, config.categories)
    setup = CameraSetupManager(registry, config, selection_store=CameraSelectionStore(state))

    try:
        cameras = await setup.prepare(face_device=args.face_camera, field_device=args.field_camera)
    except PermissionDenied as exc:
        logger.error("Camera permission denied: %s", exc)
        print(f"Camera access denied: {exc}", file=sys.stderr)
        await registry.unbind_all()
        return EXIT_NO_CAMERA
    except DeviceUnavailable as exc:
        logger.error("Face camera unavailable: %s", exc)
        print(f"Face camera unavailable: {exc}", file=sys.stderr)
        await registry.unbind_all()
        return EXIT_NO_CAMERA

    reader = None if config.unattended else StdinReader().start()
    try:
        return await run_session(args, config, registry, counter, cameras, reader)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        await registry.unbind_all()
        logger.info("Effort Logger stopped")


def run(argv: Optional[list[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return EXIT_FAILED


def cli() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    cli()
