"""Unit tests for the experiment phase state machine."""

import asyncio
import logging
from collections import Counter
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from effort_logger.core.errors import UnknownCategory
from effort_logger.modules.Cameras.camera_models import CameraRole, CapturedImage
from effort_logger.modules.Cameras.frame_capture import CaptureFailure, CaptureFailureReason, CaptureSuccess
from effort_logger.modules.Experiment.artifacts import ArchiveSink
from effort_logger.modules.Experiment.counter_store import CounterStore
from effort_logger.modules.Experiment.state_machine import ExperimentStateMachine, Phase
from effort_logger.modules.Experiment.trial_sequencer import TrialSequencer


class StubCapture:
    """Capture service double: records calls, optionally fails or blocks per role."""

    def __init__(self, failures=None, gate=None, unbound=(), reason=CaptureFailureReason.EXHAUSTED):
        self.calls = []
        self.failures = Counter(failures or {})
        self.gate = gate
        self.unbound = set(unbound)
        self.reason = reason

    def has_stream(self, role):
        return role not in self.unbound

    async def capture(self, role, label):
        self.calls.append((role, label))
        if self.gate is not None:
            await self.gate.wait()
        if self.failures[role] > 0:
            self.failures[role] -= 1
            return CaptureFailure(self.reason, role, label, attempts=3)
        image = CapturedImage(
            filename=f"{label}-{len(self.calls)}.jpg",
            data=b"\xff\xd8\xff\xd9",
            role=role,
            label=label,
            captured_at=datetime.now(timezone.utc),
            width=64,
            height=48,
        )
        return CaptureSuccess(image, attempts=1)


def make_sink():
    sink = AsyncMock(spec=ArchiveSink)
    sink.deliver_archive.return_value = "memory://archive"
    return sink


def make_machine(config, state_store, capture=None, **kwargs):
    capture = capture or StubCapture()
    counter = CounterStore(state_store, config.categories)
    machine = ExperimentStateMachine(
        config,
        capture,
        counter,
        kwargs.pop("sink", None) or make_sink(),
        sequencer=TrialSequencer(config, seed=3),
        **kwargs,
    )
    return machine, capture, counter


class TestSignals:

    @pytest.mark.asyncio
    async def test_signals_rejected_outside_their_phase(self, fast_config, state_store):
        machine, _, _ = make_machine(fast_config, state_store)

        assert machine.phase is Phase.CATEGORY_SELECTION
        assert not machine.advance()
        assert not machine.abort()
        assert not machine.repeat_training()
        assert not machine.continue_after_training()
        assert machine.phase is Phase.CATEGORY_SELECTION
        assert machine.epoch == 0

    @pytest.mark.asyncio
    async def test_unknown_category(self, fast_config, state_store):
        machine, _, _ = make_machine(fast_config, state_store)

        with pytest.raises(UnknownCategory):
            machine.select_category("X")
        assert machine.phase is Phase.CATEGORY_SELECTION

    @pytest.mark.asyncio
    async def test_select_twice_is_rejected(self, fast_config, state_store):
        config = fast_config.with_overrides(instruction_dwell_s=5.0)
        machine, _, _ = make_machine(config, state_store)

        assert machine.select_category("M")
        assert not machine.select_category("F")
        assert machine.snapshot().category == "M"

        machine.reset()
        await machine.close()

    @pytest.mark.asyncio
    async def test_reset_always_accepted(self, fast_config, state_store):
        machine, _, _ = make_machine(fast_config, state_store)

        assert machine.reset()
        assert machine.phase is Phase.CATEGORY_SELECTION
        assert machine.session_summary() is None

    @pytest.mark.asyncio
    async def test_wait_for_phase_timeout(self, fast_config, state_store):
        machine, _, _ = make_machine(fast_config, state_store)

        with pytest.raises(asyncio.TimeoutError):
            await machine.wait_for_phase(Phase.REST, timeout=0.01)


class TestAttendedFlow:

    @pytest.mark.asyncio
    async def test_neutral_ready_waits_for_operator(self, fast_config, state_store):
        config = fast_config.with_overrides(unattended=False, rest_s=5.0)
        machine, capture, _ = make_machine(config, state_store)

        machine.select_category("M")
        await machine.wait_for_phase(Phase.NEUTRAL_READY, timeout=2)
        await asyncio.sleep(0.05)

        assert machine.phase is Phase.NEUTRAL_READY
        assert capture.calls == []

        assert machine.advance()
        await machine.wait_for_phase(Phase.REST, timeout=2)
        assert sorted(label for _, label in capture.calls) == ["face_neutral", "field_neutral"]
        assert machine.snapshot().images == 2

        machine.reset()
        await machine.close()

    @pytest.mark.asyncio
    async def test_training_loop(self, fast_config, state_store):
        config = fast_config.with_overrides(unattended=False)
        machine, capture, _ = make_machine(config, state_store)
        seen = {}
        machine.subscribe(lambda snapshot: seen.__setitem__(snapshot.epoch, snapshot.phase))

        machine.select_category("M", training=True)
        await machine.wait_for_phase(Phase.TRAINING_COMPLETE, timeout=2)

        assert machine.repeat_training()
        await machine.wait_for_phase(Phase.TRAINING_COMPLETE, timeout=2)
        assert machine.session_summary().training_rounds == 1

        assert machine.continue_after_training()
        await machine.wait_for_phase(Phase.NEUTRAL_READY, timeout=2)

        assert capture.calls == []
        training = [phase for phase in seen.values() if phase.value.startswith("training")]
        assert training.count(Phase.TRAINING_TASK) == 4
        assert training.count(Phase.TRAINING_REST) == 2

        machine.reset()
        await machine.close()


class TestCancellation:

    @pytest.mark.asyncio
    async def test_abort_during_rest_stops_timer(self, fast_config, state_store):
        config = fast_config.with_overrides(rest_s=5.0)
        machine, capture, counter = make_machine(config, state_store)

        machine.select_category("M")
        await machine.wait_for_phase(Phase.REST, timeout=2)
        calls = len(capture.calls)

        assert machine.abort()
        assert machine.phase is Phase.CATEGORY_SELECTION
        assert machine.timer is None
        await asyncio.sleep(0.05)

        assert machine.phase is Phase.CATEGORY_SELECTION
        assert len(capture.calls) == calls
        assert await counter.get("M") == 0

        assert machine.select_category("F")
        machine.reset()
        await machine.close()

    @pytest.mark.asyncio
    async def test_results_after_abort_are_discarded(self, fast_config, state_store, caplog):
        gate = asyncio.Event()
        machine, capture, _ = make_machine(fast_config, state_store, StubCapture(gate=gate))

        machine.select_category("M")
        await machine.wait_for_phase(Phase.NEUTRAL_CAPTURE, timeout=2)
        await asyncio.sleep(0)
        assert machine.abort()

        with caplog.at_level(logging.WARNING):
            gate.set()
            await machine.close()

        assert machine.phase is Phase.CATEGORY_SELECTION
        assert machine.snapshot().images == 0
        assert any("stale" in record.getMessage() for record in caplog.records)

    @pytest.mark.asyncio
    async def test_abort_rejected_after_complete(self, fast_config, state_store):
        config = fast_config.with_overrides(repetitions=1)
        machine, _, _ = make_machine(config, state_store)

        machine.select_category("M")
        await machine.wait_finalized(timeout=5)

        assert machine.phase is Phase.COMPLETE
        assert not machine.abort()
        await machine.close()


class TestCaptureRetry:

    @pytest.mark.asyncio
    async def test_only_failed_roles_are_retried(self, fast_config, state_store):
        config = fast_config.with_overrides(rest_s=5.0)
        capture = StubCapture(failures={CameraRole.FIELD: 1})
        machine, _, _ = make_machine(config, state_store, capture)

        machine.select_category("M")
        await machine.wait_for_phase(Phase.REST, timeout=2)

        roles = Counter(role for role, _ in capture.calls)
        assert roles == {CameraRole.FACE: 1, CameraRole.FIELD: 2}
        summary = machine.session_summary()
        assert summary.images_collected == 2
        assert summary.captures_failed == 1

        machine.reset()
        await machine.close()

    @pytest.mark.asyncio
    async def test_gives_up_after_phase_attempts(self, fast_config, state_store, caplog):
        config = fast_config.with_overrides(rest_s=5.0)
        capture = StubCapture(failures={CameraRole.FIELD: 100})
        machine, _, _ = make_machine(config, state_store, capture)

        with caplog.at_level(logging.ERROR):
            machine.select_category("M")
            await machine.wait_for_phase(Phase.REST, timeout=2)

        field_calls = [call for call in capture.calls if call[0] is CameraRole.FIELD]
        assert len(field_calls) == config.phase_capture_attempts
        assert machine.snapshot().images == 1
        assert any("Giving up" in record.getMessage() for record in caplog.records)

        machine.reset()
        await machine.close()

    @pytest.mark.asyncio
    async def test_degraded_captures_face_only(self, fast_config, state_store):
        config = fast_config.with_overrides(repetitions=1)
        machine, capture, _ = make_machine(config, state_store, degraded=True)

        machine.select_category("F")
        result = await machine.wait_finalized(timeout=5)

        assert {role for role, _ in capture.calls} == {CameraRole.FACE}
        assert result.image_count == 3
        assert machine.snapshot().degraded
        await machine.close()

    @pytest.mark.asyncio
    async def test_unbound_field_is_not_attempted(self, fast_config, state_store, caplog):
        config = fast_config.with_overrides(repetitions=1)
        capture = StubCapture(unbound={CameraRole.FIELD})
        machine, _, _ = make_machine(config, state_store, capture)

        with caplog.at_level(logging.WARNING):
            machine.select_category("M")
            result = await machine.wait_finalized(timeout=5)

        assert {role for role, _ in capture.calls} == {CameraRole.FACE}
        assert result.image_count == 3
        assert machine.session_summary().captures_failed == 0
        assert not any(record.levelno >= logging.ERROR for record in caplog.records)
        assert any("Field camera not bound" in record.getMessage() for record in caplog.records)
        await machine.close()

    @pytest.mark.asyncio
    async def test_field_lost_mid_phase_is_not_retried(self, fast_config, state_store, caplog):
        config = fast_config.with_overrides(rest_s=5.0)
        capture = StubCapture(failures={CameraRole.FIELD: 100}, reason=CaptureFailureReason.NO_ACTIVE_STREAM)
        machine, _, _ = make_machine(config, state_store, capture)

        with caplog.at_level(logging.WARNING):
            machine.select_category("M")
            await machine.wait_for_phase(Phase.REST, timeout=2)

        roles = Counter(role for role, _ in capture.calls)
        assert roles == {CameraRole.FACE: 1, CameraRole.FIELD: 1}
        assert machine.snapshot().images == 1
        assert not any("Giving up" in record.getMessage() for record in caplog.records)

        machine.reset()
        await machine.close()


class TestListeners:

    @pytest.mark.asyncio
    async def test_snapshots_and_countdown(self, fast_config, state_store):
        config = fast_config.with_overrides(repetitions=1)
        machine, _, _ = make_machine(config, state_store)
        snapshots = []
        unsubscribe = machine.subscribe(snapshots.append)

        machine.select_category("M")
        await machine.wait_finalized(timeout=5)
        unsubscribe()
        count = len(snapshots)
        machine.reset()

        first = snapshots[0]
        assert first.phase is Phase.NEUTRAL_INSTRUCTION
        assert first.category == "M"
        assert first.trial_count == 2
        task_ticks = [s.countdown for s in snapshots if s.phase is Phase.TASK and s.countdown]
        assert 3 in task_ticks
        assert snapshots[-1].finalized
        assert snapshots[-1].archive.name == "M-1"
        assert len(snapshots) == count

        await machine.close()

    @pytest.mark.asyncio
    async def test_failing_listener_is_isolated(self, fast_config, state_store):
        config = fast_config.with_overrides(instruction_dwell_s=5.0)
        machine, _, _ = make_machine(config, state_store)

        def broken(snapshot):
            raise RuntimeError("view crashed")

        machine.subscribe(broken)
        assert machine.select_category("M")
        assert machine.phase is Phase.NEUTRAL_INSTRUCTION

        machine.reset()
        await machine.close()


class TestLogging:

    @pytest.mark.asyncio
    async def test_helpers_log_under_their_own_component(self, fast_config, state_store, caplog):
        config = fast_config.with_overrides(repetitions=1)
        machine = ExperimentStateMachine(
            config, StubCapture(), CounterStore(state_store, config.categories), make_sink(),
        )

        with caplog.at_level(logging.INFO):
            machine.select_category("M")
            await machine.wait_finalized(timeout=5)

        planned = [r for r in caplog.records if "Planned" in r.getMessage()]
        delivered = [r for r in caplog.records if "delivered" in r.getMessage()]
        assert planned and delivered
        assert planned[0].name == "effort_logger.modules.Experiment.trial_sequencer"
        assert planned[0].getMessage().startswith("[trial_sequencer]")
        assert delivered[0].name == "effort_logger.modules.Experiment.artifacts"
        assert delivered[0].getMessage().startswith("[artifacts]")
        await machine.close()
