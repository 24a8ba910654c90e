"""Experiment orchestration: trial planning, phase state machine and packaging."""

from .artifacts import ArchiveResult, ArchiveSink, ArtifactCollector, DirectoryArchiveSink
from .camera_setup import CameraSetupManager, CameraSetupResult
from .config import ExperimentConfig, load_config
from .counter_store import CounterStore
from .session import ExperimentSession, SessionSummary
from .state_machine import ExperimentStateMachine, Phase, PhaseSnapshot
from .trial_sequencer import EffortLevel, Trial, TrialKind, TrialSequencer

__all__ = [
    "ArchiveResult",
    "ArchiveSink",
    "ArtifactCollector",
    "CameraSetupManager",
    "CameraSetupResult",
    "CounterStore",
    "DirectoryArchiveSink",
    "EffortLevel",
    "ExperimentConfig",
    "ExperimentSession",
    "ExperimentStateMachine",
    "Phase",
    "PhaseSnapshot",
    "SessionSummary",
    "Trial",
    "TrialKind",
    "TrialSequencer",
    "load_config",
]
