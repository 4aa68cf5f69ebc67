"""Core snapshot orchestration: filesystem checks, locking, version
negotiation, snapshot lifecycle and step execution."""

from .capability import verify_filesystem
from .lock import LockManager
from .snapshot import Snapshot, SnapshotLifecycle, SnapshotState
from .steps import Step, StepOutcome, StepReport, StepRunner
from .version import NegotiatedVersion, RemoteVersion, VersionNegotiator

__all__ = [
    "LockManager",
    "NegotiatedVersion",
    "RemoteVersion",
    "Snapshot",
    "SnapshotLifecycle",
    "SnapshotState",
    "Step",
    "StepOutcome",
    "StepReport",
    "StepRunner",
    "VersionNegotiator",
    "verify_filesystem",
]
