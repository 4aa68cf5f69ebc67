"""Snapshot directory lifecycle.

A snapshot starts out provisional: its directory holds an ``incomplete``
marker while steps write into it. Only when every step succeeded is the
marker removed and the ``current`` pointer swapped to the new directory.
Failed snapshots keep their marker and are never pointed at.
"""

import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from ..__logger__ import verbose
from ..__util__ import BackupEnvironmentError, timestamp
from ..config import Config

logger = logging.getLogger(__name__)

INCOMPLETE_MARKER = "incomplete"
CURRENT_LINK = "current"
VERSION_FILE = "version"
STRATEGY_FILE = "strategy"


class SnapshotState(Enum):
    """Snapshot states."""

    PROVISIONAL = "provisional"
    STEPS_RUNNING = "steps-running"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class Snapshot:
    """One backup attempt and its directory."""

    id: str
    path: Path
    state: SnapshotState = SnapshotState.PROVISIONAL
    outcomes: list = field(default_factory=list)
    version: Optional[str] = None
    strategy: Optional[str] = None

    @property
    def marker(self) -> Path:
        return self.path / INCOMPLETE_MARKER


def new_snapshot_id(
    data_dir: Path,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Timestamp identifier not yet used under data_dir.

    Identifiers have second granularity. When the current second is
    already taken, wait for the next one.
    """
    while True:
        snapshot_id = timestamp(clock)
        if not (Path(data_dir) / snapshot_id).exists():
            return snapshot_id
        verbose.debug("Snapshot %s already exists, waiting", snapshot_id)
        sleep(1.0 - clock() % 1.0)


def current_snapshot(data_dir: Path) -> Optional[Path]:
    """Directory the current pointer names, if any."""
    link = Path(data_dir) / CURRENT_LINK
    if not link.is_symlink():
        return None
    return (link.parent / os.readlink(link)).resolve()


def point_current(data_dir: Path, snapshot_id: str) -> None:
    """Replace the current pointer so it names snapshot_id.

    A new link is created beside the old one and renamed over it, so
    readers see either the old or the new target, never neither.
    """
    link = Path(data_dir) / CURRENT_LINK
    tmp = link.with_name(f".{CURRENT_LINK}.{os.getpid()}")
    tmp.unlink(missing_ok=True)
    os.symlink(snapshot_id, tmp)
    os.replace(tmp, link)


def cleanup_transient(data_dir: Path) -> None:
    """Remove scratch directories left in data_dir."""
    for path in Path(data_dir).glob("tmp-*"):
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path, ignore_errors=True)


class SnapshotLifecycle:
    """Create, finalize and promote snapshots in a data directory.

    Filesystem errors while creating or promoting a snapshot are reported
    as :class:`BackupEnvironmentError`.
    """

    def __init__(self, config: Config, pruner: Optional[Callable] = None) -> None:
        self.config = config
        self.data_dir = Path(config.data_dir)
        self.pruner = pruner

    def begin(self, snapshot_id: str) -> Snapshot:
        """Create the snapshot directory and mark it incomplete.

        Raises:
            BackupEnvironmentError: If the directory already exists or
                cannot be created
        """
        path = self.data_dir / snapshot_id
        try:
            path.mkdir()
        except FileExistsError:
            raise BackupEnvironmentError(
                f"Snapshot directory {path} already exists; another backup "
                "started in the same second"
            )
        except OSError as e:
            raise BackupEnvironmentError(f"Cannot create snapshot {path}: {e}")

        snapshot = Snapshot(snapshot_id, path)
        try:
            snapshot.marker.touch()
        except OSError as e:
            raise BackupEnvironmentError(f"Cannot mark {path} incomplete: {e}")
        verbose.debug("Created provisional snapshot %s", path)
        return snapshot

    def record_markers(
        self,
        snapshot: Snapshot,
        version: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> None:
        """Write the remote version and backup strategy into the snapshot.

        Raises:
            BackupEnvironmentError: If the files cannot be written
        """
        strategy = strategy or self.config.backup_strategy
        try:
            if version is not None:
                (snapshot.path / VERSION_FILE).write_text(f"{version}\n")
            (snapshot.path / STRATEGY_FILE).write_text(f"{strategy}\n")
        except OSError as e:
            raise BackupEnvironmentError(
                f"Cannot record version in snapshot {snapshot.path}: {e}"
            )
        snapshot.version = version
        snapshot.strategy = strategy

    def finalize(
        self,
        snapshot: Snapshot,
        outcomes: list,
        version: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> SnapshotState:
        """Promote the snapshot if every step succeeded.

        Markers already written with :meth:`record_markers` are kept as is.

        Args:
            snapshot: Snapshot returned by begin
            outcomes: StepOutcome list from the step runner
            version: Negotiated remote version recorded with the snapshot
            strategy: Backup strategy recorded with the snapshot

        Returns:
            The final state, COMPLETE or FAILED

        Raises:
            BackupEnvironmentError: If the markers or the current pointer
                cannot be written
        """
        snapshot.outcomes = list(outcomes)
        if snapshot.strategy is None:
            self.record_markers(snapshot, version, strategy)

        if not all(outcome.success for outcome in snapshot.outcomes):
            snapshot.state = SnapshotState.FAILED
            logger.warning("Snapshot %s left incomplete", snapshot.id)
            return snapshot.state

        try:
            snapshot.marker.unlink(missing_ok=True)
            point_current(self.data_dir, snapshot.id)
        except OSError as e:
            raise BackupEnvironmentError(
                f"Cannot promote snapshot {snapshot.id} to current: {e}"
            )
        snapshot.state = SnapshotState.COMPLETE
        verbose.debug("current -> %s", snapshot.id)

        if self.pruner is not None:
            self.pruner(self.data_dir, self.config.num_snapshots)
        return snapshot.state
