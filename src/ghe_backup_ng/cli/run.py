"""Run a complete backup of the appliance into a new snapshot."""

import contextlib
import logging
import socket
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .. import __util__, __version__
from ..__logger__ import print_error
from ..config import Config
from ..core.capability import Copier, rsync_copy, verify_filesystem
from ..core.collaborators import (
    CollaboratorRunner,
    SubprocessPruner,
    detect_leaked_keys,
)
from ..core.lock import LockManager
from ..core.snapshot import (
    Snapshot,
    SnapshotLifecycle,
    SnapshotState,
    cleanup_transient,
    new_snapshot_id,
)
from ..core.steps import (
    BenchmarkRecorder,
    Step,
    StepContext,
    StepReport,
    StepRunner,
    default_steps,
)
from ..core.version import VersionNegotiator
from ..sshutil.master import RemoteSession

logger = logging.getLogger(__name__)


@dataclass
class BackupResult:
    """Outcome of a backup run."""

    snapshot: Snapshot
    report: StepReport

    @property
    def exit_code(self) -> int:
        return 0 if self.snapshot.state is SnapshotState.COMPLETE else 1


def run_backup(
    config: Config,
    runner: Optional[CollaboratorRunner] = None,
    session: Optional[RemoteSession] = None,
    steps: Optional[list[Step]] = None,
    copier: Copier = rsync_copy,
    pruner: Optional[Callable] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BackupResult:
    """Take one snapshot.

    The filesystem is checked before anything is written. Lock release,
    remote session teardown and scratch cleanup run on every exit path,
    including interruption.

    Args:
        config: Loaded configuration
        runner: Collaborator runner; built from config when omitted
        session: Remote session; opened to the negotiated host when omitted
        steps: Backup steps; the standard pipeline when omitted
        copier: Tree copy function used by the filesystem check
        pruner: Retention collaborator; the pruning executable when omitted
        environ: Environment consulted for an inherited remote version

    Returns:
        BackupResult with the snapshot and step outcomes

    Raises:
        BackupEnvironmentError: Filesystem unsuitable or replica not allowed
        LockConflict: Another backup holds the data directory
        RemoteProbeFailure: The remote version could not be determined
    """
    runner = runner or CollaboratorRunner(config, environ)
    pruner = pruner if pruner is not None else SubprocessPruner(runner)

    logger.info(__util__.log_heading(f"Started at {time.ctime()}"))
    verify_filesystem(config.data_dir, copier)

    snapshot_id = new_snapshot_id(config.data_dir)
    lifecycle = SnapshotLifecycle(config, pruner)
    lock = LockManager(config.data_dir, config.hostname)

    with contextlib.ExitStack() as stack:
        stack.callback(cleanup_transient, config.data_dir)
        stack.enter_context(lock.held(snapshot_id))
        snapshot = lifecycle.begin(snapshot_id)

        negotiated = VersionNegotiator(config, runner, environ).ensure()
        if session is None:
            session = RemoteSession(config, negotiated.host)
        stack.callback(session.close)

        if not config.allow_replica_backup and session.is_replica():
            raise __util__.BackupEnvironmentError(
                "High availability replica detected. Backing up a replica is "
                "only allowed with GHE_ALLOW_REPLICA_BACKUP=yes."
            )

        env = dict(config.collaborator_env())
        env.update(negotiated.as_env())
        env["GHE_SNAPSHOT_TIMESTAMP"] = snapshot_id
        env["GHE_SNAPSHOT_DIR"] = str(snapshot.path)
        ctx = StepContext(snapshot.path, config, negotiated, env)

        message = (
            f"Starting backup of {negotiated.host} with ghe-backup-ng "
            f"v{__version__} in snapshot {snapshot_id}"
        )
        logger.info(message)
        session.remote_log(message)

        lifecycle.record_markers(
            snapshot, env["GHE_REMOTE_VERSION"], config.backup_strategy
        )
        if steps is None:
            steps = default_steps(config, runner)
        snapshot.state = SnapshotState.STEPS_RUNNING
        report = StepRunner(BenchmarkRecorder(config.data_dir, snapshot_id)).run(
            steps, ctx
        )

        lifecycle.finalize(snapshot, report.outcomes)
        detect_leaked_keys(runner, snapshot.path)

        logger.info(
            "Completed backup of %s in snapshot %s at %s",
            negotiated.host,
            snapshot_id,
            time.strftime("%H:%M:%S"),
        )
        origin = socket.gethostname()
        if report.succeeded:
            session.remote_log(
                f"Completed backup from {origin} / snapshot {snapshot_id} successfully."
            )
        else:
            print_error(f"Snapshot incomplete. Some steps failed: {report.summary()}.")
            session.remote_log(
                f"Completed backup from {origin} / snapshot {snapshot_id} "
                f"WITH ERRORS: {report.summary()}."
            )

    return BackupResult(snapshot, report)


def execute_backup(config: Config, **kwargs) -> int:
    """Run a backup and translate the result into an exit code."""
    result = run_backup(config, **kwargs)
    return result.exit_code
