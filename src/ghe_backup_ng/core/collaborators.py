"""Invocation of external collaborator executables.

Exporters, the host check, snapshot pruning and the leaked key scanner are
separate programs. They are looked up in the configured libexec directory
first and on ``PATH`` second, and always receive the run's settings as an
explicit environment.
"""

import errno
import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import IO, Mapping, Optional, Union

from ..__logger__ import verbose
from ..config import Config

logger = logging.getLogger(__name__)


class CollaboratorRunner:
    """Run collaborator executables with the run's environment."""

    def __init__(
        self,
        config: Config,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config = config
        self.base_env = dict(os.environ if environ is None else environ)

    def path(self, name: str) -> str:
        """Resolve a collaborator name to an executable path.

        Raises:
            FileNotFoundError: If the executable cannot be found
        """
        if self.config.libexec_dir is not None:
            candidate = Path(self.config.libexec_dir) / name
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return str(candidate)
        found = shutil.which(name)
        if found is None:
            raise FileNotFoundError(errno.ENOENT, "collaborator not found", name)
        return found

    def environment(self, extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        env = dict(self.base_env)
        env.update(self.config.collaborator_env())
        if extra:
            env.update(extra)
        return env

    def run(
        self,
        name: str,
        *args: str,
        cwd: Union[str, Path, None] = None,
        env: Optional[Mapping[str, str]] = None,
        stdout: Optional[IO] = None,
        capture: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run a collaborator to completion.

        A non-zero exit status is returned to the caller, not raised.

        Args:
            name: Collaborator executable name
            args: Arguments passed through unchanged
            cwd: Working directory for the collaborator
            env: Additional environment on top of the run's settings
            stdout: File receiving the collaborator's standard output
            capture: Capture standard output as text instead

        Raises:
            FileNotFoundError: If the collaborator does not exist
        """
        cmd = [self.path(name), *args]
        verbose.debug("Running: %s", shlex.join(cmd))
        return subprocess.run(
            cmd,
            cwd=cwd,
            env=self.environment(env),
            stdout=subprocess.PIPE if capture else stdout,
            text=capture,
            check=False,
        )

    def host_check(self, host: str) -> subprocess.CompletedProcess:
        """Run the host check and capture its report."""
        return self.run("ghe-host-check", host, capture=True)


class SubprocessPruner:
    """Enforce snapshot retention through the pruning collaborator."""

    def __init__(self, runner: CollaboratorRunner) -> None:
        self.runner = runner

    def __call__(self, data_dir: Path, num_snapshots: int) -> bool:
        logger.info("Pruning snapshots, keeping %d ...", num_snapshots)
        try:
            result = self.runner.run(
                "ghe-prune-snapshots",
                env={
                    "GHE_DATA_DIR": str(data_dir),
                    "GHE_NUM_SNAPSHOTS": str(num_snapshots),
                },
            )
        except OSError as e:
            logger.warning("Snapshot pruning could not run: %s", e)
            return False
        if result.returncode != 0:
            logger.warning("Snapshot pruning exited with status %d", result.returncode)
            return False
        return True


def detect_leaked_keys(runner: CollaboratorRunner, snapshot_dir: Path) -> bool:
    """Scan a finished snapshot for leaked SSH host keys, best effort."""
    try:
        result = runner.run("ghe-detect-leaked-ssh-keys", "-s", str(snapshot_dir))
    except OSError as e:
        logger.warning("Leaked key scan skipped: %s", e)
        return False
    return result.returncode == 0
