"""Configuration schema definitions using dataclasses.

Defines the immutable settings object built once per run and handed to
every component, with defaults matching the documented config keys.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class ConfigCandidate:
    """One place a config file may live.

    Attributes:
        label: Short description used in diagnostics
        path: Location of the candidate file
    """

    label: str
    path: Path

    def exists(self) -> bool:
        return self.path.is_file()


@dataclass(frozen=True)
class Config:
    """Settings for a backup run.

    Attributes:
        hostname: Remote appliance host, optionally with ``:port``
        data_dir: Absolute local root holding all snapshots
        num_snapshots: Number of complete snapshots to retain
        verbose: Route diagnostic output to ``verbose_log`` or stdout
        verbose_log: File receiving diagnostic output in verbose mode
        debug: Emit debug records on the console
        backup_strategy: Strategy selector recorded with each snapshot
        backup_pages: Back up Pages artifacts (``GHE_BACKUP_PAGES != no``)
        backup_fsck: Run a repository fsck after the backup
        allow_replica_backup: Permit backing up a replica appliance
        create_data_dir: Create ``data_dir`` when it does not exist
        remote_root_dir: Prefix applied to every remote path
        remote_data_dir: Remote data directory before layout adjustment
        git_cooldown_period: Seconds the repository exporter waits between passes
        verbose_ssh: Pass ``-v`` to ssh
        extra_ssh_opts: Additional options handed to ssh verbatim
        libexec_dir: Directory holding collaborator executables
        release_file: Sentinel only present on the appliance itself
        source: Where the settings were loaded from
    """

    hostname: str
    data_dir: Path
    num_snapshots: int = 10
    verbose: bool = False
    verbose_log: Optional[str] = None
    debug: bool = False
    backup_strategy: str = "rsync"
    backup_pages: bool = True
    backup_fsck: bool = False
    allow_replica_backup: bool = False
    create_data_dir: bool = True
    remote_root_dir: str = ""
    remote_data_dir: str = "/data"
    git_cooldown_period: int = 600
    verbose_ssh: bool = False
    extra_ssh_opts: str = ""
    libexec_dir: Optional[Path] = None
    release_file: Path = Path("/etc/github/enterprise-release")
    source: Optional[ConfigCandidate] = field(default=None, compare=False)

    def collaborator_env(self) -> dict[str, str]:
        """Settings exported to collaborator executables."""
        env = {
            "GHE_HOSTNAME": self.hostname,
            "GHE_DATA_DIR": str(self.data_dir),
            "GHE_NUM_SNAPSHOTS": str(self.num_snapshots),
            "GHE_BACKUP_STRATEGY": self.backup_strategy,
            "GHE_BACKUP_PAGES": "yes" if self.backup_pages else "no",
            "GHE_REMOTE_ROOT_DIR": self.remote_root_dir,
            "GHE_REMOTE_DATA_DIR": self.remote_data_dir,
            "GHE_GIT_COOLDOWN_PERIOD": str(self.git_cooldown_period),
        }
        if self.verbose:
            env["GHE_VERBOSE"] = "1"
        if self.verbose_log:
            env["GHE_VERBOSE_LOG"] = self.verbose_log
        if self.debug:
            env["GHE_DEBUG"] = "1"
        if self.backup_fsck:
            env["GHE_BACKUP_FSCK"] = "yes"
        if self.allow_replica_backup:
            env["GHE_ALLOW_REPLICA_BACKUP"] = "yes"
        if self.verbose_ssh:
            env["GHE_VERBOSE_SSH"] = "true"
        if self.extra_ssh_opts:
            env["GHE_EXTRA_SSH_OPTS"] = self.extra_ssh_opts
        return env
