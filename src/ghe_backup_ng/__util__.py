"""ghe-backup-ng: ghe_backup_ng/__util__.py
Exceptions and small helpers shared by all modules.
"""

import time


class BackupError(Exception):
    """Base class for errors that end a backup run."""

    exit_code = 1


class ConfigError(BackupError):
    """Configuration missing, unreadable, or invalid."""

    exit_code = 2


class BackupEnvironmentError(BackupError):
    """A host or filesystem precondition does not hold."""


class DataDirMissingError(BackupEnvironmentError):
    """The data directory does not exist and could not be created."""

    exit_code = 8


class LockConflict(BackupError):
    """Another backup holds the data directory, or the lock is unreadable."""


class RemoteProbeFailure(BackupError):
    """The remote host could not be reached or its version not determined."""


class StepFailure(BackupError):
    """A single backup step failed."""


class UsageError(BackupError):
    """Invalid command line."""


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"--[ {caption} ]".ljust(50, "-")


def timestamp(clock=time.time) -> str:
    """Second-granularity timestamp as used for snapshot names."""
    return time.strftime("%Y%m%dT%H%M%S", time.localtime(clock()))
