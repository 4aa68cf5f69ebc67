"""Single-writer lock for a data directory.

The lock is a plain record, ``<data dir>/in-progress``, containing
``"<snapshot id> <pid>"``. Ownership is decided by whether that process is
still alive rather than by an advisory lock, so a record left behind by a
crash or a reboot is recognized as stale and replaced. The short
check-and-write itself is serialized with :class:`filelock.FileLock` so two
starting runs can never both succeed.
"""

import contextlib
import logging
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from filelock import FileLock, Timeout

from ..__logger__ import verbose
from ..__util__ import LockConflict

logger = logging.getLogger(__name__)

LOCK_NAME = "in-progress"
GUARD_NAME = ".in-progress.lock"
GUARD_TIMEOUT = 30


@dataclass(frozen=True)
class LockRecord:
    """Contents of the in-progress file."""

    snapshot_id: str
    pid: int

    def serialize(self) -> str:
        return f"{self.snapshot_id} {self.pid}\n"


def parse_lock(text: str) -> LockRecord:
    """Parse an in-progress record.

    Raises:
        ValueError: If the text is not ``"<snapshot id> <pid>"``
    """
    parts = text.split()
    if len(parts) != 2:
        raise ValueError(f"Malformed lock record: {text!r}")
    return LockRecord(parts[0], int(parts[1]))


def read_lock(data_dir: Path) -> Optional[LockRecord]:
    """Return the current lock record, or None if there is none.

    Raises:
        ValueError: If the record exists but cannot be parsed
    """
    try:
        text = (Path(data_dir) / LOCK_NAME).read_text()
    except FileNotFoundError:
        return None
    return parse_lock(text)


def is_process_alive(pid: int) -> bool:
    """Check if a process with the given pid exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)  # Signal 0 = check existence only
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but belongs to another user
        return True
    return True


class LockManager:
    """Acquire and release the in-progress record for one data directory.

    ``hostname`` names the appliance being backed up in conflict messages.
    """

    def __init__(self, data_dir: Path, hostname: Optional[str] = None) -> None:
        self.data_dir = Path(data_dir)
        self.hostname = hostname
        self.lock_path = self.data_dir / LOCK_NAME
        self.guard = FileLock(str(self.data_dir / GUARD_NAME), timeout=GUARD_TIMEOUT)
        self.record: Optional[LockRecord] = None

    def acquire(self, snapshot_id: str) -> LockRecord:
        """Take the lock for snapshot_id.

        Raises:
            LockConflict: If a live run holds the lock or the lock is in the
                legacy format
        """
        try:
            with self.guard:
                self._check_existing()
                record = LockRecord(snapshot_id, os.getpid())
                tmp = self.lock_path.with_name(f".{LOCK_NAME}.{record.pid}")
                tmp.write_text(record.serialize())
                os.replace(tmp, self.lock_path)
        except Timeout:
            raise LockConflict(
                f"Timed out waiting for {self.guard.lock_file}; another backup is starting"
            )

        self.record = record
        verbose.debug("Acquired %s for snapshot %s", self.lock_path, snapshot_id)
        return record

    def _check_existing(self) -> None:
        if self.lock_path.is_symlink() or self.lock_path.is_dir():
            raise LockConflict(
                "Detected a backup already in progress from a previous version "
                "of ghe-backup. If there is no backup in progress anymore, please "
                f"remove {self.lock_path}."
            )
        if not self.lock_path.exists():
            return

        try:
            existing = read_lock(self.data_dir)
        except ValueError as e:
            logger.warning("Discarding unreadable lock %s: %s", self.lock_path, e)
            existing = None

        if existing is not None and is_process_alive(existing.pid):
            raise LockConflict(
                f"A backup may still be running on PID {existing.pid} "
                f"on {self.hostname or socket.gethostname()} "
                f"(snapshot {existing.snapshot_id}). "
                f"If PID {existing.pid} is not a process related to the backup "
                f"utilities, please remove {self.lock_path} and try again."
            )

        if existing is not None:
            logger.warning(
                "Removing stale lock from PID %d (snapshot %s)",
                existing.pid,
                existing.snapshot_id,
            )
        self.lock_path.unlink(missing_ok=True)

    def release(self) -> None:
        """Remove the lock if it is still the one this run wrote."""
        if self.record is None:
            return
        record, self.record = self.record, None

        try:
            with self.guard:
                try:
                    current = read_lock(self.data_dir)
                except ValueError:
                    current = None
                if current == record:
                    self.lock_path.unlink()
                    verbose.debug("Released %s", self.lock_path)
                else:
                    verbose.debug(
                        "Lock %s no longer belongs to this run; leaving it", self.lock_path
                    )
        except Timeout:
            logger.warning("Could not release %s: lock guard busy", self.lock_path)

    @contextlib.contextmanager
    def held(self, snapshot_id: str) -> Iterator[LockRecord]:
        """Hold the lock for the duration of a with-block."""
        record = self.acquire(snapshot_id)
        try:
            yield record
        finally:
            self.release()
