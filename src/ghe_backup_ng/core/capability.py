"""Pre-flight check of the snapshot filesystem.

Snapshots share unchanged files with their predecessor through hard links,
and repository metadata contains symbolic links that must survive the
copy. Both are exercised for real on a scratch tree before anything is
written to a snapshot, so an unsuitable filesystem is reported up front
rather than hours into a backup.
"""

import contextlib
import logging
import os
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Iterator, Optional

from ..__logger__ import verbose
from ..__util__ import BackupEnvironmentError

logger = logging.getLogger(__name__)

Copier = Callable[[Path, Path, Optional[Path]], None]


def rsync_copy(src: Path, dest: Path, link_dest: Optional[Path] = None) -> None:
    """Copy a tree with rsync, hard-linking unchanged files from link_dest."""
    cmd = ["rsync", "-a"]
    if link_dest is not None:
        cmd.append(f"--link-dest={link_dest}")
    cmd.extend([f"{src}/", f"{dest}/"])
    verbose.debug("Running: %s", " ".join(cmd))
    subprocess.run(cmd, check=True, capture_output=True)


@contextlib.contextmanager
def scratch_dir(data_dir: Path) -> Iterator[Path]:
    """Temporary directory inside data_dir, removed on every exit path."""
    try:
        path = Path(tempfile.mkdtemp(prefix="tmp-", dir=data_dir))
    except OSError as e:
        raise BackupEnvironmentError(f"Cannot write to {data_dir}: {e}")
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def _same_file(a: Path, b: Path) -> bool:
    sa, sb = os.lstat(a), os.lstat(b)
    return (sa.st_dev, sa.st_ino) == (sb.st_dev, sb.st_ino)


def verify_filesystem(data_dir: Path, copier: Copier = rsync_copy) -> None:
    """Verify data_dir supports symbolic links and linked incremental copies.

    Args:
        data_dir: Root directory that will hold snapshots
        copier: Tree copy function taking (src, dest, link_dest)

    Raises:
        BackupEnvironmentError: If any required primitive is unsupported
    """
    data_dir = Path(data_dir)
    with scratch_dir(data_dir) as tmp:
        src = tmp / "src"
        try:
            src.mkdir()
            (src / "testfile").write_text("link test\n")
        except OSError as e:
            raise BackupEnvironmentError(f"Cannot write to {data_dir}: {e}")

        try:
            os.symlink(tmp, src / ".symlink-test")
            os.symlink("does-not-exist", src / ".dangling-symlink-test")
        except OSError as e:
            raise BackupEnvironmentError(
                f"The filesystem containing {data_dir} does not support symbolic links: {e}"
            )

        first, second = tmp / "dest1", tmp / "dest2"
        try:
            copier(src, first, None)
            copier(src, second, first)
        except (OSError, subprocess.CalledProcessError) as e:
            raise BackupEnvironmentError(
                f"Linked copy test failed in {data_dir}: {e}"
            )

        try:
            if not _same_file(first / "testfile", second / "testfile"):
                raise BackupEnvironmentError(
                    f"The filesystem containing {data_dir} does not support hard links"
                )
            if not _same_file(
                first / ".dangling-symlink-test", second / ".dangling-symlink-test"
            ):
                raise BackupEnvironmentError(
                    f"The filesystem containing {data_dir} does not support "
                    "hard links to symbolic links"
                )
        except FileNotFoundError as e:
            raise BackupEnvironmentError(
                f"Linked copy test in {data_dir} produced no output: {e}"
            )

    verbose.debug("Filesystem at %s supports linked snapshots", data_dir)
