"""ghe-backup-ng: ghe_backup_ng/__init__.py."""

import os
from pathlib import Path
from typing import Mapping, Optional


__version__ = "0.3.0"


def install_root(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return the directory the tool is installed under.

    ``GHE_BACKUP_ROOT`` wins when set; otherwise this is the project root
    two levels above the package (``<root>/src/ghe_backup_ng``).
    """
    environ = os.environ if environ is None else environ
    override = environ.get("GHE_BACKUP_ROOT")
    if override:
        return Path(override)
    return Path(__file__).resolve().parent.parent.parent
