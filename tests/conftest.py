"""Pytest configuration and shared fixtures."""

import os
import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ghe_backup_ng.config.schema import Config


def link_copy(src: Path, dest: Path, link_dest=None) -> None:
    """Copy a flat tree, hard-linking entries that exist in link_dest."""
    dest.mkdir(parents=True, exist_ok=True)
    for entry in src.iterdir():
        target = dest / entry.name
        previous = link_dest / entry.name if link_dest is not None else None
        if previous is not None and os.path.lexists(previous):
            os.link(previous, target, follow_symlinks=False)
        elif entry.is_symlink():
            os.symlink(os.readlink(entry), target)
        else:
            shutil.copy2(entry, target)


def plain_copy(src: Path, dest: Path, link_dest=None) -> None:
    """Copy a flat tree without ever sharing storage."""
    shutil.copytree(src, dest, symlinks=True)


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def data_dir(tmp_path):
    """Empty snapshot data directory."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def base_environ(tmp_path):
    """Environment with no inherited settings and a missing release file."""
    return {
        "HOME": str(tmp_path / "home"),
        "GHE_BACKUP_ROOT": str(tmp_path / "install"),
        "GHE_RELEASE_FILE": str(tmp_path / "no-such-release"),
    }


@pytest.fixture
def sample_config_text(data_dir):
    """Return a sample backup.config."""
    return f"""
# GitHub Enterprise backup settings
GHE_HOSTNAME="github.example.com"
GHE_DATA_DIR="{data_dir}"
GHE_NUM_SNAPSHOTS=3

# Extra options
export GHE_EXTRA_SSH_OPTS='-i /root/.ssh/backup_key'
GHE_BACKUP_FSCK=yes
"""


@pytest.fixture
def config_file(tmp_config_dir, sample_config_text):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "backup.config"
    config_path.write_text(sample_config_text)
    return config_path


@pytest.fixture
def make_config(data_dir):
    """Factory for Config objects rooted at data_dir."""

    def factory(**overrides):
        values = {"hostname": "H", "data_dir": data_dir, "num_snapshots": 3}
        values.update(overrides)
        return Config(**values)

    return factory


@pytest.fixture
def fake_runner():
    """Collaborator runner whose host check reports version 3.1.4."""
    runner = MagicMock()
    runner.host_check.return_value = subprocess.CompletedProcess(
        ["ghe-host-check", "H"], 0, stdout="Connect H:122 OK (v3.1.4)\n"
    )
    runner.run.return_value = subprocess.CompletedProcess(["true"], 0)
    return runner


@pytest.fixture
def fake_session():
    """Remote session that is not a replica and records log lines."""
    session = MagicMock()
    session.is_replica.return_value = False
    return session


@pytest.fixture
def link_copier():
    """Copier that shares storage with the previous copy."""
    return link_copy


@pytest.fixture
def plain_copier():
    """Copier that never shares storage."""
    return plain_copy
