"""Tests for the snapshot filesystem check."""

import os
import shutil

import pytest

from ghe_backup_ng.__util__ import BackupEnvironmentError
from ghe_backup_ng.core.capability import rsync_copy, scratch_dir, verify_filesystem


class TestScratchDir:
    """Tests for scratch_dir context manager."""

    def test_removed_after_use(self, data_dir):
        """Test the scratch directory is removed on normal exit."""
        with scratch_dir(data_dir) as tmp:
            assert tmp.parent == data_dir
            assert tmp.name.startswith("tmp-")
            (tmp / "file").write_text("x")
        assert not tmp.exists()

    def test_removed_after_error(self, data_dir):
        """Test the scratch directory is removed when the body raises."""
        with pytest.raises(RuntimeError):
            with scratch_dir(data_dir) as tmp:
                raise RuntimeError("boom")
        assert not tmp.exists()

    def test_missing_data_dir(self, tmp_path):
        """Test an unusable data dir is an environment error."""
        with pytest.raises(BackupEnvironmentError, match="Cannot write"):
            with scratch_dir(tmp_path / "absent"):
                pass


class TestVerifyFilesystem:
    """Tests for verify_filesystem function."""

    def test_linked_copy_passes(self, data_dir, link_copier):
        """Test a copier that shares storage passes the check."""
        verify_filesystem(data_dir, copier=link_copier)
        assert list(data_dir.iterdir()) == []

    def test_unshared_copy_fails(self, data_dir, plain_copier):
        """Test a copier that never links is rejected."""
        with pytest.raises(BackupEnvironmentError, match="hard links"):
            verify_filesystem(data_dir, copier=plain_copier)
        assert list(data_dir.iterdir()) == []

    def test_copier_error_fails(self, data_dir):
        """Test a failing copier is reported as an environment error."""

        def broken(src, dest, link_dest=None):
            raise OSError("no space left on device")

        with pytest.raises(BackupEnvironmentError, match="no space left"):
            verify_filesystem(data_dir, copier=broken)
        assert list(data_dir.iterdir()) == []

    def test_symlinks_unsupported(self, data_dir, monkeypatch):
        """Test refusal to create symlinks stops the check early."""
        calls = []

        def refuse(*args, **kwargs):
            raise OSError(95, "Operation not supported")

        monkeypatch.setattr(os, "symlink", refuse)
        with pytest.raises(BackupEnvironmentError, match="symbolic links"):
            verify_filesystem(data_dir, copier=lambda *a: calls.append(a))
        assert calls == []
        assert list(data_dir.iterdir()) == []

    def test_symlink_not_linked(self, data_dir):
        """Test a copier that links files but not symlinks is rejected."""

        def files_only(src, dest, link_dest=None):
            dest.mkdir()
            for entry in src.iterdir():
                if entry.is_symlink():
                    os.symlink(os.readlink(entry), dest / entry.name)
                elif link_dest is not None:
                    os.link(link_dest / entry.name, dest / entry.name)
                else:
                    shutil.copy2(entry, dest / entry.name)

        with pytest.raises(BackupEnvironmentError, match="symbolic links"):
            verify_filesystem(data_dir, copier=files_only)

    @pytest.mark.skipif(shutil.which("rsync") is None, reason="rsync not installed")
    def test_rsync_copier(self, data_dir):
        """Test the default rsync copier on the local filesystem."""
        verify_filesystem(data_dir, copier=rsync_copy)
