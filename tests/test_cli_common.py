"""Tests for CLI parsing and the entry point."""

import argparse
from pathlib import Path

import pytest

from ghe_backup_ng import __version__
from ghe_backup_ng.cli import dispatcher
from ghe_backup_ng.cli.common import (
    BackupArgumentParser,
    add_verbosity_args,
    apply_verbosity,
)
from ghe_backup_ng.config.loader import KNOWN_KEYS


class TestAddVerbosityArgs:
    """Tests for add_verbosity_args function."""

    def test_adds_verbose(self):
        """Test that --verbose is added."""
        parser = argparse.ArgumentParser()
        add_verbosity_args(parser)
        args = parser.parse_args(["--verbose"])
        assert args.verbose is True

    def test_short_verbose(self):
        """Test that -v works for verbose."""
        parser = argparse.ArgumentParser()
        add_verbosity_args(parser)
        args = parser.parse_args(["-v"])
        assert args.verbose is True

    def test_defaults_are_false(self):
        """Test that defaults are False."""
        parser = argparse.ArgumentParser()
        add_verbosity_args(parser)
        args = parser.parse_args([])
        assert args.verbose is False
        assert args.debug is False


class TestApplyVerbosity:
    """Tests for apply_verbosity function."""

    def test_flags_become_settings(self):
        """Test -v and --debug map onto GHE_VERBOSE and GHE_DEBUG."""
        args = argparse.Namespace(verbose=True, debug=True)
        environ = apply_verbosity(args, {"GHE_HOSTNAME": "h"})
        assert environ == {"GHE_HOSTNAME": "h", "GHE_VERBOSE": "1", "GHE_DEBUG": "1"}

    def test_does_not_modify_input(self):
        """Test the original mapping is left alone."""
        original = {"GHE_HOSTNAME": "h"}
        apply_verbosity(argparse.Namespace(verbose=True, debug=False), original)
        assert original == {"GHE_HOSTNAME": "h"}


class TestBackupArgumentParser:
    """Tests for usage error handling."""

    def test_unknown_flag_exits_one(self, capsys):
        """Test an unrecognized flag is a usage error with status 1."""
        parser = BackupArgumentParser(prog="ghe-backup")
        with pytest.raises(SystemExit) as excinfo:
            parser.parse_args(["--bogus"])
        assert excinfo.value.code == 1
        assert "usage:" in capsys.readouterr().err


class TestMain:
    """Tests for the ghe-backup entry point."""

    @pytest.fixture
    def environment(self, tmp_path, monkeypatch):
        """Isolated environment with no config file anywhere."""
        home = tmp_path / "home"
        home.mkdir()
        monkeypatch.setattr(Path, "home", staticmethod(lambda: home))
        monkeypatch.setenv("GHE_BACKUP_ROOT", str(tmp_path / "install"))
        monkeypatch.setenv("GHE_RELEASE_FILE", str(tmp_path / "no-release"))
        for key in KNOWN_KEYS - {"GHE_RELEASE_FILE"}:
            monkeypatch.delenv(key, raising=False)
        monkeypatch.delenv("GHE_BACKUP_CONFIG", raising=False)
        monkeypatch.delenv("GHE_REMOTE_VERSION", raising=False)
        return tmp_path

    def write_config(self, environment, monkeypatch, text):
        path = environment / "backup.config"
        path.write_text(text)
        monkeypatch.setenv("GHE_BACKUP_CONFIG", str(path))
        return path

    def test_version(self, capsys):
        """Test --version prints the version and exits 0."""
        assert dispatcher.main(["--version"]) == 0
        assert capsys.readouterr().out.strip() == f"ghe-backup-ng {__version__}"

    def test_unknown_flag(self):
        """Test an unknown flag exits with status 1."""
        with pytest.raises(SystemExit) as excinfo:
            dispatcher.main(["--nope"])
        assert excinfo.value.code == 1

    def test_missing_config(self, environment, capsys):
        """Test a missing config file exits 2 with a diagnostic."""
        if Path("/etc/github-backup-utils/backup.config").exists():
            pytest.skip("System has a real backup.config")
        assert dispatcher.main([]) == 2
        assert "No backup configuration file found" in capsys.readouterr().err

    def test_missing_hostname(self, environment, monkeypatch):
        """Test a config without GHE_HOSTNAME exits 2."""
        self.write_config(environment, monkeypatch, f"GHE_DATA_DIR={environment}/data\n")
        monkeypatch.delenv("GHE_HOSTNAME", raising=False)
        assert dispatcher.main([]) == 2

    def test_missing_data_dir(self, environment, monkeypatch):
        """Test a data dir that may not be created exits 8."""
        self.write_config(
            environment,
            monkeypatch,
            f"GHE_HOSTNAME=h\nGHE_DATA_DIR={environment}/absent\nGHE_CREATE_DATA_DIR=no\n",
        )
        assert dispatcher.main([]) == 8

    def test_runs_backup_with_verbose_config(self, environment, monkeypatch):
        """Test -v reaches the loaded config and the backup's exit code is returned."""
        self.write_config(
            environment, monkeypatch, f"GHE_HOSTNAME=h\nGHE_DATA_DIR={environment}/data\n"
        )
        seen = []

        def fake_execute(config):
            seen.append(config)
            return 1

        monkeypatch.setattr(dispatcher, "execute_backup", fake_execute)
        assert dispatcher.main(["-v"]) == 1
        assert seen[0].verbose is True
        assert seen[0].hostname == "h"

    def test_interrupt_exit_code(self, environment, monkeypatch):
        """Test an interrupted backup exits 130."""
        self.write_config(
            environment, monkeypatch, f"GHE_HOSTNAME=h\nGHE_DATA_DIR={environment}/data\n"
        )

        def interrupted(config):
            raise KeyboardInterrupt

        monkeypatch.setattr(dispatcher, "execute_backup", interrupted)
        assert dispatcher.main([]) == 130

    def test_filesystem_error_exit_code(self, environment, monkeypatch, capsys):
        """Test an OS error during the run is reported and exits 1."""
        self.write_config(
            environment, monkeypatch, f"GHE_HOSTNAME=h\nGHE_DATA_DIR={environment}/data\n"
        )

        def failing(config):
            raise FileExistsError(17, "File exists", str(config.data_dir / "20990101T000000"))

        monkeypatch.setattr(dispatcher, "execute_backup", failing)
        assert dispatcher.main([]) == 1
        err = capsys.readouterr().err
        assert "Error:" in err
        assert "File exists" in err
