"""Flat config file discovery, parsing, and validation.

The config file is a list of shell-style ``KEY=value`` assignments. Values
from the process environment override the file, so any setting can be
supplied either way.
"""

import logging
import os
import shlex
from pathlib import Path
from typing import Mapping, Optional

from .. import install_root
from ..__logger__ import verbose
from ..__util__ import (
    BackupEnvironmentError,
    ConfigError,
    DataDirMissingError,
)
from .schema import Config, ConfigCandidate

logger = logging.getLogger(__name__)

# Every key the loader understands; anything else in the file is ignored
KNOWN_KEYS = frozenset(
    {
        "GHE_HOSTNAME",
        "GHE_DATA_DIR",
        "GHE_NUM_SNAPSHOTS",
        "GHE_VERBOSE",
        "GHE_VERBOSE_LOG",
        "GHE_DEBUG",
        "GHE_BACKUP_STRATEGY",
        "GHE_BACKUP_PAGES",
        "GHE_BACKUP_FSCK",
        "GHE_ALLOW_REPLICA_BACKUP",
        "GHE_CREATE_DATA_DIR",
        "GHE_REMOTE_ROOT_DIR",
        "GHE_REMOTE_DATA_DIR",
        "GHE_GIT_COOLDOWN_PERIOD",
        "GHE_VERBOSE_SSH",
        "GHE_EXTRA_SSH_OPTS",
        "GHE_LIBEXEC_DIR",
        "GHE_RELEASE_FILE",
    }
)

FALSE_VALUES = frozenset({"", "no", "false", "0"})


def config_candidates(
    explicit_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> list[ConfigCandidate]:
    """Config file locations in priority order.

    Args:
        explicit_path: Path given on the command line or via GHE_BACKUP_CONFIG

    Returns:
        Candidates, highest priority first
    """
    environ = os.environ if environ is None else environ
    explicit_path = explicit_path or environ.get("GHE_BACKUP_CONFIG")

    candidates = []
    if explicit_path:
        candidates.append(ConfigCandidate("explicit", Path(explicit_path)))
    candidates.extend(
        [
            ConfigCandidate(
                "installation", install_root(environ) / "backup.config"
            ),
            ConfigCandidate(
                "user",
                Path.home() / ".github-backup-utils" / "backup.config",
            ),
            ConfigCandidate(
                "system", Path("/etc/github-backup-utils/backup.config")
            ),
        ]
    )
    return candidates


def find_config_file(
    explicit_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ConfigCandidate:
    """Return the first candidate that exists.

    Raises:
        ConfigError: If no candidate exists; every path tried is listed
    """
    candidates = config_candidates(explicit_path, environ)
    for candidate in candidates:
        if candidate.exists():
            return candidate

    tried = ", ".join(str(c.path) for c in candidates)
    raise ConfigError(f"No backup configuration file found. Tried: {tried}")


def parse_config_file(path: Path | str) -> dict[str, str]:
    """Parse ``KEY=value`` assignments from a config file.

    Shell quoting, comments and a leading ``export`` are understood.
    Variable expansion is not performed.

    Raises:
        ConfigError: If the file cannot be read or a line cannot be tokenized
    """
    try:
        text = Path(path).read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    values = {}
    for lineno, line in enumerate(text.splitlines(), 1):
        try:
            tokens = shlex.split(line, comments=True)
        except ValueError as e:
            raise ConfigError(f"{path}:{lineno}: {e}")
        if tokens and tokens[0] == "export":
            tokens = tokens[1:]
        for token in tokens:
            key, sep, value = token.partition("=")
            if sep and key.isidentifier():
                values[key] = value
    return values


def _flag(value: Optional[str]) -> bool:
    """Flags that are off unless set to something truthy."""
    return value is not None and value.strip().lower() not in FALSE_VALUES


def _toggle(value: Optional[str]) -> bool:
    """Toggles that are on unless explicitly set to 'no'."""
    return value is None or value.strip().lower() != "no"


def _integer(values: dict[str, str], key: str, default: int, minimum: int) -> int:
    raw = values.get(key)
    if raw is None or raw == "":
        return default
    try:
        number = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if number < minimum:
        raise ConfigError(f"{key} must be at least {minimum}, got {number}")
    return number


def resolve_data_dir(raw: str, root: Path) -> Path:
    """Make the data directory absolute.

    Relative paths are taken from the installation root, then
    canonicalized as far as the filesystem allows.
    """
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = root / path
    return path.resolve(strict=False)


def ensure_data_dir(path: Path, create: bool) -> None:
    """Create the data directory if allowed, then require that it exists.

    Raises:
        DataDirMissingError: If the directory is still missing
    """
    if create and not path.is_dir():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Could not create %s: %s", path, e)
    if not path.is_dir():
        raise DataDirMissingError(f"GHE_DATA_DIR {path} does not exist")


def load_config(
    explicit_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """Locate, load and validate the configuration.

    Args:
        explicit_path: Config file given on the command line
        environ: Environment mapping; defaults to ``os.environ``

    Returns:
        The validated Config

    Raises:
        ConfigError: No config file or a required setting is missing
        BackupEnvironmentError: Running on the appliance itself
        DataDirMissingError: The data directory is missing after creation
    """
    environ = os.environ if environ is None else environ
    candidate = find_config_file(explicit_path, environ)
    verbose.debug("Loading configuration from %s (%s)", candidate.path, candidate.label)

    values = parse_config_file(candidate.path)
    for key in KNOWN_KEYS:
        if key in environ:
            values[key] = environ[key]

    hostname = values.get("GHE_HOSTNAME", "").strip()
    if not hostname:
        raise ConfigError(f"GHE_HOSTNAME not set in {candidate.path}")

    data_dir_raw = values.get("GHE_DATA_DIR", "").strip()
    if not data_dir_raw:
        raise ConfigError(f"GHE_DATA_DIR must be set in {candidate.path}")

    root = install_root(environ)
    release_file = Path(values.get("GHE_RELEASE_FILE") or "/etc/github/enterprise-release")
    if release_file.exists():
        raise BackupEnvironmentError(
            "Backup Utils cannot be run on the GitHub Enterprise host. "
            "Run it from a separate host with network access to the appliance."
        )

    libexec = values.get("GHE_LIBEXEC_DIR")
    config = Config(
        hostname=hostname,
        data_dir=resolve_data_dir(data_dir_raw, root),
        num_snapshots=_integer(values, "GHE_NUM_SNAPSHOTS", 10, 1),
        verbose=_flag(values.get("GHE_VERBOSE")),
        verbose_log=values.get("GHE_VERBOSE_LOG") or None,
        debug=_flag(values.get("GHE_DEBUG")),
        backup_strategy=values.get("GHE_BACKUP_STRATEGY") or "rsync",
        backup_pages=_toggle(values.get("GHE_BACKUP_PAGES")),
        backup_fsck=_flag(values.get("GHE_BACKUP_FSCK")),
        allow_replica_backup=_flag(values.get("GHE_ALLOW_REPLICA_BACKUP")),
        create_data_dir=_toggle(values.get("GHE_CREATE_DATA_DIR")),
        remote_root_dir=values.get("GHE_REMOTE_ROOT_DIR", "").rstrip("/"),
        remote_data_dir=values.get("GHE_REMOTE_DATA_DIR") or "/data",
        git_cooldown_period=_integer(values, "GHE_GIT_COOLDOWN_PERIOD", 600, 0),
        verbose_ssh=_flag(values.get("GHE_VERBOSE_SSH")),
        extra_ssh_opts=values.get("GHE_EXTRA_SSH_OPTS", ""),
        libexec_dir=Path(libexec) if libexec else root / "share" / "github-backup-utils",
        release_file=release_file,
        source=candidate,
    )

    ensure_data_dir(config.data_dir, config.create_data_dir)
    return config
