"""Remote appliance version negotiation.

The appliance version decides where user data lives on the remote side and
how repository listings are reduced to directories. Both decisions come
from small ordered tables and are resolved once into a
:class:`NegotiatedVersion` that every step receives.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Optional

from ..__logger__ import verbose
from ..__util__ import RemoteProbeFailure
from ..config import Config

logger = logging.getLogger(__name__)

# "Connect ghe.example.com:122 OK (v2.13.7)"
PROBE_PATTERN = re.compile(r"^Connect\s+(\S+)\s+OK\s+\(([^)]+)\)", re.MULTILINE)

# (minimum version, remote user data subdirectory), newest layout first
USER_DATA_LAYOUTS = [
    ((2, 0, 0, 0), "/user"),
    ((0, 0, 0, 0), ""),
]

# Repository listings for gists keep their full path starting with these
# releases. A series of None applies to every later release.
GIST_PASSTHROUGH_THRESHOLDS = [
    ((2, 11, 19, 0), (2, 11)),
    ((2, 12, 13, 0), (2, 12)),
    ((2, 13, 7, 0), (2, 13)),
    ((2, 14, 0, 0), None),
]

GIST_MARKER = "gist"


def version_key(text: str) -> tuple[int, int, int, int]:
    """Four-part numeric key for ordering version strings.

    Missing parts count as zero and each part keeps only its leading
    digits, so ``"2.10"`` sorts after ``"2.9"`` and ``"2.13.0rc1"`` equals
    ``"2.13.0"``.
    """
    parts = text.strip().lstrip("v").split(".")
    numbers = []
    for part in (parts + ["0"] * 4)[:4]:
        digits = re.match(r"\d*", part).group()
        numbers.append(int(digits) if digits else 0)
    return (numbers[0], numbers[1], numbers[2], numbers[3])


def version_number(text: str) -> int:
    """Version as a single integer with three digits per minor part."""
    return int("%d%03d%03d%03d" % version_key(text))


@dataclass(frozen=True, order=True)
class RemoteVersion:
    """Parsed appliance version."""

    major: int
    minor: int
    patch: int
    raw: str = field(default="", compare=False)

    @property
    def key(self) -> tuple[int, int, int, int]:
        return (self.major, self.minor, self.patch, 0)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def parse_version(text: str) -> RemoteVersion:
    """Parse a free-form version string such as ``v2.13.0rc1``.

    Raises:
        ValueError: If the major or minor part is not numeric
    """
    raw = text.strip()
    parts = raw.lstrip("v").split(".")
    if not parts[0].isdigit():
        raise ValueError(f"Unrecognized version string: {text!r}")

    minor = parts[1] if len(parts) > 1 else "0"
    if not minor.isdigit():
        raise ValueError(f"Unrecognized version string: {text!r}")

    patch = re.match(r"\d*", parts[2]).group() if len(parts) > 2 else ""
    return RemoteVersion(int(parts[0]), int(minor), int(patch or 0), raw)


@dataclass(frozen=True)
class PathFilter:
    """Reduce repository paths to their parent directory.

    When ``keep_gists`` is set, lines mentioning gists are passed through
    untouched; those listings already name the directory to sync.
    """

    keep_gists: bool = False

    def apply(self, line: str) -> str:
        if self.keep_gists and GIST_MARKER in line:
            return line
        if line.endswith("/"):
            line = line[:-1]
        if "/" not in line:
            return "."
        return line.rsplit("/", 1)[0]

    def __call__(self, lines: Iterable[str]) -> Iterator[str]:
        for line in lines:
            stripped = line.rstrip("\n")
            newline = line[len(stripped):]
            yield self.apply(stripped) + newline


def path_fixup_filter(version: RemoteVersion) -> PathFilter:
    """Pick the path filter for a remote version."""
    for threshold, series in GIST_PASSTHROUGH_THRESHOLDS:
        if series is not None and (version.major, version.minor) != series:
            continue
        if version.key >= threshold:
            return PathFilter(keep_gists=True)
    return PathFilter(keep_gists=False)


def user_data_dir(config: Config, version: RemoteVersion) -> str:
    """Remote directory holding user data for a version."""
    for threshold, suffix in USER_DATA_LAYOUTS:
        if version.key >= threshold:
            return f"{config.remote_root_dir}{config.remote_data_dir}{suffix}"
    return f"{config.remote_root_dir}{config.remote_data_dir}"


@dataclass(frozen=True)
class NegotiatedVersion:
    """Version-dependent decisions shared by every step of a run."""

    host: str
    version: RemoteVersion
    user_data_dir: str
    path_filter: PathFilter

    def as_env(self) -> dict[str, str]:
        """Environment exported to steps so none of them re-probes."""
        return {
            "GHE_HOSTNAME": self.host,
            "GHE_REMOTE_VERSION": self.version.raw.lstrip("v") or str(self.version),
            "GHE_VERSION_MAJOR": str(self.version.major),
            "GHE_VERSION_MINOR": str(self.version.minor),
            "GHE_VERSION_PATCH": str(self.version.patch),
            "GHE_REMOTE_DATA_USER_DIR": self.user_data_dir,
        }


def parse_probe_report(report: str) -> tuple[str, RemoteVersion]:
    """Extract the effective host and version from a host check report.

    Raises:
        RemoteProbeFailure: If the report has no usable Connect line
    """
    match = PROBE_PATTERN.search(report)
    if match is None:
        raise RemoteProbeFailure(
            f"Could not determine remote version from host check output: {report.strip()!r}"
        )
    host, raw_version = match.groups()
    try:
        return host, parse_version(raw_version)
    except ValueError as e:
        raise RemoteProbeFailure(str(e))


class VersionNegotiator:
    """Obtain the remote version once per process tree.

    A value exported by a parent invocation (``GHE_REMOTE_VERSION``) is
    reused as is; otherwise the host check collaborator is run once and its
    answer cached on the instance.
    """

    def __init__(
        self,
        config: Config,
        runner,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.environ = os.environ if environ is None else environ
        self._negotiated: Optional[NegotiatedVersion] = None

    def _resolve(self, host: str, version: RemoteVersion) -> NegotiatedVersion:
        return NegotiatedVersion(
            host=host,
            version=version,
            user_data_dir=user_data_dir(self.config, version),
            path_filter=path_fixup_filter(version),
        )

    def ensure(self) -> NegotiatedVersion:
        """Return the negotiated version, probing the remote on first use.

        Raises:
            RemoteProbeFailure: If the host check fails or its report is unusable
        """
        if self._negotiated is not None:
            return self._negotiated

        inherited = self.environ.get("GHE_REMOTE_VERSION")
        if inherited:
            host = self.environ.get("GHE_HOSTNAME") or self.config.hostname
            try:
                version = parse_version(inherited)
            except ValueError as e:
                raise RemoteProbeFailure(str(e))
            verbose.debug("Using inherited remote version %s for %s", version, host)
            self._negotiated = self._resolve(host, version)
            return self._negotiated

        try:
            result = self.runner.host_check(self.config.hostname)
        except OSError as e:
            raise RemoteProbeFailure(f"Could not run host check: {e}")

        if result.returncode != 0:
            output = (result.stdout or "").strip()
            raise RemoteProbeFailure(
                f"Host check of {self.config.hostname} failed"
                + (f": {output}" if output else "")
            )

        host, version = parse_probe_report(result.stdout or "")
        if host != self.config.hostname:
            verbose.debug("Host check corrected %s to %s", self.config.hostname, host)
        logger.info("Remote %s is running version %s", host, version)

        self._negotiated = self._resolve(host, version)
        return self._negotiated
