"""Multiplexed SSH session to the appliance administrative shell."""

import hashlib
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

from ghe_backup_ng.__logger__ import logger, verbose
from ghe_backup_ng.config import Config

DEFAULT_PORT = 122
DEFAULT_USER = "admin"


def split_host(host: str) -> tuple[str, int]:
    """Split ``host[:port]`` into host and port."""
    name, sep, port = host.rpartition(":")
    if sep and port.isdigit() and name:
        return name, int(port)
    return host, DEFAULT_PORT


class RemoteSession:
    """ControlMaster-backed ssh connection reused by every remote command.

    The master socket lives in the system temp directory and is keyed on
    the host, so commands issued during one run share a single connection.
    :meth:`close` tears it down and is safe to call more than once.
    """

    def __init__(
        self,
        config: Config,
        host: Optional[str] = None,
        user: str = DEFAULT_USER,
        control_dir: Optional[str] = None,
        persist: str = "10m",
    ):
        self.config = config
        self.hostname, self.port = split_host(host or config.hostname)
        self.user = user
        self.persist = persist
        self.ssh_opts = shlex.split(config.extra_ssh_opts)

        key = hashlib.sha256(f"{self.user}@{self.hostname}:{self.port}".encode()).hexdigest()[:12]
        self.control_dir = Path(control_dir or tempfile.gettempdir())
        self.control_path = self.control_dir / f".ghe-sshmux-{key}"
        self._used = False

    def _ssh_base_cmd(self) -> List[str]:
        cmd = ["ssh"]
        if self.config.verbose_ssh:
            cmd.append("-v")

        opts = [
            f"ControlPath={self.control_path}",
            "ControlMaster=auto",
            f"ControlPersist={self.persist}",
            "ServerAliveInterval=5",
            "ServerAliveCountMax=6",
            "ConnectTimeout=30",
            "BatchMode=yes",
            "StrictHostKeyChecking=accept-new",
        ]
        for opt in opts:
            cmd.extend(["-o", opt])
        cmd.extend(self.ssh_opts)
        cmd.extend(["-p", str(self.port), "-l", self.user, self.hostname])
        return cmd

    def command(self, remote_cmd: List[str]) -> List[str]:
        """Full argv running remote_cmd on the appliance."""
        return self._ssh_base_cmd() + ["--", shlex.join(remote_cmd)]

    def run(self, remote_cmd: List[str]) -> subprocess.CompletedProcess:
        """Run a command on the appliance and capture its output."""
        self._used = True
        cmd = self.command(remote_cmd)
        verbose.debug("Running: %s", shlex.join(cmd))
        return subprocess.run(cmd, capture_output=True, text=True, check=False)

    def is_replica(self) -> bool:
        """Whether the appliance is configured as a high availability replica."""
        state_file = f"{self.config.remote_root_dir}/etc/github/repl-state"
        try:
            return self.run(["test", "-f", state_file]).returncode == 0
        except OSError as e:
            logger.warning("Could not check replica state: %s", e)
            return False

    def remote_log(self, message: str) -> None:
        """Write message to the appliance syslog; failures are ignored."""
        try:
            result = self.run(["logger", "-t", "backup-utils", message])
        except OSError as e:
            verbose.debug("Remote log failed: %s", e)
            return
        if result.returncode != 0:
            verbose.debug("Remote log exited with status %d", result.returncode)

    def close(self) -> None:
        """Stop the master connection and remove its socket."""
        if not self._used:
            return
        self._used = False

        if self.control_path.exists():
            cmd = [
                "ssh",
                "-O",
                "exit",
                "-o",
                f"ControlPath={self.control_path}",
                self.hostname,
            ]
            try:
                subprocess.run(cmd, capture_output=True, check=False)
            except OSError as e:
                verbose.debug("Failed to stop SSH master: %s", e)
        self.cleanup_socket()

    def cleanup_socket(self) -> None:
        try:
            self.control_path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to cleanup socket: {e}")
