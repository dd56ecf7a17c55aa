"""OpenVPN client driver for Client VPN endpoints with SAML federation.

The AWS-provided OpenVPN build understands the federated auth extension and
is used when installed; stock openvpn is the fallback. The handshake runs
the client twice: once with an ACS marker password so the endpoint answers
with a CRV1 challenge carrying the SAML URL, then again with the captured
assertion as the password.
"""

import os
import re
import subprocess
import time
from pathlib import Path

import psutil

from ..common.exceptions import (
    AwsxError,
    VpnConfigError,
    VpnHandshakeFailed,
    VpnReconnectTimeout,
)
from ..common.logging import get_logger
from ..common.process import ProcessManager, require_tool, run_command, terminate_pid
from ..common.utils import atomic_write
from .config import VpnSettings
from .models import SamlChallenge

logger = get_logger(__name__)

FILTERED_DIRECTIVES = ("auth-federate", "auth-retry", "auth-nocache")
CONNECTED_MARKER = "Initialization Sequence Completed"
AUTH_FAILED_MARKER = "AUTH_FAILED"

_SAML_URL_RE = re.compile(r"https://portal\.sso\.[^\s,]+")
_SESSION_ID_RE = re.compile(r"CRV1:R(?:,E)?:([^:]+)")
_PROCESS_RE = re.compile(r"acvc-openvpn|openvpn.*--config")


def parse_challenge(output: str) -> SamlChallenge:
    """Extract the SAML URL and CRV1 session ID from client output.

    Raises:
        VpnHandshakeFailed: If either is missing
    """
    url = _SAML_URL_RE.search(output)
    if url is None:
        tail = "\n".join(output.strip().splitlines()[-5:])
        raise VpnHandshakeFailed(
            f"Could not extract SAML URL from VPN server output. Last lines:\n{tail}"
        )
    session = _SESSION_ID_RE.search(output)
    if session is None:
        raise VpnHandshakeFailed("Could not extract session ID (CRV1:R:...) from VPN server output")
    return SamlChallenge(url=url.group(0), session_id=session.group(1))


def filter_profile(content: str) -> str:
    """Drop directives that make openvpn handle federation itself."""
    lines = [
        line
        for line in content.splitlines()
        if not line.strip().startswith(FILTERED_DIRECTIVES)
    ]
    return "\n".join(lines) + "\n"


class OpenVpnClient:
    """Builds, runs and finds the OpenVPN client process."""

    def __init__(self, settings: VpnSettings | None = None):
        self.settings = settings or VpnSettings()

    def aws_build_available(self) -> bool:
        directory = self.settings.aws_openvpn_dir
        return (directory / "ld-musl-x86_64.so.1").exists() and (
            directory / "acvc-openvpn"
        ).exists()

    def command(self, profile_path: Path, credentials_path: Path) -> list[str]:
        if self.aws_build_available():
            directory = self.settings.aws_openvpn_dir
            base = [
                str(directory / "ld-musl-x86_64.so.1"),
                "--library-path",
                str(directory),
                str(directory / "acvc-openvpn"),
            ]
        else:
            base = [
                require_tool(
                    self.settings.openvpn_executable,
                    "Install openvpn or the AWS VPN Client",
                )
            ]
        args = [
            *base,
            "--config",
            str(profile_path),
            "--auth-user-pass",
            str(credentials_path),
            "--verb",
            "3",
        ]
        return self._privileged(args)

    def _privileged(self, args: list[str]) -> list[str]:
        if self.settings.privilege_prefix and hasattr(os, "geteuid") and os.geteuid() != 0:
            return [*self.settings.privilege_prefix, *args]
        return args

    # Files

    def prepare_profile(self, ovpn_path: Path, workdir: Path) -> Path:
        """Copy the .ovpn profile into workdir without federation directives.

        Raises:
            VpnConfigError: If the profile cannot be read
        """
        try:
            content = Path(ovpn_path).expanduser().read_text()
        except OSError as e:
            raise VpnConfigError(f"Cannot read VPN profile {ovpn_path}: {e}") from e
        target = workdir / "profile.ovpn"
        atomic_write(target, filter_profile(content), mode=0o600)
        return target

    def write_credentials(self, workdir: Path, name: str, username: str, password: str) -> Path:
        path = workdir / f"{name}.creds"
        atomic_write(path, f"{username}\n{password}\n", mode=0o600)
        return path

    # Handshake

    def request_challenge(self, profile_path: Path, workdir: Path) -> SamlChallenge:
        """Run the client with the ACS marker and read the SAML challenge.

        The client exits once the endpoint rejects the marker; it is killed if
        it is still running after the challenge timeout.

        Raises:
            VpnHandshakeFailed: If the output has no usable challenge
        """
        credentials = self.write_credentials(
            workdir, "challenge", "N/A", f"ACS::{self.settings.callback_port}"
        )
        args = self.command(profile_path, credentials)
        logger.info("Requesting SAML challenge", command=args[0])
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.settings.challenge_timeout,
                check=False,
            )
            output = f"{result.stdout}\n{result.stderr}"
        except subprocess.TimeoutExpired as e:
            output = "\n".join(
                part.decode(errors="replace") if isinstance(part, bytes) else part
                for part in (e.stdout, e.stderr)
                if part
            )
        except FileNotFoundError as e:
            raise VpnHandshakeFailed(f"Cannot run VPN client {args[0]}: {e}") from e
        finally:
            credentials.unlink(missing_ok=True)

        challenge = parse_challenge(output)
        logger.info(
            "SAML challenge received",
            url_length=len(challenge.url),
            session_id=challenge.session_id[:30],
        )
        return challenge

    def start(
        self, profile_path: Path, workdir: Path, session_id: str, saml_response: str
    ) -> ProcessManager:
        """Start the detached client authenticating with the SAML assertion."""
        credentials = self.write_credentials(
            workdir, "session", "N/A", f"CRV1::{session_id}::{saml_response}"
        )
        log_path = self.log_path(workdir)
        log_path.unlink(missing_ok=True)
        process = ProcessManager(self.command(profile_path, credentials), log_path=log_path)
        try:
            pid = process.start()
        except OSError as e:
            raise VpnHandshakeFailed(f"Cannot start VPN client: {e}") from e
        logger.info("VPN client started", pid=pid)
        return process

    def log_path(self, workdir: Path) -> Path:
        return workdir / "openvpn.log"

    def wait_connected(self, process: ProcessManager, log_path: Path, timeout: float) -> None:
        """Wait for the client to report the tunnel is up.

        Raises:
            VpnHandshakeFailed: If the endpoint rejects the assertion
            VpnReconnectTimeout: If the client exits or stays silent too long
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            output = log_path.read_text(errors="replace") if log_path.exists() else ""
            if CONNECTED_MARKER in output:
                logger.info("VPN client connected", pid=process.pid)
                return
            if AUTH_FAILED_MARKER in output:
                raise VpnHandshakeFailed("VPN endpoint rejected the SAML assertion (AUTH_FAILED)")
            if not process.is_running():
                raise VpnReconnectTimeout(
                    f"VPN client exited with status {process.returncode} before connecting"
                )
            time.sleep(0.5)
        raise VpnReconnectTimeout(f"VPN client did not connect within {timeout:g}s")

    # Process lookup

    def find_pid(self) -> int | None:
        """PID of a running OpenVPN client, whoever started it."""
        for proc in psutil.process_iter(["pid", "cmdline"]):
            args = proc.info.get("cmdline") or []
            if not args or Path(args[0]).name == "sudo":
                continue
            if _PROCESS_RE.search(" ".join(args)):
                return proc.info["pid"]
        return None

    def stop(self, pid: int) -> bool:
        """Terminate the client, via the privilege prefix if it runs as root.

        Returns:
            True if the process existed
        """
        try:
            return terminate_pid(pid, timeout=self.settings.command_timeout)
        except psutil.AccessDenied:
            if not self.settings.privilege_prefix:
                raise
        try:
            run_command(
                [*self.settings.privilege_prefix, "kill", str(pid)],
                timeout=self.settings.command_timeout,
            )
        except AwsxError as e:
            logger.error("Failed to stop VPN client", pid=pid, error=str(e))
            raise
        return True
