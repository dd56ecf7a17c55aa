"""Split-DNS routing for the VPN interface via systemd-resolved."""

import os
import re
import time

from ..common.exceptions import CommandError, VpnRoutingError
from ..common.logging import get_logger
from ..common.process import run_command
from .config import VpnSettings

logger = get_logger(__name__)

_INET_RE = re.compile(r"inet (\d+\.\d+\.\d+\.\d+)")


class DnsRouter:
    """Applies and clears per-interface DNS settings."""

    def __init__(self, settings: VpnSettings | None = None):
        self.settings = settings or VpnSettings()

    @property
    def interface(self) -> str:
        return self.settings.interface

    def interface_up(self) -> bool:
        result = run_command(
            ["ip", "link", "show", self.interface],
            timeout=self.settings.command_timeout,
            check=False,
        )
        return result.returncode == 0

    def interface_address(self) -> str | None:
        result = run_command(
            ["ip", "-4", "addr", "show", self.interface],
            timeout=self.settings.command_timeout,
            check=False,
        )
        match = _INET_RE.search(result.stdout)
        return match.group(1) if match else None

    def wait_for_interface(self, timeout: float | None = None) -> None:
        """Raises VpnRoutingError if the interface does not appear in time."""
        timeout = timeout or self.settings.interface_timeout
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.interface_up():
                return
            time.sleep(1.0)
        raise VpnRoutingError(f"{self.interface} did not come up within {timeout:g}s")

    def apply(self, dns_server: str | None, dns_domain: str | None) -> bool:
        """Route dns_domain lookups to dns_server over the VPN interface.

        Returns:
            False if no DNS routing is configured

        Raises:
            VpnRoutingError: If the interface is missing or resolvectl fails
        """
        if not dns_server or not dns_domain:
            logger.info("No DNS routing configured")
            return False

        self.wait_for_interface()
        for args in (
            ["dns", self.interface, dns_server],
            ["domain", self.interface, dns_domain],
            ["default-route", self.interface, "false"],
        ):
            self._resolvectl(args)
        logger.info(
            "DNS routing applied",
            interface=self.interface,
            server=dns_server,
            domain=dns_domain,
        )
        return True

    def revert(self) -> bool:
        """Clear DNS settings on the interface. False if it is already gone."""
        if not self.interface_up():
            return False
        self._resolvectl(["revert", self.interface])
        logger.info("DNS routing cleared", interface=self.interface)
        return True

    def _resolvectl(self, args: list[str]) -> None:
        command = ["resolvectl", *args]
        if self.settings.privilege_prefix and hasattr(os, "geteuid") and os.geteuid() != 0:
            command = [*self.settings.privilege_prefix, *command]
        try:
            run_command(command, timeout=self.settings.command_timeout)
        except CommandError as e:
            raise VpnRoutingError(f"resolvectl {args[0]} {self.interface} failed: {e}") from e
