"""Hostname lookups used by the path resolver."""

import ipaddress
import socket

from ..common.exceptions import CommandError, ExternalToolMissing
from ..common.logging import get_logger
from ..common.process import run_command

logger = get_logger(__name__)


def is_loopback(address: str) -> bool:
    try:
        return ipaddress.ip_address(address).is_loopback
    except ValueError:
        return False


def lookup(host: str) -> list[str]:
    """Resolve host through the system resolver, preserving answer order."""
    try:
        infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, UnicodeError):
        return []

    addresses: list[str] = []
    for info in infos:
        address = str(info[4][0])
        if address not in addresses:
            addresses.append(address)
    return addresses


def lookup_external(host: str, server: str, timeout: float = 5.0) -> list[str]:
    """Resolve host against an explicit DNS server, bypassing the hosts file."""
    try:
        result = run_command(["dig", "+short", f"@{server}", host], timeout=timeout)
    except (ExternalToolMissing, CommandError) as e:
        logger.debug("External DNS lookup failed", host=host, server=server, error=str(e))
        return []

    addresses = []
    for line in result.stdout.splitlines():
        line = line.strip()
        try:
            ipaddress.ip_address(line)
        except ValueError:
            continue  # CNAME hops
        addresses.append(line)
    return addresses


def resolve_host(host: str, external_server: str | None = None) -> list[str]:
    """Resolve host, looking past loopback overrides in the hosts file.

    When every local answer is loopback (for instance because a reverse proxy
    site already maps the host to 127.0.0.1), the external server is asked
    instead and its answers win if it has any.
    """
    addresses = lookup(host)
    if addresses and all(is_loopback(a) for a in addresses) and external_server:
        external = lookup_external(host, external_server)
        if external:
            logger.debug("Local DNS is a loopback override, using external answers", host=host)
            return external
    return addresses
