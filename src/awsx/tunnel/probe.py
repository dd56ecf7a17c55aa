"""Liveness probe for a forwarded local port."""

import socket
import time

from ..common.logging import get_logger
from ..common.utils import LOOPBACK
from .models import TunnelStatus

logger = get_logger(__name__)

PROBE_REQUEST = b"HEAD / HTTP/1.0\r\nHost: localhost\r\nConnection: close\r\n\r\n"


def probe_port(
    port: int,
    connect_timeout: float = 1.0,
    probe_timeout: float = 5.0,
    host: str = LOOPBACK,
) -> tuple[TunnelStatus, float | None]:
    """Push a request through the forward and wait for the far end.

    The agent accepts local connections even when the remote side is gone,
    so a bare connect proves nothing. A reply, EOF or reset means the remote
    end answered; a refused connect or read timeout means it did not.

    Returns:
        (OK, latency in ms) or (DOWN, None)
    """
    started = time.monotonic()
    try:
        sock = socket.create_connection((host, port), timeout=connect_timeout)
    except OSError as e:
        logger.debug("Probe connect failed", port=port, error=str(e))
        return TunnelStatus.DOWN, None

    with sock:
        try:
            sock.settimeout(probe_timeout)
            sock.sendall(PROBE_REQUEST)
            sock.recv(1)
        except ConnectionResetError:
            pass
        except socket.timeout:
            logger.debug("Probe timed out", port=port, timeout=probe_timeout)
            return TunnelStatus.DOWN, None
        except OSError as e:
            logger.debug("Probe failed", port=port, error=str(e))
            return TunnelStatus.DOWN, None

    latency_ms = (time.monotonic() - started) * 1000.0
    return TunnelStatus.OK, latency_ms
