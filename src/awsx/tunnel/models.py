"""Tunnel process models.

TunnelProcess follows an immutable pattern: every state change produces a
new instance which the supervisor stores back into the registry.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TunnelKind(str, Enum):
    """How the tunnel target was chosen."""

    DIRECT = "direct"
    URL = "url"
    DNS = "dns"
    REMOTE = "remote"


class TunnelStatus(str, Enum):
    """Tunnel lifecycle status."""

    STARTING = "starting"
    OPEN = "open"
    PROBING = "probing"
    OK = "ok"
    DOWN = "down"
    STOPPED = "stopped"


class TunnelOrigin(str, Enum):
    """Whether awsx launched the agent or found it in the process list."""

    NATIVE = "native"
    RECOVERED = "recovered"


class TunnelProcess(BaseModel):
    """A port-forward run by a detached forwarding agent process."""

    model_config = ConfigDict(frozen=True)

    local_port: int | None = Field(
        default=None, ge=1, le=65535, description="Local port (None if unparseable)"
    )
    kind: TunnelKind = Field(default=TunnelKind.DIRECT)
    hop_id: str | None = Field(default=None, description="Hop instance ID")
    hop_name: str | None = Field(default=None, description="Hop instance name")
    remote_host: str | None = Field(
        default=None, description="Forward destination; None means the hop itself"
    )
    remote_port: int | None = Field(default=None, ge=1, le=65535)
    pid: int = Field(ge=1, description="Forwarding agent process ID")
    status: TunnelStatus = Field(default=TunnelStatus.STARTING)
    latency_ms: float | None = Field(default=None, ge=0)
    origin: TunnelOrigin = Field(default=TunnelOrigin.NATIVE)
    proxy_site: str | None = Field(
        default=None, description="Hostname of the linked reverse-proxy site"
    )
    created_at: datetime = Field(default_factory=datetime.now)
    probed_at: datetime | None = Field(default=None)

    def with_status(
        self, status: TunnelStatus, latency_ms: float | None = None
    ) -> "TunnelProcess":
        """Create new tunnel instance with updated status (immutable pattern).

        Args:
            status: New tunnel status
            latency_ms: Measured round trip, kept only for OK

        Returns:
            New tunnel instance with updated status
        """
        update: dict[str, Any] = {
            "status": status,
            "latency_ms": latency_ms if status == TunnelStatus.OK else None,
        }
        if status in (TunnelStatus.OK, TunnelStatus.DOWN):
            update["probed_at"] = datetime.now()
        return self.model_copy(update=update)

    @property
    def remote_known(self) -> bool:
        return self.remote_port is not None

    @property
    def remote(self) -> str:
        """Display form of the forward destination."""
        if self.remote_port is None:
            return "?"
        host = self.remote_host or self.hop_name or self.hop_id or ""
        return f"{host}:{self.remote_port}"

    @property
    def status_label(self) -> str:
        if self.status == TunnelStatus.OK and self.latency_ms is not None:
            return f"OK {self.latency_ms:.0f}ms"
        return self.status.value.upper()


class StopResult(BaseModel):
    """Outcome of stopping one tunnel, or of removing an orphaned proxy site.

    Orphan site entries have neither a local port nor a pid.
    """

    model_config = ConfigDict(frozen=True)

    local_port: int | None
    pid: int | None
    stopped: bool = Field(description="The agent process was running and was terminated")
    proxy_removed: str | None = None
    errors: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors
