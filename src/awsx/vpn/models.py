"""VPN models.

VpnConfig is the persisted record written by setup; VpnSession is the one
live session the orchestrator tracks.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class VpnState(str, Enum):
    """Connection handshake states."""

    DISCONNECTED = "disconnected"
    CHALLENGE_REQUESTED = "challenge_requested"
    BROWSER_AUTHENTICATING = "browser_authenticating"
    SAML_CAPTURED = "saml_captured"
    RECONNECTING = "reconnecting"
    CONNECTED = "connected"


class VpnConfig(BaseModel):
    """Credentials and client profile for one provider profile."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    username: str = Field(min_length=1, description="SSO username")
    password: SecretStr = Field(description="SSO password")
    ovpn_path: Path = Field(description="Client VPN .ovpn profile")
    dns_server: str | None = Field(default=None, description="Resolver reached through the VPN")
    dns_domain: str | None = Field(default=None, description="Search domain routed to dns_server")

    @field_validator("dns_server", "dns_domain")
    @classmethod
    def empty_to_none(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("password")
    @classmethod
    def password_not_empty(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("Password cannot be empty")
        return v

    @property
    def routes_dns(self) -> bool:
        return bool(self.dns_server and self.dns_domain)


class SamlChallenge(BaseModel):
    """SAML login URL and session ID returned by the VPN endpoint."""

    model_config = ConfigDict(frozen=True)

    url: str
    session_id: str


class VpnSession(BaseModel):
    """Snapshot of the VPN session."""

    model_config = ConfigDict(frozen=True)

    state: VpnState = VpnState.DISCONNECTED
    pid: int | None = None
    ip: str | None = None
    connected_at: datetime | None = None
    external: bool = Field(
        default=False, description="The VPN process was not started by this orchestrator"
    )

    @property
    def connected(self) -> bool:
        return self.state == VpnState.CONNECTED


class StepResult(BaseModel):
    """Outcome of one disconnect cleanup step."""

    model_config = ConfigDict(frozen=True)

    step: str
    ok: bool = True
    detail: str | None = None
