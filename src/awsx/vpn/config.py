"""VPN orchestrator settings."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

AWS_OPENVPN_DIR = Path("/opt/awsvpnclient/Service/Resources/openvpn")


class VpnSettings(BaseModel):
    """Timeouts, ports and paths used while connecting."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    callback_host: str = Field(default="127.0.0.1")
    callback_port: int = Field(default=35001, ge=1, le=65535)
    callback_timeout: float = Field(default=120.0, gt=0, le=900.0)
    challenge_timeout: float = Field(default=20.0, gt=0, le=300.0)
    reconnect_timeout: float = Field(default=30.0, gt=0, le=300.0)
    interface_timeout: float = Field(default=20.0, gt=0, le=300.0)
    command_timeout: float = Field(default=15.0, gt=0, le=300.0)

    interface: str = Field(default="tun0", min_length=1)
    aws_openvpn_dir: Path = Field(default=AWS_OPENVPN_DIR)
    openvpn_executable: str = Field(default="openvpn", min_length=1)
    runtime_dir: Path | None = Field(
        default=None, description="Holds the filtered profile, credentials and client log"
    )

    headless: bool = Field(default=True)
    browser_step_timeout: float = Field(default=15.0, gt=0, le=300.0)
    browser_navigation_timeout: float = Field(default=30.0, gt=0, le=300.0)

    privilege_prefix: list[str] = Field(
        default_factory=lambda: ["sudo", "-n"],
        description="Prepended to openvpn and resolvectl when not running as root",
    )
