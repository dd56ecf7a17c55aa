"""Reverse-proxy reconciler configuration model."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class ProxyConfig(BaseModel):
    """Where proxy sites and hosts entries are written and how to escalate."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    hosts_file: Path = Field(default=Path("/etc/hosts"))
    site_dir: Path | None = Field(
        default=None, description="Override the platform's site definition directory"
    )
    enabled_dir: Path | None = Field(
        default=None, description="Override the platform's enabled-sites directory"
    )
    site_prefix: str = Field(default="awsx-", min_length=1)
    hosts_marker: str = Field(default="# awsx", min_length=1)
    listen_port: int = Field(default=80, ge=1, le=65535)
    command_timeout: float = Field(default=15.0, gt=0, le=300.0)
    privilege_prefix: list[str] = Field(
        default_factory=lambda: ["sudo", "-n"],
        description="Prepended to commands and file operations that need root",
    )
