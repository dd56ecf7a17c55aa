"""Reverse-proxy site model."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class ProxySite(BaseModel):
    """A reverse-proxy site mapping hostname:80 to a tunnel's local port."""

    model_config = ConfigDict(frozen=True)

    hostname: str = Field(min_length=1)
    local_port: int = Field(ge=1, le=65535)
    config_path: Path
    enabled: bool = True
    tunnel_port: int | None = Field(
        default=None, description="Local port of the owning tunnel"
    )
