"""Path resolver configuration model."""

from pydantic import BaseModel, ConfigDict, Field


class ResolverConfig(BaseModel):
    """Configuration for target resolution."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    bastion_pattern: str | None = Field(
        default=None,
        description="Restrict the bastion fallback to instances whose name contains this",
    )
    external_dns_server: str | None = Field(
        default="8.8.8.8",
        description="Resolver queried when local DNS only returns loopback",
    )
    http_port: int = Field(default=80, ge=1, le=65535)
    https_port: int = Field(default=443, ge=1, le=65535)
    default_direct_port: int = Field(
        default=8000, ge=1, le=65535, description="Remote port for name-pattern tunnels"
    )
    default_remote_port: int = Field(
        default=8501, ge=1, le=65535, description="Remote port for dns/remote tunnels"
    )
