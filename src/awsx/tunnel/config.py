"""Tunnel supervisor configuration model."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class TunnelConfig(BaseModel):
    """Configuration for launching and supervising forwarding agents."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    aws_executable: str = Field(default="aws", min_length=1)
    agent_signature: str = Field(
        default="session-manager-plugin",
        min_length=1,
        description="Substring identifying forwarding agent processes",
    )
    direct_document: str = Field(default="AWS-StartPortForwardingSession")
    remote_document: str = Field(default="AWS-StartPortForwardingSessionToRemoteHost")

    start_timeout: float = Field(default=20.0, gt=0, le=300.0)
    failover_start_timeout: float = Field(
        default=10.0, gt=0, le=300.0, description="Start timeout per candidate when failing over"
    )
    poll_interval: float = Field(default=0.5, gt=0, le=10.0)
    connect_timeout: float = Field(default=1.0, gt=0, le=30.0)
    probe_timeout: float = Field(default=5.0, gt=0, le=60.0)
    stop_timeout: float = Field(default=5.0, gt=0, le=60.0)

    verify_remote: bool = Field(
        default=True, description="Probe the remote end before accepting a URL tunnel"
    )
    max_failover_attempts: int = Field(default=10, ge=1, le=100)
    failover_cooldown: float = Field(default=2.0, ge=0, le=60.0)

    log_dir: Path | None = Field(
        default=None, description="Directory for agent output logs; discarded if None"
    )
