"""Shared configuration models."""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_PROFILE = "default"
DEFAULT_REGION = "us-east-1"


class ProviderContext(BaseModel):
    """Credential context passed to every provider call."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True, extra="forbid")

    profile: str | None = Field(default=None, description="AWS named profile")
    region: str | None = Field(default=None, description="AWS region")

    @field_validator("profile", "region")
    @classmethod
    def empty_to_none(cls, v: str | None) -> str | None:
        """Treat empty strings from the environment as unset."""
        return v or None

    @classmethod
    def from_env(cls, profile: str | None = None, region: str | None = None) -> "ProviderContext":
        """Build a context from explicit values or the AWS_* environment."""
        return cls(
            profile=profile or os.environ.get("AWS_PROFILE"),
            region=region
            or os.environ.get("AWS_DEFAULT_REGION")
            or os.environ.get("AWS_REGION"),
        )

    @property
    def profile_name(self) -> str:
        """Profile name used to key persisted state."""
        return self.profile or DEFAULT_PROFILE

    def cli_args(self) -> list[str]:
        """Arguments that select this context on the aws command line."""
        args: list[str] = []
        if self.profile:
            args += ["--profile", self.profile]
        if self.region:
            args += ["--region", self.region]
        return args


def config_dir() -> Path:
    """Directory holding awsx's persisted state."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "awsx"


def list_profiles(aws_dir: Path | None = None) -> list[str]:
    """List configured profiles from ~/.aws/config and ~/.aws/credentials."""
    aws_dir = aws_dir or Path.home() / ".aws"
    profiles = {DEFAULT_PROFILE}

    for filename in ("config", "credentials"):
        path = aws_dir / filename
        if not path.exists():
            continue
        for line in path.read_text().splitlines():
            line = line.strip()
            if line.startswith("[") and line.endswith("]"):
                name = line[1:-1].strip()
                if name.startswith("profile "):
                    name = name[len("profile ") :].strip()
                if name:
                    profiles.add(name)

    return sorted(profiles)
