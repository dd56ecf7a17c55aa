"""Resolution result models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..inventory.models import Instance, TargetHealth


class CandidateSource(str, Enum):
    """How a hop candidate was found."""

    ALB = "alb"
    BASTION = "bastion"
    DIRECT = "direct"
    DNS = "dns"


class FallbackReason(str, Enum):
    """Why URL resolution fell back to the bastion list."""

    NO_ALB_MATCH = "no_alb_match"
    NO_HEALTHY_TARGETS = "no_healthy_targets"
    NO_PERMITTED_HOP = "no_permitted_hop"
    LOOKUP_FAILED = "lookup_failed"


class HopCandidate(BaseModel):
    """One way to reach the target: forward through hop to remote_host:remote_port.

    A remote_host of None means the hop itself is the destination.
    """

    model_config = ConfigDict(frozen=True)

    hop: Instance
    remote_host: str | None = None
    remote_port: int = Field(ge=1, le=65535)
    source: CandidateSource

    @property
    def destination(self) -> str:
        return f"{self.remote_host or self.hop.name or self.hop.id}:{self.remote_port}"


class AlbTarget(BaseModel):
    """The load balancer path matched for a hostname."""

    model_config = ConfigDict(frozen=True)

    load_balancer_arn: str
    listener_rule_arn: str | None = None
    target_group_arns: tuple[str, ...] = ()
    backends: tuple[TargetHealth, ...] = ()


class Resolution(BaseModel):
    """Ordered hop candidates for a target plus the trail that produced them."""

    model_config = ConfigDict(frozen=True)

    target: str
    host: str | None = None
    addresses: tuple[str, ...] = ()
    alb: AlbTarget | None = None
    fallback_reason: FallbackReason | None = None
    candidates: tuple[HopCandidate, ...] = ()
    trail: tuple[str, ...] = ()

    @property
    def primary(self) -> HopCandidate:
        return self.candidates[0]

    @property
    def used_fallback(self) -> bool:
        return self.fallback_reason is not None
