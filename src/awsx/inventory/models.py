"""Inventory models.

Snapshots of provider state. Every model is frozen: a fresh query produces
fresh objects, nothing is mutated in place.
"""

import ipaddress
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class InstanceState(str, Enum):
    """EC2 instance power state."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "InstanceState":
        try:
            return cls(value or "unknown")
        except ValueError:
            return cls.UNKNOWN


class AgentStatus(str, Enum):
    """Ping status of the forwarding agent on an instance."""

    ONLINE = "Online"
    OFFLINE = "Offline"
    UNKNOWN = "-"


class Instance(BaseModel):
    """A compute instance as seen by the last inventory query."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Instance ID")
    name: str = Field(default="", description="Value of the Name tag")
    instance_type: str = Field(default="", description="Instance type")
    state: InstanceState = Field(default=InstanceState.UNKNOWN)
    agent_status: AgentStatus = Field(default=AgentStatus.UNKNOWN)
    private_ip: str | None = Field(default=None)
    public_ip: str | None = Field(default=None)
    security_group_ids: tuple[str, ...] = Field(default=())
    security_group_names: tuple[str, ...] = Field(default=())

    @property
    def agent_online(self) -> bool:
        """True if the instance is running and its agent reports Online."""
        return (
            self.agent_status == AgentStatus.ONLINE
            and self.state == InstanceState.RUNNING
        )

    @property
    def label(self) -> str:
        return f"{self.name} ({self.id})" if self.name else self.id


class LoadBalancer(BaseModel):
    """An application load balancer."""

    model_config = ConfigDict(frozen=True)

    arn: str
    name: str = ""
    dns_name: str = ""


class ListenerRule(BaseModel):
    """A listener routing rule and the target groups it forwards to."""

    model_config = ConfigDict(frozen=True)

    arn: str
    listener_arn: str
    priority: str = "default"
    is_default: bool = False
    host_patterns: tuple[str, ...] = ()
    target_group_arns: tuple[str, ...] = ()


class TargetGroup(BaseModel):
    """A target group attached to a load balancer."""

    model_config = ConfigDict(frozen=True)

    arn: str
    name: str = ""
    port: int | None = None


class TargetHealth(BaseModel):
    """A registered backend and its health state."""

    model_config = ConfigDict(frozen=True)

    target_id: str = Field(description="Instance ID or IP address")
    port: int
    state: str = "unknown"

    @property
    def healthy(self) -> bool:
        return self.state == "healthy"

    @property
    def is_instance(self) -> bool:
        return self.target_id.startswith("i-")


class SecurityGroupRule(BaseModel):
    """One inbound permission: protocol, port range and a single source."""

    model_config = ConfigDict(frozen=True)

    protocol: str = "-1"
    from_port: int | None = None
    to_port: int | None = None
    source: str = Field(description="CIDR block or security group ID")

    @property
    def source_is_group(self) -> bool:
        return self.source.startswith("sg-")

    def covers_port(self, port: int) -> bool:
        """Check whether the rule admits traffic on port."""
        if self.protocol == "-1":
            return True
        if self.protocol not in ("tcp", "6"):
            return False
        if self.from_port is None or self.to_port is None:
            return True
        return self.from_port <= port <= self.to_port

    def admits(self, instance: Instance) -> bool:
        """Check whether traffic originating from instance matches the source."""
        if self.source_is_group:
            return self.source in instance.security_group_ids
        if not instance.private_ip:
            return False
        try:
            network = ipaddress.ip_network(self.source, strict=False)
            return ipaddress.ip_address(instance.private_ip) in network
        except ValueError:
            return False


class SecurityGroup(BaseModel):
    """A security group with its flattened inbound rules."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    inbound: tuple[SecurityGroupRule, ...] = ()
