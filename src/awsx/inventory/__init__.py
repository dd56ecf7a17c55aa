"""Inventory client and provider models."""

from .client import InventoryClient
from .dns import lookup, lookup_external, resolve_host
from .models import (
    AgentStatus,
    Instance,
    InstanceState,
    ListenerRule,
    LoadBalancer,
    SecurityGroup,
    SecurityGroupRule,
    TargetGroup,
    TargetHealth,
)

__all__ = [
    "InventoryClient",
    "lookup",
    "lookup_external",
    "resolve_host",
    "AgentStatus",
    "Instance",
    "InstanceState",
    "ListenerRule",
    "LoadBalancer",
    "SecurityGroup",
    "SecurityGroupRule",
    "TargetGroup",
    "TargetHealth",
]
