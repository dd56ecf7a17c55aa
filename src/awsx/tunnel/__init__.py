"""Tunnel supervision: forwarding agent processes and their registry."""

from .config import TunnelConfig
from .discovery import AgentProcess, find_agents, parse_agent_cmdline
from .launcher import ForwardingAgentLauncher
from .models import StopResult, TunnelKind, TunnelOrigin, TunnelProcess, TunnelStatus
from .probe import probe_port
from .registry import TunnelRegistry
from .supervisor import TunnelSupervisor

__all__ = [
    "TunnelSupervisor",
    "TunnelRegistry",
    "TunnelConfig",
    "ForwardingAgentLauncher",
    "AgentProcess",
    "find_agents",
    "parse_agent_cmdline",
    "probe_port",
    "StopResult",
    "TunnelKind",
    "TunnelOrigin",
    "TunnelProcess",
    "TunnelStatus",
]
