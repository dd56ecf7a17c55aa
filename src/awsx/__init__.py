"""awsx - bastion tunnels, reverse-proxy sites and SAML VPN for AWS fleets."""

from .api import (
    Awsx,
    get_default,
    list_tunnels,
    probe,
    probe_all,
    resolve_and_tunnel,
    stop,
    stop_all,
    test_port,
    tunnel_direct,
    tunnel_dns,
    tunnel_remote,
    vpn_connect,
    vpn_disconnect,
    vpn_setup,
    vpn_status,
)
from .common.config import ProviderContext, list_profiles
from .common.exceptions import (
    AwsxError,
    ExternalToolMissing,
    ProviderError,
    ProxyReconciliationFailure,
    ResolutionFailure,
    TunnelLifecycleFailure,
    VpnFailure,
    VpnHandshakeFailure,
)
from .common.logging import get_logger, setup_logging
from .dispatcher import CompletionEvent, TaskDispatcher
from .inventory import Instance, InventoryClient
from .proxy import ProxyReconciler, ProxySite
from .resolver import HopCandidate, PathResolver, Resolution
from .tunnel import StopResult, TunnelKind, TunnelProcess, TunnelStatus, TunnelSupervisor
from .vpn import VpnConfig, VpnOrchestrator, VpnSession, VpnState

# Setup logging on package initialization
setup_logging(level="INFO")

# Package level logger
logger = get_logger(__name__)

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "Awsx",
    "get_default",
    "resolve_and_tunnel",
    "tunnel_direct",
    "tunnel_dns",
    "tunnel_remote",
    "list_tunnels",
    "probe",
    "probe_all",
    "stop",
    "stop_all",
    "test_port",
    "vpn_setup",
    "vpn_connect",
    "vpn_disconnect",
    "vpn_status",
    # Components
    "InventoryClient",
    "PathResolver",
    "TunnelSupervisor",
    "ProxyReconciler",
    "VpnOrchestrator",
    "TaskDispatcher",
    # Models
    "ProviderContext",
    "Instance",
    "HopCandidate",
    "Resolution",
    "TunnelProcess",
    "TunnelKind",
    "TunnelStatus",
    "StopResult",
    "ProxySite",
    "VpnConfig",
    "VpnSession",
    "VpnState",
    "CompletionEvent",
    # Exceptions
    "AwsxError",
    "ExternalToolMissing",
    "ProviderError",
    "ResolutionFailure",
    "TunnelLifecycleFailure",
    "ProxyReconciliationFailure",
    "VpnFailure",
    "VpnHandshakeFailure",
    # Utilities
    "get_logger",
    "setup_logging",
    "list_profiles",
]
