"""High-level API for awsx.

The Awsx facade wires the inventory, resolver, tunnel supervisor, proxy
reconciler and VPN orchestrator together for one provider context and
exposes the operations a front-end needs. Module-level functions delegate to
a lazily created default instance.
"""

from collections.abc import Callable

from .common.config import ProviderContext
from .common.logging import get_logger
from .common.utils import is_url, port_open, validate_port
from .inventory import Instance, InventoryClient
from .proxy import ProxyConfig, ProxyReconciler
from .resolver import PathResolver, Resolution, ResolverConfig
from .tunnel import (
    ForwardingAgentLauncher,
    StopResult,
    TunnelConfig,
    TunnelKind,
    TunnelProcess,
    TunnelSupervisor,
)
from .vpn import StepResult, VpnConfig, VpnOrchestrator, VpnSession, VpnSettings

logger = get_logger(__name__)


class Awsx:
    """Tunnels, proxy sites and VPN for one profile and region."""

    def __init__(
        self,
        context: ProviderContext | None = None,
        *,
        inventory: InventoryClient | None = None,
        resolver: PathResolver | None = None,
        supervisor: TunnelSupervisor | None = None,
        proxy: ProxyReconciler | None = None,
        vpn: VpnOrchestrator | None = None,
        tunnel_config: TunnelConfig | None = None,
        resolver_config: ResolverConfig | None = None,
        proxy_config: ProxyConfig | None = None,
        vpn_settings: VpnSettings | None = None,
    ):
        self.context = context or ProviderContext.from_env()
        self.inventory = inventory or InventoryClient(self.context)
        self.resolver = resolver or PathResolver(self.inventory, resolver_config)
        self.proxy = proxy or ProxyReconciler(proxy_config)
        self.supervisor = supervisor or TunnelSupervisor(
            ForwardingAgentLauncher(self.context, tunnel_config),
            proxy=self.proxy,
        )
        self.vpn = vpn or VpnOrchestrator(self.context, vpn_settings)

    # Resolution

    def resolve(self, target: str, remote_port: int | None = None) -> Resolution:
        return self.resolver.resolve(target, remote_port)

    def explain(self, target: str) -> str:
        """Report of every resolution step for target."""
        return self.resolver.explain(target)

    # Tunnels

    def resolve_and_tunnel(
        self,
        target: str,
        local_port: int,
        proxy: bool = False,
        remote_port: int | None = None,
    ) -> TunnelProcess:
        """Resolve a URL or instance name and forward local_port to it.

        URL targets try each resolved hop in turn and verify the remote end
        answers. With proxy set, the URL's hostname is then routed to the
        tunnel through the local reverse proxy.

        Raises:
            ResolutionFailure: If no route to the target exists
            TunnelLifecycleFailure: If no tunnel could be started
            ProxyReconciliationFailure: If the proxy site could not be set up
            ValueError: If proxy is requested for a non-URL target
        """
        validate_port(local_port, "Local port")
        if is_url(target):
            resolution = self.resolver.resolve_url(target, remote_port)
            tunnel = self.supervisor.start_with_failover(
                resolution.candidates, local_port, TunnelKind.URL
            )
        else:
            if proxy:
                raise ValueError("Proxy needs a URL target to take the hostname from")
            resolution = self.resolver.resolve_name(target, remote_port)
            tunnel = self.supervisor.start(resolution.primary, local_port, TunnelKind.DIRECT)

        if proxy and resolution.host:
            tunnel = self.supervisor.attach_proxy(local_port, resolution.host)
        return tunnel

    def tunnel_direct(
        self, name_pattern: str, local_port: int, remote_port: int | None = None
    ) -> TunnelProcess:
        """Forward local_port to a port on the online instance matching name_pattern."""
        resolution = self.resolver.resolve_name(name_pattern, remote_port)
        return self.supervisor.start(resolution.primary, local_port, TunnelKind.DIRECT)

    def tunnel_dns(
        self, url: str, local_port: int, remote_port: int | None = None
    ) -> TunnelProcess:
        """Forward to the instance owning url's address, else via a bastion."""
        resolution = self.resolver.resolve_dns(url, remote_port)
        return self.supervisor.start(resolution.primary, local_port, TunnelKind.DNS)

    def tunnel_remote(
        self,
        bastion_name: str,
        target_host: str,
        local_port: int,
        remote_port: int | None = None,
    ) -> TunnelProcess:
        """Forward local_port to target_host:remote_port through a named bastion."""
        resolution = self.resolver.resolve_bastion(bastion_name, target_host, remote_port)
        return self.supervisor.start(resolution.primary, local_port, TunnelKind.REMOTE)

    def list_tunnels(self) -> list[TunnelProcess]:
        """Tunnels in the registry after reconciling with running agents."""
        self.supervisor.discover()
        return self.supervisor.list_tunnels()

    def probe(self, local_port: int) -> TunnelProcess:
        return self.supervisor.probe(local_port)

    def probe_all(self) -> list[TunnelProcess]:
        return self.supervisor.probe_all()

    def stop(self, local_port: int) -> StopResult:
        return self.supervisor.stop(local_port)

    def stop_all(self) -> list[StopResult]:
        return self.supervisor.stop_all()

    def test_port(self, port: int) -> bool:
        """Check whether anything accepts connections on a local port."""
        validate_port(port)
        return port_open(port)

    # Fleet

    def list_instances(self) -> list[Instance]:
        return self.inventory.list_instances()

    def start_instance(self, name_pattern: str) -> Instance:
        instance = self.inventory.find_instance_by_name(name_pattern)
        self.inventory.start_instance(instance.id)
        return instance

    def stop_instance(self, name_pattern: str, force: bool = False) -> Instance:
        instance = self.inventory.find_instance_by_name(name_pattern)
        self.inventory.stop_instance(instance.id, force=force)
        return instance

    def resize_instance(self, name_pattern: str, instance_type: str) -> Instance:
        """Change the instance type, stopping the instance first if needed."""
        instance = self.inventory.find_instance_by_name(name_pattern)
        self.inventory.modify_instance_type(instance.id, instance_type)
        return instance

    # VPN

    def vpn_setup(self, config: VpnConfig) -> None:
        self.vpn.setup(config)

    def vpn_connect(
        self, mfa_code: str, progress: Callable[[str], None] | None = None
    ) -> VpnSession:
        return self.vpn.connect(mfa_code, progress)

    def vpn_disconnect(self) -> list[StepResult]:
        return self.vpn.disconnect()

    def vpn_status(self) -> VpnSession:
        return self.vpn.status()


_default: Awsx | None = None


def get_default() -> Awsx:
    """Shared Awsx for the environment's profile and region."""
    global _default
    if _default is None:
        _default = Awsx()
    return _default


def resolve_and_tunnel(
    target: str, local_port: int, proxy: bool = False, remote_port: int | None = None
) -> TunnelProcess:
    """Resolve target and open a tunnel on local_port.

    Example:
        >>> tunnel = resolve_and_tunnel("https://app.internal.example.com", 9000, proxy=True)
        >>> print(tunnel.status_label)
        OK 42ms
    """
    return get_default().resolve_and_tunnel(target, local_port, proxy, remote_port)


def tunnel_direct(name_pattern: str, local_port: int, remote_port: int | None = None) -> TunnelProcess:
    return get_default().tunnel_direct(name_pattern, local_port, remote_port)


def tunnel_dns(url: str, local_port: int, remote_port: int | None = None) -> TunnelProcess:
    return get_default().tunnel_dns(url, local_port, remote_port)


def tunnel_remote(
    bastion_name: str, target_host: str, local_port: int, remote_port: int | None = None
) -> TunnelProcess:
    return get_default().tunnel_remote(bastion_name, target_host, local_port, remote_port)


def list_tunnels() -> list[TunnelProcess]:
    return get_default().list_tunnels()


def probe(local_port: int) -> TunnelProcess:
    return get_default().probe(local_port)


def probe_all() -> list[TunnelProcess]:
    return get_default().probe_all()


def stop(local_port: int) -> StopResult:
    return get_default().stop(local_port)


def stop_all() -> list[StopResult]:
    return get_default().stop_all()


def test_port(port: int) -> bool:
    """Check whether anything accepts connections on a local port."""
    return get_default().test_port(port)


def vpn_setup(config: VpnConfig) -> None:
    get_default().vpn_setup(config)


def vpn_connect(mfa_code: str, progress: Callable[[str], None] | None = None) -> VpnSession:
    return get_default().vpn_connect(mfa_code, progress)


def vpn_disconnect() -> list[StepResult]:
    return get_default().vpn_disconnect()


def vpn_status() -> VpnSession:
    return get_default().vpn_status()
