"""Tunnel registry keyed by local port."""

import threading

from pydantic import BaseModel, Field, PrivateAttr

from ..common.exceptions import PortConflict, TunnelNotFound
from ..common.logging import get_logger
from ..proxy.models import ProxySite
from .models import TunnelOrigin, TunnelProcess, TunnelStatus

logger = get_logger(__name__)


class TunnelRegistry(BaseModel):
    """In-memory store of live tunnels and the proxy sites they own.

    Tunnels are keyed by local port; at most one entry may own a port.
    Recovered agents whose local port could not be parsed are kept apart,
    keyed by pid, so they can still be stopped. Proxy sites reference their
    tunnel by local port and each tunnel names its site by hostname.
    """

    tunnels: dict[int, TunnelProcess] = Field(
        default_factory=dict, description="Tunnels by local port"
    )
    unkeyed: dict[int, TunnelProcess] = Field(
        default_factory=dict, description="Tunnels without a known local port, by pid"
    )
    sites: dict[str, ProxySite] = Field(
        default_factory=dict, description="Proxy sites by hostname"
    )
    _lock: threading.RLock = PrivateAttr(default_factory=threading.RLock)

    def add_tunnel(self, tunnel: TunnelProcess) -> None:
        """Add tunnel to registry.

        Raises:
            PortConflict: If another entry owns the local port
            ValueError: If the tunnel has no local port
        """
        if tunnel.local_port is None:
            raise ValueError("Tunnels without a local port go through add_unkeyed()")
        with self._lock:
            existing = self.tunnels.get(tunnel.local_port)
            if existing is not None:
                raise PortConflict(tunnel.local_port, f"tunnel pid {existing.pid}")
            self.tunnels[tunnel.local_port] = tunnel
        logger.info("Added tunnel to registry", local_port=tunnel.local_port, pid=tunnel.pid)

    def add_unkeyed(self, tunnel: TunnelProcess) -> None:
        with self._lock:
            self.unkeyed[tunnel.pid] = tunnel
        logger.info("Tracking agent with unknown local port", pid=tunnel.pid)

    def remove_tunnel(self, local_port: int) -> TunnelProcess:
        """Remove tunnel from registry.

        Raises:
            TunnelNotFound: If no tunnel owns the port
        """
        with self._lock:
            if local_port not in self.tunnels:
                raise TunnelNotFound(local_port)
            tunnel = self.tunnels.pop(local_port)
        logger.info("Removed tunnel from registry", local_port=local_port)
        return tunnel

    def remove_unkeyed(self, pid: int) -> TunnelProcess | None:
        with self._lock:
            return self.unkeyed.pop(pid, None)

    def get_tunnel(self, local_port: int) -> TunnelProcess | None:
        with self._lock:
            return self.tunnels.get(local_port)

    def find_by_pid(self, pid: int) -> TunnelProcess | None:
        with self._lock:
            for tunnel in [*self.tunnels.values(), *self.unkeyed.values()]:
                if tunnel.pid == pid:
                    return tunnel
        return None

    def replace_tunnel(self, tunnel: TunnelProcess) -> None:
        """Store an updated copy of a registered tunnel.

        Raises:
            TunnelNotFound: If the tunnel is no longer registered
        """
        if tunnel.local_port is None:
            with self._lock:
                self.unkeyed[tunnel.pid] = tunnel
            return
        with self._lock:
            if tunnel.local_port not in self.tunnels:
                raise TunnelNotFound(tunnel.local_port)
            self.tunnels[tunnel.local_port] = tunnel

    def update_tunnel_status(
        self, local_port: int, status: TunnelStatus, latency_ms: float | None = None
    ) -> TunnelProcess:
        with self._lock:
            tunnel = self.tunnels.get(local_port)
            if tunnel is None:
                raise TunnelNotFound(local_port)
            updated = tunnel.with_status(status, latency_ms)
            self.tunnels[local_port] = updated
        logger.debug("Updated tunnel status", local_port=local_port, status=status.value)
        return updated

    def list_tunnels(
        self,
        status: TunnelStatus | None = None,
        origin: TunnelOrigin | None = None,
    ) -> list[TunnelProcess]:
        """List tunnels ordered by local port, unkeyed entries last."""
        with self._lock:
            tunnels = [self.tunnels[p] for p in sorted(self.tunnels)]
            tunnels += list(self.unkeyed.values())

        if status is not None:
            tunnels = [t for t in tunnels if t.status == status]
        if origin is not None:
            tunnels = [t for t in tunnels if t.origin == origin]
        return tunnels

    def ports(self) -> list[int]:
        with self._lock:
            return sorted(self.tunnels)

    # Proxy site links

    def link_site(self, site: ProxySite) -> TunnelProcess:
        """Record site and point its owning tunnel at it.

        Raises:
            TunnelNotFound: If the owning tunnel is not registered
        """
        if site.tunnel_port is None:
            raise ValueError("Proxy site has no owning tunnel")
        with self._lock:
            tunnel = self.tunnels.get(site.tunnel_port)
            if tunnel is None:
                raise TunnelNotFound(site.tunnel_port)
            updated = tunnel.model_copy(update={"proxy_site": site.hostname})
            self.tunnels[site.tunnel_port] = updated
            self.sites[site.hostname] = site
        return updated

    def unlink_site(self, hostname: str) -> ProxySite | None:
        """Forget a site and clear the back-reference on its tunnel."""
        with self._lock:
            site = self.sites.pop(hostname, None)
            if site is None or site.tunnel_port is None:
                return site
            tunnel = self.tunnels.get(site.tunnel_port)
            if tunnel is not None and tunnel.proxy_site == hostname:
                self.tunnels[site.tunnel_port] = tunnel.model_copy(
                    update={"proxy_site": None}
                )
        return site

    def site_for_tunnel(self, local_port: int) -> ProxySite | None:
        with self._lock:
            tunnel = self.tunnels.get(local_port)
            if tunnel is None or tunnel.proxy_site is None:
                return None
            return self.sites.get(tunnel.proxy_site)

    def tunnel_for_site(self, hostname: str) -> TunnelProcess | None:
        with self._lock:
            site = self.sites.get(hostname)
            if site is None or site.tunnel_port is None:
                return None
            return self.tunnels.get(site.tunnel_port)

    def clear(self) -> None:
        """Clear all tunnels and sites from registry."""
        with self._lock:
            self.tunnels.clear()
            self.unkeyed.clear()
            self.sites.clear()
        logger.info("Cleared all tunnels from registry")
