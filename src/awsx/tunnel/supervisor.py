"""Tunnel supervisor.

Owns the tunnel registry and is the only thing that mutates it. Every
operation on a local port (start, probe, stop, discovery) runs under that
port's lock. Probes release the lock while waiting on the network; a stop
bumps the port's generation so a probe that was in flight when the tunnel
was stopped discards its result.
"""

import threading
import time
from collections.abc import Sequence

import psutil

from ..common.exceptions import (
    AgentLaunchFailed,
    AllHopsFailed,
    DnsFlushError,
    PortConflict,
    ProxyReconciliationFailure,
    ProxyReloadError,
    RemoteUnreachable,
    TunnelNotFound,
    TunnelStartTimeout,
)
from ..common.logging import get_logger
from ..common.process import ProcessManager, pid_alive, terminate_pid
from ..common.utils import port_open, validate_port, wait_for_port
from ..proxy.reconciler import ProxyReconciler
from ..resolver.models import HopCandidate
from .config import TunnelConfig
from .discovery import find_agents
from .launcher import ForwardingAgentLauncher
from .models import StopResult, TunnelKind, TunnelOrigin, TunnelProcess, TunnelStatus
from .probe import probe_port
from .registry import TunnelRegistry

logger = get_logger(__name__)


class TunnelSupervisor:
    """Starts, discovers, probes and stops forwarding agents."""

    def __init__(
        self,
        launcher: ForwardingAgentLauncher | None = None,
        registry: TunnelRegistry | None = None,
        config: TunnelConfig | None = None,
        proxy: ProxyReconciler | None = None,
    ):
        """Initialize the supervisor.

        Args:
            launcher: Agent launcher (built from config if None)
            registry: Shared registry (a fresh one if None)
            config: Timeouts and agent settings (the launcher's if None)
            proxy: Reconciler used to clean up sites linked to stopped tunnels
        """
        if config is None:
            config = launcher.config if launcher is not None else TunnelConfig()
        self.config = config
        self.launcher = launcher or ForwardingAgentLauncher(config=config)
        self.registry = registry or TunnelRegistry()
        self.proxy = proxy
        self._handles: dict[int, ProcessManager] = {}
        self._generations: dict[int, int] = {}
        self._locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _port_lock(self, local_port: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(local_port)
            if lock is None:
                lock = self._locks[local_port] = threading.Lock()
            return lock

    # Start

    def start(
        self,
        candidate: HopCandidate,
        local_port: int,
        kind: TunnelKind = TunnelKind.DIRECT,
        verify: bool = False,
        start_timeout: float | None = None,
    ) -> TunnelProcess:
        """Forward local_port through one hop candidate.

        Args:
            candidate: Hop and destination to forward to
            local_port: Loopback port to listen on
            kind: How the target was chosen
            verify: Require the remote end to answer before accepting the tunnel
            start_timeout: Seconds to wait for the port (config default if None)

        Returns:
            Registered tunnel in OPEN (or OK when verified) state

        Raises:
            PortConflict: If the port is owned by a tunnel or another process
            ExternalToolMissing: If the aws CLI is not installed
            AgentLaunchFailed: If the agent cannot be spawned
            TunnelStartTimeout: If the port does not open in time
            RemoteUnreachable: If verify is set and the remote end is silent
        """
        validate_port(local_port, "Local port")
        timeout = start_timeout or self.config.start_timeout

        with self._port_lock(local_port):
            existing = self.registry.get_tunnel(local_port)
            if existing is not None:
                if pid_alive(existing.pid):
                    raise PortConflict(local_port, f"tunnel pid {existing.pid}")
                logger.info("Dropping stale tunnel entry", local_port=local_port, pid=existing.pid)
                self._forget(local_port)
            if port_open(local_port, timeout=self.config.connect_timeout):
                raise PortConflict(local_port, "another process")

            process = self.launcher.launch(candidate, local_port)
            pid = process.pid
            if pid is None:
                raise AgentLaunchFailed(
                    f"Forwarding agent via {candidate.hop.id} exited immediately "
                    f"(status {process.returncode})"
                )

            tunnel = TunnelProcess(
                local_port=local_port,
                kind=kind,
                hop_id=candidate.hop.id,
                hop_name=candidate.hop.name or None,
                remote_host=candidate.remote_host,
                remote_port=candidate.remote_port,
                pid=pid,
                status=TunnelStatus.STARTING,
            )
            self.registry.add_tunnel(tunnel)
            self._handles[local_port] = process

            try:
                tunnel = self._await_open(
                    tunnel, local_port, process, candidate, timeout, verify
                )
            except (TunnelStartTimeout, RemoteUnreachable):
                self._discard(local_port, process)
                raise

            self.registry.replace_tunnel(tunnel)
            logger.info(
                "Tunnel open",
                local_port=local_port,
                pid=pid,
                hop=candidate.hop.id,
                destination=candidate.destination,
                status=tunnel.status.value,
            )
            return tunnel

    def _await_open(
        self,
        tunnel: TunnelProcess,
        local_port: int,
        process: ProcessManager,
        candidate: HopCandidate,
        timeout: float,
        verify: bool,
    ) -> TunnelProcess:
        opened = wait_for_port(
            local_port,
            timeout,
            interval=self.config.poll_interval,
            connect_timeout=self.config.connect_timeout,
            alive=process.is_running,
        )
        if not opened:
            if not process.is_running():
                logger.warning(
                    "Forwarding agent exited before opening the port",
                    local_port=local_port,
                    returncode=process.returncode,
                )
            raise TunnelStartTimeout(local_port, timeout, hop=candidate.hop.label)

        tunnel = tunnel.with_status(TunnelStatus.OPEN)
        if not verify:
            return tunnel

        status, latency_ms = probe_port(
            local_port, self.config.connect_timeout, self.config.probe_timeout
        )
        if status != TunnelStatus.OK:
            raise RemoteUnreachable(local_port, candidate.destination, self.config.probe_timeout)
        return tunnel.with_status(TunnelStatus.OK, latency_ms)

    def _discard(self, local_port: int, process: ProcessManager) -> None:
        """Kill a tunnel that never became usable and forget it."""
        try:
            process.stop(timeout=self.config.stop_timeout)
        except psutil.Error as e:
            logger.error("Failed to stop forwarding agent", local_port=local_port, error=str(e))
        self._handles.pop(local_port, None)
        try:
            self.registry.remove_tunnel(local_port)
        except TunnelNotFound:
            pass

    def start_with_failover(
        self,
        candidates: Sequence[HopCandidate],
        local_port: int,
        kind: TunnelKind = TunnelKind.URL,
        verify: bool | None = None,
    ) -> TunnelProcess:
        """Try candidates in order until one gives a working tunnel.

        Each failure is logged with the hop that failed; a short cool-down
        separates attempts so the previous agent releases the port.

        Raises:
            AllHopsFailed: If every attempted candidate failed
            PortConflict: If the local port is already taken
            ExternalToolMissing: If the aws CLI is not installed
        """
        if not candidates:
            raise ValueError("No hop candidates to try")
        verify = self.config.verify_remote if verify is None else verify
        attempts = list(candidates)[: self.config.max_failover_attempts]
        timeout = (
            self.config.start_timeout
            if len(attempts) == 1
            else self.config.failover_start_timeout
        )

        errors: list[Exception] = []
        for index, candidate in enumerate(attempts):
            if index and self.config.failover_cooldown:
                time.sleep(self.config.failover_cooldown)
            logger.info(
                "Trying hop",
                attempt=index + 1,
                total=len(attempts),
                hop=candidate.hop.label,
                destination=candidate.destination,
            )
            try:
                return self.start(candidate, local_port, kind, verify, start_timeout=timeout)
            except (AgentLaunchFailed, TunnelStartTimeout, RemoteUnreachable) as e:
                logger.warning("Hop failed", hop=candidate.hop.label, error=str(e))
                errors.append(e)

        raise AllHopsFailed(attempts[0].destination, errors)

    # Probe

    def probe(self, local_port: int) -> TunnelProcess:
        """Check a tunnel end to end and record OK(latency) or DOWN.

        A tunnel whose agent has exited is removed and returned as STOPPED.

        Raises:
            TunnelNotFound: If no tunnel is registered on the port
        """
        lock = self._port_lock(local_port)
        with lock:
            tunnel = self.registry.get_tunnel(local_port)
            if tunnel is None:
                raise TunnelNotFound(local_port)
            if not pid_alive(tunnel.pid):
                logger.info("Forwarding agent exited", local_port=local_port, pid=tunnel.pid)
                return self._forget(local_port)
            generation = self._generations.get(local_port, 0)
            self.registry.update_tunnel_status(local_port, TunnelStatus.PROBING)

        status, latency_ms = probe_port(
            local_port, self.config.connect_timeout, self.config.probe_timeout
        )

        with lock:
            if self._generations.get(local_port, 0) != generation:
                logger.debug("Probe superseded by stop", local_port=local_port)
                return self.registry.get_tunnel(local_port) or tunnel.with_status(
                    TunnelStatus.STOPPED
                )
            try:
                updated = self.registry.update_tunnel_status(local_port, status, latency_ms)
            except TunnelNotFound:
                return tunnel.with_status(TunnelStatus.STOPPED)

        logger.debug(
            "Probed tunnel", local_port=local_port, status=status.value, latency_ms=latency_ms
        )
        return updated

    def probe_all(self) -> list[TunnelProcess]:
        results = []
        for local_port in self.registry.ports():
            try:
                results.append(self.probe(local_port))
            except TunnelNotFound:
                continue
        return results

    # Stop

    def stop(self, local_port: int) -> StopResult:
        """Terminate a tunnel's agent and remove its proxy site.

        Raises:
            TunnelNotFound: If no tunnel is registered on the port
        """
        with self._port_lock(local_port):
            self._generations[local_port] = self._generations.get(local_port, 0) + 1
            tunnel = self.registry.get_tunnel(local_port)
            if tunnel is None:
                raise TunnelNotFound(local_port)

            errors: list[str] = []
            stopped = False
            try:
                handle = self._handles.pop(local_port, None)
                if handle is not None:
                    stopped = handle.stop(timeout=self.config.stop_timeout)
                else:
                    stopped = terminate_pid(tunnel.pid, timeout=self.config.stop_timeout)
            except psutil.Error as e:
                errors.append(f"Failed to terminate pid {tunnel.pid}: {e}")

            proxy_removed = self._release_site(local_port, errors)
            self.registry.remove_tunnel(local_port)

        result = StopResult(
            local_port=local_port,
            pid=tunnel.pid,
            stopped=stopped,
            proxy_removed=proxy_removed,
            errors=tuple(errors),
        )
        if result.ok:
            logger.info("Tunnel stopped", local_port=local_port, pid=tunnel.pid, was_running=stopped)
        else:
            logger.error("Tunnel stop incomplete", local_port=local_port, errors=list(errors))
        return result

    def stop_pid(self, pid: int) -> StopResult:
        """Stop a recovered agent whose local port is unknown.

        Raises:
            TunnelNotFound: If no such agent is tracked
        """
        tunnel = self.registry.remove_unkeyed(pid)
        if tunnel is None:
            raise TunnelNotFound(None, pid=pid)
        errors: list[str] = []
        stopped = False
        try:
            stopped = terminate_pid(pid, timeout=self.config.stop_timeout)
        except psutil.Error as e:
            errors.append(f"Failed to terminate pid {pid}: {e}")
        logger.info("Stopped agent with unknown port", pid=pid, was_running=stopped)
        return StopResult(local_port=None, pid=pid, stopped=stopped, errors=tuple(errors))

    def stop_all(self) -> list[StopResult]:
        """Stop every tunnel, including agents started by earlier sessions.

        Each stop reports independently; agents that are already gone are not
        an error. Proxy sites left without a tunnel are removed too and get
        their own result entry. Calling this again with nothing running
        returns an empty list.
        """
        self.discover()
        results: list[StopResult] = []

        for local_port in self.registry.ports():
            try:
                results.append(self.stop(local_port))
            except TunnelNotFound:
                continue

        for tunnel in self.registry.list_tunnels():
            if tunnel.local_port is None:
                try:
                    results.append(self.stop_pid(tunnel.pid))
                except TunnelNotFound:
                    continue

        if self.proxy is not None and self.proxy.has_active_proxies():
            for hostname, error in self.proxy.teardown_all().items():
                if error:
                    logger.error("Proxy cleanup failed", hostname=hostname, error=error)
                results.append(
                    StopResult(
                        local_port=None,
                        pid=None,
                        stopped=False,
                        proxy_removed=None if error else hostname,
                        errors=(f"{hostname}: {error}",) if error else (),
                    )
                )

        logger.info(
            "Stopped all tunnels",
            count=len(results),
            failed=sum(1 for r in results if not r.ok),
        )
        return results

    # Discovery

    def discover(self) -> list[TunnelProcess]:
        """Reconcile the registry with the running forwarding agents.

        Agents not yet registered are added with origin RECOVERED; entries
        whose process has exited are dropped.

        Returns:
            Newly recovered tunnels
        """
        agents = find_agents(self.config.agent_signature)
        known = {t.pid for t in self.registry.list_tunnels()}
        recovered: list[TunnelProcess] = []

        for agent in agents:
            if agent.pid in known or agent.ppid in known:
                continue
            tunnel = TunnelProcess(
                local_port=agent.local_port,
                kind=TunnelKind.REMOTE if agent.remote_host else TunnelKind.DIRECT,
                hop_id=agent.target,
                remote_host=agent.remote_host,
                remote_port=agent.remote_port,
                pid=agent.pid,
                status=TunnelStatus.DOWN,
                origin=TunnelOrigin.RECOVERED,
            )
            if agent.local_port is None:
                self.registry.add_unkeyed(tunnel)
                recovered.append(tunnel)
                continue

            with self._port_lock(agent.local_port):
                existing = self.registry.get_tunnel(agent.local_port)
                if existing is not None:
                    if pid_alive(existing.pid):
                        logger.warning(
                            "Agent listens on a port owned by another tunnel",
                            local_port=agent.local_port,
                            pid=agent.pid,
                            owner=existing.pid,
                        )
                        continue
                    self._forget(agent.local_port)
                if port_open(agent.local_port, timeout=self.config.connect_timeout):
                    tunnel = tunnel.with_status(TunnelStatus.OPEN)
                self.registry.add_tunnel(tunnel)
            recovered.append(tunnel)

        for tunnel in self.registry.list_tunnels():
            if pid_alive(tunnel.pid):
                continue
            if tunnel.local_port is None:
                self.registry.remove_unkeyed(tunnel.pid)
                continue
            with self._port_lock(tunnel.local_port):
                current = self.registry.get_tunnel(tunnel.local_port)
                if current is not None and current.pid == tunnel.pid:
                    self._forget(tunnel.local_port)

        if recovered:
            logger.info("Recovered forwarding agents", count=len(recovered))
        return recovered

    def list_tunnels(self) -> list[TunnelProcess]:
        return self.registry.list_tunnels()

    # Proxy linkage

    def attach_proxy(self, local_port: int, hostname: str) -> TunnelProcess:
        """Expose a tunnel as http://hostname via the local reverse proxy.

        The site stays linked to the tunnel even when the reload or DNS flush
        fails, since its config and hosts entry are already in place.

        Raises:
            TunnelNotFound: If no tunnel is registered on the port
            ProxyReconciliationFailure: If any proxy step fails
        """
        if self.proxy is None:
            raise ValueError("No proxy reconciler configured")

        with self._port_lock(local_port):
            if self.registry.get_tunnel(local_port) is None:
                raise TunnelNotFound(local_port)
            previous = self.registry.tunnel_for_site(hostname)
            if previous is not None and previous.local_port != local_port:
                self.registry.unlink_site(hostname)

            site = self.proxy.site_for(hostname, local_port, tunnel_port=local_port)
            try:
                self.proxy.apply(site)
            except (ProxyReloadError, DnsFlushError):
                self.registry.link_site(site)
                raise
            return self.registry.link_site(site)

    # Internal helpers (callers hold the port lock)

    def _release_site(self, local_port: int, errors: list[str]) -> str | None:
        site = self.registry.site_for_tunnel(local_port)
        if site is None:
            return None
        if self.proxy is not None:
            try:
                self.proxy.disable(site.hostname)
            except ProxyReconciliationFailure as e:
                errors.append(f"Failed to remove proxy site {site.hostname}: {e}")
        self.registry.unlink_site(site.hostname)
        return site.hostname

    def _forget(self, local_port: int) -> TunnelProcess:
        """Drop an entry whose agent has exited."""
        errors: list[str] = []
        self._release_site(local_port, errors)
        for error in errors:
            logger.error("Cleanup of exited tunnel incomplete", local_port=local_port, error=error)
        self._handles.pop(local_port, None)
        self._generations[local_port] = self._generations.get(local_port, 0) + 1
        tunnel = self.registry.remove_tunnel(local_port)
        return tunnel.with_status(TunnelStatus.STOPPED)
