"""Custom exceptions for awsx."""


class AwsxError(Exception):
    """Base exception for all awsx errors."""

    pass


class ExternalToolMissing(AwsxError):
    """Raised when a required external program is not installed."""

    def __init__(self, tool: str, hint: str | None = None):
        self.tool = tool
        message = f"Required external tool '{tool}' not found in PATH"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)


class ProviderError(AwsxError):
    """Raised when a cloud provider API call fails."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {detail}")


# Resolution


class ResolutionFailure(AwsxError):
    """Base class for target resolution failures."""

    pass


class DnsResolutionFailed(ResolutionFailure):
    """Raised when a hostname has no DNS record."""

    def __init__(self, host: str):
        self.host = host
        super().__init__(f"DNS lookup returned no records for {host}")


class NoInstanceFound(ResolutionFailure):
    """Raised when no online instance matches a name pattern."""

    def __init__(self, pattern: str):
        self.pattern = pattern
        super().__init__(f"No online instance found matching: {pattern}")


class AmbiguousTarget(ResolutionFailure):
    """Raised when a name pattern matches more than one instance."""

    def __init__(self, pattern: str, names: list[str]):
        self.pattern = pattern
        self.names = names
        super().__init__(
            f"Multiple instances found matching: {pattern} "
            f"({len(names)} matches: {', '.join(names)})"
        )


class NoRouteFound(ResolutionFailure):
    """Raised when every resolution step including the bastion fallback fails."""

    pass


# Tunnel lifecycle


class TunnelLifecycleFailure(AwsxError):
    """Base class for tunnel start/stop failures."""

    pass


class AgentLaunchFailed(TunnelLifecycleFailure):
    """Raised when the forwarding agent process cannot be spawned."""

    pass


class TunnelStartTimeout(TunnelLifecycleFailure):
    """Raised when the local port does not open before the start timeout."""

    def __init__(self, local_port: int, timeout: float, hop: str | None = None):
        self.local_port = local_port
        self.timeout = timeout
        via = f" via {hop}" if hop else ""
        super().__init__(
            f"Port {local_port} is not open after {timeout:g}s{via}"
        )


class PortConflict(TunnelLifecycleFailure):
    """Raised when a local port is already owned by a tunnel or foreign process."""

    def __init__(self, local_port: int, owner: str):
        self.local_port = local_port
        super().__init__(f"Local port {local_port} already in use by {owner}")


class TunnelNotFound(TunnelLifecycleFailure):
    """Raised when no tunnel is registered on a local port."""

    def __init__(self, local_port: int | None, pid: int | None = None):
        self.local_port = local_port
        self.pid = pid
        if local_port is None:
            super().__init__(f"No forwarding agent tracked with pid {pid}")
        else:
            super().__init__(f"No tunnel registered on local port {local_port}")


class RemoteUnreachable(TunnelLifecycleFailure):
    """Raised when a tunnel opened locally but the remote end never answered."""

    def __init__(self, local_port: int, target: str, timeout: float):
        self.local_port = local_port
        super().__init__(
            f"Remote service {target} unreachable: no response on port "
            f"{local_port} within {timeout:g}s"
        )


class AllHopsFailed(TunnelLifecycleFailure):
    """Raised when every candidate hop failed to open a tunnel."""

    def __init__(self, destination: str, errors: list[Exception]):
        self.destination = destination
        self.errors = errors
        details = "; ".join(str(e) for e in errors)
        super().__init__(
            f"All {len(errors)} hop(s) unreachable for {destination}: {details}"
        )


# Proxy reconciliation


class ProxyReconciliationFailure(AwsxError):
    """Base class for reverse-proxy and hosts-file failures."""

    pass


class ProxyConfigWriteError(ProxyReconciliationFailure):
    """Raised when the proxy site definition cannot be written or removed."""

    pass


class ProxyReloadError(ProxyReconciliationFailure):
    """Raised when the proxy daemon refuses to reload."""

    pass


class HostsFileError(ProxyReconciliationFailure):
    """Raised when the hosts file cannot be updated."""

    pass


class DnsFlushError(ProxyReconciliationFailure):
    """Raised when the OS DNS cache flush fails."""

    pass


# VPN


class VpnFailure(AwsxError):
    """Base class for VPN failures."""

    pass


class VpnConfigError(VpnFailure):
    """Raised when the persisted VPN configuration is missing or invalid."""

    pass


class VpnRoutingError(VpnFailure):
    """Raised when split-DNS routing cannot be applied or cleared."""

    pass


class VpnHandshakeFailure(VpnFailure):
    """Base class for the SAML handshake steps."""

    pass


class VpnHandshakeFailed(VpnHandshakeFailure):
    """Raised when the VPN endpoint does not return a usable SAML challenge."""

    pass


class BrowserAuthFailed(VpnHandshakeFailure):
    """Raised when the automated browser session cannot complete the login."""

    pass


class SamlCaptureTimeout(VpnHandshakeFailure):
    """Raised when no SAML assertion reaches the callback listener in time."""

    pass


class VpnReconnectTimeout(VpnHandshakeFailure):
    """Raised when the VPN client does not report a connection in time."""

    pass


class CommandError(AwsxError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, stderr: str = ""):
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(
            f"Command '{' '.join(args)}' exited with status {returncode}{detail}"
        )
