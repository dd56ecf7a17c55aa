"""Common utilities and shared functionality."""

from .config import ProviderContext, config_dir, list_profiles
from .exceptions import (
    AwsxError,
    CommandError,
    ExternalToolMissing,
    ProviderError,
    ProxyReconciliationFailure,
    ResolutionFailure,
    TunnelLifecycleFailure,
    VpnFailure,
    VpnHandshakeFailure,
)
from .logging import get_logger, setup_logging
from .process import ProcessManager, pid_alive, run_command, terminate_pid
from .utils import (
    MAX_PORT,
    MIN_PORT,
    atomic_write,
    mask_sensitive_data,
    sanitize_log_data,
    strip_url_to_host,
    port_open,
    validate_non_empty_string,
    validate_port,
    wait_for_port,
)

__all__ = [
    # Config
    "ProviderContext",
    "config_dir",
    "list_profiles",
    # Process management
    "ProcessManager",
    "pid_alive",
    "run_command",
    "terminate_pid",
    # Exceptions
    "AwsxError",
    "CommandError",
    "ExternalToolMissing",
    "ProviderError",
    "ResolutionFailure",
    "TunnelLifecycleFailure",
    "ProxyReconciliationFailure",
    "VpnFailure",
    "VpnHandshakeFailure",
    # Logging
    "get_logger",
    "setup_logging",
    # Utils
    "validate_port",
    "validate_non_empty_string",
    "mask_sensitive_data",
    "sanitize_log_data",
    "strip_url_to_host",
    "atomic_write",
    "port_open",
    "wait_for_port",
    "MIN_PORT",
    "MAX_PORT",
]
