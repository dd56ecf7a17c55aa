"""Reverse-proxy and hosts-file reconciliation for proxied tunnels."""

from .config import ProxyConfig
from .models import ProxySite
from .platforms import (
    DebianPlatform,
    MacPlatform,
    ProxyPlatform,
    RedHatPlatform,
    detect_platform,
)
from .reconciler import ProxyReconciler, validate_hostname

__all__ = [
    "ProxyReconciler",
    "ProxyConfig",
    "ProxySite",
    "ProxyPlatform",
    "DebianPlatform",
    "RedHatPlatform",
    "MacPlatform",
    "detect_platform",
    "validate_hostname",
]
