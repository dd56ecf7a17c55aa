"""SAML-authenticated VPN connection orchestration."""

from .browser import BrowserAuthenticator
from .config import VpnSettings
from .models import SamlChallenge, StepResult, VpnConfig, VpnSession, VpnState
from .openvpn import OpenVpnClient, filter_profile, parse_challenge
from .orchestrator import VpnOrchestrator
from .routing import DnsRouter
from .saml import SamlCallbackListener, extract_saml_response
from .store import VpnConfigStore

__all__ = [
    "VpnOrchestrator",
    "VpnSettings",
    "VpnConfig",
    "VpnConfigStore",
    "VpnSession",
    "VpnState",
    "SamlChallenge",
    "StepResult",
    "OpenVpnClient",
    "DnsRouter",
    "BrowserAuthenticator",
    "SamlCallbackListener",
    "extract_saml_response",
    "filter_profile",
    "parse_challenge",
]
