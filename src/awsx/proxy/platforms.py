"""Per-OS proxy daemon and DNS cache control.

Each platform knows where nginx reads site definitions, how to reload it and
how to flush the OS resolver cache. One is picked at startup by
detect_platform() and the reconciler never branches on the OS itself.
"""

import platform as _platform
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from ..common.exceptions import ExternalToolMissing, ProxyConfigWriteError
from ..common.logging import get_logger
from ..common.process import run_command

logger = get_logger(__name__)


class ProxyPlatform(ABC):
    """Capability interface for one OS/package-manager combination."""

    name: str = ""
    privileged_reload: bool = True

    @property
    @abstractmethod
    def site_dir(self) -> Path:
        """Directory nginx includes site definitions from."""

    @property
    def enabled_dir(self) -> Path | None:
        """Directory of symlinks to enabled sites, if the layout uses one."""
        return None

    @abstractmethod
    def reload_command(self) -> list[str]:
        pass

    @abstractmethod
    def flush_commands(self) -> list[list[str]]:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(site_dir={self.site_dir})"


class DebianPlatform(ProxyPlatform):
    """apt-installed nginx with sites-available/sites-enabled."""

    name = "debian"

    @property
    def site_dir(self) -> Path:
        return Path("/etc/nginx/sites-available")

    @property
    def enabled_dir(self) -> Path | None:
        return Path("/etc/nginx/sites-enabled")

    def reload_command(self) -> list[str]:
        return ["systemctl", "reload", "nginx"]

    def flush_commands(self) -> list[list[str]]:
        return [["resolvectl", "flush-caches"]]


class RedHatPlatform(ProxyPlatform):
    """dnf/yum-installed nginx reading /etc/nginx/conf.d."""

    name = "redhat"

    @property
    def site_dir(self) -> Path:
        return Path("/etc/nginx/conf.d")

    def reload_command(self) -> list[str]:
        return ["systemctl", "reload", "nginx"]

    def flush_commands(self) -> list[list[str]]:
        return [["resolvectl", "flush-caches"]]


class MacPlatform(ProxyPlatform):
    """Homebrew nginx on macOS."""

    name = "macos"
    privileged_reload = False

    def __init__(self, brew_prefix: Path):
        self.brew_prefix = brew_prefix

    @property
    def site_dir(self) -> Path:
        return self.brew_prefix / "etc" / "nginx" / "servers"

    def reload_command(self) -> list[str]:
        return ["nginx", "-s", "reload"]

    def flush_commands(self) -> list[list[str]]:
        return [["dscacheutil", "-flushcache"], ["killall", "-HUP", "mDNSResponder"]]


def _brew_prefix(which: Callable[[str], str | None]) -> Path:
    if which("brew"):
        result = run_command(["brew", "--prefix"], timeout=15.0, check=False)
        if result.returncode == 0 and result.stdout.strip():
            return Path(result.stdout.strip())
    for candidate in (Path("/opt/homebrew"), Path("/usr/local")):
        if (candidate / "etc" / "nginx").is_dir():
            return candidate
    return Path("/opt/homebrew")


def detect_platform(
    system: str | None = None,
    which: Callable[[str], str | None] = shutil.which,
) -> ProxyPlatform:
    """Pick the platform variant for this host.

    Raises:
        ExternalToolMissing: If no supported package manager is found on Linux
        ProxyConfigWriteError: If the OS is not supported at all
    """
    system = system or _platform.system()

    if system == "Darwin":
        detected: ProxyPlatform = MacPlatform(_brew_prefix(which))
    elif system == "Linux":
        if which("apt-get") or which("apt"):
            detected = DebianPlatform()
        elif which("dnf") or which("yum"):
            detected = RedHatPlatform()
        else:
            raise ExternalToolMissing(
                "apt-get", "Reverse proxy setup supports apt or dnf based systems"
            )
    else:
        raise ProxyConfigWriteError(f"Reverse proxy is not supported on {system}")

    logger.debug("Detected proxy platform", platform=detected.name, site_dir=str(detected.site_dir))
    return detected
