"""Proxy reconciler: expose a tunnel under its original hostname.

enable() writes an nginx site routing hostname:80 to the tunnel's local
port, points the hostname at loopback in the hosts file, reloads nginx and
flushes the resolver cache. disable() undoes each step and tolerates
artifacts that are already gone. Files are replaced through a temp file and
rename; when the directory is not writable the same is done with the
configured privilege prefix.
"""

import os
import re
import tempfile
from pathlib import Path

from ..common.exceptions import (
    CommandError,
    DnsFlushError,
    ExternalToolMissing,
    HostsFileError,
    ProxyConfigWriteError,
    ProxyReconciliationFailure,
    ProxyReloadError,
)
from ..common.logging import get_logger
from ..common.process import run_command
from ..common.utils import LOOPBACK, atomic_write, validate_port
from .config import ProxyConfig
from .models import ProxySite
from .platforms import ProxyPlatform, detect_platform

logger = get_logger(__name__)

_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?"
_HOSTNAME_RE = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*$")
_SITE_HEADER_RE = re.compile(r"^# awsx site: (\S+) -> [\d.]+:(\d+)$", re.MULTILINE)

SITE_TEMPLATE = """\
# awsx site: {hostname} -> {loopback}:{port}
server {{
    listen {listen};
    server_name {hostname};

    location / {{
        proxy_pass http://{loopback}:{port};
        proxy_http_version 1.1;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";
        proxy_read_timeout 300s;
        proxy_send_timeout 300s;
    }}
}}
"""


def validate_hostname(hostname: str) -> str:
    """Return hostname lower-cased, or raise ValueError for anything unsafe."""
    hostname = hostname.strip().lower().rstrip(".")
    if not hostname or len(hostname) > 253 or not _HOSTNAME_RE.match(hostname):
        raise ValueError(f"Invalid hostname for proxy site: {hostname!r}")
    return hostname


class ProxyReconciler:
    """Reconciles nginx sites and hosts entries for proxied tunnels."""

    def __init__(
        self,
        config: ProxyConfig | None = None,
        platform: ProxyPlatform | None = None,
    ):
        self.config = config or ProxyConfig()
        self._platform = platform

    @property
    def platform(self) -> ProxyPlatform:
        """Platform variant, detected on first use and then fixed."""
        if self._platform is None:
            self._platform = detect_platform()
        return self._platform

    @property
    def site_dir(self) -> Path:
        return self.config.site_dir or self.platform.site_dir

    @property
    def enabled_dir(self) -> Path | None:
        return self.config.enabled_dir or self.platform.enabled_dir

    def site_for(
        self, hostname: str, local_port: int, tunnel_port: int | None = None
    ) -> ProxySite:
        """Describe the site for hostname without touching the filesystem."""
        hostname = validate_hostname(hostname)
        validate_port(local_port, "Local port")
        return ProxySite(
            hostname=hostname,
            local_port=local_port,
            config_path=self._site_path(hostname),
            tunnel_port=tunnel_port,
        )

    def render_site(self, site: ProxySite) -> str:
        return SITE_TEMPLATE.format(
            hostname=site.hostname,
            loopback=LOOPBACK,
            port=site.local_port,
            listen=self.config.listen_port,
        )

    def enable(self, hostname: str, local_port: int) -> ProxySite:
        """Route http://hostname to 127.0.0.1:local_port.

        Raises:
            ProxyConfigWriteError: If the site definition cannot be written
            HostsFileError: If the hosts file cannot be updated
            ProxyReloadError: If nginx refuses to reload (changes are kept)
            DnsFlushError: If the resolver cache flush fails
        """
        site = self.site_for(hostname, local_port, tunnel_port=local_port)
        self.apply(site)
        return site

    def apply(self, site: ProxySite) -> None:
        """Write, register, reload and flush for an already described site."""
        try:
            self._write_file(site.config_path, self.render_site(site))
            if self.enabled_dir is not None:
                self._symlink(site.config_path, self.enabled_dir / site.config_path.name)
        except (OSError, CommandError, ExternalToolMissing) as e:
            raise ProxyConfigWriteError(
                f"Failed to write proxy site for {site.hostname} at {site.config_path}: {e}"
            ) from e

        self.add_hosts_entry(site.hostname)
        self.reload()
        self.flush_dns()
        logger.info(
            "Proxy site enabled",
            hostname=site.hostname,
            local_port=site.local_port,
            config_path=str(site.config_path),
        )

    def disable(self, hostname: str) -> bool:
        """Remove the site and hosts entry for hostname. Safe to repeat.

        Returns:
            True if anything was removed

        Raises:
            ProxyConfigWriteError: If an existing site file cannot be removed
            HostsFileError: If an existing hosts entry cannot be removed
            ProxyReloadError: If nginx refuses to reload after removal
            DnsFlushError: If the resolver cache flush fails
        """
        hostname = validate_hostname(hostname)
        config_path = self._site_path(hostname)
        removed = False

        try:
            if self.enabled_dir is not None:
                removed |= self._remove_file(self.enabled_dir / config_path.name)
            removed |= self._remove_file(config_path)
        except (OSError, CommandError, ExternalToolMissing) as e:
            raise ProxyConfigWriteError(
                f"Failed to remove proxy site for {hostname} at {config_path}: {e}"
            ) from e

        hosts_removed = self.remove_hosts_entry(hostname)
        if removed:
            self.reload()
        if removed or hosts_removed:
            self.flush_dns()
            logger.info("Proxy site disabled", hostname=hostname)
        else:
            logger.debug("Proxy site already absent", hostname=hostname)
        return removed or hosts_removed

    def list_sites(self) -> list[ProxySite]:
        """Sites currently written by awsx, read back from their files."""
        sites: list[ProxySite] = []
        if not self.site_dir.is_dir():
            return sites
        for path in sorted(self.site_dir.glob(f"{self.config.site_prefix}*.conf")):
            try:
                match = _SITE_HEADER_RE.search(path.read_text())
            except OSError as e:
                logger.warning("Unreadable proxy site", path=str(path), error=str(e))
                continue
            if match is None:
                continue
            sites.append(
                ProxySite(
                    hostname=match.group(1),
                    local_port=int(match.group(2)),
                    config_path=path,
                    enabled=self._is_enabled(path),
                )
            )
        return sites

    def managed_hosts(self) -> list[str]:
        """Hostnames with an awsx entry in the hosts file."""
        try:
            lines = self.config.hosts_file.read_text().splitlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise HostsFileError(f"Failed to read {self.config.hosts_file}: {e}") from e
        return [h for h in (self._managed_host(line) for line in lines) if h]

    def has_active_proxies(self) -> bool:
        return bool(self.list_sites()) or bool(self.managed_hosts())

    def teardown_all(self) -> dict[str, str | None]:
        """Disable every awsx site and hosts entry.

        Returns:
            Hostname to error message (None when removed cleanly)
        """
        hostnames = {s.hostname for s in self.list_sites()}
        try:
            hostnames.update(self.managed_hosts())
        except HostsFileError as e:
            logger.error("Failed to read hosts file", error=str(e))

        results: dict[str, str | None] = {}
        for hostname in sorted(hostnames):
            try:
                self.disable(hostname)
                results[hostname] = None
            except ProxyReconciliationFailure as e:
                results[hostname] = str(e)
        if results:
            logger.info(
                "Removed proxy sites",
                count=len(results),
                failed=sum(1 for error in results.values() if error),
            )
        return results

    # Hosts file

    def add_hosts_entry(self, hostname: str) -> None:
        """Map hostname to loopback, replacing an earlier awsx entry for it.

        Raises:
            HostsFileError: If the hosts file cannot be read or written
        """
        lines = self._hosts_lines()
        kept = [line for line in lines if self._managed_host(line) != hostname]
        kept.append(f"{LOOPBACK}\t{hostname}\t{self.config.hosts_marker}")
        self._write_hosts(kept)

    def remove_hosts_entry(self, hostname: str) -> bool:
        """Drop the awsx entry for hostname. Returns False if there was none."""
        lines = self._hosts_lines()
        kept = [line for line in lines if self._managed_host(line) != hostname]
        if len(kept) == len(lines):
            return False
        self._write_hosts(kept)
        return True

    def _managed_host(self, line: str) -> str | None:
        if not line.rstrip().endswith(self.config.hosts_marker):
            return None
        fields = line.split()
        if len(fields) < 2 or fields[0] != LOOPBACK:
            return None
        return fields[1].lower()

    def _hosts_lines(self) -> list[str]:
        try:
            return self.config.hosts_file.read_text().splitlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise HostsFileError(f"Failed to read {self.config.hosts_file}: {e}") from e

    def _write_hosts(self, lines: list[str]) -> None:
        try:
            self._write_file(self.config.hosts_file, "\n".join(lines) + "\n")
        except (OSError, CommandError, ExternalToolMissing) as e:
            raise HostsFileError(f"Failed to update {self.config.hosts_file}: {e}") from e

    # Daemon control

    def reload(self) -> None:
        """Reload nginx.

        Raises:
            ProxyReloadError: If the reload command fails
        """
        command = self.platform.reload_command()
        try:
            self._run(command, privileged=self.platform.privileged_reload)
        except (CommandError, ExternalToolMissing) as e:
            raise ProxyReloadError(f"Failed to reload nginx: {e}") from e

    def flush_dns(self) -> None:
        """Flush the OS resolver cache.

        Raises:
            DnsFlushError: If a flush command fails
        """
        for command in self.platform.flush_commands():
            try:
                self._run(command, privileged=True)
            except (CommandError, ExternalToolMissing) as e:
                raise DnsFlushError(f"Failed to flush DNS cache: {e}") from e

    # Filesystem helpers

    def _site_path(self, hostname: str) -> Path:
        return self.site_dir / f"{self.config.site_prefix}{hostname}.conf"

    def _is_enabled(self, path: Path) -> bool:
        if self.enabled_dir is None:
            return True
        return (self.enabled_dir / path.name).exists()

    def _needs_escalation(self) -> bool:
        return bool(self.config.privilege_prefix) and hasattr(os, "geteuid") and os.geteuid() != 0

    def _run(self, command: list[str], privileged: bool) -> None:
        if privileged and self._needs_escalation():
            command = [*self.config.privilege_prefix, *command]
        run_command(command, timeout=self.config.command_timeout)

    def _write_file(self, path: Path, content: str) -> None:
        try:
            atomic_write(path, content)
            return
        except PermissionError:
            if not self._needs_escalation():
                raise

        staging = path.with_name(f".{path.name}.awsx")
        with tempfile.NamedTemporaryFile("w", prefix="awsx-", delete=False) as tmp:
            tmp.write(content)
        try:
            self._run(["install", "-m", "644", tmp.name, str(staging)], privileged=True)
            self._run(["mv", "-f", str(staging), str(path)], privileged=True)
        finally:
            os.unlink(tmp.name)

    def _remove_file(self, path: Path) -> bool:
        if not path.exists() and not path.is_symlink():
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except PermissionError:
            if not self._needs_escalation():
                raise
            self._run(["rm", "-f", str(path)], privileged=True)
        return True

    def _symlink(self, source: Path, link: Path) -> None:
        try:
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(source)
        except PermissionError:
            if not self._needs_escalation():
                raise
            self._run(["ln", "-sfn", str(source), str(link)], privileged=True)
