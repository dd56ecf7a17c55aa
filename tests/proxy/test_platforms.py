"""Tests for proxy platform detection."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from awsx.common.exceptions import ExternalToolMissing, ProxyConfigWriteError
from awsx.proxy.platforms import (
    DebianPlatform,
    MacPlatform,
    RedHatPlatform,
    detect_platform,
)


def which_only(*tools):
    return lambda name: f"/usr/bin/{name}" if name in tools else None


class TestDetectPlatform:
    def test_debian(self):
        platform = detect_platform("Linux", which_only("apt-get"))
        assert isinstance(platform, DebianPlatform)
        assert platform.enabled_dir == Path("/etc/nginx/sites-enabled")
        assert platform.reload_command() == ["systemctl", "reload", "nginx"]

    def test_redhat(self):
        platform = detect_platform("Linux", which_only("dnf"))
        assert isinstance(platform, RedHatPlatform)
        assert platform.site_dir == Path("/etc/nginx/conf.d")
        assert platform.enabled_dir is None

    def test_unsupported_linux(self):
        with pytest.raises(ExternalToolMissing):
            detect_platform("Linux", which_only())

    def test_unsupported_os(self):
        with pytest.raises(ProxyConfigWriteError, match="Windows"):
            detect_platform("Windows", which_only())

    def test_macos_uses_brew_prefix(self):
        completed = subprocess.CompletedProcess([], 0, stdout="/usr/local\n", stderr="")
        with patch("awsx.proxy.platforms.run_command", return_value=completed):
            platform = detect_platform("Darwin", which_only("brew"))

        assert isinstance(platform, MacPlatform)
        assert platform.site_dir == Path("/usr/local/etc/nginx/servers")
        assert platform.privileged_reload is False
        assert ["killall", "-HUP", "mDNSResponder"] in platform.flush_commands()
