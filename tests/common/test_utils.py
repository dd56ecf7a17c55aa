"""Tests for utility functions."""

import socket
import stat

import pytest

from awsx.common.utils import (
    atomic_write,
    default_port_for_url,
    is_url,
    mask_sensitive_data,
    port_open,
    sanitize_log_data,
    strip_url_to_host,
    validate_non_empty_string,
    validate_port,
    wait_for_port,
)


class TestValidation:
    @pytest.mark.parametrize("port", [1, 80, 65535])
    def test_valid_ports(self, port):
        validate_port(port)

    @pytest.mark.parametrize("port", [0, 65536, -1, "80"])
    def test_invalid_ports(self, port):
        with pytest.raises(ValueError, match="Local port must be between"):
            validate_port(port, "Local port")

    def test_non_empty_string_stripped(self):
        assert validate_non_empty_string("  web  ", "name") == "web"

    def test_blank_string_rejected(self):
        with pytest.raises(ValueError, match="name cannot be empty"):
            validate_non_empty_string("   ", "name")


class TestUrlHelpers:
    def test_is_url(self):
        assert is_url("https://app.example.com")
        assert is_url("http://10.0.0.1:8080/health")
        assert not is_url("web-server")
        assert not is_url("app.example.com")

    @pytest.mark.parametrize(
        "target,host",
        [
            ("https://App.Example.com:8443/path?q=1", "app.example.com"),
            ("http://10.0.1.5", "10.0.1.5"),
            ("app.internal:8080/x", "app.internal"),
            ("app.internal", "app.internal"),
        ],
    )
    def test_strip_url_to_host(self, target, host):
        assert strip_url_to_host(target) == host

    def test_default_port_for_url(self):
        assert default_port_for_url("https://app.example.com") == 443
        assert default_port_for_url("http://app.example.com") == 80
        assert default_port_for_url("https://app.example.com:8443/") == 8443
        assert default_port_for_url("http://app", http_port=8080) == 8080


class TestPorts:
    def test_port_open_for_listening_socket(self):
        with socket.socket() as server:
            server.bind(("127.0.0.1", 0))
            server.listen()
            port = server.getsockname()[1]
            assert port_open(port, timeout=0.5)

    def test_port_closed(self):
        with socket.socket() as server:
            server.bind(("127.0.0.1", 0))
            port = server.getsockname()[1]
        assert not port_open(port, timeout=0.5)

    def test_wait_for_port_stops_when_process_dies(self):
        with socket.socket() as server:
            server.bind(("127.0.0.1", 0))
            port = server.getsockname()[1]
        assert wait_for_port(port, timeout=5, interval=0.01, alive=lambda: False) is False

    def test_wait_for_port_times_out(self):
        with socket.socket() as server:
            server.bind(("127.0.0.1", 0))
            port = server.getsockname()[1]
        assert wait_for_port(port, timeout=0.1, interval=0.02, connect_timeout=0.05) is False


class TestAtomicWrite:
    def test_creates_file_with_default_mode(self, tmp_path):
        path = tmp_path / "sub" / "site.conf"
        atomic_write(path, "server {}\n")
        assert path.read_text() == "server {}\n"
        assert stat.S_IMODE(path.stat().st_mode) == 0o644

    def test_explicit_mode(self, tmp_path):
        path = tmp_path / "secret.json"
        atomic_write(path, "{}", mode=0o600)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_preserves_existing_mode(self, tmp_path):
        path = tmp_path / "hosts"
        path.write_text("old\n")
        path.chmod(0o640)
        atomic_write(path, "new\n")
        assert path.read_text() == "new\n"
        assert stat.S_IMODE(path.stat().st_mode) == 0o640

    def test_leaves_no_temp_files(self, tmp_path):
        atomic_write(tmp_path / "a.txt", "x")
        assert [p.name for p in tmp_path.iterdir()] == ["a.txt"]


class TestMasking:
    def test_mask_sensitive_data(self):
        assert mask_sensitive_data("supersecret") == "*******cret"
        assert mask_sensitive_data("abc") == "***"
        assert mask_sensitive_data(None) == "<None>"

    def test_sanitize_log_data(self):
        data = {"password": "hunter2hunter2", "saml_response": "PHNhbWw+", "port": 80}
        sanitized = sanitize_log_data(data)
        assert sanitized["port"] == 80
        assert sanitized["password"].endswith("ter2")
        assert "hunter2hunter2" not in sanitized["password"]
        assert sanitized["saml_response"] == "****bWw+"
