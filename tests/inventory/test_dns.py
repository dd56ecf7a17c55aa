"""Tests for hostname lookups."""

import socket
import subprocess
from unittest.mock import patch

from awsx.common.exceptions import ExternalToolMissing
from awsx.inventory import dns


def addrinfo(*addresses):
    return [
        (socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (a, 0))
        for a in addresses
    ]


class TestLookup:
    def test_preserves_order_and_dedupes(self):
        infos = addrinfo("10.0.0.2", "10.0.0.1", "10.0.0.2")
        with patch("awsx.inventory.dns.socket.getaddrinfo", return_value=infos):
            assert dns.lookup("app.example.com") == ["10.0.0.2", "10.0.0.1"]

    def test_unresolvable(self):
        with patch(
            "awsx.inventory.dns.socket.getaddrinfo", side_effect=socket.gaierror("nope")
        ):
            assert dns.lookup("app.internal") == []

    def test_is_loopback(self):
        assert dns.is_loopback("127.0.0.1")
        assert dns.is_loopback("::1")
        assert not dns.is_loopback("10.0.0.1")
        assert not dns.is_loopback("app")


class TestExternalLookup:
    def test_skips_cname_lines(self):
        output = "app.elb.amazonaws.com.\n52.1.2.3\n52.1.2.4\n"
        completed = subprocess.CompletedProcess([], 0, stdout=output, stderr="")
        with patch("awsx.inventory.dns.run_command", return_value=completed) as run:
            assert dns.lookup_external("app.example.com", "8.8.8.8") == ["52.1.2.3", "52.1.2.4"]
        assert run.call_args.args[0] == ["dig", "+short", "@8.8.8.8", "app.example.com"]

    def test_missing_dig(self):
        with patch("awsx.inventory.dns.run_command", side_effect=ExternalToolMissing("dig")):
            assert dns.lookup_external("app.example.com", "8.8.8.8") == []


class TestResolveHost:
    def test_loopback_override_uses_external_answer(self):
        with (
            patch("awsx.inventory.dns.lookup", return_value=["127.0.0.1"]),
            patch("awsx.inventory.dns.lookup_external", return_value=["52.1.2.3"]),
        ):
            assert dns.resolve_host("app.example.com", "8.8.8.8") == ["52.1.2.3"]

    def test_loopback_kept_when_external_empty(self):
        with (
            patch("awsx.inventory.dns.lookup", return_value=["127.0.0.1"]),
            patch("awsx.inventory.dns.lookup_external", return_value=[]),
        ):
            assert dns.resolve_host("app.example.com", "8.8.8.8") == ["127.0.0.1"]

    def test_routable_answer_skips_external(self):
        with (
            patch("awsx.inventory.dns.lookup", return_value=["10.0.0.1"]),
            patch("awsx.inventory.dns.lookup_external") as external,
        ):
            assert dns.resolve_host("app.example.com", "8.8.8.8") == ["10.0.0.1"]
        external.assert_not_called()
