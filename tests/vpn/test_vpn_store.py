"""Tests for VPN config models and persistence."""

import json
import stat

import pytest
from pydantic import ValidationError

from awsx.common.exceptions import VpnConfigError
from awsx.vpn import VpnConfig, VpnConfigStore


@pytest.fixture
def vpn_config(tmp_path):
    return VpnConfig(
        username="dev@example.com",
        password="s3cret",
        ovpn_path=tmp_path / "client.ovpn",
        dns_server="10.0.0.2",
        dns_domain="internal.example.com",
    )


class TestVpnConfig:
    def test_password_hidden_in_repr(self, vpn_config):
        assert "s3cret" not in repr(vpn_config)

    def test_empty_password_rejected(self, tmp_path):
        with pytest.raises(ValidationError):
            VpnConfig(username="dev", password="", ovpn_path=tmp_path / "c.ovpn")

    def test_dns_routing_needs_both_fields(self, tmp_path):
        config = VpnConfig(
            username="dev", password="x", ovpn_path=tmp_path / "c.ovpn", dns_server="10.0.0.2",
            dns_domain="",
        )
        assert config.dns_domain is None
        assert not config.routes_dns


class TestVpnConfigStore:
    def test_save_and_load(self, tmp_path, vpn_config):
        store = VpnConfigStore(tmp_path / "awsx" / "vpn.json")
        store.save("prod", vpn_config)

        loaded = store.load("prod")

        assert loaded.username == "dev@example.com"
        assert loaded.password.get_secret_value() == "s3cret"
        assert loaded.routes_dns
        assert store.profiles() == ["prod"]

    def test_file_is_owner_only(self, tmp_path, vpn_config):
        store = VpnConfigStore(tmp_path / "vpn.json")
        store.save("prod", vpn_config)

        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600
        record = json.loads(store.path.read_text())["profiles"]["prod"]
        assert record["password"] == "s3cret"

    def test_profiles_are_independent(self, tmp_path, vpn_config):
        store = VpnConfigStore(tmp_path / "vpn.json")
        store.save("prod", vpn_config)
        store.save("dev", vpn_config.model_copy(update={"username": "other"}))

        assert store.profiles() == ["dev", "prod"]
        assert store.load("prod").username == "dev@example.com"
        assert store.delete("dev") is True
        assert store.delete("dev") is False
        assert store.profiles() == ["prod"]

    def test_missing_profile(self, tmp_path):
        with pytest.raises(VpnConfigError, match="Run VPN setup first"):
            VpnConfigStore(tmp_path / "vpn.json").load("prod")

    def test_invalid_record(self, tmp_path):
        path = tmp_path / "vpn.json"
        path.write_text(json.dumps({"profiles": {"prod": {"username": "dev"}}}))
        with pytest.raises(VpnConfigError, match="Invalid VPN config"):
            VpnConfigStore(path).load("prod")

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "vpn.json"
        path.write_text("{not json")
        with pytest.raises(VpnConfigError, match="Cannot read"):
            VpnConfigStore(path).profiles()
