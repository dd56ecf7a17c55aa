"""Tests for tunnel models and the registry."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from awsx.common.exceptions import PortConflict, TunnelNotFound
from awsx.proxy.models import ProxySite
from awsx.tunnel import (
    StopResult,
    TunnelOrigin,
    TunnelProcess,
    TunnelRegistry,
    TunnelStatus,
)


def make_tunnel(local_port=8080, pid=4242, **kwargs):
    return TunnelProcess(local_port=local_port, pid=pid, hop_id="i-1", remote_port=80, **kwargs)


def make_site(hostname="app.example.com", port=8080):
    return ProxySite(
        hostname=hostname,
        local_port=port,
        config_path=Path(f"/etc/nginx/sites-available/awsx-{hostname}.conf"),
        tunnel_port=port,
    )


class TestTunnelProcess:
    def test_defaults(self):
        tunnel = make_tunnel()
        assert tunnel.status == TunnelStatus.STARTING
        assert tunnel.origin == TunnelOrigin.NATIVE
        assert tunnel.probed_at is None

    def test_with_status_is_immutable(self):
        tunnel = make_tunnel()
        updated = tunnel.with_status(TunnelStatus.OK, 12.4)
        assert tunnel.status == TunnelStatus.STARTING
        assert updated.status == TunnelStatus.OK
        assert updated.latency_ms == 12.4
        assert updated.probed_at is not None

    def test_latency_only_kept_for_ok(self):
        tunnel = make_tunnel().with_status(TunnelStatus.OK, 12.0)
        down = tunnel.with_status(TunnelStatus.DOWN, 99.0)
        assert down.latency_ms is None
        assert down.probed_at is not None
        assert tunnel.with_status(TunnelStatus.OPEN).probed_at == tunnel.probed_at

    def test_status_label(self):
        assert make_tunnel().with_status(TunnelStatus.OK, 41.6).status_label == "OK 42ms"
        assert make_tunnel().with_status(TunnelStatus.DOWN).status_label == "DOWN"

    def test_remote(self):
        assert make_tunnel(remote_host="10.0.2.7").remote == "10.0.2.7:80"
        assert make_tunnel(hop_name="web").remote == "web:80"
        unknown = TunnelProcess(local_port=None, pid=7)
        assert unknown.remote == "?"
        assert not unknown.remote_known

    def test_invalid_port(self):
        with pytest.raises(ValidationError):
            TunnelProcess(local_port=70000, pid=1)

    def test_stop_result_ok(self):
        assert StopResult(local_port=8080, pid=1, stopped=True).ok
        assert not StopResult(local_port=8080, pid=1, stopped=False, errors=("boom",)).ok


class TestTunnelRegistry:
    def test_add_and_get(self):
        registry = TunnelRegistry()
        registry.add_tunnel(make_tunnel())
        assert registry.get_tunnel(8080).pid == 4242
        assert registry.find_by_pid(4242).local_port == 8080

    def test_one_entry_per_port(self):
        registry = TunnelRegistry()
        registry.add_tunnel(make_tunnel())
        with pytest.raises(PortConflict):
            registry.add_tunnel(make_tunnel(pid=5000))

    def test_unkeyed_entries(self):
        registry = TunnelRegistry()
        with pytest.raises(ValueError):
            registry.add_tunnel(TunnelProcess(local_port=None, pid=7))
        registry.add_unkeyed(TunnelProcess(local_port=None, pid=7))
        registry.add_tunnel(make_tunnel(local_port=9000))
        registry.add_tunnel(make_tunnel(local_port=8000, pid=4243))

        assert [t.local_port for t in registry.list_tunnels()] == [8000, 9000, None]
        assert registry.ports() == [8000, 9000]
        assert registry.remove_unkeyed(7).pid == 7
        assert registry.remove_unkeyed(7) is None

    def test_remove_missing(self):
        with pytest.raises(TunnelNotFound):
            TunnelRegistry().remove_tunnel(8080)

    def test_update_status(self):
        registry = TunnelRegistry()
        registry.add_tunnel(make_tunnel())
        registry.update_tunnel_status(8080, TunnelStatus.OK, 5.0)
        assert registry.get_tunnel(8080).status_label == "OK 5ms"

    def test_list_filters(self):
        registry = TunnelRegistry()
        registry.add_tunnel(make_tunnel(status=TunnelStatus.OPEN))
        registry.add_tunnel(
            make_tunnel(local_port=9000, pid=5, origin=TunnelOrigin.RECOVERED)
        )
        assert [t.local_port for t in registry.list_tunnels(status=TunnelStatus.OPEN)] == [8080]
        assert [
            t.local_port for t in registry.list_tunnels(origin=TunnelOrigin.RECOVERED)
        ] == [9000]

    def test_site_links_both_ways(self):
        registry = TunnelRegistry()
        registry.add_tunnel(make_tunnel())
        updated = registry.link_site(make_site())

        assert updated.proxy_site == "app.example.com"
        assert registry.site_for_tunnel(8080).hostname == "app.example.com"
        assert registry.tunnel_for_site("app.example.com").local_port == 8080

        registry.unlink_site("app.example.com")
        assert registry.get_tunnel(8080).proxy_site is None
        assert registry.site_for_tunnel(8080) is None

    def test_link_site_requires_tunnel(self):
        with pytest.raises(TunnelNotFound):
            TunnelRegistry().link_site(make_site())

    def test_clear(self):
        registry = TunnelRegistry()
        registry.add_tunnel(make_tunnel())
        registry.link_site(make_site())
        registry.clear()
        assert registry.list_tunnels() == []
        assert registry.sites == {}
