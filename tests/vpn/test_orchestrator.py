"""Tests for the VPN orchestrator state machine with fake collaborators."""

import threading
import time
from unittest.mock import Mock

import pytest

from awsx.common.config import ProviderContext
from awsx.common.exceptions import (
    BrowserAuthFailed,
    SamlCaptureTimeout,
    VpnConfigError,
    VpnFailure,
    VpnReconnectTimeout,
)
from awsx.common.process import ProcessManager
from awsx.vpn import (
    DnsRouter,
    OpenVpnClient,
    SamlChallenge,
    VpnConfig,
    VpnConfigStore,
    VpnOrchestrator,
    VpnSettings,
    VpnState,
)
from awsx.vpn.browser import BrowserAuthenticator
from awsx.vpn.saml import SamlCallbackListener

HANDSHAKE = [
    VpnState.DISCONNECTED,
    VpnState.CHALLENGE_REQUESTED,
    VpnState.BROWSER_AUTHENTICATING,
    VpnState.SAML_CAPTURED,
    VpnState.RECONNECTING,
    VpnState.CONNECTED,
]


class FakeListener:
    """Callback listener returning a canned assertion or raising."""

    def __init__(self, result):
        self.result = result
        self.started = False
        self.closed = False

    def __enter__(self):
        self.started = True
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False

    def wait(self, timeout, abort=None):
        if callable(self.result):
            return self.result()
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


@pytest.fixture
def settings(tmp_path):
    return VpnSettings(runtime_dir=tmp_path / "run", privilege_prefix=[])


@pytest.fixture
def ovpn(tmp_path):
    path = tmp_path / "client.ovpn"
    path.write_text("client\nremote vpn.example.com 443\n")
    return path


@pytest.fixture
def store(tmp_path, ovpn):
    store = VpnConfigStore(tmp_path / "vpn.json")
    store.save(
        "prod",
        VpnConfig(
            username="dev@example.com",
            password="s3cret",
            ovpn_path=ovpn,
            dns_server="10.0.0.2",
            dns_domain="internal.example.com",
        ),
    )
    return store


@pytest.fixture
def vpn_process():
    process = Mock(spec=ProcessManager)
    process.pid = 777
    process.is_running.return_value = True
    return process


@pytest.fixture
def client(settings, vpn_process):
    client = Mock(spec=OpenVpnClient)
    client.prepare_profile.side_effect = lambda ovpn_path, workdir: workdir / "profile.ovpn"
    client.request_challenge.return_value = SamlChallenge(
        url="https://portal.sso.eu-west-1.amazonaws.com/saml?SAMLRequest=x",
        session_id="instance-7/1234/abc",
    )
    client.start.return_value = vpn_process
    client.log_path.side_effect = lambda workdir: workdir / "openvpn.log"
    client.find_pid.return_value = None
    client.stop.return_value = True
    return client


@pytest.fixture
def router():
    router = Mock(spec=DnsRouter)
    router.apply.return_value = True
    router.revert.return_value = True
    router.interface_address.return_value = "10.8.0.6"
    return router


@pytest.fixture
def browser():
    browser = Mock(spec=BrowserAuthenticator)
    browser.failure.return_value = None
    return browser


@pytest.fixture
def listener():
    return FakeListener("PHNhbWw+")


@pytest.fixture
def orchestrator(settings, store, client, router, browser, listener):
    return VpnOrchestrator(
        context=ProviderContext(profile="prod"),
        settings=settings,
        store=store,
        client=client,
        router=router,
        browser_factory=lambda s: browser,
        listener_factory=lambda host, port: listener,
    )


class TestConnect:
    def test_walks_every_state(self, orchestrator, client, router, browser, listener):
        messages = []

        session = orchestrator.connect("123456", progress=messages.append)

        assert orchestrator.history == HANDSHAKE
        assert session.connected
        assert session.pid == 777
        assert session.ip == "10.8.0.6"
        assert not session.external
        assert messages[0] == "[1/5] Preparing VPN config..."
        assert messages[-1] == "VPN connected! IP: 10.8.0.6, PID: 777"

        browser.start.assert_called_once_with(
            "https://portal.sso.eu-west-1.amazonaws.com/saml?SAMLRequest=x",
            "dev@example.com",
            "s3cret",
            "123456",
        )
        browser.cancel.assert_called_once()
        assert listener.closed
        client.start.assert_called_once()
        assert client.start.call_args.args[2:] == ("instance-7/1234/abc", "PHNhbWw+")
        router.apply.assert_called_once_with("10.0.0.2", "internal.example.com")

    def test_status_of_connected_session(self, orchestrator, router):
        orchestrator.connect("123456")
        router.interface_address.return_value = "10.8.0.7"

        status = orchestrator.status()

        assert status.connected
        assert status.ip == "10.8.0.7"

    def test_already_connected(self, orchestrator, client):
        orchestrator.connect("123456")
        with pytest.raises(VpnFailure, match="already connected"):
            orchestrator.connect("654321")
        assert client.request_challenge.call_count == 1
        assert orchestrator.state == VpnState.CONNECTED

    def test_empty_mfa_code(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.connect("  ")
        assert orchestrator.history == [VpnState.DISCONNECTED]

    def test_requires_setup(self, orchestrator):
        orchestrator.context = ProviderContext(profile="staging")
        with pytest.raises(VpnConfigError):
            orchestrator.connect("123456")
        assert orchestrator.state == VpnState.DISCONNECTED


class TestConnectFailures:
    def test_saml_timeout_aborts(self, orchestrator, listener, browser, router, client):
        listener.result = SamlCaptureTimeout("No SAML response")

        with pytest.raises(SamlCaptureTimeout):
            orchestrator.connect("123456")

        assert orchestrator.state == VpnState.DISCONNECTED
        assert orchestrator.history == [
            VpnState.DISCONNECTED,
            VpnState.CHALLENGE_REQUESTED,
            VpnState.BROWSER_AUTHENTICATING,
            VpnState.DISCONNECTED,
        ]
        browser.cancel.assert_called()
        router.revert.assert_called_once()
        client.start.assert_not_called()

    def test_browser_failure_surfaces(self, orchestrator, listener):
        listener.result = BrowserAuthFailed("Username field not found")
        with pytest.raises(BrowserAuthFailed):
            orchestrator.connect("123456")
        assert orchestrator.state == VpnState.DISCONNECTED

    def test_reconnect_timeout_stops_client(self, orchestrator, client):
        client.wait_connected.side_effect = VpnReconnectTimeout("no connect")

        with pytest.raises(VpnReconnectTimeout):
            orchestrator.connect("123456")

        client.stop.assert_called_once_with(777)
        assert orchestrator.state == VpnState.DISCONNECTED
        assert VpnState.RECONNECTING in orchestrator.history

    def test_disconnect_during_browser_step_cancels(self, orchestrator, listener, client):
        def disconnect_then_deliver():
            orchestrator.disconnect()
            return "PHNhbWw+"

        listener.result = disconnect_then_deliver

        with pytest.raises(VpnFailure, match="cancelled"):
            orchestrator.connect("123456")

        client.start.assert_not_called()
        assert orchestrator.state == VpnState.DISCONNECTED
        assert VpnState.SAML_CAPTURED not in orchestrator.history


class TestDisconnectDuringSamlWait:
    def test_disconnect_unblocks_callback_wait(self, tmp_path, store, client, router, browser):
        login_started = threading.Event()
        browser.start.side_effect = lambda *args: login_started.set()
        orchestrator = VpnOrchestrator(
            context=ProviderContext(profile="prod"),
            settings=VpnSettings(
                runtime_dir=tmp_path / "run", privilege_prefix=[], callback_timeout=30
            ),
            store=store,
            client=client,
            router=router,
            browser_factory=lambda s: browser,
            listener_factory=lambda host, port: SamlCallbackListener(host, 0),
        )
        outcome = {}

        def connect():
            started = time.monotonic()
            try:
                orchestrator.connect("123456")
            except VpnFailure as e:
                outcome["error"] = e
            outcome["elapsed"] = time.monotonic() - started

        worker = threading.Thread(target=connect, daemon=True)
        worker.start()
        assert login_started.wait(5)

        orchestrator.disconnect()
        worker.join(5)

        assert not worker.is_alive()
        assert "cancelled" in str(outcome["error"])
        assert outcome["elapsed"] < 5
        client.start.assert_not_called()
        assert orchestrator.state == VpnState.DISCONNECTED


class TestDisconnect:
    def test_disconnect_connected_session(self, orchestrator, client, router, settings):
        orchestrator.connect("123456")
        (settings.runtime_dir / "session.creds").write_text("N/A\nCRV1::x::y\n")

        results = orchestrator.disconnect()

        assert [r.step for r in results] == ["vpn_process", "dns"]
        assert all(r.ok for r in results)
        client.stop.assert_called_once_with(777)
        router.revert.assert_called_once()
        assert not (settings.runtime_dir / "session.creds").exists()
        assert orchestrator.state == VpnState.DISCONNECTED
        assert orchestrator.history[-1] == VpnState.DISCONNECTED

    def test_disconnect_when_nothing_runs(self, orchestrator, client, router):
        router.revert.return_value = False

        results = orchestrator.disconnect()

        assert results[0].detail == "not running"
        assert results[1].detail == "interface absent"
        client.stop.assert_not_called()
        assert orchestrator.state == VpnState.DISCONNECTED

    def test_every_step_runs_when_one_fails(self, orchestrator, client, router):
        client.find_pid.return_value = 4242
        client.stop.side_effect = VpnFailure("kill failed")

        results = orchestrator.disconnect()

        assert not results[0].ok
        assert results[1].ok
        router.revert.assert_called_once()
        assert orchestrator.state == VpnState.DISCONNECTED

    def test_stops_external_client(self, orchestrator, client):
        client.find_pid.return_value = 4242
        orchestrator.disconnect()
        client.stop.assert_called_once_with(4242)


class TestStatus:
    def test_disconnected(self, orchestrator):
        status = orchestrator.status()
        assert status.state == VpnState.DISCONNECTED
        assert status.pid is None

    def test_external_client(self, orchestrator, client):
        client.find_pid.return_value = 4242
        status = orchestrator.status()
        assert status.connected
        assert status.external
        assert status.pid == 4242

    def test_exited_client_resets(self, orchestrator, vpn_process):
        orchestrator.connect("123456")
        vpn_process.is_running.return_value = False

        assert orchestrator.status().state == VpnState.DISCONNECTED
        assert orchestrator.state == VpnState.DISCONNECTED


class TestSetup:
    def test_setup_saves_profile(self, orchestrator, ovpn, tmp_path):
        orchestrator.context = ProviderContext(profile="dev")
        path = orchestrator.setup(
            VpnConfig(username="dev", password="pw", ovpn_path=ovpn)
        )
        assert path == tmp_path / "vpn.json"
        assert orchestrator.load_config().ovpn_path == ovpn.resolve()

    def test_setup_requires_profile_file(self, orchestrator, tmp_path):
        with pytest.raises(VpnConfigError, match="not found"):
            orchestrator.setup(
                VpnConfig(username="dev", password="pw", ovpn_path=tmp_path / "missing.ovpn")
            )
