"""VPN orchestrator: SAML handshake, client process and DNS routing.

connect() walks DISCONNECTED -> CHALLENGE_REQUESTED -> BROWSER_AUTHENTICATING
-> SAML_CAPTURED -> RECONNECTING -> CONNECTED. Any failing step tears down
whatever was started and returns to DISCONNECTED before the error surfaces.
disconnect() runs every cleanup step regardless of state and always ends in
DISCONNECTED.
"""

import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import psutil

from ..common.config import ProviderContext, config_dir
from ..common.exceptions import AwsxError, VpnConfigError, VpnFailure
from ..common.logging import get_logger
from ..common.process import ProcessManager
from ..common.utils import validate_non_empty_string
from .browser import BrowserAuthenticator
from .config import VpnSettings
from .models import StepResult, VpnConfig, VpnSession, VpnState
from .openvpn import OpenVpnClient
from .routing import DnsRouter
from .saml import SamlCallbackListener
from .store import VpnConfigStore

logger = get_logger(__name__)

ProgressCallback = Callable[[str], None]

_TRANSITIONS: dict[VpnState, set[VpnState]] = {
    VpnState.DISCONNECTED: {VpnState.CHALLENGE_REQUESTED},
    VpnState.CHALLENGE_REQUESTED: {VpnState.BROWSER_AUTHENTICATING},
    VpnState.BROWSER_AUTHENTICATING: {VpnState.SAML_CAPTURED},
    VpnState.SAML_CAPTURED: {VpnState.RECONNECTING},
    VpnState.RECONNECTING: {VpnState.CONNECTED},
    VpnState.CONNECTED: set(),
}


class VpnOrchestrator:
    """Owns the single VPN session of this process."""

    def __init__(
        self,
        context: ProviderContext | None = None,
        settings: VpnSettings | None = None,
        store: VpnConfigStore | None = None,
        client: OpenVpnClient | None = None,
        router: DnsRouter | None = None,
        browser_factory: Callable[[VpnSettings], BrowserAuthenticator] = BrowserAuthenticator,
        listener_factory: Callable[[str, int], SamlCallbackListener] = SamlCallbackListener,
    ):
        self.context = context or ProviderContext.from_env()
        self.settings = settings or VpnSettings()
        self.store = store or VpnConfigStore()
        self.client = client or OpenVpnClient(self.settings)
        self.router = router or DnsRouter(self.settings)
        self._browser_factory = browser_factory
        self._listener_factory = listener_factory

        self.state = VpnState.DISCONNECTED
        self.history: list[VpnState] = [VpnState.DISCONNECTED]
        self._session = VpnSession()
        self._process: ProcessManager | None = None
        self._browser: BrowserAuthenticator | None = None
        self._lock = threading.RLock()
        self._connecting = threading.Lock()
        self._cancelled = threading.Event()

    @property
    def workdir(self) -> Path:
        return self.settings.runtime_dir or config_dir() / "run"

    def _transition(self, state: VpnState) -> None:
        with self._lock:
            if self._cancelled.is_set():
                raise VpnFailure("VPN connect cancelled by disconnect")
            if state not in _TRANSITIONS[self.state]:
                raise VpnFailure(
                    f"Invalid VPN state transition {self.state.value} -> {state.value}"
                )
            logger.debug("VPN state", previous=self.state.value, state=state.value)
            self.state = state
            self.history.append(state)

    def _reset(self) -> None:
        with self._lock:
            if self.state != VpnState.DISCONNECTED:
                self.history.append(VpnState.DISCONNECTED)
            self.state = VpnState.DISCONNECTED
            self._session = VpnSession()
            self._process = None
            self._browser = None

    # Setup

    def setup(self, config: VpnConfig) -> Path:
        """Persist config for the current profile.

        Raises:
            VpnConfigError: If the .ovpn profile does not exist or cannot be saved
        """
        ovpn_path = config.ovpn_path.expanduser()
        if not ovpn_path.is_file():
            raise VpnConfigError(f"VPN profile not found: {ovpn_path}")
        config = config.model_copy(update={"ovpn_path": ovpn_path.resolve()})
        self.store.save(self.context.profile_name, config)
        return self.store.path

    def load_config(self) -> VpnConfig:
        return self.store.load(self.context.profile_name)

    # Connect

    def connect(self, mfa_code: str, progress: ProgressCallback | None = None) -> VpnSession:
        """Authenticate through SAML and bring the VPN up.

        Args:
            mfa_code: One-time code entered in the SSO MFA prompt
            progress: Receives short status messages

        Raises:
            VpnConfigError: If setup has not been run
            VpnHandshakeFailure: If a handshake step fails or times out
            VpnRoutingError: If DNS routing cannot be applied
            VpnFailure: If a connection is already up or in progress
        """
        mfa_code = validate_non_empty_string(mfa_code, "MFA code")
        report = progress or (lambda message: None)

        if not self._connecting.acquire(blocking=False):
            raise VpnFailure("A VPN connection attempt is already in progress")
        try:
            current = self.status()
            if current.connected:
                raise VpnFailure(f"VPN already connected (pid {current.pid})")
            config = self.load_config()
            self._cancelled.clear()
            try:
                return self._connect(config, mfa_code, report)
            except AwsxError as e:
                logger.error("VPN connect failed", state=self.state.value, error=str(e))
                self._abort()
                raise
        finally:
            self._connecting.release()

    def _connect(
        self, config: VpnConfig, mfa_code: str, report: ProgressCallback
    ) -> VpnSession:
        workdir = self.workdir
        workdir.mkdir(parents=True, exist_ok=True, mode=0o700)

        report("[1/5] Preparing VPN config...")
        profile = self.client.prepare_profile(config.ovpn_path, workdir)

        self._transition(VpnState.CHALLENGE_REQUESTED)
        report("[2/5] Fetching SAML URL from VPN server...")
        challenge = self.client.request_challenge(profile, workdir)
        report(
            f"  SAML URL received ({len(challenge.url)} chars), "
            f"SID: {challenge.session_id[:30]}..."
        )

        self._transition(VpnState.BROWSER_AUTHENTICATING)
        report("[3/5] Completing SAML authentication (headless browser)...")
        listener = self._listener_factory(
            self.settings.callback_host, self.settings.callback_port
        )
        with listener:
            browser = self._browser_factory(self.settings)
            with self._lock:
                self._browser = browser
            browser.start(
                challenge.url,
                config.username,
                config.password.get_secret_value(),
                mfa_code,
            )
            try:
                saml_response = listener.wait(
                    self.settings.callback_timeout, abort=lambda: self._login_aborted(browser)
                )
            finally:
                browser.cancel()
                with self._lock:
                    self._browser = None

        self._transition(VpnState.SAML_CAPTURED)
        report(f"  SAML response captured ({len(saml_response)} chars)")

        self._transition(VpnState.RECONNECTING)
        report("[4/5] Connecting VPN with SAML token...")
        process = self.client.start(profile, workdir, challenge.session_id, saml_response)
        with self._lock:
            self._process = process
        self.client.wait_connected(
            process, self.client.log_path(workdir), self.settings.reconnect_timeout
        )

        report(f"[5/5] Waiting for {self.settings.interface} and configuring DNS...")
        self.router.apply(config.dns_server, config.dns_domain)
        ip = self.router.interface_address()

        self._transition(VpnState.CONNECTED)
        session = VpnSession(
            state=VpnState.CONNECTED,
            pid=process.pid,
            ip=ip,
            connected_at=datetime.now(),
        )
        with self._lock:
            self._session = session
        report(f"VPN connected! IP: {ip or 'unknown'}, PID: {session.pid}")
        logger.info("VPN connected", pid=session.pid, ip=ip, profile=self.context.profile_name)
        return session

    def _login_aborted(self, browser: BrowserAuthenticator) -> BaseException | None:
        """Stop waiting for the SAML callback on disconnect or a failed login."""
        if self._cancelled.is_set():
            return VpnFailure("VPN connect cancelled by disconnect")
        return browser.failure()

    def _abort(self) -> None:
        """Undo a failed connect; errors here are logged, not raised."""
        for result in self._teardown():
            if not result.ok:
                logger.error("VPN cleanup step failed", step=result.step, detail=result.detail)
        self._reset()

    # Disconnect

    def disconnect(self) -> list[StepResult]:
        """Stop the browser, the VPN client and DNS routing.

        Every step runs even when an earlier one fails; the state is always
        DISCONNECTED afterwards.
        """
        self._cancelled.set()
        results = self._teardown()
        self._reset()
        logger.info(
            "VPN disconnected",
            failed=[r.step for r in results if not r.ok],
        )
        return results

    def _teardown(self) -> list[StepResult]:
        results: list[StepResult] = []
        with self._lock:
            browser = self._browser
            process = self._process

        if browser is not None:
            browser.cancel()
            results.append(StepResult(step="browser"))

        try:
            pid = process.pid if process is not None else self.client.find_pid()
            if pid is None:
                results.append(StepResult(step="vpn_process", detail="not running"))
            else:
                self.client.stop(pid)
                results.append(StepResult(step="vpn_process", detail=f"pid {pid}"))
        except (AwsxError, psutil.Error) as e:
            results.append(StepResult(step="vpn_process", ok=False, detail=str(e)))

        try:
            cleared = self.router.revert()
            results.append(
                StepResult(step="dns", detail=None if cleared else "interface absent")
            )
        except AwsxError as e:
            results.append(StepResult(step="dns", ok=False, detail=str(e)))

        for name in ("challenge.creds", "session.creds"):
            try:
                (self.workdir / name).unlink(missing_ok=True)
            except OSError as e:
                results.append(StepResult(step="credentials", ok=False, detail=str(e)))
        return results

    # Status

    def status(self) -> VpnSession:
        """Current session, including a VPN client started outside awsx."""
        with self._lock:
            state = self.state
            session = self._session
            process = self._process

        if state == VpnState.CONNECTED and process is not None:
            if process.is_running():
                return session.model_copy(update={"ip": self.router.interface_address()})
            logger.warning("VPN client exited", pid=session.pid)
            self._reset()
            return VpnSession()

        if state != VpnState.DISCONNECTED:
            return VpnSession(state=state, pid=process.pid if process else None)

        pid = self.client.find_pid()
        if pid is None:
            return VpnSession()
        ip = self.router.interface_address()
        return VpnSession(
            state=VpnState.CONNECTED if ip else VpnState.DISCONNECTED,
            pid=pid,
            ip=ip,
            external=True,
        )

