"""Headless browser login for the SAML challenge.

Runs the SSO form sequence (username, password, MFA code) in Chromium on a
worker thread while the callback listener waits for the assertion. The
browser is started with a private user-data directory so its process can be
found and killed from another thread when the wait times out or the
connection is cancelled.
"""

import shutil
import tempfile
import threading
from pathlib import Path

import psutil
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page, sync_playwright
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from ..common.exceptions import BrowserAuthFailed
from ..common.logging import get_logger
from ..common.process import terminate_pid
from .config import VpnSettings

logger = get_logger(__name__)

USERNAME_SELECTORS = [
    "input[type='email']",
    "input[name='username']",
    "input[name='email']",
    "#awsui-input-0",
    "input[data-testid='username-input']",
]
PASSWORD_SELECTORS = [
    "input[type='password']",
    "input[name='password']",
    "#awsui-input-1",
    "input[data-testid='password-input']",
]
MFA_SELECTORS = [
    "input[placeholder='Enter code']",
    "input[placeholder*='code']",
    "input[name='mfaCode']",
    "input[name='totp']",
    "input[type='tel']",
    "input[data-testid='mfa-code-input']",
    "input[inputmode='numeric']",
]
SUBMIT_SELECTORS = ["button[type='submit']", "input[type='submit']"]

BROWSER_ARGS = ["--disable-gpu", "--no-sandbox"]


class BrowserAuthenticator:
    """Drives one SSO login on a background thread."""

    def __init__(self, settings: VpnSettings | None = None):
        self.settings = settings or VpnSettings()
        self.error: BaseException | None = None
        self._thread: threading.Thread | None = None
        self._user_data_dir: Path | None = None
        self._cancelled = threading.Event()

    def start(self, url: str, username: str, password: str, mfa_code: str) -> None:
        """Begin the login in the background."""
        self._user_data_dir = Path(tempfile.mkdtemp(prefix="awsx-browser-"))
        self._thread = threading.Thread(
            target=self._run,
            args=(url, username, password, mfa_code),
            name="saml-browser",
            daemon=True,
        )
        self._thread.start()

    def _run(self, url: str, username: str, password: str, mfa_code: str) -> None:
        try:
            self.authenticate(url, username, password, mfa_code)
        except (PlaywrightError, BrowserAuthFailed) as e:
            if self._cancelled.is_set():
                logger.debug("Browser login ended by cancellation")
                return
            self.error = e if isinstance(e, BrowserAuthFailed) else BrowserAuthFailed(
                f"Browser login failed: {e}"
            )
            logger.error("Browser login failed", error=str(self.error))

    def authenticate(self, url: str, username: str, password: str, mfa_code: str) -> None:
        """Run the login synchronously.

        Raises:
            BrowserAuthFailed: If the login form cannot be found
            playwright.sync_api.Error: If the browser fails
        """
        step_ms = self.settings.browser_step_timeout * 1000
        with sync_playwright() as p:
            context = p.chromium.launch_persistent_context(
                str(self._user_data_dir or tempfile.mkdtemp(prefix="awsx-browser-")),
                headless=self.settings.headless,
                args=BROWSER_ARGS,
            )
            try:
                page = context.pages[0] if context.pages else context.new_page()
                page.set_default_timeout(step_ms)
                page.goto(
                    url,
                    wait_until="load",
                    timeout=self.settings.browser_navigation_timeout * 1000,
                )
                logger.info("Browser opened SAML login page")

                if not self._fill_and_submit(page, USERNAME_SELECTORS, username):
                    raise BrowserAuthFailed(f"Username field not found on {page.url}")
                if not self._fill_and_submit(page, PASSWORD_SELECTORS, password):
                    raise BrowserAuthFailed(f"Password field not found on {page.url}")
                if not self._fill_and_submit(page, MFA_SELECTORS, mfa_code):
                    logger.info("No MFA prompt shown")

                if "SAMLResponse" in page.content():
                    page.evaluate("document.forms[0].submit()")
                    page.wait_for_load_state()
            finally:
                context.close()

    def _fill_and_submit(self, page: Page, selectors: list[str], value: str) -> bool:
        """Fill the first matching field and submit. False if no field appears."""
        try:
            field = page.wait_for_selector(
                ", ".join(selectors),
                state="visible",
                timeout=self.settings.browser_step_timeout * 1000,
            )
        except PlaywrightTimeoutError:
            return False
        if field is None:
            return False

        field.click()
        field.fill(value)
        for selector in SUBMIT_SELECTORS:
            button = page.locator(selector).first
            if button.count() and button.is_visible():
                button.click()
                break
        else:
            page.keyboard.press("Enter")

        try:
            page.wait_for_load_state()
        except PlaywrightTimeoutError:
            pass
        return True

    def failure(self) -> BaseException | None:
        """Error of a finished login, for the listener's abort hook."""
        if self._thread is not None and not self._thread.is_alive():
            return self.error
        return None

    def browser_pid(self) -> int | None:
        """PID of the top-level browser process for this login."""
        if self._user_data_dir is None:
            return None
        marker = f"--user-data-dir={self._user_data_dir}"
        for proc in psutil.process_iter(["pid", "cmdline"]):
            cmdline = proc.info.get("cmdline") or []
            if marker in cmdline and not any(a.startswith("--type=") for a in cmdline):
                return proc.info["pid"]
        return None

    def cancel(self) -> None:
        """Kill the browser and wait for the worker to notice."""
        self._cancelled.set()
        pid = self.browser_pid()
        if pid is not None:
            try:
                terminate_pid(pid, timeout=2.0)
                logger.info("Browser process killed", pid=pid)
            except psutil.Error as e:
                logger.error("Failed to kill browser", pid=pid, error=str(e))
        self.join(5.0)
        if self._user_data_dir is not None:
            shutil.rmtree(self._user_data_dir, ignore_errors=True)
            self._user_data_dir = None

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
