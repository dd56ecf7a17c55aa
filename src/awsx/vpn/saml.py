"""One-shot local HTTP listener that captures the SAML assertion.

The identity provider's final page posts SAMLResponse to the VPN client's
ACS URL on loopback; some flows redirect with it in the query string
instead. The first request carrying it completes the capture.
"""

import http.server
import threading
import time
from collections.abc import Callable
from types import TracebackType
from typing import Literal
from urllib.parse import parse_qs, urlsplit

from ..common.exceptions import SamlCaptureTimeout, VpnHandshakeFailed
from ..common.logging import get_logger

logger = get_logger(__name__)

COMPLETION_PAGE = (
    b"<html><body><h2>VPN auth complete. You can close this tab.</h2></body></html>"
)
MAX_BODY = 1024 * 1024


def extract_saml_response(body: str, path: str) -> str | None:
    """SAMLResponse from a form-encoded body, else from the query string."""
    for source in (body, urlsplit(path).query):
        values = parse_qs(source).get("SAMLResponse")
        if values and values[0]:
            return values[0]
    return None


class _CallbackHandler(http.server.BaseHTTPRequestHandler):
    server: "_CallbackHTTPServer"

    def do_GET(self) -> None:
        self._capture("")

    def do_POST(self) -> None:
        length = min(int(self.headers.get("Content-Length") or 0), MAX_BODY)
        body = self.rfile.read(length).decode(errors="replace") if length else ""
        self._capture(body)

    def _capture(self, body: str) -> None:
        saml = extract_saml_response(body, self.path)
        self.send_response(200)
        self.send_header("Content-Type", "text/html")
        self.send_header("Content-Length", str(len(COMPLETION_PAGE)))
        self.end_headers()
        self.wfile.write(COMPLETION_PAGE)
        if saml:
            self.server.deliver(saml)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("SAML listener request", request=format % args)


class _CallbackHTTPServer(http.server.ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int]):
        super().__init__(address, _CallbackHandler)
        self.saml_response: str | None = None
        self.received = threading.Event()

    def deliver(self, saml: str) -> None:
        if not self.received.is_set():
            self.saml_response = saml
            self.received.set()
            logger.info("SAML response captured", length=len(saml))


class SamlCallbackListener:
    """Listens on the fixed ACS port until an assertion arrives."""

    def __init__(self, host: str = "127.0.0.1", port: int = 35001):
        self.host = host
        self.port = port
        self._server: _CallbackHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Bind and serve in a background thread.

        Raises:
            VpnHandshakeFailed: If the port cannot be bound
        """
        try:
            self._server = _CallbackHTTPServer((self.host, self.port))
        except OSError as e:
            raise VpnHandshakeFailed(
                f"Cannot bind SAML listener on {self.host}:{self.port}: {e}"
            ) from e
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.2},
            name="saml-listener",
            daemon=True,
        )
        self._thread.start()
        logger.debug("SAML listener started", host=self.host, port=self.port)

    def wait(
        self,
        timeout: float,
        abort: Callable[[], BaseException | None] | None = None,
        poll_interval: float = 0.25,
    ) -> str:
        """Block until an assertion arrives.

        Args:
            timeout: Seconds to wait
            abort: Polled while waiting; a returned exception is raised at once

        Raises:
            SamlCaptureTimeout: If nothing arrives in time
        """
        if self._server is None:
            raise RuntimeError("SAML listener is not started")
        server = self._server
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            remaining = max(deadline - time.monotonic(), 0.0)
            if server.received.wait(min(poll_interval, remaining)) and server.saml_response:
                return server.saml_response
            if abort is not None:
                error = abort()
                if error is not None:
                    raise error
        raise SamlCaptureTimeout(
            f"No SAML response on {self.host}:{self.port} within {timeout:g}s"
        )

    def close(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self._server = None
        self._thread = None

    def __enter__(self) -> "SamlCallbackListener":
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False
