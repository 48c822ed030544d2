# -*- coding: utf-8 -*-
"""
Obtain a one-time authorization code from the user.

Two strategies, chosen by FlowOptions.strategy:

- PromptCodeSource: print the consent URL, read the pasted code from stdin.
- CallbackCodeSource: open the browser at the consent URL and catch the
  redirect on a loopback HTTP listener (LocalCallbackServer).
"""
from __future__ import annotations

import http.server
import logging
import threading
import urllib.parse
import webbrowser
from typing import Any, Callable, Optional, Tuple

from auth_config import AuthConfig

logger = logging.getLogger(__name__)

OOB_REDIRECT_URI = "urn:ietf:wg:oauth:2.0:oob"
DEFAULT_STATE = "state-token"
DEFAULT_CALLBACK_PORT = 8090

LISTENING = "listening"
DELIVERED = "delivered"
CLOSED = "closed"


class AcquisitionError(RuntimeError):
    """The authorization code could not be obtained."""


def build_auth_url(config: AuthConfig, redirect_uri: str, state: str = DEFAULT_STATE) -> str:
    params = {
        "client_id": config.client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(config.scopes),
        "state": state,
        "access_type": "offline",
    }
    sep = "&" if "?" in config.auth_uri else "?"
    return f"{config.auth_uri}{sep}{urllib.parse.urlencode(params)}"


class PromptCodeSource:
    redirect_uri = OOB_REDIRECT_URI

    def __init__(self, input_fn: Callable[[], str] = input, output: Callable[..., Any] = print):
        self._input = input_fn
        self._output = output

    def acquire(self, config: AuthConfig) -> str:
        auth_url = build_auth_url(config, self.redirect_uri)
        self._output(
            "Go to the following link in your browser. After completing the "
            "authorization flow, enter the authorization code on the command line:",
            flush=True,
        )
        self._output(auth_url, flush=True)
        try:
            line = self._input()
        except EOFError as exc:
            raise AcquisitionError("Unable to read authorization code: stdin closed") from exc
        # Empty or malformed input is left for the token endpoint to reject.
        return (line or "").strip()


class _CodeSlot:
    """One-shot handoff between the HTTP handler and the waiting caller.

    ``offer`` never blocks; only the first offer is kept.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._code: Optional[str] = None
        self._error: Optional[str] = None
        self._cancelled = False

    def offer(self, code: Optional[str] = None, error: Optional[str] = None) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._code, self._error = code, error
            self._event.set()
            return True

    def cancel(self) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._cancelled = True
            self._event.set()
            return True

    def done(self) -> bool:
        return self._event.is_set()

    def delivered(self) -> bool:
        with self._lock:
            return self._event.is_set() and not self._cancelled

    def wait(self, timeout: Optional[float] = None) -> Tuple[bool, Optional[str], Optional[str]]:
        if not self._event.wait(timeout):
            return False, None, None
        with self._lock:
            return not self._cancelled, self._code, self._error


def _make_handler(slot: _CodeSlot) -> type:
    class CallbackHandler(http.server.BaseHTTPRequestHandler):
        timeout = 10

        def log_message(self, format: str, *args: Any) -> None:
            logger.debug("callback %s - %s", self.address_string(), format % args)

        def do_GET(self) -> None:
            params = urllib.parse.parse_qs(urllib.parse.urlparse(self.path).query)
            if "code" in params:
                code = params["code"][0]
                if slot.offer(code=code):
                    self._send_text(
                        f"Received code: {code}\r\nYou can now safely close this browser window."
                    )
                else:
                    self._send_text("Authorization code already received.", 400)
            elif "error" in params:
                reason = params["error"][0]
                if slot.offer(error=reason):
                    self._send_text(f"Authorization failed: {reason}\r\nYou can close this window.", 400)
                else:
                    self._send_text("Authorization code already received.", 400)
            else:
                self._send_text("Missing authorization code.", 400)

        def _send_text(self, body: str, status: int = 200) -> None:
            data = body.encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

    return CallbackHandler


class LocalCallbackServer:
    """Single-use loopback listener that hands over the first ``code`` it sees."""

    poll_interval = 0.2

    def __init__(self, host: str = "localhost", port: int = DEFAULT_CALLBACK_PORT):
        self.host = host
        self._requested_port = port
        self._slot = _CodeSlot()
        self._server: Optional[http.server.HTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()

    @property
    def port(self) -> int:
        if self._server is not None:
            return self._server.server_address[1]
        return self._requested_port

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def state(self) -> str:
        if self._slot.delivered():
            return DELIVERED
        if self._server is None or self._slot.done() or self._stopping.is_set():
            return CLOSED
        return LISTENING

    def start(self) -> "LocalCallbackServer":
        if self._server is not None:
            raise AcquisitionError("callback server already started")
        try:
            server = http.server.HTTPServer((self.host, self._requested_port), _make_handler(self._slot))
        except OSError as exc:
            raise AcquisitionError(
                f"Unable to start a web server on {self.host}:{self._requested_port}: {exc}"
            ) from exc
        server.timeout = self.poll_interval
        self._server = server
        self._thread = threading.Thread(target=self._serve, name="oauth-callback", daemon=True)
        self._thread.start()
        logger.info("Listening for the authorization redirect on %s", self.redirect_uri)
        return self

    def _serve(self) -> None:
        server = self._server
        try:
            while not self._slot.done() and not self._stopping.is_set():
                server.handle_request()
        finally:
            server.server_close()

    def wait(self, timeout: Optional[float] = None) -> str:
        """Block until the redirect arrives and return the code."""
        delivered, code, error = self._slot.wait(timeout)
        if not delivered:
            if self._slot.cancel():
                raise AcquisitionError(f"Timed out after {timeout}s waiting for the authorization redirect")
            # Lost the race against a late delivery; take it.
            delivered, code, error = self._slot.wait(0)
            if not delivered:
                raise AcquisitionError("Authorization wait was cancelled")
        if error:
            raise AcquisitionError(f"Authorization failed: {error}")
        return code or ""

    def stop(self) -> None:
        self._stopping.set()
        self._slot.cancel()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> "LocalCallbackServer":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()


def _open_browser(url: str) -> bool:
    try:
        return webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.warning("Unable to open a browser: %s", exc)
        return False


class CallbackCodeSource:
    def __init__(self, host: str = "localhost", port: int = DEFAULT_CALLBACK_PORT,
                 timeout: Optional[float] = None, open_browser: bool = True,
                 browser_open_fn: Callable[[str], bool] = _open_browser,
                 output: Callable[..., Any] = print):
        self.server = LocalCallbackServer(host, port)
        self.timeout = timeout
        self.open_browser = open_browser
        self._browser_open = browser_open_fn
        self._output = output

    @property
    def redirect_uri(self) -> str:
        return self.server.redirect_uri

    def acquire(self, config: AuthConfig) -> str:
        with self.server:
            auth_url = build_auth_url(config, self.redirect_uri)
            if self.open_browser and self._browser_open(auth_url):
                self._output(
                    "Your browser has been opened to an authorization URL. "
                    "This program will resume once authorization has been provided.",
                    flush=True,
                )
            else:
                logger.warning("Browser not opened; visit the authorization URL manually")
                self._output("Open the following link in your browser to authorize:", flush=True)
            self._output(auth_url, flush=True)
            return self.server.wait(self.timeout)
