"""One-shot loopback listener for the OAuth redirect.

Desktop clients cannot register a public redirect origin, so Google
redirects the browser to ``http://127.0.0.1:<port>/?code=...&state=...``.
:class:`CallbackServer` accepts exactly one connection on that port,
parses the request line, always answers with a static success page, and
closes. A second inbound connection is never handled.

The accept is blocking; run :meth:`CallbackServer.wait_for_callback` on a
worker thread. It polls a stop flag so :meth:`CallbackServer.close` from
another thread (cancellation) or the wait timeout tears the listener down.
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from urllib.parse import unquote

from inbox_auth.utils.errors import (
    ConfigurationError,
    NetworkError,
    ProtocolError,
    StateError,
)

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"

# Candidate callback ports, probed in order
DEFAULT_PORT_RANGE = range(8400, 8500)

MAX_REQUEST_BYTES = 4096
READ_TIMEOUT_SECONDS = 5.0
POLL_INTERVAL_SECONDS = 0.25

SUCCESS_PAGE = (
    b"HTTP/1.1 200 OK\r\n"
    b"Content-Type: text/html; charset=utf-8\r\n"
    b"Connection: close\r\n"
    b"\r\n"
    b"<!DOCTYPE html>\n"
    b"<html>\n"
    b"<head><title>Sign-in complete</title>\n"
    b"<style>body { font-family: -apple-system, system-ui, sans-serif; "
    b"display: flex; justify-content: center; align-items: center; "
    b"min-height: 100vh; margin: 0; } .container { text-align: center; }"
    b"</style>\n"
    b"</head>\n"
    b"<body><div class=\"container\">"
    b"<h1>Authentication Successful!</h1>"
    b"<p>You can close this window and return to the application.</p>"
    b"</div></body>\n"
    b"</html>\n"
)


@dataclass(frozen=True)
class CallbackParams:
    """Parameters carried by the OAuth redirect."""

    code: str = field(repr=False)
    state: str = field(repr=False)


def extract_param(request: str, name: str) -> str | None:
    """Extract a query parameter from a raw HTTP request.

    The query is the text after the first ``?`` up to the first ``" HTTP"``
    (or the end of the buffer). Pairs are split on ``&`` and each pair on
    its first ``=``; the value is percent-decoded. Pairs without ``=`` are
    ignored.

    Args:
        request: Raw request text, e.g. ``"GET /?code=x&state=y HTTP/1.1..."``.
        name: Parameter name.

    Returns:
        The decoded value of the first matching pair, or None.
    """
    query_start = request.find("?")
    if query_start == -1:
        return None
    query_end = request.find(" HTTP")
    if query_end == -1 or query_end < query_start:
        query_end = len(request)

    for pair in request[query_start + 1 : query_end].split("&"):
        key, sep, value = pair.partition("=")
        if sep and key == name:
            return unquote(value)
    return None


def parse_callback_request(request: str) -> CallbackParams:
    """Parse the redirect request into ``code`` and ``state``.

    Raises:
        ProtocolError: If the provider reported an error (e.g. the user
            denied consent) or ``code`` / ``state`` is missing.
    """
    error = extract_param(request, "error")
    if error is not None:
        raise ProtocolError(
            f"OAuth error: {error}",
            details={"oauth_error": error},
        )

    code = extract_param(request, "code")
    if not code:
        raise ProtocolError("No authorization code in callback")

    state = extract_param(request, "state")
    if state is None:
        raise ProtocolError("No state parameter in callback")

    return CallbackParams(code=code, state=state)


class CallbackServer:
    """Loopback listener bound to one port, good for a single redirect.

    Example:
        >>> server = create_callback_server(DEFAULT_PORT_RANGE)
        >>> try:
        ...     params = server.wait_for_callback(timeout=300)
        ... finally:
        ...     server.close()
    """

    def __init__(self, port: int, host: str = LOOPBACK_HOST) -> None:
        """Bind and listen on ``host:port``.

        Raises:
            OSError: If the port cannot be bound.
        """
        self._sock = socket.create_server((host, port), backlog=1)
        self._port = self._sock.getsockname()[1]
        self._closed = threading.Event()
        logger.debug("OAuth callback server bound to port %d", self._port)

    @property
    def port(self) -> int:
        return self._port

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def wait_for_callback(self, timeout: float | None = None) -> CallbackParams:
        """Block until one redirect arrives, answer it, and parse it.

        The browser always receives the success page, even when parsing
        fails; the parse error is raised to the caller instead.

        Args:
            timeout: Maximum seconds to wait for a connection (None waits
                until :meth:`close` is called).

        Returns:
            The redirect's ``code`` and ``state``.

        Raises:
            NetworkError: If no redirect arrived within ``timeout``.
            StateError: If the listener was closed while waiting.
            ProtocolError: If the request lacks ``code`` or ``state``.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        self._sock.settimeout(POLL_INTERVAL_SECONDS)
        logger.info("Waiting for OAuth callback on port %d...", self._port)

        while True:
            if self._closed.is_set():
                raise StateError("Callback listener closed before a redirect arrived")
            if deadline is not None and time.monotonic() >= deadline:
                raise NetworkError(
                    "Timed out waiting for the OAuth callback",
                    details={"timeout_seconds": timeout, "port": self._port},
                )
            try:
                conn, _ = self._sock.accept()
                break
            except TimeoutError:
                continue
            except OSError as e:
                if self._closed.is_set():
                    raise StateError(
                        "Callback listener closed before a redirect arrived"
                    ) from e
                raise NetworkError(
                    f"Failed to accept callback connection: {e}",
                    details={"port": self._port},
                ) from e

        with conn:
            return self._handle_connection(conn)

    def _handle_connection(self, conn: socket.socket) -> CallbackParams:
        conn.settimeout(READ_TIMEOUT_SECONDS)
        try:
            data = conn.recv(MAX_REQUEST_BYTES)
        except OSError as e:
            logger.warning("Failed to read callback request: %s", e)
            data = b""

        try:
            return parse_callback_request(data.decode("utf-8", errors="replace"))
        finally:
            try:
                conn.sendall(SUCCESS_PAGE)
            except OSError as e:
                logger.debug("Browser went away before the response: %s", e)

    def close(self) -> None:
        """Tear down the listener (idempotent, safe from any thread)."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._sock.close()
        logger.debug("OAuth callback server on port %d closed", self._port)

    def __enter__(self) -> CallbackServer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def create_callback_server(ports: range = DEFAULT_PORT_RANGE) -> CallbackServer:
    """Bind a callback server to the first bindable port in ``ports``.

    Raises:
        ConfigurationError: If no port in the range can be bound.
    """
    for port in ports:
        try:
            return CallbackServer(port)
        except OSError as e:
            logger.debug("Port %d unavailable: %s", port, e)
            continue

    raise ConfigurationError(
        "No available port found for OAuth callback",
        details={"port_range": f"{ports.start}-{ports.stop - 1}"},
    )


__all__ = [
    "LOOPBACK_HOST",
    "DEFAULT_PORT_RANGE",
    "SUCCESS_PAGE",
    "CallbackParams",
    "CallbackServer",
    "create_callback_server",
    "extract_param",
    "parse_callback_request",
]
