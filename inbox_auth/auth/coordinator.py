"""Authorization-Code-with-PKCE flow over a loopback redirect.

For installed desktop apps Google requires a loopback redirect
(``http://127.0.0.1:<port>``) instead of a custom URI scheme. The flow:

1. :meth:`AuthorizationCoordinator.start_authorization` binds a callback
   port, generates the PKCE pair and anti-forgery token, records the
   single :class:`PendingAuthorization` and returns the consent URL.
2. The user approves in the browser, which redirects to the loopback port.
3. :meth:`AuthorizationCoordinator.complete_authorization` waits for that
   redirect on a worker thread, checks the anti-forgery token, exchanges
   the code, fetches the profile and hands the session to the
   :class:`TokenLifecycleManager`.

Security considerations:
- ``state`` is compared in constant time; a mismatch aborts the attempt
  and nothing is persisted
- The pending slot is cleared before the code exchange, so a PKCE
  verifier is never used twice
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import webbrowser

from inbox_auth.auth.callback import (
    DEFAULT_PORT_RANGE,
    CallbackParams,
    CallbackServer,
    create_callback_server,
)
from inbox_auth.auth.exchange import TokenExchanger
from inbox_auth.auth.lifecycle import TokenLifecycleManager
from inbox_auth.auth.models import ActiveSession, AuthStatus, PendingAuthorization
from inbox_auth.auth.pkce import (
    SCOPES,
    build_authorization_url,
    generate_csrf_token,
    generate_pkce_pair,
)
from inbox_auth.utils.errors import (
    ConfigurationError,
    ProtocolError,
    SecurityError,
    StateError,
)

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_TIMEOUT_SECONDS = 300.0


class AuthorizationCoordinator:
    """Drives one authorization attempt at a time.

    Starting a new attempt while one is pending discards the old one
    (last writer wins) and tears down its listener.

    Attributes:
        scopes: Scopes requested in the authorization URL.

    Example:
        >>> url = await coordinator.start_authorization()
        >>> webbrowser.open(url)
        >>> status = await coordinator.complete_authorization()
        >>> status.user.email
        'user@example.com'
    """

    def __init__(
        self,
        client_id: str,
        exchanger: TokenExchanger,
        lifecycle: TokenLifecycleManager,
        port_range: range = DEFAULT_PORT_RANGE,
        callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT_SECONDS,
        scopes: list[str] | None = None,
    ) -> None:
        self._client_id = client_id
        self._exchanger = exchanger
        self._lifecycle = lifecycle
        self._port_range = port_range
        self._callback_timeout = callback_timeout
        self.scopes = list(scopes or SCOPES)

        self._pending: PendingAuthorization | None = None
        self._server: CallbackServer | None = None
        self._lock = asyncio.Lock()

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    async def start_authorization(self) -> str:
        """Begin an authorization attempt.

        Returns:
            The consent-page URL for the caller to open in a browser.

        Raises:
            ConfigurationError: If the client ID is missing or no port in
                the candidate range can be bound.
        """
        if not self._client_id:
            raise ConfigurationError(
                "OAuth not configured",
                details={"hint": "Set the GOOGLE_CLIENT_ID environment variable"},
            )

        async with self._lock:
            self._discard_pending_locked()

            server = create_callback_server(self._port_range)
            verifier, challenge = generate_pkce_pair()
            pending = PendingAuthorization(
                pkce_verifier=verifier,
                csrf_token=generate_csrf_token(),
                redirect_port=server.port,
            )
            auth_url = build_authorization_url(
                client_id=self._client_id,
                redirect_uri=pending.redirect_uri,
                state=pending.csrf_token,
                code_challenge=challenge,
                scopes=self.scopes,
            )

            self._pending = pending
            self._server = server

        logger.debug(
            "Authorization started on port %d with state: %s",
            pending.redirect_port,
            pending.csrf_token[:8] + "...",
        )
        return auth_url

    async def complete_authorization(self) -> AuthStatus:
        """Wait for the redirect and finish the pending attempt.

        Returns:
            Authenticated status with the user's profile and token expiry.

        Raises:
            StateError: If nothing is pending, or the attempt was cancelled
                or superseded while waiting.
            NetworkError: If the redirect does not arrive within the
                callback timeout, or a provider call fails.
            ProtocolError: If the redirect or a provider response is
                malformed, or no refresh token was issued.
            SecurityError: If the anti-forgery token does not match.
        """
        async with self._lock:
            pending = self._pending
            server = self._server
            if pending is None or server is None:
                raise StateError(
                    "No pending OAuth flow. Call start_authorization first."
                )

        try:
            params: CallbackParams = await asyncio.to_thread(
                server.wait_for_callback, self._callback_timeout
            )
        finally:
            server.close()
            async with self._lock:
                superseded = self._pending is not pending
                if not superseded:
                    self._pending = None
                    self._server = None

        if superseded:
            raise StateError("Authorization attempt was superseded by a newer one")

        if not secrets.compare_digest(params.state, pending.csrf_token):
            logger.warning("OAuth state mismatch; rejecting callback")
            raise SecurityError(
                "CSRF token mismatch - possible attack",
                details={"hint": "Request may have been tampered with"},
            )

        tokens = await asyncio.to_thread(
            self._exchanger.exchange_code,
            params.code,
            pending.pkce_verifier,
            pending.redirect_uri,
        )
        if not tokens.refresh_token:
            raise ProtocolError(
                "Provider did not issue a refresh token",
                details={"hint": "Revoke the app's access and sign in again"},
            )

        user_info = await asyncio.to_thread(
            self._exchanger.fetch_profile, tokens.access_token
        )

        session = ActiveSession(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            user_info=user_info,
            scopes_granted=tokens.scopes or list(self.scopes),
        )
        await self._lifecycle.store_session(session)

        logger.info("Authenticated as %s", user_info.email)
        return AuthStatus(
            is_authenticated=True,
            user=user_info,
            expires_at=session.expires_at,
        )

    async def cancel_authorization(self) -> bool:
        """Abandon the pending attempt and release its port.

        A :meth:`complete_authorization` call blocked on the redirect
        fails with :class:`StateError`.

        Returns:
            True if an attempt was pending, False otherwise.
        """
        async with self._lock:
            had_pending = self._pending is not None
            self._discard_pending_locked()
        if had_pending:
            logger.info("Pending authorization cancelled")
        return had_pending

    async def authenticate(self) -> AuthStatus:
        """Run the whole flow, opening the system browser for consent."""
        auth_url = await self.start_authorization()
        logger.info("Opening browser for authentication...")
        if not webbrowser.open(auth_url):
            logger.warning("Could not open a browser. Sign in at: %s", auth_url)
        return await self.complete_authorization()

    def _discard_pending_locked(self) -> None:
        if self._server is not None:
            self._server.close()
        self._server = None
        self._pending = None


__all__ = [
    "DEFAULT_CALLBACK_TIMEOUT_SECONDS",
    "AuthorizationCoordinator",
]
