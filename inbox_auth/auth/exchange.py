"""Token-endpoint and profile calls against Google's OAuth 2.0 service.

All calls are blocking ``requests`` calls with an explicit timeout; the
async callers run them on a worker thread. A stalled provider surfaces as
:class:`NetworkError` once the timeout elapses.
"""

from __future__ import annotations

import logging

import requests
from pydantic import ValidationError

from inbox_auth.auth.models import TokenResponse, UserInfo
from inbox_auth.utils.errors import NetworkError, ProtocolError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URI = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_REVOKE_URI = "https://oauth2.googleapis.com/revoke"

DEFAULT_TIMEOUT_SECONDS = 30.0


class TokenExchanger:
    """Performs the code exchange, refresh, profile and revoke calls.

    Attributes:
        timeout: Per-request timeout in seconds.

    Example:
        >>> exchanger = TokenExchanger(client_id, client_secret)
        >>> tokens = exchanger.exchange_code(code, verifier, redirect_uri)
        >>> user = exchanger.fetch_profile(tokens.access_token)
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self.timeout = timeout

    def exchange_code(
        self, code: str, verifier: str, redirect_uri: str
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the loopback callback.
            verifier: PKCE verifier issued with the authorization URL.
            redirect_uri: Redirect URI used in the authorization request.

        Returns:
            Parsed token response (``refresh_token`` may be None).

        Raises:
            NetworkError: On connection failure, timeout or non-2xx status.
            ProtocolError: If the response body is malformed.
        """
        tokens = self._token_request(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
                "code_verifier": verifier,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
            operation="Token exchange",
        )
        logger.info("Successfully exchanged authorization code for tokens")
        return tokens

    def exchange_refresh(self, refresh_token: str) -> TokenResponse:
        """Obtain a new access token with a refresh token.

        Google does not reissue the refresh token here, so callers must
        keep the one they already hold.

        Raises:
            NetworkError: On connection failure, timeout or non-2xx status.
            ProtocolError: If the response body is malformed.
        """
        tokens = self._token_request(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            operation="Token refresh",
        )
        logger.info("Successfully refreshed access token")
        return tokens

    def fetch_profile(self, access_token: str) -> UserInfo:
        """Fetch the authenticated user's profile.

        Raises:
            NetworkError: On connection failure, timeout or non-2xx status.
            ProtocolError: If the profile has no email.
        """
        try:
            response = requests.get(
                GOOGLE_USERINFO_URI,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Network error fetching user info: %s", e)
            raise NetworkError(
                f"Failed to fetch user info: {e}",
                details={"error_type": type(e).__name__},
            ) from e

        if not response.ok:
            raise NetworkError(
                f"Failed to fetch user info: {response.status_code}",
                status_code=response.status_code,
                details={"response": response.text},
            )

        try:
            return UserInfo.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProtocolError(
                "Failed to parse user info",
                details={"error_type": type(e).__name__},
            ) from e

    def revoke_token(self, token: str) -> None:
        """Revoke a token with the provider.

        Revoking a refresh token also invalidates access tokens issued
        from it.

        Raises:
            NetworkError: On connection failure, timeout or non-2xx status.
        """
        try:
            response = requests.post(
                GOOGLE_REVOKE_URI,
                data={"token": token},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NetworkError(
                f"Network error revoking token: {e}",
                details={"error_type": type(e).__name__},
            ) from e

        if not response.ok:
            raise NetworkError(
                f"Token revocation failed: {response.text}",
                status_code=response.status_code,
                details={"response": response.text},
            )
        logger.info("Token revoked with provider")

    def _token_request(self, data: dict[str, str], operation: str) -> TokenResponse:
        try:
            response = requests.post(GOOGLE_TOKEN_URI, data=data, timeout=self.timeout)
        except requests.Timeout as e:
            logger.error("%s timed out after %ss", operation, self.timeout)
            raise NetworkError(
                f"{operation} timed out",
                details={"timeout_seconds": self.timeout},
            ) from e
        except requests.RequestException as e:
            logger.error("Network error during %s: %s", operation.lower(), e)
            raise NetworkError(
                f"{operation} failed: {e}",
                details={"error_type": type(e).__name__},
            ) from e

        if not response.ok:
            # Raw body carries the provider's error code (invalid_grant, ...)
            raise NetworkError(
                f"{operation} failed: {response.text}",
                status_code=response.status_code,
                details={"response": response.text},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProtocolError(
                f"Failed to parse {operation.lower()} response",
                details={"error_type": type(e).__name__},
            ) from e

        return TokenResponse.from_payload(payload)


__all__ = [
    "GOOGLE_TOKEN_URI",
    "GOOGLE_USERINFO_URI",
    "GOOGLE_REVOKE_URI",
    "DEFAULT_TIMEOUT_SECONDS",
    "TokenExchanger",
]
