"""Custom exception hierarchy for inbox-auth.

Every failure raised out of the authorization leg or the credential
lifecycle is one of six closed categories. The original low-level error
text (provider response body, errno, keyring message) travels in
``details`` rather than being the only signal a caller can inspect.
"""

from __future__ import annotations


class InboxAuthError(Exception):
    """Base exception for all inbox-auth errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary containing additional error context.
            Never contains secrets (tokens, verifiers, client secret).
    """

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary containing additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(InboxAuthError):
    """Raised for missing or invalid configuration.

    Examples:
        - GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not set
        - No loopback port in the candidate range could be bound
        - TOKEN_ENCRYPTION_KEY missing while the file vault is selected
    """

    pass


class NetworkError(InboxAuthError):
    """Raised when talking to the identity provider fails.

    Covers connection failures, timeouts and non-2xx responses. For
    non-2xx responses ``status_code`` is set and the raw response body
    is kept in ``details["response"]``.

    Attributes:
        status_code: HTTP status code, when the provider answered.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Initialize the network error.

        Args:
            message: Human-readable error description.
            status_code: HTTP status code, when the provider answered.
            details: Optional dictionary containing additional error context.
        """
        super().__init__(message, details)
        self.status_code = status_code


class ProtocolError(InboxAuthError):
    """Raised for malformed or incomplete protocol messages.

    Examples:
        - Loopback callback without ``code`` or ``state``
        - Provider redirected with ``error=access_denied``
        - Token response without ``access_token``
        - Profile response without ``email``
    """

    pass


class SecurityError(InboxAuthError):
    """Raised when the anti-forgery token returned by the callback does not
    match the one issued for the pending authorization."""

    pass


class StorageError(InboxAuthError):
    """Raised for secret vault or file-system failures."""

    pass


class StateError(InboxAuthError):
    """Raised when an operation is attempted in the wrong lifecycle state.

    Examples:
        - get_access_token() with no active session
        - complete_authorization() with no pending authorization
        - A callback arriving after its authorization was superseded
    """

    pass


__all__ = [
    "InboxAuthError",
    "ConfigurationError",
    "NetworkError",
    "ProtocolError",
    "SecurityError",
    "StorageError",
    "StateError",
]
