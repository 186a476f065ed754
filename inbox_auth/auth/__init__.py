"""Authentication module for inbox-auth.

This module implements the desktop OAuth 2.0 flow for Google accounts:

- PKCE Authorization-Code flow over a loopback redirect
- Refresh tokens kept in the platform secret vault (keyring)
- Non-secret session metadata persisted as a 0600 JSON file
- Automatic access-token refresh with a five-minute buffer

Usage:
    >>> from inbox_auth.auth import AuthorizationCoordinator, TokenLifecycleManager
    >>>
    >>> # Sign in (opens browser)
    >>> status = await coordinator.authenticate()
    >>>
    >>> # Later, get a bearer token for API calls
    >>> token = await lifecycle.get_access_token()
"""

from inbox_auth.auth.callback import (
    DEFAULT_PORT_RANGE,
    CallbackParams,
    CallbackServer,
    create_callback_server,
    extract_param,
    parse_callback_request,
)
from inbox_auth.auth.coordinator import AuthorizationCoordinator
from inbox_auth.auth.exchange import (
    GOOGLE_REVOKE_URI,
    GOOGLE_TOKEN_URI,
    GOOGLE_USERINFO_URI,
    TokenExchanger,
)
from inbox_auth.auth.lifecycle import TokenLifecycleManager
from inbox_auth.auth.models import (
    DEFAULT_EXPIRES_IN_SECONDS,
    REFRESH_BUFFER,
    ActiveSession,
    AuthStatus,
    PendingAuthorization,
    SessionMetadata,
    TokenResponse,
    UserInfo,
)
from inbox_auth.auth.pkce import (
    GOOGLE_AUTH_URI,
    SCOPES,
    build_authorization_url,
    generate_csrf_token,
    generate_pkce_pair,
)
from inbox_auth.auth.storage import SessionMetadataStore
from inbox_auth.auth.vault import SERVICE_NAME, EncryptedFileBackend, SecretVault

__all__ = [
    # Flow
    "AuthorizationCoordinator",
    "TokenLifecycleManager",
    "TokenExchanger",
    # Loopback callback
    "CallbackServer",
    "CallbackParams",
    "DEFAULT_PORT_RANGE",
    "create_callback_server",
    "extract_param",
    "parse_callback_request",
    # PKCE / URL
    "GOOGLE_AUTH_URI",
    "GOOGLE_TOKEN_URI",
    "GOOGLE_USERINFO_URI",
    "GOOGLE_REVOKE_URI",
    "SCOPES",
    "build_authorization_url",
    "generate_csrf_token",
    "generate_pkce_pair",
    # Persistence
    "SERVICE_NAME",
    "SecretVault",
    "EncryptedFileBackend",
    "SessionMetadataStore",
    # Models
    "DEFAULT_EXPIRES_IN_SECONDS",
    "REFRESH_BUFFER",
    "ActiveSession",
    "AuthStatus",
    "PendingAuthorization",
    "SessionMetadata",
    "TokenResponse",
    "UserInfo",
]
