"""PKCE (Proof Key for Code Exchange) and authorization URL helpers."""

from __future__ import annotations

import base64
import hashlib
import secrets
from urllib.parse import urlencode

# Google OAuth endpoints
GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"

# Fixed, minimal scope set: read-only mail and calendar, tasks, identity
SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/tasks",
    "openid",
    "email",
    "profile",
]


def generate_code_verifier() -> str:
    """Generate a PKCE code verifier (RFC 7636: 43-128 URL-safe chars)."""
    return secrets.token_urlsafe(64)


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code verifier and challenge pair.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    verifier = generate_code_verifier()
    return verifier, generate_code_challenge(verifier)


def generate_csrf_token() -> str:
    """Generate an unguessable anti-forgery ``state`` value."""
    return secrets.token_urlsafe(32)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    scopes: list[str] | None = None,
) -> str:
    """Build the consent-page URL the user opens in a browser.

    Requests offline access with a forced consent prompt so the provider
    always issues a refresh token.

    Args:
        client_id: OAuth client ID.
        redirect_uri: Loopback redirect URI (``http://127.0.0.1:<port>``).
        state: Anti-forgery token echoed back by the callback.
        code_challenge: S256 PKCE challenge.
        scopes: Scopes to request (defaults to :data:`SCOPES`).

    Returns:
        The full authorization URL.
    """
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes or SCOPES),
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{GOOGLE_AUTH_URI}?{urlencode(params)}"


__all__ = [
    "GOOGLE_AUTH_URI",
    "SCOPES",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_pkce_pair",
    "generate_csrf_token",
    "build_authorization_url",
]
