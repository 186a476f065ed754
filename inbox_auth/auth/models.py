"""Data models for the authorization leg and the credential lifecycle.

Non-secret records that cross a persistence or API boundary (user info,
session metadata, auth status) are pydantic models. Records that hold
secrets and live only in process memory (pending authorization, active
session, token-endpoint result) are plain dataclasses whose secret fields
are excluded from ``repr`` so they never end up in a log line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from inbox_auth.utils.errors import ProtocolError

# Lifetime assumed when a token response carries no expires_in
DEFAULT_EXPIRES_IN_SECONDS = 3600

# Tokens expiring within this margin are renewed before being handed out
REFRESH_BUFFER = timedelta(seconds=300)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are written by older builds; they are UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class UserInfo(BaseModel):
    """Authenticated user's profile as reported by the userinfo endpoint."""

    model_config = ConfigDict(extra="ignore")

    email: str = Field(..., min_length=1, description="Account email address")
    name: str | None = Field(default=None, description="Display name")
    picture: str | None = Field(default=None, description="Avatar URL")


class SessionMetadata(BaseModel):
    """Non-secret session record persisted as plaintext JSON.

    Holds everything needed to restore a session at startup except the
    refresh token (kept in the secret vault, keyed by ``email``) and the
    access token (never persisted).

    Attributes:
        email: Account email; also the vault key prefix.
        name: Optional display name.
        picture: Optional avatar URL.
        expires_at: Expiry of the most recently issued access token (UTC).
        scopes_granted: Scopes granted by the provider, in provider order.
    """

    model_config = ConfigDict(extra="ignore")

    email: str = Field(..., min_length=1)
    name: str | None = None
    picture: str | None = None
    expires_at: datetime
    scopes_granted: list[str] = Field(default_factory=list)

    @field_validator("expires_at")
    @classmethod
    def _normalize_expiry(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def user_info(self) -> UserInfo:
        """Profile fields as a :class:`UserInfo`."""
        return UserInfo(email=self.email, name=self.name, picture=self.picture)

    @classmethod
    def from_session(cls, session: ActiveSession) -> SessionMetadata:
        """Build the persistable (secret-free) view of an active session."""
        return cls(
            email=session.user_info.email,
            name=session.user_info.name,
            picture=session.user_info.picture,
            expires_at=session.expires_at,
            scopes_granted=list(session.scopes_granted),
        )


class LegacySession(BaseModel):
    """Combined secrets-plus-metadata record written by older builds.

    Only read during the one-shot migration; never written.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime
    user_info: UserInfo
    scopes_granted: list[str] = Field(default_factory=list)

    @field_validator("expires_at")
    @classmethod
    def _normalize_expiry(cls, value: datetime) -> datetime:
        return _as_utc(value)


class AuthStatus(BaseModel):
    """Authentication status returned to callers.

    Attributes:
        is_authenticated: True when an active session exists.
        user: Profile of the signed-in account, if any.
        expires_at: Expiry of the current access token, if any.
    """

    is_authenticated: bool
    user: UserInfo | None = None
    expires_at: datetime | None = None

    @classmethod
    def logged_out(cls) -> AuthStatus:
        """Status for the logged-out state."""
        return cls(is_authenticated=False)


@dataclass
class PendingAuthorization:
    """State of the single in-flight authorization attempt.

    Consumed (and cleared) exactly once by the callback that follows it.
    """

    pkce_verifier: str = field(repr=False)
    csrf_token: str = field(repr=False)
    redirect_port: int

    @property
    def redirect_uri(self) -> str:
        """Loopback redirect URI registered in the authorization URL."""
        return f"http://127.0.0.1:{self.redirect_port}"


@dataclass
class ActiveSession:
    """The in-memory signed-in session.

    ``access_token`` is None right after a restart: it is never persisted,
    so a restored session must be refreshed before its first use.
    """

    access_token: str | None = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_at: datetime
    user_info: UserInfo
    scopes_granted: list[str] = field(default_factory=list)

    @property
    def email(self) -> str:
        return self.user_info.email

    def is_expiring(self, now: datetime | None = None) -> bool:
        """True if ``expires_at`` is past or within :data:`REFRESH_BUFFER`."""
        if now is None:
            now = datetime.now(UTC)
        return self.expires_at <= now + REFRESH_BUFFER

    def needs_refresh(self, now: datetime | None = None) -> bool:
        """Check whether the access token must be renewed before use.

        Args:
            now: Reference time (defaults to the current UTC time).

        Returns:
            True if there is no access token, or it is expiring.
        """
        return self.access_token is None or self.is_expiring(now)


class _TokenPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None


@dataclass(frozen=True)
class TokenResponse:
    """Parsed token-endpoint response.

    Attributes:
        access_token: Newly issued bearer token.
        refresh_token: Refresh token, when the provider issued one.
        expires_at: ``issued_at + expires_in`` (or the default lifetime).
        scopes: Granted scopes, empty when the provider did not report them.
    """

    access_token: str = field(repr=False)
    refresh_token: str | None = field(repr=False)
    expires_at: datetime
    scopes: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(
        cls, payload: Any, issued_at: datetime | None = None
    ) -> TokenResponse:
        """Validate a decoded token-endpoint JSON body.

        Args:
            payload: Decoded JSON body.
            issued_at: Time the exchange completed (defaults to now, UTC).

        Returns:
            The parsed response.

        Raises:
            ProtocolError: If ``access_token`` is missing or a field has
                the wrong type.
        """
        try:
            parsed = _TokenPayload.model_validate(payload)
        except ValidationError as e:
            raise ProtocolError(
                "Malformed token response",
                details={"errors": [err["loc"] for err in e.errors()]},
            ) from e

        if issued_at is None:
            issued_at = datetime.now(UTC)
        expires_in = parsed.expires_in
        if expires_in is None:
            expires_in = DEFAULT_EXPIRES_IN_SECONDS

        return cls(
            access_token=parsed.access_token,
            refresh_token=parsed.refresh_token or None,
            expires_at=issued_at + timedelta(seconds=expires_in),
            scopes=parsed.scope.split() if parsed.scope else [],
        )


__all__ = [
    "DEFAULT_EXPIRES_IN_SECONDS",
    "REFRESH_BUFFER",
    "UserInfo",
    "SessionMetadata",
    "LegacySession",
    "AuthStatus",
    "PendingAuthorization",
    "ActiveSession",
    "TokenResponse",
]
