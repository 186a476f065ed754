"""Tests for auth data models."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

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
from inbox_auth.utils.errors import ProtocolError

NOW = datetime(2026, 1, 20, 10, 0, tzinfo=UTC)


class TestTokenResponse:
    def test_from_payload(self) -> None:
        tokens = TokenResponse.from_payload(
            {
                "access_token": "ya29.a",
                "refresh_token": "1//r",
                "expires_in": 3599,
                "scope": "openid email",
                "token_type": "Bearer",
            },
            issued_at=NOW,
        )

        assert tokens.access_token == "ya29.a"
        assert tokens.refresh_token == "1//r"
        assert tokens.expires_at == NOW + timedelta(seconds=3599)
        assert tokens.scopes == ["openid", "email"]

    def test_missing_expires_in_uses_default_lifetime(self) -> None:
        tokens = TokenResponse.from_payload({"access_token": "a"}, issued_at=NOW)

        assert tokens.expires_at == NOW + timedelta(seconds=DEFAULT_EXPIRES_IN_SECONDS)
        assert tokens.refresh_token is None
        assert tokens.scopes == []

    def test_missing_access_token_is_protocol_error(self) -> None:
        with pytest.raises(ProtocolError):
            TokenResponse.from_payload({"expires_in": 3600})

    def test_non_object_payload_is_protocol_error(self) -> None:
        with pytest.raises(ProtocolError):
            TokenResponse.from_payload(["not", "an", "object"])

    def test_repr_hides_tokens(self) -> None:
        tokens = TokenResponse.from_payload(
            {"access_token": "ya29.secret", "refresh_token": "1//secret"}
        )
        assert "secret" not in repr(tokens)


class TestActiveSession:
    def _session(self, expires_at, access_token="a") -> ActiveSession:
        return ActiveSession(
            access_token=access_token,
            refresh_token="r",
            expires_at=expires_at,
            user_info=UserInfo(email="a@b.com"),
        )

    def test_fresh_token_does_not_need_refresh(self) -> None:
        session = self._session(NOW + timedelta(hours=1))
        assert not session.needs_refresh(NOW)

    def test_token_inside_buffer_needs_refresh(self) -> None:
        session = self._session(NOW + REFRESH_BUFFER - timedelta(seconds=1))
        assert session.needs_refresh(NOW)

    def test_token_exactly_at_buffer_needs_refresh(self) -> None:
        assert self._session(NOW + REFRESH_BUFFER).is_expiring(NOW)

    def test_missing_access_token_needs_refresh(self) -> None:
        session = self._session(NOW + timedelta(hours=1), access_token=None)
        assert not session.is_expiring(NOW)
        assert session.needs_refresh(NOW)

    def test_repr_hides_tokens(self, active_session) -> None:
        text = repr(active_session)
        assert active_session.access_token not in text
        assert active_session.refresh_token not in text


class TestSessionMetadata:
    def test_from_session_drops_secrets(self, active_session) -> None:
        metadata = SessionMetadata.from_session(active_session)

        assert metadata.email == "user@example.com"
        assert metadata.expires_at == active_session.expires_at
        assert metadata.scopes_granted == ["openid", "email"]
        dumped = metadata.model_dump_json()
        assert active_session.refresh_token not in dumped
        assert active_session.access_token not in dumped

    def test_expiry_normalized_to_utc(self) -> None:
        local = datetime(2026, 1, 20, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        metadata = SessionMetadata(email="a@b.com", expires_at=local)
        assert metadata.expires_at == NOW
        assert metadata.expires_at.tzinfo == UTC


class TestPendingAuthorization:
    def test_redirect_uri_uses_loopback_ip(self) -> None:
        pending = PendingAuthorization("v", "s", 8403)
        assert pending.redirect_uri == "http://127.0.0.1:8403"

    def test_repr_hides_verifier_and_state(self) -> None:
        pending = PendingAuthorization("verifier-secret", "state-secret", 8400)
        assert "secret" not in repr(pending)


def test_logged_out_status() -> None:
    status = AuthStatus.logged_out()
    assert status.is_authenticated is False
    assert status.user is None
    assert status.expires_at is None
