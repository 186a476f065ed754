"""Pytest configuration and fixtures for inbox-auth tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from keyring.errors import PasswordDeleteError

from inbox_auth.auth.models import ActiveSession, UserInfo
from inbox_auth.auth.vault import SecretVault


class InMemoryKeyring:
    """Keyring-shaped backend that keeps entries in a dict."""

    def __init__(self) -> None:
        self.entries: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> str | None:
        return self.entries.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.entries[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        if (service, username) not in self.entries:
            raise PasswordDeleteError("Password not found")
        del self.entries[(service, username)]


@pytest.fixture
def keyring_backend() -> InMemoryKeyring:
    """Fixture providing an empty in-memory keyring backend."""
    return InMemoryKeyring()


@pytest.fixture
def vault(keyring_backend: InMemoryKeyring) -> SecretVault:
    """Fixture providing a vault over the in-memory backend."""
    return SecretVault(backend=keyring_backend)


@pytest.fixture
def app_dir(tmp_path):
    """Fixture providing a fresh application data directory."""
    return tmp_path / "app"


@pytest.fixture
def mock_credentials() -> dict[str, str]:
    """Fixture providing mock Google OAuth client credentials."""
    return {
        "client_id": "test-client-id.apps.googleusercontent.com",
        "client_secret": "test-client-secret",
    }


@pytest.fixture
def user_info() -> UserInfo:
    return UserInfo(
        email="user@example.com",
        name="Test User",
        picture="https://example.com/avatar.png",
    )


@pytest.fixture
def active_session(user_info: UserInfo) -> ActiveSession:
    """Fixture providing a session valid for another hour."""
    return ActiveSession(
        access_token="ya29.access",
        refresh_token="1//refresh",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
        user_info=user_info,
        scopes_granted=["openid", "email"],
    )
