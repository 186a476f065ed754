"""Tests for the authorization coordinator.

The loopback leg runs over real sockets; the provider is a mocked
TokenExchanger.
"""

from __future__ import annotations

import asyncio
import socket
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio

from inbox_auth.auth.coordinator import AuthorizationCoordinator
from inbox_auth.auth.exchange import TokenExchanger
from inbox_auth.auth.lifecycle import TokenLifecycleManager
from inbox_auth.auth.models import TokenResponse, UserInfo
from inbox_auth.auth.pkce import generate_code_challenge
from inbox_auth.utils.errors import (
    ConfigurationError,
    NetworkError,
    ProtocolError,
    SecurityError,
    StateError,
)

# Port 0 lets the OS pick a free port for each listener
ANY_PORT = range(0, 1)


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _send_redirect(url: str, **params: str) -> socket.socket:
    """Play the browser: hit the redirect URI from ``url`` with ``params``."""
    redirect = urlparse(_query(url)["redirect_uri"])
    query = "&".join(f"{k}={v}" for k, v in params.items())
    client = socket.create_connection((redirect.hostname, redirect.port), timeout=5)
    request = f"GET /?{query} HTTP/1.1\r\nHost: {redirect.netloc}\r\n\r\n"
    client.sendall(request.encode())
    return client


@pytest.fixture
def exchanger() -> MagicMock:
    mock = MagicMock(spec=TokenExchanger)
    mock.exchange_code.return_value = TokenResponse(
        access_token="ya29.access",
        refresh_token="1//refresh",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
        scopes=["openid", "email"],
    )
    mock.fetch_profile.return_value = UserInfo(email="user@example.com", name="Test")
    return mock


@pytest_asyncio.fixture
async def lifecycle(vault, app_dir, exchanger) -> TokenLifecycleManager:
    manager = TokenLifecycleManager(vault, exchanger)
    await manager.initialize(app_dir)
    return manager


@pytest.fixture
def coordinator(exchanger, lifecycle) -> AuthorizationCoordinator:
    return AuthorizationCoordinator(
        client_id="client-123",
        exchanger=exchanger,
        lifecycle=lifecycle,
        port_range=ANY_PORT,
        callback_timeout=5.0,
    )


class TestStartAuthorization:
    @pytest.mark.asyncio
    async def test_returns_consent_url_for_loopback_redirect(self, coordinator) -> None:
        url = await coordinator.start_authorization()
        params = _query(url)

        assert params["client_id"] == "client-123"
        assert params["redirect_uri"].startswith("http://127.0.0.1:")
        assert params["code_challenge_method"] == "S256"
        assert params["access_type"] == "offline"
        assert coordinator.has_pending
        await coordinator.cancel_authorization()

    @pytest.mark.asyncio
    async def test_missing_client_id_is_configuration_error(
        self, exchanger, lifecycle
    ) -> None:
        coordinator = AuthorizationCoordinator("", exchanger, lifecycle)

        with pytest.raises(ConfigurationError):
            await coordinator.start_authorization()
        assert not coordinator.has_pending

    @pytest.mark.asyncio
    async def test_no_free_port_is_configuration_error(
        self, exchanger, lifecycle
    ) -> None:
        with socket.socket() as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]
            coordinator = AuthorizationCoordinator(
                "client-123", exchanger, lifecycle, port_range=range(port, port + 1)
            )

            with pytest.raises(ConfigurationError):
                await coordinator.start_authorization()

    @pytest.mark.asyncio
    async def test_newer_attempt_replaces_pending_one(self, coordinator) -> None:
        first = await coordinator.start_authorization()
        second = await coordinator.start_authorization()

        assert _query(first)["state"] != _query(second)["state"]

        # The first listener is gone; only the second attempt can complete
        with pytest.raises(ConnectionRefusedError):
            _send_redirect(first, code="c", state=_query(first)["state"])

        client = _send_redirect(second, code="c", state=_query(second)["state"])
        with client:
            status = await coordinator.complete_authorization()
        assert status.is_authenticated


class TestCompleteAuthorization:
    @pytest.mark.asyncio
    async def test_full_flow_persists_session(
        self, coordinator, exchanger, lifecycle, vault
    ) -> None:
        url = await coordinator.start_authorization()
        params = _query(url)
        client = _send_redirect(url, code="4%2F0AbCd", state=params["state"])

        with client:
            status = await coordinator.complete_authorization()

        assert status.is_authenticated
        assert status.user.email == "user@example.com"

        code, verifier, redirect_uri = exchanger.exchange_code.call_args.args
        assert code == "4/0AbCd"
        assert generate_code_challenge(verifier) == params["code_challenge"]
        assert redirect_uri == params["redirect_uri"]
        exchanger.fetch_profile.assert_called_once_with("ya29.access")

        assert vault.get_refresh_token("user@example.com") == "1//refresh"
        assert lifecycle.store.load().email == "user@example.com"
        assert await lifecycle.get_access_token() == "ya29.access"
        assert not coordinator.has_pending

    @pytest.mark.asyncio
    async def test_browser_receives_success_page(self, coordinator) -> None:
        url = await coordinator.start_authorization()
        client = _send_redirect(url, code="c", state=_query(url)["state"])

        await coordinator.complete_authorization()

        with client:
            response = client.recv(4096)
        assert response.startswith(b"HTTP/1.1 200 OK")

    @pytest.mark.asyncio
    async def test_without_pending_is_state_error(self, coordinator) -> None:
        with pytest.raises(StateError):
            await coordinator.complete_authorization()

    @pytest.mark.asyncio
    async def test_state_mismatch_is_security_error(
        self, coordinator, exchanger, lifecycle, vault
    ) -> None:
        url = await coordinator.start_authorization()
        client = _send_redirect(url, code="c", state="forged")

        with client, pytest.raises(SecurityError):
            await coordinator.complete_authorization()

        exchanger.exchange_code.assert_not_called()
        assert vault.get_refresh_token("user@example.com") is None
        assert not lifecycle.store.exists()
        assert not (await lifecycle.get_auth_status()).is_authenticated
        assert not coordinator.has_pending

    @pytest.mark.asyncio
    async def test_pending_is_consumed_once(self, coordinator) -> None:
        url = await coordinator.start_authorization()
        with _send_redirect(url, code="c", state=_query(url)["state"]):
            await coordinator.complete_authorization()

        with pytest.raises(StateError):
            await coordinator.complete_authorization()

    @pytest.mark.asyncio
    async def test_provider_error_redirect_is_protocol_error(
        self, coordinator, exchanger
    ) -> None:
        url = await coordinator.start_authorization()
        client = _send_redirect(url, error="access_denied", state=_query(url)["state"])

        with client, pytest.raises(ProtocolError):
            await coordinator.complete_authorization()

        exchanger.exchange_code.assert_not_called()
        assert not coordinator.has_pending

    @pytest.mark.asyncio
    async def test_missing_refresh_token_creates_no_session(
        self, coordinator, exchanger, lifecycle, vault
    ) -> None:
        exchanger.exchange_code.return_value = TokenResponse(
            access_token="ya29.access",
            refresh_token=None,
            expires_at=datetime.now(UTC) + timedelta(hours=1),
        )
        url = await coordinator.start_authorization()

        with _send_redirect(url, code="c", state=_query(url)["state"]):
            with pytest.raises(ProtocolError):
                await coordinator.complete_authorization()

        assert vault.get_refresh_token("user@example.com") is None
        assert not (await lifecycle.get_auth_status()).is_authenticated

    @pytest.mark.asyncio
    async def test_exchange_failure_propagates(self, coordinator, exchanger) -> None:
        exchanger.exchange_code.side_effect = NetworkError(
            "Token exchange failed: invalid_grant", status_code=400
        )
        url = await coordinator.start_authorization()

        with _send_redirect(url, code="c", state=_query(url)["state"]):
            with pytest.raises(NetworkError):
                await coordinator.complete_authorization()

        assert not coordinator.has_pending

    @pytest.mark.asyncio
    async def test_callback_timeout_is_network_error(
        self, exchanger, lifecycle
    ) -> None:
        coordinator = AuthorizationCoordinator(
            "client-123",
            exchanger,
            lifecycle,
            port_range=ANY_PORT,
            callback_timeout=0.3,
        )
        await coordinator.start_authorization()

        with pytest.raises(NetworkError):
            await coordinator.complete_authorization()
        assert not coordinator.has_pending

    @pytest.mark.asyncio
    async def test_cancel_unblocks_waiting_completion(self, coordinator) -> None:
        await coordinator.start_authorization()
        waiting = asyncio.create_task(coordinator.complete_authorization())
        await asyncio.sleep(0.3)

        assert await coordinator.cancel_authorization() is True

        with pytest.raises(StateError):
            await waiting
        assert not coordinator.has_pending

    @pytest.mark.asyncio
    async def test_superseded_wait_is_state_error(self, coordinator) -> None:
        await coordinator.start_authorization()
        waiting = asyncio.create_task(coordinator.complete_authorization())
        await asyncio.sleep(0.3)

        await coordinator.start_authorization()

        with pytest.raises(StateError):
            await waiting
        # The newer attempt is still pending
        assert coordinator.has_pending
        await coordinator.cancel_authorization()

    @pytest.mark.asyncio
    async def test_cancel_without_pending(self, coordinator) -> None:
        assert await coordinator.cancel_authorization() is False


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_opens_browser_and_completes(self, coordinator) -> None:
        clients: list[socket.socket] = []

        def fake_browser(url: str) -> bool:
            clients.append(_send_redirect(url, code="c", state=_query(url)["state"]))
            return True

        with patch(
            "inbox_auth.auth.coordinator.webbrowser.open", side_effect=fake_browser
        ) as mock_open:
            status = await coordinator.authenticate()

        mock_open.assert_called_once()
        assert status.is_authenticated
        for client in clients:
            client.close()
