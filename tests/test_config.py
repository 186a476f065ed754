"""Tests for environment-driven settings and context wiring."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from inbox_auth.auth.vault import EncryptedFileBackend
from inbox_auth.config import AuthSettings
from inbox_auth.context import VAULT_FILENAME, create_app_context, create_vault
from inbox_auth.utils.errors import ConfigurationError

BASE_ENV = {
    "GOOGLE_CLIENT_ID": "test_client_id",
    "GOOGLE_CLIENT_SECRET": "test_secret",
}


class TestAuthSettingsFromEnv:
    def test_defaults(self) -> None:
        with patch.dict("os.environ", BASE_ENV, clear=True):
            settings = AuthSettings.from_env()
            default_dir = Path("~/.inbox-auth").expanduser()

        assert settings.client_id == "test_client_id"
        assert settings.client_secret == "test_secret"
        assert settings.data_dir == default_dir
        assert settings.port_range == range(8400, 8500)
        assert settings.callback_timeout == 300
        assert settings.http_timeout == 30
        assert settings.vault_backend == "keyring"
        assert settings.encryption_key is None

    def test_overrides(self, tmp_path) -> None:
        env = {
            **BASE_ENV,
            "INBOX_AUTH_DATA_DIR": str(tmp_path),
            "OAUTH_PORT_START": "9000",
            "OAUTH_PORT_END": "9005",
            "OAUTH_CALLBACK_TIMEOUT": "60",
            "HTTP_TIMEOUT": "2.5",
            "VAULT_BACKEND": "FILE",
            "TOKEN_ENCRYPTION_KEY": "a" * 64,
        }
        with patch.dict("os.environ", env, clear=True):
            settings = AuthSettings.from_env()

        assert settings.data_dir == tmp_path
        assert settings.port_range == range(9000, 9005)
        assert settings.callback_timeout == 60
        assert settings.http_timeout == 2.5
        assert settings.vault_backend == "file"

    @pytest.mark.parametrize("missing", ["GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"])
    def test_missing_client_credentials(self, missing) -> None:
        env = {k: v for k, v in BASE_ENV.items() if k != missing}
        with patch.dict("os.environ", env, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                AuthSettings.from_env()

        assert missing in exc_info.value.details["missing"]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"OAUTH_PORT_START": "abc"},
            {"OAUTH_PORT_START": "8500", "OAUTH_PORT_END": "8400"},
            {"OAUTH_PORT_END": "70000"},
            {"OAUTH_CALLBACK_TIMEOUT": "soon"},
            {"HTTP_TIMEOUT": "0"},
            {"VAULT_BACKEND": "plaintext"},
            {"VAULT_BACKEND": "file"},
        ],
    )
    def test_invalid_values(self, overrides) -> None:
        with patch.dict("os.environ", {**BASE_ENV, **overrides}, clear=True):
            with pytest.raises(ConfigurationError):
                AuthSettings.from_env()


class TestCreateVault:
    def test_file_backend(self, tmp_path) -> None:
        settings = AuthSettings(
            client_id="c",
            client_secret="s",
            data_dir=tmp_path,
            vault_backend="file",
            encryption_key="b" * 64,
        )
        vault = create_vault(settings)

        vault.store_refresh_token("a@b.com", "1//r")
        assert (tmp_path / VAULT_FILENAME).exists()
        assert isinstance(vault._backend, EncryptedFileBackend)

    def test_file_backend_with_bad_key(self, tmp_path) -> None:
        settings = AuthSettings(
            client_id="c",
            client_secret="s",
            data_dir=tmp_path,
            vault_backend="file",
            encryption_key="not-hex",
        )
        with pytest.raises(ConfigurationError):
            create_vault(settings)


class TestCreateAppContext:
    @pytest.mark.asyncio
    async def test_wires_collaborators(self, tmp_path) -> None:
        settings = AuthSettings(
            client_id="c",
            client_secret="s",
            data_dir=tmp_path / "app",
            port_range=range(9100, 9110),
            callback_timeout=42.0,
            http_timeout=3.0,
            vault_backend="file",
            encryption_key="c" * 64,
        )

        ctx = await create_app_context(settings)

        assert ctx.settings is settings
        assert ctx.exchanger.timeout == 3.0
        assert ctx.lifecycle.exchanger is ctx.exchanger
        assert ctx.lifecycle.store.path.parent == tmp_path / "app"
        assert not (await ctx.lifecycle.get_auth_status()).is_authenticated
        assert not ctx.coordinator.has_pending

    @pytest.mark.asyncio
    async def test_reads_environment_by_default(self, tmp_path) -> None:
        env = {
            **BASE_ENV,
            "INBOX_AUTH_DATA_DIR": str(tmp_path),
            "VAULT_BACKEND": "file",
            "TOKEN_ENCRYPTION_KEY": "d" * 64,
        }
        with patch.dict("os.environ", env, clear=True):
            ctx = await create_app_context()

        assert ctx.settings.client_id == "test_client_id"
