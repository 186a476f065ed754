"""Process-wide context wiring the auth collaborators together.

Each collaborator is constructed once here and passed explicitly; there
is no module-level mutable auth state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from inbox_auth.auth.coordinator import AuthorizationCoordinator
from inbox_auth.auth.exchange import TokenExchanger
from inbox_auth.auth.lifecycle import TokenLifecycleManager
from inbox_auth.auth.vault import EncryptedFileBackend, SecretVault
from inbox_auth.config import VAULT_BACKEND_FILE, AuthSettings
from inbox_auth.utils.encryption import key_from_hex
from inbox_auth.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

VAULT_FILENAME = "vault.json.enc"


@dataclass
class AppContext:
    """Everything a host needs to drive authentication."""

    settings: AuthSettings
    vault: SecretVault
    exchanger: TokenExchanger
    lifecycle: TokenLifecycleManager
    coordinator: AuthorizationCoordinator


def create_vault(settings: AuthSettings) -> SecretVault:
    """Build the secret vault selected by ``settings.vault_backend``.

    Raises:
        ConfigurationError: If the file backend is selected without a
            valid encryption key.
    """
    if settings.vault_backend != VAULT_BACKEND_FILE:
        return SecretVault()

    if not settings.encryption_key:
        raise ConfigurationError(
            "TOKEN_ENCRYPTION_KEY environment variable not set",
            details={"hint": "Required when VAULT_BACKEND=file"},
        )
    backend = EncryptedFileBackend(
        settings.data_dir / VAULT_FILENAME, key_from_hex(settings.encryption_key)
    )
    logger.info("Using encrypted file vault at %s", backend.path)
    return SecretVault(backend=backend)


async def create_app_context(settings: AuthSettings | None = None) -> AppContext:
    """Construct the collaborators and restore any previous session.

    Args:
        settings: Resolved settings (defaults to :meth:`AuthSettings.from_env`).

    Returns:
        A ready context whose lifecycle manager is initialized.

    Raises:
        ConfigurationError: If configuration is missing or invalid.
        StorageError: If the data directory cannot be created.
    """
    if settings is None:
        settings = AuthSettings.from_env()

    vault = create_vault(settings)
    exchanger = TokenExchanger(
        settings.client_id, settings.client_secret, timeout=settings.http_timeout
    )
    lifecycle = TokenLifecycleManager(vault, exchanger)
    await lifecycle.initialize(settings.data_dir)

    coordinator = AuthorizationCoordinator(
        client_id=settings.client_id,
        exchanger=exchanger,
        lifecycle=lifecycle,
        port_range=settings.port_range,
        callback_timeout=settings.callback_timeout,
    )
    return AppContext(
        settings=settings,
        vault=vault,
        exchanger=exchanger,
        lifecycle=lifecycle,
        coordinator=coordinator,
    )


__all__ = ["VAULT_FILENAME", "AppContext", "create_vault", "create_app_context"]
