"""Environment-driven settings for inbox-auth.

Settings are read once from the process environment (after ``.env`` has
been loaded by the entry point) into an immutable :class:`AuthSettings`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from inbox_auth.auth.callback import DEFAULT_PORT_RANGE
from inbox_auth.auth.coordinator import DEFAULT_CALLBACK_TIMEOUT_SECONDS
from inbox_auth.auth.exchange import DEFAULT_TIMEOUT_SECONDS
from inbox_auth.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "~/.inbox-auth"

VAULT_BACKEND_KEYRING = "keyring"
VAULT_BACKEND_FILE = "file"
VAULT_BACKENDS = (VAULT_BACKEND_KEYRING, VAULT_BACKEND_FILE)


@dataclass(frozen=True)
class AuthSettings:
    """Resolved configuration.

    Attributes:
        client_id: Google OAuth client ID.
        client_secret: Google OAuth client secret (installed-app secret).
        data_dir: Application-private data directory.
        port_range: Candidate loopback callback ports, probed in order.
        callback_timeout: Seconds to wait for the browser redirect.
        http_timeout: Seconds per token/profile/revoke request.
        vault_backend: ``"keyring"`` or ``"file"``.
        encryption_key: Hex AES-256 key, required for the file vault.
    """

    client_id: str
    client_secret: str
    data_dir: Path
    port_range: range = DEFAULT_PORT_RANGE
    callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT_SECONDS
    http_timeout: float = DEFAULT_TIMEOUT_SECONDS
    vault_backend: str = VAULT_BACKEND_KEYRING
    encryption_key: str | None = None

    @classmethod
    def from_env(cls) -> AuthSettings:
        """Build settings from environment variables.

        Raises:
            ConfigurationError: If a required variable is missing or a value
                is invalid.
        """
        missing = [
            var
            for var in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET")
            if not os.getenv(var)
        ]
        if missing:
            raise ConfigurationError(
                "OAuth not configured",
                details={"missing": missing},
            )

        port_start = _int_env("OAUTH_PORT_START", DEFAULT_PORT_RANGE.start)
        port_end = _int_env("OAUTH_PORT_END", DEFAULT_PORT_RANGE.stop)
        if not 0 < port_start < port_end <= 65536:
            raise ConfigurationError(
                "Invalid OAuth callback port range",
                details={"start": port_start, "end": port_end},
            )

        vault_backend = os.getenv("VAULT_BACKEND", VAULT_BACKEND_KEYRING).lower()
        if vault_backend not in VAULT_BACKENDS:
            raise ConfigurationError(
                f"Unknown VAULT_BACKEND: {vault_backend}",
                details={"allowed": list(VAULT_BACKENDS)},
            )

        encryption_key = os.getenv("TOKEN_ENCRYPTION_KEY") or None
        if vault_backend == VAULT_BACKEND_FILE and encryption_key is None:
            raise ConfigurationError(
                "TOKEN_ENCRYPTION_KEY environment variable not set",
                details={"hint": "Required when VAULT_BACKEND=file"},
            )

        settings = cls(
            client_id=os.environ["GOOGLE_CLIENT_ID"],
            client_secret=os.environ["GOOGLE_CLIENT_SECRET"],
            data_dir=Path(
                os.getenv("INBOX_AUTH_DATA_DIR", DEFAULT_DATA_DIR)
            ).expanduser(),
            port_range=range(port_start, port_end),
            callback_timeout=_float_env(
                "OAUTH_CALLBACK_TIMEOUT", DEFAULT_CALLBACK_TIMEOUT_SECONDS
            ),
            http_timeout=_float_env("HTTP_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
            vault_backend=vault_backend,
            encryption_key=encryption_key,
        )
        logger.debug(
            "Settings loaded (data_dir=%s, vault=%s)",
            settings.data_dir,
            settings.vault_backend,
        )
        return settings


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be an integer", details={"value": raw}
        ) from e


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be a number", details={"value": raw}
        ) from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive", details={"value": raw})
    return value


__all__ = [
    "DEFAULT_DATA_DIR",
    "VAULT_BACKEND_KEYRING",
    "VAULT_BACKEND_FILE",
    "AuthSettings",
]
