"""Secret vault over the platform's protected credential store.

Secrets live in the OS keychain via :mod:`keyring`:
- macOS: Keychain
- Windows: Credential Manager
- Linux: Secret Service (GNOME Keyring, KWallet)

All entries are namespaced under :data:`SERVICE_NAME`. Two key families
are stored:
- ``"<email>:refresh_token"``: the provider refresh token per account
- ``backend_access_token`` / ``backend_refresh_token``: a secondary token
  pair issued by the application backend, not scoped to an account

For hosts without a secret service, :class:`EncryptedFileBackend`
implements the same backend calls over an AES-256-GCM encrypted file.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from inbox_auth.utils.encryption import decrypt_data, encrypt_data
from inbox_auth.utils.errors import StorageError

logger = logging.getLogger(__name__)

# Service name for vault entries
SERVICE_NAME = "com.inbox-auth.desktop"

# Key suffix for per-account refresh tokens
REFRESH_TOKEN_KEY = "refresh_token"

# Fixed keys for the backend-issued token pair
BACKEND_ACCESS_KEY = "backend_access_token"
BACKEND_REFRESH_KEY = "backend_refresh_token"


class KeyringBackendLike(Protocol):
    """The subset of ``keyring.backend.KeyringBackend`` the vault uses."""

    def get_password(self, service: str, username: str) -> str | None: ...

    def set_password(self, service: str, username: str, password: str) -> None: ...

    def delete_password(self, service: str, username: str) -> None: ...


class SecretVault:
    """Key/value secret store namespaced by a fixed service identifier.

    ``get`` reports a missing entry as None, ``delete`` is idempotent, and
    every other backend failure surfaces as :class:`StorageError`.

    Example:
        >>> vault = SecretVault()
        >>> vault.store_refresh_token("a@b.com", "1//0g...")
        >>> vault.get_refresh_token("a@b.com")
        '1//0g...'
    """

    def __init__(
        self,
        backend: KeyringBackendLike | None = None,
        service: str = SERVICE_NAME,
    ) -> None:
        """Initialize the vault.

        Args:
            backend: Keyring backend to use. Defaults to the platform
                backend selected by ``keyring.get_keyring()``.
            service: Service identifier entries are namespaced under.
        """
        self._backend = backend if backend is not None else keyring.get_keyring()
        self._service = service
        logger.debug(
            "SecretVault using backend %s (service=%s)",
            type(self._backend).__name__,
            service,
        )

    def store(self, key: str, value: str) -> None:
        """Insert or overwrite an entry.

        Raises:
            StorageError: On platform-level failure.
        """
        try:
            self._backend.set_password(self._service, key, value)
        except KeyringError as e:
            logger.error("Failed to store vault entry %s: %s", key, e)
            raise StorageError(
                "Failed to store secret in vault",
                details={"key": key, "error": str(e)},
            ) from e

    def get(self, key: str) -> str | None:
        """Read an entry.

        Returns:
            The stored value, or None if no entry exists.

        Raises:
            StorageError: On platform-level failure.
        """
        try:
            return self._backend.get_password(self._service, key)
        except KeyringError as e:
            logger.error("Failed to read vault entry %s: %s", key, e)
            raise StorageError(
                "Failed to read secret from vault",
                details={"key": key, "error": str(e)},
            ) from e

    def delete(self, key: str) -> None:
        """Delete an entry; deleting an absent key succeeds silently.

        Raises:
            StorageError: On platform-level failure.
        """
        try:
            if self._backend.get_password(self._service, key) is None:
                logger.debug("No vault entry to delete for %s", key)
                return
            self._backend.delete_password(self._service, key)
        except PasswordDeleteError:
            # Removed concurrently between the lookup and the delete
            logger.debug("Vault entry %s already gone", key)
        except KeyringError as e:
            logger.error("Failed to delete vault entry %s: %s", key, e)
            raise StorageError(
                "Failed to delete secret from vault",
                details={"key": key, "error": str(e)},
            ) from e

    # =========================================================================
    # Per-account refresh tokens
    # =========================================================================

    @staticmethod
    def refresh_token_key(email: str) -> str:
        """Vault key for an account's refresh token."""
        return f"{email}:{REFRESH_TOKEN_KEY}"

    def store_refresh_token(self, email: str, token: str) -> None:
        """Store the refresh token for an account."""
        self.store(self.refresh_token_key(email), token)
        logger.info("Refresh token stored in vault for %s", email)

    def get_refresh_token(self, email: str) -> str | None:
        """Retrieve the refresh token for an account, or None."""
        return self.get(self.refresh_token_key(email))

    def delete_refresh_token(self, email: str) -> None:
        """Delete the refresh token for an account (idempotent)."""
        self.delete(self.refresh_token_key(email))
        logger.info("Refresh token removed from vault for %s", email)

    # =========================================================================
    # Backend token pair
    # =========================================================================

    def store_backend_tokens(self, access_token: str, refresh_token: str) -> None:
        """Store the backend-issued access/refresh token pair."""
        self.store(BACKEND_ACCESS_KEY, access_token)
        self.store(BACKEND_REFRESH_KEY, refresh_token)
        logger.info("Backend tokens stored in vault")

    def get_backend_access_token(self) -> str | None:
        return self.get(BACKEND_ACCESS_KEY)

    def get_backend_refresh_token(self) -> str | None:
        return self.get(BACKEND_REFRESH_KEY)

    def clear_backend_tokens(self) -> None:
        """Delete both backend tokens (idempotent)."""
        self.delete(BACKEND_ACCESS_KEY)
        self.delete(BACKEND_REFRESH_KEY)
        logger.info("Backend tokens cleared from vault")


class EncryptedFileBackend:
    """Keyring-compatible backend storing entries in one encrypted file.

    The file holds ``{"iv": <hex>, "ciphertext": <hex>}``; the plaintext
    is a JSON object ``{service: {key: value}}``. Writes go to a temporary
    file that is renamed over the target, and the file mode is 0600.

    Attributes:
        path: Location of the encrypted vault file.
    """

    def __init__(self, path: Path, key: bytes) -> None:
        """Initialize the backend.

        Args:
            path: Vault file location; parent directories are created.
            key: 32-byte AES-256-GCM key.
        """
        self.path = path
        self._key = key
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def get_password(self, service: str, username: str) -> str | None:
        with self._lock:
            return self._read_all().get(service, {}).get(username)

    def set_password(self, service: str, username: str, password: str) -> None:
        with self._lock:
            entries = self._read_all()
            entries.setdefault(service, {})[username] = password
            self._write_all(entries)

    def delete_password(self, service: str, username: str) -> None:
        with self._lock:
            entries = self._read_all()
            scoped = entries.get(service, {})
            if username not in scoped:
                raise PasswordDeleteError(f"No entry for {username}")
            del scoped[username]
            if not scoped:
                entries.pop(service, None)
            self._write_all(entries)

    def _read_all(self) -> dict[str, dict[str, str]]:
        if not self.path.exists():
            return {}

        try:
            envelope = json.loads(self.path.read_text(encoding="utf-8"))
            iv = bytes.fromhex(envelope["iv"])
            ciphertext = bytes.fromhex(envelope["ciphertext"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StorageError(
                "Vault file is unreadable or malformed",
                details={"path": str(self.path), "error_type": type(e).__name__},
            ) from e

        plaintext = decrypt_data(iv, ciphertext, self._key)
        entries: dict[str, dict[str, str]] = json.loads(plaintext.decode("utf-8"))
        return entries

    def _write_all(self, entries: dict[str, dict[str, str]]) -> None:
        encrypted = encrypt_data(json.dumps(entries).encode("utf-8"), self._key)
        envelope = {
            "iv": encrypted["iv"].hex(),
            "ciphertext": encrypted["ciphertext"].hex(),
        }

        tmp_path: Path | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(envelope, handle)
            tmp_path.chmod(0o600)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(
                "Failed to write vault file",
                details={"path": str(self.path), "error": str(e)},
            ) from e
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()


__all__ = [
    "SERVICE_NAME",
    "REFRESH_TOKEN_KEY",
    "BACKEND_ACCESS_KEY",
    "BACKEND_REFRESH_KEY",
    "SecretVault",
    "EncryptedFileBackend",
]
