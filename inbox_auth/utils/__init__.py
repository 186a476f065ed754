"""Utility functions and helpers for inbox-auth.

This module provides the error taxonomy and the AES-GCM helpers used by
the encrypted file vault.
"""

from inbox_auth.utils.encryption import (
    decrypt_data,
    encrypt_data,
    generate_key,
    key_from_hex,
)
from inbox_auth.utils.errors import (
    ConfigurationError,
    InboxAuthError,
    NetworkError,
    ProtocolError,
    SecurityError,
    StateError,
    StorageError,
)

__all__ = [
    # Encryption utilities
    "generate_key",
    "encrypt_data",
    "decrypt_data",
    "key_from_hex",
    # Exception hierarchy
    "InboxAuthError",
    "ConfigurationError",
    "NetworkError",
    "ProtocolError",
    "SecurityError",
    "StorageError",
    "StateError",
]
