"""AES-256-GCM encryption utilities for the encrypted file vault.

Used by :class:`inbox_auth.auth.vault.EncryptedFileBackend` on hosts that
have no platform secret service. GCM mode provides both confidentiality
and integrity protection.

Security considerations:
- Keys must be 256 bits (32 bytes) for AES-256
- IVs are 96 bits (12 bytes) and must be unique per encryption
- Never reuse an IV with the same key
"""

from __future__ import annotations

import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from inbox_auth.utils.errors import ConfigurationError, StorageError

# Constants
KEY_SIZE_BITS = 256
KEY_SIZE_BYTES = KEY_SIZE_BITS // 8  # 32 bytes
IV_SIZE_BYTES = 12  # 96 bits, recommended for GCM
HEX_KEY_LENGTH = KEY_SIZE_BYTES * 2  # 64 hex characters


def generate_key() -> bytes:
    """Generate a cryptographically secure 256-bit encryption key.

    Returns:
        A 32-byte (256-bit) key suitable for AES-256-GCM encryption.
    """
    return AESGCM.generate_key(bit_length=KEY_SIZE_BITS)


def encrypt_data(plaintext: bytes, key: bytes) -> dict[str, bytes]:
    """Encrypt data using AES-256-GCM authenticated encryption.

    A fresh 12-byte IV is generated for each call and must be stored
    alongside the ciphertext.

    Args:
        plaintext: The data to encrypt.
        key: A 32-byte (256-bit) encryption key.

    Returns:
        A dictionary with "iv" and "ciphertext" (ciphertext includes the tag).

    Raises:
        ConfigurationError: If the key is not exactly 32 bytes.
        StorageError: If encryption fails for any other reason.
    """
    _validate_key(key)

    try:
        iv = os.urandom(IV_SIZE_BYTES)
        ciphertext = AESGCM(key).encrypt(iv, plaintext, None)
        return {"iv": iv, "ciphertext": ciphertext}
    except Exception as e:
        raise StorageError(
            "Failed to encrypt data",
            details={"error_type": type(e).__name__, "error_message": str(e)},
        ) from e


def decrypt_data(iv: bytes, ciphertext: bytes, key: bytes) -> bytes:
    """Decrypt data using AES-256-GCM authenticated decryption.

    Args:
        iv: The 12-byte initialization vector used during encryption.
        ciphertext: The encrypted data with authentication tag.
        key: The 32-byte (256-bit) encryption key used for encryption.

    Returns:
        The decrypted plaintext data.

    Raises:
        ConfigurationError: If the key has an invalid length.
        StorageError: If the IV is malformed, or decryption fails (wrong
            key, corrupted or tampered ciphertext).
    """
    _validate_key(key)
    if len(iv) != IV_SIZE_BYTES:
        raise StorageError(
            f"Invalid IV length: expected {IV_SIZE_BYTES} bytes, got {len(iv)}",
            details={"expected_length": IV_SIZE_BYTES, "actual_length": len(iv)},
        )

    try:
        return AESGCM(key).decrypt(iv, ciphertext, None)
    except Exception as e:
        raise StorageError(
            "Failed to decrypt data - invalid key or corrupted ciphertext",
            details={"error_type": type(e).__name__},
        ) from e


def key_from_hex(hex_key: str) -> bytes:
    """Convert a hexadecimal string (e.g. TOKEN_ENCRYPTION_KEY) to a key.

    Args:
        hex_key: A 64-character hexadecimal string representing a 256-bit key.

    Returns:
        A 32-byte encryption key.

    Raises:
        ConfigurationError: If the string is not 64 hex characters.
    """
    hex_key = hex_key.strip()

    if len(hex_key) != HEX_KEY_LENGTH:
        raise ConfigurationError(
            f"Invalid hex key length: expected {HEX_KEY_LENGTH} characters, "
            f"got {len(hex_key)}",
            details={"expected_length": HEX_KEY_LENGTH, "actual_length": len(hex_key)},
        )

    try:
        return bytes.fromhex(hex_key)
    except ValueError as e:
        raise ConfigurationError(
            "Invalid hex key: contains non-hexadecimal characters",
            details={"error_message": str(e)},
        ) from e


def _validate_key(key: bytes) -> None:
    """Validate that the key is the correct length for AES-256."""
    if len(key) != KEY_SIZE_BYTES:
        raise ConfigurationError(
            f"Invalid key length: expected {KEY_SIZE_BYTES} bytes, got {len(key)}",
            details={"expected_length": KEY_SIZE_BYTES, "actual_length": len(key)},
        )


__all__ = [
    "generate_key",
    "encrypt_data",
    "decrypt_data",
    "key_from_hex",
]
