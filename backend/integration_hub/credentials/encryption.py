"""
Encryption vault for credential secrets.

Implements AES-256-GCM envelope encryption for per-instance secrets.

SECURITY:
- Uses AES-256-GCM for authenticated encryption
- Each encryption uses a fresh random 96-bit nonce from the OS CSPRNG
- Output is base64(nonce || ciphertext || tag), safe to store in a text column
- Decryption fails closed: malformed, truncated or tampered input raises
  DecryptionFailed and never yields plaintext
- The key is loaded once per process from INTEGRATION_ENCRYPTION_KEY and is
  read-only afterwards

Usage:
    from integration_hub.credentials.encryption import get_vault

    vault = get_vault()
    opaque = vault.encrypt_json({"api_token": "secret"})
    data = vault.decrypt_json(opaque)
"""

import base64
import binascii
import json
import logging
import secrets
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from integration_hub.config.settings import ENCRYPTION_KEY_ENV, get_settings

logger = logging.getLogger(__name__)


# AES-GCM constants
NONCE_SIZE = 12  # 96 bits, recommended for AES-GCM
TAG_SIZE = 16    # 128 bits, standard for AES-GCM
KEY_SIZE = 32    # 256 bits for AES-256


class EncryptionError(Exception):
    """Raised when encryption fails."""
    pass


class DecryptionFailed(Exception):
    """Raised when ciphertext is malformed or fails authentication."""
    pass


class InvalidKeyError(Exception):
    """Raised when encryption key is invalid."""
    pass


def _decode_key_string(key_string: str) -> bytes:
    """
    Decode key from string format.

    Supports:
    - Base64 encoding
    - Hex encoding
    - Raw UTF-8 (if exactly 32 bytes)
    """
    try:
        decoded = base64.b64decode(key_string, validate=True)
        if len(decoded) == KEY_SIZE:
            return decoded
    except (binascii.Error, ValueError):
        pass

    try:
        decoded = bytes.fromhex(key_string)
        if len(decoded) == KEY_SIZE:
            return decoded
    except ValueError:
        pass

    raw = key_string.encode("utf-8")
    if len(raw) == KEY_SIZE:
        return raw

    raise InvalidKeyError(
        f"Could not decode key string to {KEY_SIZE} bytes. "
        "Use base64, hex, or a raw 32-character string."
    )


class EncryptionVault:
    """
    AES-256-GCM vault for credential blobs.

    SECURITY:
    - Key must be 32 bytes (256 bits)
    - A nonce is never reused: every encrypt() draws a fresh one
    - Store key securely (never in code or logs)
    """

    def __init__(self, key: Optional[bytes] = None, key_string: Optional[str] = None):
        """
        Initialize vault with encryption key.

        Args:
            key: 32-byte encryption key as bytes
            key_string: Base64, hex or raw 32-character key string

        Raises:
            InvalidKeyError: If key is missing or wrong size
        """
        if key is not None:
            self._key = key
        elif key_string is not None:
            self._key = _decode_key_string(key_string)
        else:
            raise InvalidKeyError("Encryption key is required")

        if len(self._key) != KEY_SIZE:
            raise InvalidKeyError(
                f"Encryption key must be {KEY_SIZE} bytes, got {len(self._key)}"
            )

        self._aesgcm = AESGCM(self._key)

    def __repr__(self) -> str:
        return "<EncryptionVault(key=***)>"

    def encrypt(self, plaintext: bytes) -> str:
        """
        Encrypt bytes into an opaque printable string.

        Raises:
            EncryptionError: If encryption fails
        """
        if not isinstance(plaintext, (bytes, bytearray)):
            raise EncryptionError("Plaintext must be bytes")

        nonce = secrets.token_bytes(NONCE_SIZE)
        try:
            ciphertext = self._aesgcm.encrypt(nonce, bytes(plaintext), None)
        except Exception as e:
            logger.error("Encryption failed", extra={"error_type": type(e).__name__})
            raise EncryptionError("Failed to encrypt data") from e

        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, opaque: Union[str, bytes]) -> bytes:
        """
        Decrypt a value produced by encrypt().

        Raises:
            DecryptionFailed: If the encoding is malformed, the value is too
                short, or the authentication tag does not verify
        """
        try:
            if isinstance(opaque, str):
                opaque = opaque.encode("ascii")
            combined = base64.b64decode(opaque, validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise DecryptionFailed("Ciphertext is not valid base64") from e

        if len(combined) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionFailed("Ciphertext is too short")

        nonce = combined[:NONCE_SIZE]
        ciphertext = combined[NONCE_SIZE:]

        try:
            return self._aesgcm.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            logger.warning("Decryption failed - authentication tag mismatch")
            raise DecryptionFailed(
                "Decryption failed - data may have been tampered with"
            ) from e

    def encrypt_json(self, data: Dict[str, Any]) -> str:
        """Encrypt a JSON-serialisable dict."""
        try:
            plaintext = json.dumps(data, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise EncryptionError("Secret is not JSON serialisable") from e
        return self.encrypt(plaintext)

    def decrypt_json(self, opaque: Union[str, bytes]) -> Dict[str, Any]:
        """
        Decrypt a value produced by encrypt_json().

        Raises:
            DecryptionFailed: If decryption fails or the plaintext is not a JSON object
        """
        plaintext = self.decrypt(opaque)
        try:
            data = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecryptionFailed("Decrypted secret is not valid JSON") from e
        if not isinstance(data, dict):
            raise DecryptionFailed("Decrypted secret is not a JSON object")
        return data

    @staticmethod
    def generate_key() -> bytes:
        """Generate a new random 32-byte key."""
        return secrets.token_bytes(KEY_SIZE)

    @staticmethod
    def generate_key_string() -> str:
        """Generate a new random key as a base64 string."""
        return base64.b64encode(EncryptionVault.generate_key()).decode("utf-8")


_vault: Optional[EncryptionVault] = None


def get_vault() -> EncryptionVault:
    """
    Return the process-wide vault, loading the key on first use.

    Raises:
        InvalidKeyError: If INTEGRATION_ENCRYPTION_KEY is missing or invalid
    """
    global _vault
    if _vault is None:
        key_string = get_settings().encryption_key
        if not key_string:
            raise InvalidKeyError(f"{ENCRYPTION_KEY_ENV} environment variable is not set")
        _vault = EncryptionVault(key_string=key_string)
        logger.info("Encryption vault initialised")
    return _vault
