"""Encryption utilities for integration credentials stored at rest."""

import logging

from cryptography.fernet import Fernet, InvalidToken

from creative_export.core.config import get_config

logger = logging.getLogger(__name__)

FERNET_TOKEN_PREFIX = "gAAAAA"


def _get_encryption_key(key: str | None = None) -> bytes:
    """Explicit key, else ``ENCRYPTION_KEY`` from configuration.

    Raises:
        ValueError: If no key is configured.
    """
    key = key or get_config().secrets.encryption_key
    if not key:
        raise ValueError(
            "ENCRYPTION_KEY environment variable not set. "
            "Generate a key with: python scripts/generate_encryption_key.py"
        )
    return key.encode()


def encrypt_secret(plaintext: str, key: str | None = None) -> str:
    """Encrypt a credential for storage.

    Raises:
        ValueError: If no key is configured or plaintext is empty.
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty string")

    fernet = Fernet(_get_encryption_key(key))
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_secret(ciphertext: str, key: str | None = None) -> str:
    """Decrypt a stored credential.

    Raises:
        ValueError: If no key is configured, ciphertext is empty, or decryption fails.
    """
    if not ciphertext:
        raise ValueError("Cannot decrypt empty string")

    fernet = Fernet(_get_encryption_key(key))
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken as e:
        logger.error("Failed to decrypt secret - invalid token or wrong encryption key")
        raise ValueError("Invalid encrypted data or wrong encryption key") from e


def looks_encrypted(value: str | None) -> bool:
    """Cheap format check: Fernet tokens are urlsafe base64 starting with ``gAAAAA``."""
    return bool(value) and value.startswith(FERNET_TOKEN_PREFIX)


def generate_encryption_key() -> str:
    """Generate a new Fernet encryption key."""
    return Fernet.generate_key().decode()
