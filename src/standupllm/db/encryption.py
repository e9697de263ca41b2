"""Fernet encryption for tokens at rest."""

import os

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger

ENCRYPTION_KEY_ENV = "STANDUPLLM_TOKEN_ENCRYPTION_KEY"


class EncryptionKeyMissingError(Exception):
    """No usable Fernet key is configured."""


class TokenEncryptor:
    """Encrypts and decrypts token strings with a Fernet key."""

    def __init__(self, encryption_key: str | None = None):
        """Initialize the encryptor.

        Args:
            encryption_key: URL-safe base64 Fernet key. Falls back to
                STANDUPLLM_TOKEN_ENCRYPTION_KEY.

        Raises:
            EncryptionKeyMissingError: If no key is set or the key is malformed
        """
        key = encryption_key or os.getenv(ENCRYPTION_KEY_ENV)
        if not key:
            raise EncryptionKeyMissingError(
                f"{ENCRYPTION_KEY_ENV} is not set. Generate one with: "
                'python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"'
            )
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except ValueError as e:
            raise EncryptionKeyMissingError(f"{ENCRYPTION_KEY_ENV} is not a valid Fernet key: {e}") from e

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, value: str) -> str:
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken:
            logger.error("Failed to decrypt stored token (encryption key changed?)")
            raise
