"""Encryption of legacy single-key values using Fernet (AES-128)."""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from keypool.core.config import settings

logger = logging.getLogger(__name__)


class KeyEncryptionService:
    """Encrypts and decrypts the keys held in the legacy ``api_keys`` table."""

    def __init__(self, master_key: Optional[str] = None):
        """
        Initialize the service.

        Args:
            master_key: Base64-encoded 32-byte Fernet key. Falls back to
                        ``KEYPOOL_MASTER_ENCRYPTION_KEY``. When neither is set an
                        ephemeral key is generated, so values written in this
                        process cannot be read after a restart.
        """
        key = master_key or settings.master_encryption_key

        if not key:
            key = self.generate_master_key()
            logger.warning(
                "KEYPOOL_MASTER_ENCRYPTION_KEY is not set; using an ephemeral key. "
                "Legacy keys stored now will be unreadable after restart."
            )

        try:
            self.cipher = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid master encryption key: {e}") from e

    def encrypt(self, plaintext: str) -> bytes:
        """
        Encrypt a plaintext API key.

        Args:
            plaintext: The API key to encrypt

        Returns:
            Encrypted bytes
        """
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")

        return self.cipher.encrypt(plaintext.encode())

    def decrypt(self, encrypted: bytes) -> str:
        """
        Decrypt an encrypted API key.

        Args:
            encrypted: The encrypted API key bytes

        Returns:
            Decrypted plaintext API key
        """
        if not encrypted:
            raise ValueError("Cannot decrypt empty bytes")

        try:
            return self.cipher.decrypt(encrypted).decode()
        except InvalidToken as e:
            raise ValueError("Failed to decrypt API key: token is invalid or the master key changed") from e

    @staticmethod
    def generate_master_key() -> str:
        """
        Generate a new master encryption key.

        Returns:
            Base64-encoded 32-byte key suitable for Fernet
        """
        return Fernet.generate_key().decode()
