"""Security module."""

from keypool.core.security.encryption import KeyEncryptionService
from keypool.core.security.masking import is_masked_key, mask_api_key

__all__ = ["KeyEncryptionService", "is_masked_key", "mask_api_key"]
