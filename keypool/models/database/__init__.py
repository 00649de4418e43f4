"""Database models."""

from keypool.models.database.api_key import ApiKey
from keypool.models.database.provider_api_key import ProviderApiKey
from keypool.models.database.provider_key_management import ProviderKeyManagement

__all__ = ["ApiKey", "ProviderApiKey", "ProviderKeyManagement"]
