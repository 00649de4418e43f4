"""Multi-key management: storage, selection, failure tracking and migration."""

from keypool.core.keys.errors import (
    DuplicateKeyError,
    KeyNotFoundError,
    KeyPoolError,
    NoAvailableKeyError,
    StorageError,
)
from keypool.core.keys.manager import KeyManagementService, build_key_service
from keypool.core.keys.types import (
    ApiKeyRecord,
    ApiKeyUsage,
    KeyStats,
    KeyStatus,
    LoadBalanceStrategy,
    ProviderStrategyConfig,
)

__all__ = [
    "ApiKeyRecord",
    "ApiKeyUsage",
    "DuplicateKeyError",
    "KeyManagementService",
    "KeyNotFoundError",
    "KeyPoolError",
    "KeyStats",
    "KeyStatus",
    "LoadBalanceStrategy",
    "NoAvailableKeyError",
    "ProviderStrategyConfig",
    "StorageError",
    "build_key_service",
]
