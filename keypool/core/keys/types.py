"""Domain types for provider key management."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from keypool.core.security.masking import mask_api_key


class KeyStatus(str, Enum):
    """Health of a stored key.

    ``disabled`` is the automatic failure-driven state. The manual on/off
    switch is ``ApiKeyRecord.is_enabled`` and is independent of this.
    """

    ACTIVE = "active"
    DISABLED = "disabled"
    ERROR = "error"


class LoadBalanceStrategy(str, Enum):
    """How the next key is picked when multi-key mode is on."""

    ROUND_ROBIN = "round_robin"
    PRIORITY = "priority"
    LEAST_USED = "least_used"
    RANDOM = "random"


@dataclass(frozen=True)
class ApiKeyUsage:
    """Usage counters of a key."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    consecutive_failures: int = 0
    last_used: Optional[datetime] = None


@dataclass(frozen=True)
class ApiKeyRecord:
    """A stored provider key with its usage and health metadata."""

    id: str
    provider_id: str
    key: str
    name: Optional[str] = None
    is_enabled: bool = True
    is_primary: bool = False
    priority: int = 5
    usage: ApiKeyUsage = field(default_factory=ApiKeyUsage)
    status: KeyStatus = KeyStatus.ACTIVE
    last_error: Optional[str] = None
    disabled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def masked_key(self) -> str:
        return mask_api_key(self.key)

    @property
    def label(self) -> str:
        """Human-readable identifier for logs."""
        return self.name or self.id[:8]

    def __repr__(self) -> str:
        return (
            f"ApiKeyRecord(id={self.id!r}, provider_id={self.provider_id!r}, "
            f"key={self.masked_key!r}, status={self.status.value!r}, "
            f"is_enabled={self.is_enabled}, is_primary={self.is_primary}, "
            f"priority={self.priority})"
        )


@dataclass(frozen=True)
class ProviderStrategyConfig:
    """Load-balancing configuration of one provider."""

    provider_id: str
    strategy: LoadBalanceStrategy = LoadBalanceStrategy.ROUND_ROBIN
    multi_key_enabled: bool = False
    max_failures_before_disable: int = 3
    failure_recovery_time_minutes: int = 5
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.max_failures_before_disable < 1:
            raise ValueError("max_failures_before_disable must be >= 1")
        if self.failure_recovery_time_minutes < 0:
            raise ValueError("failure_recovery_time_minutes must be >= 0")


@dataclass(frozen=True)
class KeyStats:
    """Aggregated key statistics for one provider."""

    total: int = 0
    active: int = 0
    disabled: int = 0
    error: int = 0
    total_requests: int = 0
    success_rate: int = 0  # percent, 0-100
