"""Multi-key management API schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from keypool.core.keys.types import (
    ApiKeyRecord,
    KeyStats,
    KeyStatus,
    LoadBalanceStrategy,
    ProviderStrategyConfig,
)
from keypool.core.keys.legacy import MigrationReport


class ProviderKeyCreate(BaseModel):
    """Schema for adding a key to a provider."""

    key: str = Field(..., min_length=1, description="The API key to store")
    name: Optional[str] = Field(None, max_length=255, description="Optional display name")
    priority: int = Field(5, ge=1, le=100, description="Lower value = tried first by 'priority'")
    is_enabled: bool = Field(True, description="Manual on/off switch")
    is_primary: bool = Field(False, description="Use this key when multi-key mode is off")


class ProviderKeyUpdate(BaseModel):
    """Schema for partially updating a key. Omitted fields are left unchanged."""

    key: Optional[str] = Field(None, min_length=1)
    name: Optional[str] = Field(None, max_length=255)
    priority: Optional[int] = Field(None, ge=1, le=100)
    is_enabled: Optional[bool] = None
    status: Optional[KeyStatus] = None


class KeyUsageResponse(BaseModel):
    total_requests: int
    successful_requests: int
    failed_requests: int
    consecutive_failures: int
    last_used: Optional[datetime] = None


class ProviderKeyResponse(BaseModel):
    """Schema for a stored key. The key itself is only returned masked."""

    id: str
    provider_id: str
    masked_key: str
    name: Optional[str] = None
    is_enabled: bool
    is_primary: bool
    priority: int
    status: KeyStatus
    last_error: Optional[str] = None
    usage: KeyUsageResponse
    disabled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    format_valid: Optional[bool] = Field(None, description="Whether the key looks like a key of this provider")

    @classmethod
    def from_record(cls, record: ApiKeyRecord, format_valid: Optional[bool] = None) -> "ProviderKeyResponse":
        return cls(
            id=record.id,
            provider_id=record.provider_id,
            masked_key=record.masked_key,
            name=record.name,
            is_enabled=record.is_enabled,
            is_primary=record.is_primary,
            priority=record.priority,
            status=record.status,
            last_error=record.last_error,
            usage=KeyUsageResponse(
                total_requests=record.usage.total_requests,
                successful_requests=record.usage.successful_requests,
                failed_requests=record.usage.failed_requests,
                consecutive_failures=record.usage.consecutive_failures,
                last_used=record.usage.last_used,
            ),
            disabled_at=record.disabled_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
            format_valid=format_valid,
        )


class ProviderKeyListResponse(BaseModel):
    keys: list[ProviderKeyResponse]


class KeyManagementConfig(BaseModel):
    """Schema for a provider's load-balancing configuration."""

    strategy: LoadBalanceStrategy = LoadBalanceStrategy.ROUND_ROBIN
    multi_key_enabled: bool = False
    max_failures_before_disable: int = Field(3, ge=1, le=100)
    failure_recovery_time_minutes: int = Field(5, ge=0, le=10080)


class KeyManagementResponse(KeyManagementConfig):
    provider_id: str
    updated_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, config: ProviderStrategyConfig) -> "KeyManagementResponse":
        return cls(
            provider_id=config.provider_id,
            strategy=config.strategy,
            multi_key_enabled=config.multi_key_enabled,
            max_failures_before_disable=config.max_failures_before_disable,
            failure_recovery_time_minutes=config.failure_recovery_time_minutes,
            updated_at=config.updated_at,
        )


class KeyStatsResponse(BaseModel):
    total: int
    active: int
    disabled: int
    error: int
    total_requests: int
    success_rate: int

    @classmethod
    def from_stats(cls, stats: KeyStats) -> "KeyStatsResponse":
        return cls(
            total=stats.total,
            active=stats.active,
            disabled=stats.disabled,
            error=stats.error,
            total_requests=stats.total_requests,
            success_rate=stats.success_rate,
        )


class KeySelectionResponse(BaseModel):
    """Which key the next request would use."""

    key_id: str
    masked_key: str
    name: Optional[str] = None
    strategy: LoadBalanceStrategy
    multi_key_enabled: bool


class MigrationResponse(BaseModel):
    migrated: list[str]
    skipped: list[str]
    failed: list[str]

    @classmethod
    def from_report(cls, report: MigrationReport) -> "MigrationResponse":
        return cls(migrated=report.migrated, skipped=report.skipped, failed=report.failed)
