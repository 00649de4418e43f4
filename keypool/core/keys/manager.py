"""Key management service: the single entry point used by the rest of the app."""

import dataclasses
import logging
import random
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keypool.core.clock import utcnow
from keypool.core.config import Settings
from keypool.core.keys.errors import KeyNotFoundError
from keypool.core.keys.failure_tracker import FailureTracker
from keypool.core.keys.key_store import ProviderKeyStore
from keypool.core.keys.legacy import LegacyKeyStore, LegacyMigrationAdapter, MigrationReport
from keypool.core.keys.recovery import RecoveryEvaluator
from keypool.core.keys.selector import KeySelector
from keypool.core.keys.strategy_store import StrategyConfigStore
from keypool.core.keys.types import (
    ApiKeyRecord,
    KeyStats,
    KeyStatus,
    LoadBalanceStrategy,
    ProviderStrategyConfig,
)
from keypool.core.llm.providers import validate_key_format
from keypool.core.security.encryption import KeyEncryptionService

logger = logging.getLogger(__name__)


class KeyManagementService:
    """Facade over the key stores, selector, failure tracker and migration.

    Build one per application with ``build_key_service`` and pass it to the
    code that needs keys. The request path only needs ``select_key`` and
    ``report_outcome``; the rest serves the settings UI.
    """

    def __init__(
        self,
        key_store: ProviderKeyStore,
        config_store: StrategyConfigStore,
        selector: KeySelector,
        tracker: FailureTracker,
        migration: LegacyMigrationAdapter,
    ):
        self.key_store = key_store
        self.config_store = config_store
        self.selector = selector
        self.tracker = tracker
        self.migration = migration

    # Request path

    async def select_key(self, provider_id: str) -> ApiKeyRecord:
        """Key for the next request to ``provider_id``; raises ``NoAvailableKeyError``."""
        return await self.selector.select_key(provider_id)

    async def report_outcome(
        self, key_id: str, success: bool, error: Optional[str] = None
    ) -> Optional[ApiKeyRecord]:
        return await self.tracker.report_outcome(key_id, success, error)

    # Key records

    async def add_key(
        self,
        provider_id: str,
        key: str,
        name: Optional[str] = None,
        priority: int = 5,
        is_enabled: bool = True,
        is_primary: bool = False,
    ) -> ApiKeyRecord:
        if not validate_key_format(provider_id, key.strip()):
            logger.info("API key does not match the usual format", extra={"provider_id": provider_id})

        # The first key of a provider becomes its primary key
        if not is_primary and await self.key_store.get_primary(provider_id) is None:
            is_primary = True

        record = await self.key_store.create(
            provider_id,
            key,
            name=name,
            is_enabled=is_enabled,
            is_primary=is_primary,
            priority=priority,
        )
        self.selector.reset_round_robin(provider_id)
        return record

    async def get_key(self, key_id: str) -> ApiKeyRecord:
        record = await self.key_store.get(key_id)
        if record is None:
            raise KeyNotFoundError(key_id)
        return record

    async def list_keys(self, provider_id: str) -> list[ApiKeyRecord]:
        return await self.key_store.list_by_provider(provider_id)

    async def update_key(self, key_id: str, **patch: Any) -> ApiKeyRecord:
        record = await self.key_store.update(key_id, **patch)
        self.selector.reset_round_robin(record.provider_id)
        return record

    async def delete_key(self, key_id: str) -> None:
        record = await self.get_key(key_id)
        if not await self.key_store.delete(key_id):
            raise KeyNotFoundError(key_id)
        self.selector.reset_round_robin(record.provider_id)

    async def set_primary(self, provider_id: str, key_id: str) -> ApiKeyRecord:
        return await self.key_store.set_primary(provider_id, key_id)

    async def enable_key(self, key_id: str) -> ApiKeyRecord:
        """Manually switch a key on. Its failure state is reset as well."""
        record = await self.get_key(key_id)
        patch: dict[str, Any] = {"is_enabled": True}
        if record.status == KeyStatus.DISABLED:
            patch["status"] = KeyStatus.ACTIVE
        return await self.update_key(key_id, **patch)

    async def disable_key(self, key_id: str) -> ApiKeyRecord:
        """Manually switch a key off. Never undone automatically."""
        return await self.update_key(key_id, is_enabled=False)

    async def is_in_cooldown(self, key_id: str) -> bool:
        """Whether the key was auto-disabled and is still waiting out its recovery time."""
        record = await self.get_key(key_id)
        config = await self.config_store.get(record.provider_id)
        return self.selector.recovery.is_in_cooldown(record, config)

    async def get_stats(self, provider_id: str) -> KeyStats:
        return await self.key_store.get_stats(provider_id)

    # Strategy config

    async def get_config(self, provider_id: str) -> ProviderStrategyConfig:
        return await self.config_store.get(provider_id)

    async def set_config(self, config: ProviderStrategyConfig) -> ProviderStrategyConfig:
        previous = await self.config_store.get(config.provider_id)
        stored = await self.config_store.set(config)
        if previous.strategy != stored.strategy or previous.multi_key_enabled != stored.multi_key_enabled:
            self.selector.reset_round_robin(config.provider_id)
        return stored

    async def update_config(self, provider_id: str, **changes: Any) -> ProviderStrategyConfig:
        current = await self.config_store.get(provider_id)
        if "strategy" in changes:
            changes["strategy"] = LoadBalanceStrategy(changes["strategy"])
        return await self.set_config(dataclasses.replace(current, **changes))

    async def set_strategy(self, provider_id: str, strategy: LoadBalanceStrategy) -> ProviderStrategyConfig:
        return await self.update_config(provider_id, strategy=strategy)

    async def set_multi_key_enabled(self, provider_id: str, enabled: bool) -> ProviderStrategyConfig:
        return await self.update_config(provider_id, multi_key_enabled=enabled)

    # Legacy compatibility

    async def migrate(self) -> MigrationReport:
        return await self.migration.migrate()

    async def get_compatible_key(self, provider_id: str) -> Optional[str]:
        return await self.migration.get_compatible_key(provider_id)

    async def set_compatible_key(self, provider_id: str, key: str) -> None:
        await self.migration.set_compatible_key(provider_id, key)
        self.selector.reset_round_robin(provider_id)

    @property
    def legacy_store(self) -> LegacyKeyStore:
        return self.migration.legacy_store

    async def list_providers(self) -> list[str]:
        """Providers with a legacy key or at least one multi-key record."""
        legacy = await self.legacy_store.list_providers()
        multi = await self.key_store.list_providers()
        return sorted(set(legacy) | set(multi))

    @staticmethod
    def validate_key_format(provider_id: str, key: str) -> bool:
        return validate_key_format(provider_id, key)


def build_key_service(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    encryption: Optional[KeyEncryptionService] = None,
    clock: Callable[[], datetime] = utcnow,
    rng: Optional[random.Random] = None,
) -> KeyManagementService:
    """Wire the key management components around one session factory."""
    key_store = ProviderKeyStore(session_factory)
    config_store = StrategyConfigStore(
        session_factory,
        default_strategy=LoadBalanceStrategy(settings.default_strategy),
        default_max_failures=settings.default_max_failures_before_disable,
        default_recovery_minutes=settings.default_failure_recovery_time_minutes,
    )
    recovery = RecoveryEvaluator(key_store, clock=clock)
    legacy_store = LegacyKeyStore(session_factory, encryption or KeyEncryptionService(settings.master_encryption_key))
    selector = KeySelector(key_store, config_store, recovery, rng=rng, legacy_store=legacy_store)
    tracker = FailureTracker(key_store, config_store, clock=clock)
    migration = LegacyMigrationAdapter(
        session_factory,
        legacy_store,
        key_store,
        config_store,
        known_providers=settings.known_providers_list,
    )
    return KeyManagementService(key_store, config_store, selector, tracker, migration)
