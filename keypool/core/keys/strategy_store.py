"""Persistence of per-provider load-balancing configuration."""

import dataclasses
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keypool.core.clock import utcnow
from keypool.core.keys.errors import translate_storage_errors
from keypool.core.keys.types import LoadBalanceStrategy, ProviderStrategyConfig
from keypool.models.database import ProviderKeyManagement

logger = logging.getLogger(__name__)


def to_config(row: ProviderKeyManagement) -> ProviderStrategyConfig:
    return ProviderStrategyConfig(
        provider_id=row.provider_id,
        strategy=LoadBalanceStrategy(row.strategy),
        multi_key_enabled=bool(row.enable_multi_key),
        max_failures_before_disable=row.max_failures_before_disable,
        failure_recovery_time_minutes=row.failure_recovery_time_minutes,
        updated_at=row.updated_at,
    )


class StrategyConfigStore:
    """Reads and upserts rows of ``provider_key_management``.

    Providers without a row get a default config built from the constructor
    arguments; it is not written until the first ``set``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_strategy: LoadBalanceStrategy = LoadBalanceStrategy.ROUND_ROBIN,
        default_max_failures: int = 3,
        default_recovery_minutes: int = 5,
    ):
        self._session_factory = session_factory
        self.default_strategy = LoadBalanceStrategy(default_strategy)
        self.default_max_failures = default_max_failures
        self.default_recovery_minutes = default_recovery_minutes

    def default_config(self, provider_id: str) -> ProviderStrategyConfig:
        return ProviderStrategyConfig(
            provider_id=provider_id,
            strategy=self.default_strategy,
            multi_key_enabled=False,
            max_failures_before_disable=self.default_max_failures,
            failure_recovery_time_minutes=self.default_recovery_minutes,
        )

    async def _load(self, provider_id: str) -> Optional[ProviderStrategyConfig]:
        async with translate_storage_errors("get_config", provider_id=provider_id):
            async with self._session_factory() as session:
                row = await session.get(ProviderKeyManagement, provider_id)
                return to_config(row) if row else None

    async def exists(self, provider_id: str) -> bool:
        return await self._load(provider_id) is not None

    async def get(self, provider_id: str) -> ProviderStrategyConfig:
        """Persisted config of the provider, or the default one."""
        config = await self._load(provider_id)
        return config if config is not None else self.default_config(provider_id)

    async def set(self, config: ProviderStrategyConfig) -> ProviderStrategyConfig:
        """Insert or replace the provider's config."""
        now = utcnow()
        async with translate_storage_errors("set_config", provider_id=config.provider_id):
            async with self._session_factory() as session:
                row = await session.get(ProviderKeyManagement, config.provider_id)
                if row is None:
                    row = ProviderKeyManagement(provider_id=config.provider_id)
                    session.add(row)
                row.strategy = LoadBalanceStrategy(config.strategy).value
                row.enable_multi_key = config.multi_key_enabled
                row.max_failures_before_disable = config.max_failures_before_disable
                row.failure_recovery_time_minutes = config.failure_recovery_time_minutes
                row.updated_at = now
                await session.commit()
                stored = to_config(row)

        logger.info(
            "Saved key management config",
            extra={
                "provider_id": stored.provider_id,
                "strategy": stored.strategy.value,
                "multi_key": stored.multi_key_enabled,
            },
        )
        return stored

    async def is_multi_key_enabled(self, provider_id: str) -> bool:
        return (await self.get(provider_id)).multi_key_enabled

    async def set_strategy(
        self, provider_id: str, strategy: LoadBalanceStrategy
    ) -> ProviderStrategyConfig:
        current = await self.get(provider_id)
        return await self.set(dataclasses.replace(current, strategy=LoadBalanceStrategy(strategy)))

    async def set_multi_key_enabled(self, provider_id: str, enabled: bool) -> ProviderStrategyConfig:
        current = await self.get(provider_id)
        return await self.set(dataclasses.replace(current, multi_key_enabled=enabled))
