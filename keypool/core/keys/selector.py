"""Key selection: the load-balancing core."""

import asyncio
import logging
import random
from datetime import datetime
from typing import Optional, Sequence

from keypool.core.keys.errors import NoAvailableKeyError
from keypool.core.keys.key_store import ProviderKeyStore
from keypool.core.keys.legacy import LegacyKeyStore, legacy_record
from keypool.core.keys.recovery import RecoveryEvaluator
from keypool.core.keys.strategy_store import StrategyConfigStore
from keypool.core.keys.types import (
    ApiKeyRecord,
    KeyStatus,
    LoadBalanceStrategy,
    ProviderStrategyConfig,
)

logger = logging.getLogger(__name__)


class RoundRobinCursors:
    """Per-provider round-robin position.

    The cursor stores the id handed out last. The next pick is the first
    eligible id after it in id order, wrapping to the smallest. Keys that left
    the eligible set are therefore skipped without adjusting any index.

    Advancing is serialized with one ``asyncio.Lock`` per provider; different
    providers never wait on each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_ids: dict[str, str] = {}

    async def next(self, provider_id: str, candidates: Sequence[ApiKeyRecord]) -> ApiKeyRecord:
        if not candidates:
            raise NoAvailableKeyError(provider_id)

        ordered = sorted(candidates, key=lambda r: r.id)
        lock = self._locks.setdefault(provider_id, asyncio.Lock())
        async with lock:
            last_id = self._last_ids.get(provider_id)
            chosen = ordered[0]
            if last_id is not None:
                for record in ordered:
                    if record.id > last_id:
                        chosen = record
                        break
            self._last_ids[provider_id] = chosen.id
            return chosen

    def position(self, provider_id: str) -> Optional[str]:
        """Id returned last for the provider, if any."""
        return self._last_ids.get(provider_id)

    def reset(self, provider_id: Optional[str] = None) -> None:
        if provider_id is None:
            self._last_ids.clear()
        else:
            self._last_ids.pop(provider_id, None)


def pick_by_priority(candidates: Sequence[ApiKeyRecord]) -> ApiKeyRecord:
    return min(candidates, key=lambda r: (r.priority, r.usage.total_requests, r.id))


def pick_least_used(candidates: Sequence[ApiKeyRecord]) -> ApiKeyRecord:
    # Never-used keys sort before any used one
    return min(
        candidates,
        key=lambda r: (
            r.usage.total_requests,
            r.usage.last_used is not None,
            r.usage.last_used or datetime.min,
            r.id,
        ),
    )


def is_eligible(record: ApiKeyRecord) -> bool:
    """Enabled by the user and not auto-disabled. ``error`` keys stay eligible."""
    return record.is_enabled and record.status != KeyStatus.DISABLED


class KeySelector:
    """Chooses the key for the next request to a provider.

    Selection never changes usage counters; callers report the outcome of the
    request separately through the failure tracker.
    """

    def __init__(
        self,
        key_store: ProviderKeyStore,
        config_store: StrategyConfigStore,
        recovery: RecoveryEvaluator,
        cursors: Optional[RoundRobinCursors] = None,
        rng: Optional[random.Random] = None,
        legacy_store: Optional[LegacyKeyStore] = None,
    ):
        self.key_store = key_store
        self.legacy_store = legacy_store
        self.config_store = config_store
        self.recovery = recovery
        self.cursors = cursors or RoundRobinCursors()
        self.rng = rng or random.Random()

    async def select_key(self, provider_id: str) -> ApiKeyRecord:
        """
        Pick the key to use for the next request.

        With multi-key mode off the primary key is returned as is, whatever its
        status, so single-key providers behave exactly as before. A provider
        with no records yet falls back to its legacy key, wrapped in an unsaved
        record whose outcomes are not tracked.

        Raises:
            NoAvailableKeyError: No key is stored or none is eligible
        """
        config = await self.config_store.get(provider_id)

        if not config.multi_key_enabled:
            primary = await self.key_store.get_primary(provider_id)
            if primary is not None:
                return primary
            legacy = await self._legacy_key(provider_id)
            if legacy is None:
                raise NoAvailableKeyError(provider_id, "no key configured")
            return legacy

        records = await self.key_store.list_by_provider(provider_id)
        records = [await self._recover(record, config) for record in records]

        eligible = [record for record in records if is_eligible(record)]
        if not eligible:
            raise NoAvailableKeyError(
                provider_id,
                "no key configured" if not records else "all keys are disabled",
            )

        selected = await self._apply_strategy(provider_id, config.strategy, eligible)
        logger.debug(
            "Selected API key",
            extra={
                "provider_id": provider_id,
                "strategy": config.strategy.value,
                "key_id": selected.id,
                "key_name": selected.label,
                "key": selected.masked_key,
                "eligible": len(eligible),
            },
        )
        return selected

    async def _legacy_key(self, provider_id: str) -> Optional[ApiKeyRecord]:
        if self.legacy_store is None:
            return None
        key = await self.legacy_store.get(provider_id)
        if not key or not key.strip():
            return None
        await self.legacy_store.touch(provider_id)
        logger.debug("Using legacy API key", extra={"provider_id": provider_id})
        return legacy_record(provider_id, key.strip())

    async def _recover(self, record: ApiKeyRecord, config: ProviderStrategyConfig) -> ApiKeyRecord:
        if record.status != KeyStatus.DISABLED:
            return record
        return await self.recovery.maybe_recover(record, config)

    async def _apply_strategy(
        self,
        provider_id: str,
        strategy: LoadBalanceStrategy,
        eligible: list[ApiKeyRecord],
    ) -> ApiKeyRecord:
        if strategy == LoadBalanceStrategy.ROUND_ROBIN:
            return await self.cursors.next(provider_id, eligible)
        if strategy == LoadBalanceStrategy.PRIORITY:
            return pick_by_priority(eligible)
        if strategy == LoadBalanceStrategy.LEAST_USED:
            return pick_least_used(eligible)
        if strategy == LoadBalanceStrategy.RANDOM:
            return self.rng.choice(eligible)
        raise ValueError(f"Unsupported load balance strategy: {strategy!r}")

    def reset_round_robin(self, provider_id: Optional[str] = None) -> None:
        """Forget the round-robin position of one provider, or of all."""
        self.cursors.reset(provider_id)
        logger.info("Reset round-robin state", extra={"provider_id": provider_id or "*"})
