"""Return auto-disabled keys to service after their cooldown."""

import logging
from datetime import datetime, timedelta
from typing import Callable

from keypool.core.clock import utcnow
from keypool.core.keys.key_store import ProviderKeyStore
from keypool.core.keys.types import ApiKeyRecord, KeyStatus, ProviderStrategyConfig

logger = logging.getLogger(__name__)


class RecoveryEvaluator:
    """Decides whether a disabled key may be tried again.

    Only the failure-driven ``status=disabled`` is recovered. A key the user
    switched off (``is_enabled=False``) stays off, and a key whose status was
    set to ``disabled`` by hand has no ``disabled_at`` and is left alone too.
    """

    def __init__(self, key_store: ProviderKeyStore, clock: Callable[[], datetime] = utcnow):
        self.key_store = key_store
        self.clock = clock

    def is_cooldown_over(self, record: ApiKeyRecord, config: ProviderStrategyConfig) -> bool:
        if record.status != KeyStatus.DISABLED or record.disabled_at is None:
            return False
        cooldown = timedelta(minutes=config.failure_recovery_time_minutes)
        return self.clock() - record.disabled_at >= cooldown

    def is_in_cooldown(self, record: ApiKeyRecord, config: ProviderStrategyConfig) -> bool:
        """Auto-disabled and the recovery time has not passed yet."""
        return (
            record.status == KeyStatus.DISABLED
            and record.disabled_at is not None
            and not self.is_cooldown_over(record, config)
        )

    async def maybe_recover(
        self, record: ApiKeyRecord, config: ProviderStrategyConfig
    ) -> ApiKeyRecord:
        """
        Reactivate ``record`` if its cooldown has passed.

        Returns:
            The recovered record with ``consecutive_failures == 0``, or the
            given record unchanged
        """
        if not self.is_cooldown_over(record, config):
            return record

        cutoff = self.clock() - timedelta(minutes=config.failure_recovery_time_minutes)
        recovered = await self.key_store.recover_if_expired(record.id, cutoff)
        if recovered is None:
            # Changed concurrently; reload to report the current state
            current = await self.key_store.get(record.id)
            return current or record

        logger.info(
            "API key recovered after cooldown",
            extra={
                "provider_id": record.provider_id,
                "key_id": record.id,
                "cooldown_minutes": config.failure_recovery_time_minutes,
            },
        )
        return recovered
