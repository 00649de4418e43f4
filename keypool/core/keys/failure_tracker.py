"""Outcome reporting: usage counters and failure-driven status changes."""

import logging
from datetime import datetime
from typing import Callable, Optional

from keypool.core.clock import utcnow
from keypool.core.keys.key_store import ProviderKeyStore
from keypool.core.keys.legacy import is_legacy_key_id
from keypool.core.keys.strategy_store import StrategyConfigStore
from keypool.core.keys.types import ApiKeyRecord, KeyStatus

logger = logging.getLogger(__name__)


class FailureTracker:
    """Applies request outcomes to key records.

    Status transitions on failure:
        active -> error       while consecutive failures stay below the limit
        any    -> disabled    once consecutive failures reach the limit
    On success ``error`` goes back to ``active`` and the failure streak resets.
    """

    def __init__(
        self,
        key_store: ProviderKeyStore,
        config_store: StrategyConfigStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.key_store = key_store
        self.config_store = config_store
        self.clock = clock

    async def report_outcome(
        self, key_id: str, success: bool, error: Optional[str] = None
    ) -> Optional[ApiKeyRecord]:
        """
        Record the result of one provider request made with ``key_id``.

        Args:
            key_id: Id of the key used for the request
            success: Whether the provider request succeeded
            error: Failure description, stored as ``last_error``

        Returns:
            The updated record, or None if the key no longer exists or is an
            unsaved legacy key
        """
        if is_legacy_key_id(key_id):
            logger.debug("Outcome of a legacy key is not tracked", extra={"key_id": key_id})
            return None

        existing = await self.key_store.get(key_id)
        if existing is None:
            logger.warning("Outcome reported for unknown API key", extra={"key_id": key_id})
            return None

        config = await self.config_store.get(existing.provider_id)
        updated = await self.key_store.apply_outcome(
            key_id,
            success=success,
            max_failures=config.max_failures_before_disable,
            error=error,
            now=self.clock(),
        )
        if updated is None:
            logger.warning("API key deleted while reporting outcome", extra={"key_id": key_id})
            return None

        if updated.status != existing.status:
            self._log_transition(existing, updated, config.max_failures_before_disable)
        return updated

    @staticmethod
    def _log_transition(before: ApiKeyRecord, after: ApiKeyRecord, max_failures: int) -> None:
        extra = {
            "provider_id": after.provider_id,
            "key_id": after.id,
            "key_name": after.label,
            "from_status": before.status.value,
            "to_status": after.status.value,
        }
        if after.status == KeyStatus.DISABLED:
            extra["consecutive_failures"] = after.usage.consecutive_failures
            extra["error"] = (after.last_error or "")[:100]
            logger.warning(f"API key disabled after {max_failures} consecutive failures", extra=extra)
        elif after.status == KeyStatus.ACTIVE:
            logger.info("API key back to active", extra=extra)
        else:
            logger.info("API key marked as failing", extra=extra)
