"""Persistence of provider key records."""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keypool.core.clock import utcnow
from keypool.core.keys.errors import (
    DuplicateKeyError,
    KeyNotFoundError,
    translate_storage_errors,
)
from keypool.core.keys.types import ApiKeyRecord, ApiKeyUsage, KeyStats, KeyStatus
from keypool.models.database import ProviderApiKey

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000

UPDATABLE_FIELDS = frozenset(
    {"key", "name", "is_enabled", "is_primary", "priority", "status", "last_error"}
)


def to_record(row: ProviderApiKey) -> ApiKeyRecord:
    """Convert an ORM row into an immutable record."""
    return ApiKeyRecord(
        id=row.id,
        provider_id=row.provider_id,
        key=row.key,
        name=row.name,
        is_enabled=bool(row.is_enabled),
        is_primary=bool(row.is_primary),
        priority=row.priority,
        usage=ApiKeyUsage(
            total_requests=row.total_requests or 0,
            successful_requests=row.successful_requests or 0,
            failed_requests=row.failed_requests or 0,
            consecutive_failures=row.consecutive_failures or 0,
            last_used=row.last_used,
        ),
        status=KeyStatus(row.status),
        last_error=row.last_error,
        disabled_at=row.disabled_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _clean_key(key: str) -> str:
    key = (key or "").strip()
    if not key:
        raise ValueError("API key must not be empty")
    return key


class ProviderKeyStore:
    """CRUD and atomic counter updates for the ``provider_api_keys`` table.

    Every method runs in its own session taken from ``session_factory``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        provider_id: str,
        key: str,
        name: Optional[str] = None,
        is_enabled: bool = True,
        is_primary: bool = False,
        priority: int = 5,
        status: KeyStatus = KeyStatus.ACTIVE,
    ) -> ApiKeyRecord:
        """
        Store a new key for a provider.

        Raises:
            DuplicateKeyError: The provider already has this key
        """
        key = _clean_key(key)
        now = utcnow()
        row = ProviderApiKey(
            provider_id=provider_id,
            key=key,
            name=name or None,
            is_enabled=is_enabled,
            is_primary=is_primary,
            priority=priority,
            status=KeyStatus(status).value,
            created_at=now,
            updated_at=now,
        )

        async with translate_storage_errors("create", provider_id=provider_id):
            async with self._session_factory() as session:
                if is_primary:
                    await self._clear_primary(session, provider_id, now)
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise DuplicateKeyError(provider_id) from e
                record = to_record(row)

        logger.info(
            "Created API key",
            extra={"provider_id": provider_id, "key_id": record.id, "key": record.masked_key},
        )
        return record

    async def get(self, key_id: str) -> Optional[ApiKeyRecord]:
        async with translate_storage_errors("get", key_id=key_id):
            async with self._session_factory() as session:
                row = await session.get(ProviderApiKey, key_id)
                return to_record(row) if row else None

    async def list_by_provider(self, provider_id: str) -> list[ApiKeyRecord]:
        """All records of a provider, by priority then creation time."""
        query = (
            select(ProviderApiKey)
            .where(ProviderApiKey.provider_id == provider_id)
            .order_by(
                ProviderApiKey.priority.asc(),
                ProviderApiKey.created_at.asc(),
                ProviderApiKey.id.asc(),
            )
        )
        async with translate_storage_errors("list_by_provider", provider_id=provider_id):
            async with self._session_factory() as session:
                result = await session.execute(query)
                return [to_record(row) for row in result.scalars().all()]

    async def get_primary(self, provider_id: str) -> Optional[ApiKeyRecord]:
        """The provider's primary record, else its first record, else None."""
        query = (
            select(ProviderApiKey)
            .where(ProviderApiKey.provider_id == provider_id, ProviderApiKey.is_primary.is_(True))
            .order_by(ProviderApiKey.created_at.asc())
            .limit(1)
        )
        async with translate_storage_errors("get_primary", provider_id=provider_id):
            async with self._session_factory() as session:
                result = await session.execute(query)
                row = result.scalar_one_or_none()
                if row is not None:
                    return to_record(row)

        records = await self.list_by_provider(provider_id)
        return records[0] if records else None

    async def update(self, key_id: str, **patch: Any) -> ApiKeyRecord:
        """
        Merge fields into a record and bump ``updated_at``.

        Raises:
            KeyNotFoundError: Unknown key id
            DuplicateKeyError: The new key value already exists for the provider
            ValueError: Unknown field or empty key
        """
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if "key" in patch:
            patch["key"] = _clean_key(patch["key"])
        if "status" in patch:
            patch["status"] = KeyStatus(patch["status"])

        now = utcnow()
        async with translate_storage_errors("update", key_id=key_id):
            async with self._session_factory() as session:
                row = await session.get(ProviderApiKey, key_id)
                if row is None:
                    raise KeyNotFoundError(key_id)
                provider_id = row.provider_id

                if patch.get("is_primary"):
                    await self._clear_primary(session, provider_id, now, exclude_id=key_id)

                for field_name, value in patch.items():
                    if field_name == "status":
                        row.status = value.value
                        if value != KeyStatus.DISABLED:
                            row.disabled_at = None
                    else:
                        setattr(row, field_name, value)
                row.updated_at = now

                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise DuplicateKeyError(provider_id) from e
                record = to_record(row)

        logger.info("Updated API key", extra={"key_id": key_id, "fields": ",".join(sorted(patch))})
        return record

    async def delete(self, key_id: str) -> bool:
        """Delete a record. Returns whether a row was removed."""
        stmt = delete(ProviderApiKey).where(ProviderApiKey.id == key_id)
        async with translate_storage_errors("delete", key_id=key_id):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                deleted = result.rowcount > 0

        if deleted:
            logger.info("Deleted API key", extra={"key_id": key_id})
        return deleted

    async def set_primary(self, provider_id: str, key_id: str) -> ApiKeyRecord:
        """Make ``key_id`` the only primary record of the provider."""
        now = utcnow()
        async with translate_storage_errors("set_primary", provider_id=provider_id, key_id=key_id):
            async with self._session_factory() as session:
                row = await session.get(ProviderApiKey, key_id)
                if row is None or row.provider_id != provider_id:
                    raise KeyNotFoundError(key_id)

                await self._clear_primary(session, provider_id, now, exclude_id=key_id)
                row.is_primary = True
                row.updated_at = now
                await session.commit()
                record = to_record(row)

        logger.info("Set primary API key", extra={"provider_id": provider_id, "key_id": key_id})
        return record

    async def apply_outcome(
        self,
        key_id: str,
        success: bool,
        max_failures: int,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ApiKeyRecord]:
        """
        Record one request outcome with a single UPDATE statement.

        All new values are computed in SQL from the row's current values, so
        concurrent reports for the same key never lose an update.

        Returns:
            The updated record, or None if the key does not exist
        """
        now = now or utcnow()
        table = ProviderApiKey
        values: dict[Any, Any] = {
            "total_requests": table.total_requests + 1,
            "last_used": now,
            "updated_at": now,
        }

        if success:
            values.update(
                successful_requests=table.successful_requests + 1,
                consecutive_failures=0,
                status=case(
                    (table.status == KeyStatus.ERROR.value, KeyStatus.ACTIVE.value),
                    else_=table.status,
                ),
            )
        else:
            reaches_limit = table.consecutive_failures + 1 >= max_failures
            values.update(
                failed_requests=table.failed_requests + 1,
                consecutive_failures=table.consecutive_failures + 1,
                last_error=(error or "Unknown error")[:MAX_ERROR_LENGTH],
                status=case(
                    (reaches_limit, KeyStatus.DISABLED.value),
                    (table.status == KeyStatus.ACTIVE.value, KeyStatus.ERROR.value),
                    else_=table.status,
                ),
                disabled_at=case(
                    (and_(reaches_limit, table.status != KeyStatus.DISABLED.value), now),
                    else_=table.disabled_at,
                ),
            )

        stmt = (
            update(table)
            .where(table.id == key_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        async with translate_storage_errors("apply_outcome", key_id=key_id):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    await session.rollback()
                    return None
                await session.commit()
                row = await session.get(ProviderApiKey, key_id, populate_existing=True)
                return to_record(row) if row else None

    async def recover_if_expired(self, key_id: str, cutoff: datetime) -> Optional[ApiKeyRecord]:
        """
        Return an auto-disabled key to service if it was disabled at or before ``cutoff``.

        The condition is part of the UPDATE, so concurrent callers recover a key once.

        Returns:
            The recovered record, or None if nothing changed
        """
        table = ProviderApiKey
        stmt = (
            update(table)
            .where(
                table.id == key_id,
                table.status == KeyStatus.DISABLED.value,
                table.disabled_at.is_not(None),
                table.disabled_at <= cutoff,
            )
            .values(
                status=KeyStatus.ACTIVE.value,
                consecutive_failures=0,
                disabled_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        async with translate_storage_errors("recover_if_expired", key_id=key_id):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    await session.rollback()
                    return None
                await session.commit()
                row = await session.get(ProviderApiKey, key_id, populate_existing=True)
                return to_record(row) if row else None

    async def get_stats(self, provider_id: str) -> KeyStats:
        """Counts per status plus request totals for a provider."""
        query = (
            select(
                ProviderApiKey.status,
                func.count(ProviderApiKey.id),
                func.coalesce(func.sum(ProviderApiKey.total_requests), 0),
                func.coalesce(func.sum(ProviderApiKey.successful_requests), 0),
            )
            .where(ProviderApiKey.provider_id == provider_id)
            .group_by(ProviderApiKey.status)
        )
        async with translate_storage_errors("get_stats", provider_id=provider_id):
            async with self._session_factory() as session:
                result = await session.execute(query)
                rows = result.all()

        counts = {status: 0 for status in KeyStatus}
        total_requests = 0
        successful = 0
        for status, count, requests, succeeded in rows:
            counts[KeyStatus(status)] = count
            total_requests += requests
            successful += succeeded

        return KeyStats(
            total=sum(counts.values()),
            active=counts[KeyStatus.ACTIVE],
            disabled=counts[KeyStatus.DISABLED],
            error=counts[KeyStatus.ERROR],
            total_requests=total_requests,
            success_rate=round(successful / total_requests * 100) if total_requests else 0,
        )

    async def list_providers(self) -> list[str]:
        """Provider ids that have at least one record."""
        query = select(ProviderApiKey.provider_id).distinct().order_by(ProviderApiKey.provider_id)
        async with translate_storage_errors("list_providers"):
            async with self._session_factory() as session:
                result = await session.execute(query)
                return list(result.scalars().all())

    @staticmethod
    async def _clear_primary(
        session: AsyncSession,
        provider_id: str,
        now: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        conditions = [ProviderApiKey.provider_id == provider_id, ProviderApiKey.is_primary.is_(True)]
        if exclude_id is not None:
            conditions.append(ProviderApiKey.id != exclude_id)
        await session.execute(
            update(ProviderApiKey)
            .where(*conditions)
            .values(is_primary=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
