"""Single-key storage and its promotion into the multi-key model."""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keypool.core.clock import utcnow
from keypool.core.keys.errors import DuplicateKeyError, StorageError, translate_storage_errors
from keypool.core.keys.key_store import ProviderKeyStore
from keypool.core.keys.strategy_store import StrategyConfigStore
from keypool.core.keys.types import ApiKeyRecord, KeyStatus
from keypool.core.security.encryption import KeyEncryptionService
from keypool.models.database import ApiKey, ProviderApiKey, ProviderKeyManagement

logger = logging.getLogger(__name__)

MIGRATED_KEY_NAME = "Default key (migrated)"
PRIMARY_KEY_NAME = "Primary key"
LEGACY_KEY_NAME = "Legacy key"
LEGACY_KEY_ID_PREFIX = "legacy:"


def is_legacy_key_id(key_id: str) -> bool:
    return key_id.startswith(LEGACY_KEY_ID_PREFIX)


def legacy_record(provider_id: str, key: str) -> ApiKeyRecord:
    """Unsaved record wrapping a legacy key so callers can use it like any other."""
    return ApiKeyRecord(
        id=f"{LEGACY_KEY_ID_PREFIX}{provider_id}",
        provider_id=provider_id,
        key=key,
        name=LEGACY_KEY_NAME,
        is_primary=True,
        priority=1,
    )


class LegacyKeyStore:
    """The ``api_keys`` table: one encrypted key per provider."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryption: KeyEncryptionService,
    ):
        self._session_factory = session_factory
        self.encryption = encryption

    async def get(self, provider_id: str) -> Optional[str]:
        """Decrypted legacy key of the provider, or None."""
        async with translate_storage_errors("legacy_get", provider_id=provider_id):
            async with self._session_factory() as session:
                result = await session.execute(select(ApiKey).where(ApiKey.provider == provider_id))
                row = result.scalar_one_or_none()
                if row is None:
                    return None
                encrypted = row.encrypted_key

        try:
            return self.encryption.decrypt(encrypted)
        except ValueError as e:
            logger.error("Cannot decrypt legacy API key", extra={"provider_id": provider_id})
            raise StorageError("legacy_get", str(e)) from e

    async def set(self, provider_id: str, key: str) -> None:
        """Encrypt and store the provider's key, replacing any previous one."""
        encrypted = self.encryption.encrypt(key)
        async with translate_storage_errors("legacy_set", provider_id=provider_id):
            async with self._session_factory() as session:
                result = await session.execute(select(ApiKey).where(ApiKey.provider == provider_id))
                row = result.scalar_one_or_none()
                if row is None:
                    session.add(ApiKey(provider=provider_id, encrypted_key=encrypted))
                else:
                    row.encrypted_key = encrypted
                    row.created_at = utcnow()
                    row.last_used_at = None
                await session.commit()

    async def touch(self, provider_id: str) -> None:
        """Record that the provider's legacy key was just handed out."""
        stmt = update(ApiKey).where(ApiKey.provider == provider_id).values(last_used_at=utcnow())
        async with translate_storage_errors("legacy_touch", provider_id=provider_id):
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()

    async def delete(self, provider_id: str) -> bool:
        async with translate_storage_errors("legacy_delete", provider_id=provider_id):
            async with self._session_factory() as session:
                result = await session.execute(delete(ApiKey).where(ApiKey.provider == provider_id))
                await session.commit()
                return result.rowcount > 0

    async def list_entries(self) -> list[ApiKey]:
        async with translate_storage_errors("legacy_list"):
            async with self._session_factory() as session:
                result = await session.execute(select(ApiKey).order_by(ApiKey.provider))
                return list(result.scalars().all())

    async def list_providers(self) -> list[str]:
        return [entry.provider for entry in await self.list_entries()]


@dataclass
class MigrationReport:
    """What ``migrate()`` did, per provider."""

    migrated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class LegacyMigrationAdapter:
    """Promotes legacy single keys into ``provider_api_keys``.

    Migration is idempotent and never deletes the legacy value; the legacy
    table remains the fallback read path when a provider has no records.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        legacy_store: LegacyKeyStore,
        key_store: ProviderKeyStore,
        config_store: StrategyConfigStore,
        known_providers: Iterable[str] = (),
    ):
        self._session_factory = session_factory
        self.legacy_store = legacy_store
        self.key_store = key_store
        self.config_store = config_store
        self.known_providers = list(known_providers)

    async def migrate(self) -> MigrationReport:
        """
        Create a primary record for every provider that only has a legacy key.

        A failure for one provider is logged and does not stop the others.
        """
        report = MigrationReport()
        try:
            providers = list(dict.fromkeys(self.known_providers + await self.legacy_store.list_providers()))
        except StorageError:
            logger.exception("Cannot list legacy API keys; migration skipped")
            return report

        for provider_id in providers:
            try:
                migrated = await self._migrate_provider(provider_id)
            except Exception:
                logger.exception("Legacy key migration failed", extra={"provider_id": provider_id})
                report.failed.append(provider_id)
                continue
            (report.migrated if migrated else report.skipped).append(provider_id)

        if report.migrated:
            logger.info(
                "Legacy key migration finished; legacy values kept as fallback",
                extra={"migrated": ",".join(report.migrated)},
            )
        return report

    async def _migrate_provider(self, provider_id: str) -> bool:
        legacy_key = await self.legacy_store.get(provider_id)
        if not legacy_key or not legacy_key.strip():
            return False

        existing = await self.key_store.list_by_provider(provider_id)
        if existing:
            logger.info(
                "Provider already has keys, skipping migration",
                extra={"provider_id": provider_id, "keys_count": len(existing)},
            )
            return False

        defaults = self.config_store.default_config(provider_id)
        now = utcnow()
        async with translate_storage_errors("migrate", provider_id=provider_id):
            async with self._session_factory() as session:
                session.add(
                    ProviderApiKey(
                        provider_id=provider_id,
                        key=legacy_key.strip(),
                        name=MIGRATED_KEY_NAME,
                        is_enabled=True,
                        is_primary=True,
                        priority=1,
                        status=KeyStatus.ACTIVE.value,
                        created_at=now,
                        updated_at=now,
                    )
                )
                if await session.get(ProviderKeyManagement, provider_id) is None:
                    session.add(
                        ProviderKeyManagement(
                            provider_id=provider_id,
                            strategy=defaults.strategy.value,
                            enable_multi_key=False,
                            max_failures_before_disable=defaults.max_failures_before_disable,
                            failure_recovery_time_minutes=defaults.failure_recovery_time_minutes,
                            updated_at=now,
                        )
                    )
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise DuplicateKeyError(provider_id) from e

        logger.info("Migrated legacy API key", extra={"provider_id": provider_id})
        return True

    async def get_compatible_key(self, provider_id: str) -> Optional[str]:
        """The primary multi-key value, else the legacy value, else None."""
        primary = await self.key_store.get_primary(provider_id)
        if primary is not None:
            return primary.key

        logger.debug("No multi-key records, falling back to legacy key", extra={"provider_id": provider_id})
        legacy_key = await self.legacy_store.get(provider_id)
        if legacy_key is not None:
            await self.legacy_store.touch(provider_id)
        return legacy_key

    async def set_compatible_key(self, provider_id: str, key: str) -> None:
        """
        Store a key through whichever model the provider currently uses.

        Multi-key mode writes the primary record (creating it if needed).
        Single-key mode writes the legacy value and keeps an existing primary
        record in step with it, since selection reads that record.
        """
        key = (key or "").strip()
        if not key:
            raise ValueError("API key must not be empty")

        if await self.config_store.is_multi_key_enabled(provider_id):
            primary = await self.key_store.get_primary(provider_id)
            if primary is not None:
                await self.key_store.update(primary.id, key=key)
            else:
                await self.key_store.create(
                    provider_id,
                    key,
                    name=PRIMARY_KEY_NAME,
                    is_primary=True,
                    priority=1,
                )
            return

        await self.legacy_store.set(provider_id, key)
        primary = await self.key_store.get_primary(provider_id)
        if primary is not None and primary.key != key:
            try:
                await self.key_store.update(primary.id, key=key)
            except DuplicateKeyError:
                logger.warning(
                    "Legacy key saved but primary record not synced: key already stored",
                    extra={"provider_id": provider_id, "key_id": primary.id},
                )
