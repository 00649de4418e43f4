"""
Concurrent outcome reporting against a file-backed database.
Every report must land even when many run at once on the same key.
"""

import asyncio
import random

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from keypool.core.keys import KeyStatus, ProviderStrategyConfig, build_key_service
from keypool.core.storage.database import init_db


@pytest.fixture
async def file_session_factory(tmp_path):
    """Session factory on a SQLite file with a real connection pool."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'keypool.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    await init_db(engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def file_key_service(file_session_factory, test_settings, encryption, clock):
    return build_key_service(
        file_session_factory,
        test_settings,
        encryption=encryption,
        clock=clock,
        rng=random.Random(42),
    )


@pytest.mark.integration
class TestConcurrentOutcomes:
    """Test that concurrent outcome reports never lose an update."""

    async def test_no_lost_updates(self, file_key_service):
        await file_key_service.set_config(
            ProviderStrategyConfig("openai", max_failures_before_disable=100)
        )
        record = await file_key_service.add_key("openai", "sk-concurrent-00000000000")
        outcomes = [i % 2 == 0 for i in range(20)]

        await asyncio.gather(
            *(file_key_service.report_outcome(record.id, success=success) for success in outcomes)
        )

        usage = (await file_key_service.get_key(record.id)).usage
        assert usage.total_requests == 20
        assert usage.successful_requests == 10
        assert usage.failed_requests == 10
        assert usage.successful_requests + usage.failed_requests == usage.total_requests

    async def test_concurrent_failures_disable_once(self, file_key_service, clock):
        record = await file_key_service.add_key("openai", "sk-concurrent-00000000000")

        await asyncio.gather(
            *(file_key_service.report_outcome(record.id, success=False) for _ in range(10))
        )

        stored = await file_key_service.get_key(record.id)
        assert stored.usage.failed_requests == 10
        assert stored.usage.consecutive_failures == 10
        assert stored.status == KeyStatus.DISABLED
        assert stored.disabled_at == clock.now
