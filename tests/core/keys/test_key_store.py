"""Tests for the provider key record store."""

import pytest

from keypool.core.keys import DuplicateKeyError, KeyNotFoundError, KeyStatus
from keypool.core.keys.key_store import MAX_ERROR_LENGTH, ProviderKeyStore


@pytest.fixture
def store(session_factory):
    return ProviderKeyStore(session_factory)


@pytest.mark.unit
class TestCreate:
    """Test cases for storing keys."""

    async def test_create_defaults(self, store):
        record = await store.create("openai", "sk-test-key-000000000001")

        assert len(record.id) == 36
        assert record.provider_id == "openai"
        assert record.key == "sk-test-key-000000000001"
        assert record.is_enabled is True
        assert record.is_primary is False
        assert record.priority == 5
        assert record.status == KeyStatus.ACTIVE
        assert record.usage.total_requests == 0
        assert record.usage.last_used is None
        assert record.created_at is not None

    async def test_create_strips_whitespace(self, store):
        record = await store.create("openai", "  sk-padded-key-0001  ")
        assert record.key == "sk-padded-key-0001"

    async def test_create_empty_key_rejected(self, store):
        with pytest.raises(ValueError):
            await store.create("openai", "   ")

    async def test_duplicate_key_rejected(self, store):
        """Adding the same key twice fails and leaves the first record as is."""
        first = await store.create("openai", "sk-dup-key-0000000001", name="first")

        with pytest.raises(DuplicateKeyError):
            await store.create("openai", "sk-dup-key-0000000001", name="second")

        records = await store.list_by_provider("openai")
        assert len(records) == 1
        assert records[0].id == first.id
        assert records[0].name == "first"

    async def test_same_key_different_providers(self, store):
        await store.create("openai", "shared-key-000000000")
        await store.create("deepseek", "shared-key-000000000")

        assert len(await store.list_by_provider("openai")) == 1
        assert len(await store.list_by_provider("deepseek")) == 1

    async def test_create_primary_clears_previous_primary(self, store):
        first = await store.create("openai", "sk-key-a-000000000000", is_primary=True)
        second = await store.create("openai", "sk-key-b-000000000000", is_primary=True)

        assert (await store.get(first.id)).is_primary is False
        assert (await store.get(second.id)).is_primary is True


@pytest.mark.unit
class TestQueries:
    """Test cases for reading keys."""

    async def test_get_unknown(self, store):
        assert await store.get("does-not-exist") is None

    async def test_list_ordered_by_priority(self, store):
        await store.create("openai", "sk-low-000000000000000", priority=9)
        await store.create("openai", "sk-high-00000000000000", priority=1)
        await store.create("openai", "sk-mid-000000000000000", priority=5)
        await store.create("anthropic", "sk-ant-other-000000000", priority=1)

        records = await store.list_by_provider("openai")
        assert [r.priority for r in records] == [1, 5, 9]
        assert all(r.provider_id == "openai" for r in records)

    async def test_list_unknown_provider_empty(self, store):
        assert await store.list_by_provider("nobody") == []

    async def test_get_primary(self, store):
        await store.create("openai", "sk-first-0000000000000")
        primary = await store.create("openai", "sk-primary-00000000000", is_primary=True)

        assert (await store.get_primary("openai")).id == primary.id

    async def test_get_primary_falls_back_to_first(self, store):
        first = await store.create("openai", "sk-first-0000000000000", priority=1)
        await store.create("openai", "sk-second-000000000000", priority=2)

        assert (await store.get_primary("openai")).id == first.id

    async def test_get_primary_none(self, store):
        assert await store.get_primary("openai") is None

    async def test_list_providers(self, store):
        await store.create("openai", "sk-a-00000000000000000")
        await store.create("openai", "sk-b-00000000000000000")
        await store.create("anthropic", "sk-ant-000000000000000")

        assert await store.list_providers() == ["anthropic", "openai"]


@pytest.mark.unit
class TestUpdate:
    """Test cases for updating and deleting keys."""

    async def test_update_fields(self, store):
        record = await store.create("openai", "sk-update-00000000000")

        updated = await store.update(record.id, name="renamed", priority=2, is_enabled=False)

        assert updated.name == "renamed"
        assert updated.priority == 2
        assert updated.is_enabled is False
        assert updated.updated_at >= record.updated_at

    async def test_update_unknown_field(self, store):
        record = await store.create("openai", "sk-update-00000000000")
        with pytest.raises(ValueError):
            await store.update(record.id, total_requests=100)

    async def test_update_unknown_key(self, store):
        with pytest.raises(KeyNotFoundError):
            await store.update("missing", name="x")

    async def test_update_to_duplicate_key(self, store):
        await store.create("openai", "sk-one-000000000000000")
        second = await store.create("openai", "sk-two-000000000000000")

        with pytest.raises(DuplicateKeyError):
            await store.update(second.id, key="sk-one-000000000000000")

        assert (await store.get(second.id)).key == "sk-two-000000000000000"

    async def test_update_status_away_from_disabled_clears_disabled_at(self, store):
        record = await store.create("openai", "sk-status-00000000000")
        await store.apply_outcome(record.id, success=False, max_failures=1, error="boom")
        assert (await store.get(record.id)).disabled_at is not None

        updated = await store.update(record.id, status="active")

        assert updated.status == KeyStatus.ACTIVE
        assert updated.disabled_at is None

    async def test_update_is_primary(self, store):
        first = await store.create("openai", "sk-one-000000000000000", is_primary=True)
        second = await store.create("openai", "sk-two-000000000000000")

        updated = await store.update(second.id, is_primary=True)

        assert updated.is_primary is True
        assert (await store.get(first.id)).is_primary is False

    async def test_set_primary(self, store):
        first = await store.create("openai", "sk-one-000000000000000", is_primary=True)
        second = await store.create("openai", "sk-two-000000000000000")

        result = await store.set_primary("openai", second.id)

        assert result.is_primary is True
        records = await store.list_by_provider("openai")
        assert [r.id for r in records if r.is_primary] == [second.id]
        assert (await store.get(first.id)).is_primary is False

    async def test_set_primary_wrong_provider(self, store):
        record = await store.create("openai", "sk-one-000000000000000")
        with pytest.raises(KeyNotFoundError):
            await store.set_primary("anthropic", record.id)

    async def test_delete(self, store):
        record = await store.create("openai", "sk-delete-00000000000")

        assert await store.delete(record.id) is True
        assert await store.get(record.id) is None
        assert await store.delete(record.id) is False


@pytest.mark.unit
class TestApplyOutcome:
    """Test cases for atomic usage counter updates."""

    async def test_success_counts(self, store):
        record = await store.create("openai", "sk-usage-000000000000")

        updated = await store.apply_outcome(record.id, success=True, max_failures=3)

        assert updated.usage.total_requests == 1
        assert updated.usage.successful_requests == 1
        assert updated.usage.failed_requests == 0
        assert updated.usage.consecutive_failures == 0
        assert updated.usage.last_used is not None
        assert updated.status == KeyStatus.ACTIVE

    async def test_failure_marks_error(self, store):
        record = await store.create("openai", "sk-usage-000000000000")

        updated = await store.apply_outcome(record.id, success=False, max_failures=3, error="429")

        assert updated.usage.failed_requests == 1
        assert updated.usage.consecutive_failures == 1
        assert updated.status == KeyStatus.ERROR
        assert updated.last_error == "429"
        assert updated.disabled_at is None

    async def test_failures_reaching_limit_disable(self, store):
        record = await store.create("openai", "sk-usage-000000000000")

        for _ in range(3):
            updated = await store.apply_outcome(record.id, success=False, max_failures=3)

        assert updated.status == KeyStatus.DISABLED
        assert updated.usage.consecutive_failures == 3
        assert updated.disabled_at is not None
        assert updated.last_error == "Unknown error"

    async def test_success_after_error_reactivates(self, store):
        record = await store.create("openai", "sk-usage-000000000000")
        await store.apply_outcome(record.id, success=False, max_failures=3)

        updated = await store.apply_outcome(record.id, success=True, max_failures=3)

        assert updated.status == KeyStatus.ACTIVE
        assert updated.usage.consecutive_failures == 0
        assert updated.usage.total_requests == 2

    async def test_long_error_truncated(self, store):
        record = await store.create("openai", "sk-usage-000000000000")

        updated = await store.apply_outcome(
            record.id, success=False, max_failures=3, error="x" * (MAX_ERROR_LENGTH + 50)
        )

        assert len(updated.last_error) == MAX_ERROR_LENGTH

    async def test_unknown_key(self, store):
        assert await store.apply_outcome("missing", success=True, max_failures=3) is None

    async def test_counters_stay_consistent(self, store):
        """Mixed outcomes never break total == successful + failed."""
        record = await store.create("openai", "sk-usage-000000000000")
        outcomes = [True, False, True, True, False, False, True]

        for success in outcomes:
            updated = await store.apply_outcome(record.id, success=success, max_failures=10)

        usage = updated.usage
        assert usage.total_requests == len(outcomes)
        assert usage.total_requests == usage.successful_requests + usage.failed_requests
        assert usage.successful_requests == 4


@pytest.mark.unit
class TestStats:
    """Test cases for per-provider statistics."""

    async def test_stats_empty(self, store):
        stats = await store.get_stats("openai")

        assert stats.total == 0
        assert stats.total_requests == 0
        assert stats.success_rate == 0

    async def test_stats(self, store):
        healthy = await store.create("openai", "sk-healthy-0000000000")
        failing = await store.create("openai", "sk-failing-0000000000")
        await store.create("openai", "sk-unused-00000000000")

        for _ in range(3):
            await store.apply_outcome(healthy.id, success=True, max_failures=3)
        await store.apply_outcome(failing.id, success=False, max_failures=3)

        stats = await store.get_stats("openai")

        assert stats.total == 3
        assert stats.active == 2
        assert stats.error == 1
        assert stats.disabled == 0
        assert stats.total_requests == 4
        assert stats.success_rate == 75
