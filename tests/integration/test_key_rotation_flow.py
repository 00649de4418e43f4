"""
E2E integration tests for multi-key rotation.
Drives the full application: configuration through the API, outcome reporting
through the service, and recovery after the cooldown.
"""

import pytest
from httpx import AsyncClient, ASGITransport

from keypool.main import app as main_app


@pytest.fixture
async def full_client(key_service):
    """Client for the real application wired to the test key service."""
    main_app.state.key_service = key_service
    transport = ASGITransport(app=main_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    del main_app.state.key_service


@pytest.mark.integration
class TestApplication:
    """Test the application shell."""

    async def test_root(self, full_client: AsyncClient):
        response = await full_client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    async def test_health(self, full_client: AsyncClient):
        response = await full_client.get("/health")

        assert response.json() == {"status": "healthy"}

    async def test_service_missing(self):
        transport = ASGITransport(app=main_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/api/v1/providers/openai/keys")

        assert response.status_code == 503


@pytest.mark.integration
class TestKeyRotationFlow:
    """Test the complete lifecycle of a provider's key pool."""

    async def test_legacy_to_multi_key_flow(self, full_client: AsyncClient, key_service, clock):
        # Single key saved the old way
        response = await full_client.post(
            "/api/v1/settings/api-keys",
            json={"provider": "openai", "api_key": "sk-legacy-0000000000000"},
        )
        assert response.status_code == 201

        # Promote it and add two more keys
        migrated = (await full_client.post("/api/v1/providers/key-migration")).json()
        assert migrated["migrated"] == ["openai"]
        for key in ("sk-extra-a-000000000000", "sk-extra-b-000000000000"):
            response = await full_client.post("/api/v1/providers/openai/keys", json={"key": key})
            assert response.status_code == 201

        # Single-key mode still uses the migrated primary
        selected = (await full_client.post("/api/v1/providers/openai/keys/select")).json()
        primary_id = selected["key_id"]
        assert (await key_service.get_key(primary_id)).key == "sk-legacy-0000000000000"

        # Switch to priority balancing; the migrated key has priority 1
        await full_client.put(
            "/api/v1/providers/openai/key-management",
            json={"strategy": "priority", "multi_key_enabled": True, "max_failures_before_disable": 2},
        )
        assert (await key_service.select_key("openai")).id == primary_id

        # Two failures take it out of rotation
        await key_service.report_outcome(primary_id, success=False, error="quota exceeded")
        await key_service.report_outcome(primary_id, success=False, error="quota exceeded")
        fallback = await key_service.select_key("openai")
        assert fallback.id != primary_id

        stats = (await full_client.get("/api/v1/providers/openai/keys/stats")).json()
        assert stats["disabled"] == 1
        assert stats["active"] == 2

        # After the cooldown it is back and preferred again
        clock.advance(minutes=5)
        recovered = await key_service.select_key("openai")
        assert recovered.id == primary_id
        assert recovered.usage.consecutive_failures == 0

        # The compatibility read path still returns the primary key
        assert await key_service.get_compatible_key("openai") == "sk-legacy-0000000000000"
