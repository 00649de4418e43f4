"""Tests for the single-key compatible Settings API routes."""

import pytest
from sqlalchemy import select

from keypool.models.database import ApiKey


@pytest.mark.api
class TestApiKeyListAPI:
    """Test cases for listing API keys."""

    async def test_list_api_keys_empty(self, client):
        """Test listing API keys when none configured."""
        response = await client.get("/api/v1/settings/api-keys")

        assert response.status_code == 200
        assert response.json()["api_keys"] == []

    async def test_list_legacy_key(self, client, key_service):
        """Legacy-only providers are listed without exposing the key."""
        await key_service.legacy_store.set("openai", "sk-legacy-0000000000000")

        response = await client.get("/api/v1/settings/api-keys")

        assert response.status_code == 200
        data = response.json()["api_keys"]
        assert len(data) == 1
        assert data[0]["provider"] == "openai"
        assert data[0]["is_configured"] is True
        assert data[0]["key_count"] == 0
        assert data[0]["masked_key"] is None
        assert "sk-legacy-0000000000000" not in response.text

    async def test_list_multi_key_provider(self, client, key_service):
        await key_service.add_key("anthropic", "sk-ant-REDACTED")
        await key_service.add_key("anthropic", "sk-ant-REDACTED")
        await key_service.set_multi_key_enabled("anthropic", True)

        response = await client.get("/api/v1/settings/api-keys")

        data = response.json()["api_keys"]
        assert data[0]["provider"] == "anthropic"
        assert data[0]["key_count"] == 2
        assert data[0]["multi_key_enabled"] is True
        assert data[0]["masked_key"].startswith("sk-a")
        assert "sk-ant-REDACTED" not in response.text


@pytest.mark.api
class TestApiKeySetAPI:
    """Test cases for setting API keys."""

    async def test_set_api_key_new(self, client, key_service, db_session):
        """Test setting a new API key."""
        response = await client.post(
            "/api/v1/settings/api-keys",
            json={"provider": "openai", "api_key": "sk-test123"},
        )

        assert response.status_code == 201
        assert "openai" in response.json()["message"]

        result = await db_session.execute(select(ApiKey).where(ApiKey.provider == "openai"))
        saved_key = result.scalar_one()
        assert saved_key.encrypted_key != b"sk-test123"
        assert await key_service.get_compatible_key("openai") == "sk-test123"

    async def test_set_api_key_update_existing(self, client, key_service):
        """Test updating an existing API key."""
        await key_service.legacy_store.set("anthropic", "sk-old-key")

        response = await client.post(
            "/api/v1/settings/api-keys",
            json={"provider": "anthropic", "api_key": "sk-new-key"},
        )

        assert response.status_code == 201
        assert await key_service.legacy_store.get("anthropic") == "sk-new-key"

    async def test_set_api_key_multi_key_mode(self, client, key_service):
        await key_service.set_multi_key_enabled("openai", True)
        primary = await key_service.add_key("openai", "sk-old-000000000000000")

        response = await client.post(
            "/api/v1/settings/api-keys",
            json={"provider": "openai", "api_key": "sk-new-000000000000000"},
        )

        assert response.status_code == 201
        assert (await key_service.get_key(primary.id)).key == "sk-new-000000000000000"

    async def test_set_api_key_blank(self, client):
        response = await client.post(
            "/api/v1/settings/api-keys", json={"provider": "openai", "api_key": "   "}
        )

        assert response.status_code == 400

    async def test_set_api_key_missing_field(self, client):
        response = await client.post("/api/v1/settings/api-keys", json={"provider": "openai"})

        assert response.status_code == 422


@pytest.mark.api
class TestApiKeyDeleteAPI:
    """Test cases for deleting API keys."""

    async def test_delete_api_key_not_found(self, client):
        """Test deleting non-existent API key."""
        response = await client.delete("/api/v1/settings/api-keys/nonexistent")

        assert response.status_code == 404

    async def test_delete_api_key_success(self, client, key_service):
        """Test successful API key deletion."""
        await key_service.legacy_store.set("openai", "sk-legacy-0000000000000")

        response = await client.delete("/api/v1/settings/api-keys/openai")

        assert response.status_code == 204
        assert await key_service.legacy_store.get("openai") is None

    async def test_delete_keeps_multi_key_records(self, client, key_service):
        await key_service.legacy_store.set("openai", "sk-legacy-0000000000000")
        await key_service.migrate()

        response = await client.delete("/api/v1/settings/api-keys/openai")

        assert response.status_code == 204
        assert len(await key_service.list_keys("openai")) == 1


@pytest.mark.api
class TestProvidersAPI:
    """Test cases for listing known providers."""

    async def test_list_providers(self, client):
        response = await client.get("/api/v1/settings/providers")

        assert response.status_code == 200
        providers = response.json()["providers"]
        assert {"id": "openai", "name": "OpenAI", "env_key": "OPENAI_API_KEY"} in providers
