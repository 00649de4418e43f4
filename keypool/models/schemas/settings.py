"""Settings API schemas for the single-key compatible endpoints."""

from pydantic import BaseModel, Field
from typing import Optional


class ProviderInfo(BaseModel):
    """Schema for a known AI provider."""

    id: str = Field(..., description="Provider identifier (e.g., 'openai', 'anthropic')")
    name: str = Field(..., description="Display name for the provider")
    env_key: Optional[str] = Field(None, description="Environment variable name for API key")


class ProvidersResponse(BaseModel):
    """Schema for listing known providers."""

    providers: list[ProviderInfo] = Field(..., description="List of known providers")


class ApiKeyCreate(BaseModel):
    """Schema for setting a provider's key through the compatibility path."""

    provider: str = Field(..., min_length=1, description="Provider name (openai, anthropic, etc.)")
    api_key: str = Field(..., min_length=1, description="The API key to store")


class ApiKeyStatus(BaseModel):
    """Schema for API key status response (without exposing actual key)."""

    provider: str = Field(..., description="Provider name")
    is_configured: bool = Field(..., description="Whether a key is configured for this provider")
    masked_key: Optional[str] = Field(None, description="Masked form of the effective key")
    multi_key_enabled: bool = Field(False, description="Whether the provider uses multi-key mode")
    key_count: int = Field(0, description="Number of multi-key records")
    last_used_at: Optional[str] = Field(
        None, description="Last time this key was used (ISO format)"
    )
    created_at: Optional[str] = Field(None, description="When the key was added (ISO format)")


class ApiKeyListResponse(BaseModel):
    """Schema for listing all API key statuses."""

    api_keys: list[ApiKeyStatus]
