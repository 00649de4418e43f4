"""Settings API routes compatible with the single-key settings screen."""

from fastapi import APIRouter, Depends, HTTPException, status

from keypool.api.dependencies import get_key_service, key_errors
from keypool.core.keys import KeyManagementService
from keypool.core.llm.providers import get_available_providers
from keypool.models.schemas.settings import (
    ApiKeyCreate,
    ApiKeyStatus,
    ApiKeyListResponse,
    ProviderInfo,
    ProvidersResponse,
)

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/api-keys", response_model=ApiKeyListResponse)
async def list_api_keys(service: KeyManagementService = Depends(get_key_service)):
    """
    List providers that have a key (without exposing actual keys).

    A provider counts as configured if it has a legacy key or multi-key records.
    """
    with key_errors():
        legacy_entries = {entry.provider: entry for entry in await service.legacy_store.list_entries()}
        statuses = []
        for provider_id in await service.list_providers():
            records = await service.list_keys(provider_id)
            config = await service.get_config(provider_id)
            primary = next((r for r in records if r.is_primary), records[0] if records else None)
            legacy = legacy_entries.get(provider_id)

            last_used = primary.usage.last_used if primary else None
            if last_used is None and legacy is not None:
                last_used = legacy.last_used_at
            created_at = primary.created_at if primary else legacy.created_at

            statuses.append(
                ApiKeyStatus(
                    provider=provider_id,
                    is_configured=True,
                    masked_key=primary.masked_key if primary else None,
                    multi_key_enabled=config.multi_key_enabled,
                    key_count=len(records),
                    last_used_at=last_used.isoformat() if last_used else None,
                    created_at=created_at.isoformat() if created_at else None,
                )
            )

    return ApiKeyListResponse(api_keys=statuses)


@router.post("/api-keys", status_code=status.HTTP_201_CREATED)
async def set_api_key(
    key_data: ApiKeyCreate,
    service: KeyManagementService = Depends(get_key_service),
):
    """
    Set the key of a provider.

    Multi-key providers get their primary key replaced; single-key providers
    get the legacy (encrypted) value written. The key is never returned.
    """
    with key_errors():
        await service.set_compatible_key(key_data.provider, key_data.api_key)

    return {"message": f"API key for {key_data.provider} saved successfully"}


@router.delete("/api-keys/{provider}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_api_key(
    provider: str,
    service: KeyManagementService = Depends(get_key_service),
):
    """Delete the legacy key of a provider. Multi-key records are managed separately."""
    with key_errors():
        deleted = await service.legacy_store.delete(provider)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No API key found for provider: {provider}",
        )


@router.get("/providers", response_model=ProvidersResponse)
async def list_providers():
    """Known AI providers, for provider pickers in the UI."""
    return ProvidersResponse(providers=[ProviderInfo(**p) for p in get_available_providers()])
