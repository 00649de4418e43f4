"""Multi-key management API routes."""

from fastapi import APIRouter, Depends, HTTPException, status

from keypool.api.dependencies import get_key_service, key_errors
from keypool.core.keys import ApiKeyRecord, KeyManagementService, ProviderStrategyConfig
from keypool.models.schemas.keys import (
    KeyManagementConfig,
    KeyManagementResponse,
    KeySelectionResponse,
    KeyStatsResponse,
    MigrationResponse,
    ProviderKeyCreate,
    ProviderKeyListResponse,
    ProviderKeyResponse,
    ProviderKeyUpdate,
)

router = APIRouter(prefix="/providers", tags=["keys"])


async def _get_provider_key(
    service: KeyManagementService, provider_id: str, key_id: str
) -> ApiKeyRecord:
    record = await service.get_key(key_id)
    if record.provider_id != provider_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"API key {key_id} not found for provider: {provider_id}",
        )
    return record


def _to_response(service: KeyManagementService, record: ApiKeyRecord) -> ProviderKeyResponse:
    return ProviderKeyResponse.from_record(
        record, format_valid=service.validate_key_format(record.provider_id, record.key)
    )


@router.post("/key-migration", response_model=MigrationResponse)
async def run_key_migration(service: KeyManagementService = Depends(get_key_service)):
    """Promote legacy single keys into multi-key records. Safe to call repeatedly."""
    report = await service.migrate()
    return MigrationResponse.from_report(report)


@router.get("/{provider_id}/keys", response_model=ProviderKeyListResponse)
async def list_provider_keys(
    provider_id: str,
    service: KeyManagementService = Depends(get_key_service),
):
    """List a provider's keys by priority, with masked key values."""
    with key_errors():
        records = await service.list_keys(provider_id)
    return ProviderKeyListResponse(keys=[_to_response(service, r) for r in records])


@router.post(
    "/{provider_id}/keys",
    response_model=ProviderKeyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_provider_key(
    provider_id: str,
    key_data: ProviderKeyCreate,
    service: KeyManagementService = Depends(get_key_service),
):
    """Add a key to a provider. Returns 409 if the provider already has it."""
    with key_errors():
        record = await service.add_key(
            provider_id,
            key_data.key,
            name=key_data.name,
            priority=key_data.priority,
            is_enabled=key_data.is_enabled,
            is_primary=key_data.is_primary,
        )
    return _to_response(service, record)


@router.get("/{provider_id}/keys/stats", response_model=KeyStatsResponse)
async def get_provider_key_stats(
    provider_id: str,
    service: KeyManagementService = Depends(get_key_service),
):
    with key_errors():
        stats = await service.get_stats(provider_id)
    return KeyStatsResponse.from_stats(stats)


@router.post("/{provider_id}/keys/select", response_model=KeySelectionResponse)
async def preview_key_selection(
    provider_id: str,
    service: KeyManagementService = Depends(get_key_service),
):
    """
    Run a selection for the provider and report which key was picked.

    Advances the round-robin position like a real request would. Returns 503
    when no key is available.
    """
    with key_errors():
        record = await service.select_key(provider_id)
        config = await service.get_config(provider_id)
    return KeySelectionResponse(
        key_id=record.id,
        masked_key=record.masked_key,
        name=record.name,
        strategy=config.strategy,
        multi_key_enabled=config.multi_key_enabled,
    )


@router.get("/{provider_id}/keys/{key_id}", response_model=ProviderKeyResponse)
async def get_provider_key(
    provider_id: str,
    key_id: str,
    service: KeyManagementService = Depends(get_key_service),
):
    with key_errors():
        record = await _get_provider_key(service, provider_id, key_id)
    return _to_response(service, record)


@router.patch("/{provider_id}/keys/{key_id}", response_model=ProviderKeyResponse)
async def update_provider_key(
    provider_id: str,
    key_id: str,
    key_data: ProviderKeyUpdate,
    service: KeyManagementService = Depends(get_key_service),
):
    """Update a key. Only the fields present in the body are changed."""
    changes = key_data.model_dump(exclude_unset=True)
    with key_errors():
        record = await _get_provider_key(service, provider_id, key_id)
        if changes:
            record = await service.update_key(key_id, **changes)
    return _to_response(service, record)


@router.delete("/{provider_id}/keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_provider_key(
    provider_id: str,
    key_id: str,
    service: KeyManagementService = Depends(get_key_service),
):
    with key_errors():
        await _get_provider_key(service, provider_id, key_id)
        await service.delete_key(key_id)


@router.post("/{provider_id}/keys/{key_id}/primary", response_model=ProviderKeyResponse)
async def set_primary_key(
    provider_id: str,
    key_id: str,
    service: KeyManagementService = Depends(get_key_service),
):
    with key_errors():
        record = await service.set_primary(provider_id, key_id)
    return _to_response(service, record)


@router.post("/{provider_id}/keys/{key_id}/enable", response_model=ProviderKeyResponse)
async def enable_provider_key(
    provider_id: str,
    key_id: str,
    service: KeyManagementService = Depends(get_key_service),
):
    with key_errors():
        await _get_provider_key(service, provider_id, key_id)
        record = await service.enable_key(key_id)
    return _to_response(service, record)


@router.post("/{provider_id}/keys/{key_id}/disable", response_model=ProviderKeyResponse)
async def disable_provider_key(
    provider_id: str,
    key_id: str,
    service: KeyManagementService = Depends(get_key_service),
):
    with key_errors():
        await _get_provider_key(service, provider_id, key_id)
        record = await service.disable_key(key_id)
    return _to_response(service, record)


@router.get("/{provider_id}/key-management", response_model=KeyManagementResponse)
async def get_key_management(
    provider_id: str,
    service: KeyManagementService = Depends(get_key_service),
):
    with key_errors():
        config = await service.get_config(provider_id)
    return KeyManagementResponse.from_config(config)


@router.put("/{provider_id}/key-management", response_model=KeyManagementResponse)
async def set_key_management(
    provider_id: str,
    config_data: KeyManagementConfig,
    service: KeyManagementService = Depends(get_key_service),
):
    """Replace the provider's load-balancing configuration."""
    with key_errors():
        config = await service.set_config(
            ProviderStrategyConfig(
                provider_id=provider_id,
                strategy=config_data.strategy,
                multi_key_enabled=config_data.multi_key_enabled,
                max_failures_before_disable=config_data.max_failures_before_disable,
                failure_recovery_time_minutes=config_data.failure_recovery_time_minutes,
            )
        )
    return KeyManagementResponse.from_config(config)
