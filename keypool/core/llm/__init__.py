"""Provider metadata."""

from keypool.core.llm.providers import (
    PROVIDER_METADATA,
    get_available_providers,
    get_provider_name,
    validate_key_format,
)

__all__ = ["PROVIDER_METADATA", "get_available_providers", "get_provider_name", "validate_key_format"]
