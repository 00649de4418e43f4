"""Known AI providers and API key format checks."""

from typing import Optional


# Provider display names and API key environment variable mappings
PROVIDER_METADATA = {
    "openai": {"name": "OpenAI", "env_key": "OPENAI_API_KEY"},
    "anthropic": {"name": "Anthropic", "env_key": "ANTHROPIC_API_KEY"},
    "google": {"name": "Google AI", "env_key": "GOOGLE_API_KEY"},
    "gemini": {"name": "Google Gemini", "env_key": "GEMINI_API_KEY"},
    "deepseek": {"name": "DeepSeek", "env_key": "DEEPSEEK_API_KEY"},
    "volc": {"name": "Volcengine Ark", "env_key": "ARK_API_KEY"},
    "zhipu": {"name": "Zhipu AI", "env_key": "ZHIPUAI_API_KEY"},
    "mistral": {"name": "Mistral AI", "env_key": "MISTRAL_API_KEY"},
    "groq": {"name": "Groq", "env_key": "GROQ_API_KEY"},
    "openrouter": {"name": "OpenRouter", "env_key": "OPENROUTER_API_KEY"},
    "xai": {"name": "xAI (Grok)", "env_key": "XAI_API_KEY"},
}


def get_provider_name(provider_id: str) -> str:
    """Display name for a provider, falling back to the id itself."""
    meta = PROVIDER_METADATA.get(provider_id)
    return meta["name"] if meta else provider_id


def get_provider_env_key(provider_id: str) -> Optional[str]:
    meta = PROVIDER_METADATA.get(provider_id)
    return meta["env_key"] if meta else None


def get_available_providers() -> list[dict]:
    """
    List known providers for the settings UI.

    Returns:
        List of dicts with 'id', 'name' and 'env_key'
    """
    return [
        {"id": provider_id, "name": meta["name"], "env_key": meta["env_key"]}
        for provider_id, meta in PROVIDER_METADATA.items()
    ]


def validate_key_format(provider_id: str, key: str) -> bool:
    """
    Check whether a key looks like a key of the given provider.

    This is a shape check only; it never contacts the provider.

    Args:
        provider_id: Provider identifier
        key: Plaintext API key

    Returns:
        True if the key matches the provider's known key shape
    """
    if not key or not key.strip():
        return False

    if provider_id in ("openai", "deepseek"):
        return key.startswith("sk-") and len(key) > 20
    if provider_id == "anthropic":
        return key.startswith("sk-ant-") and len(key) > 30
    if provider_id in ("google", "gemini", "volc"):
        return len(key) > 20
    if provider_id == "zhipu":
        # Zhipu keys are "<id>.<secret>"
        return "." in key and len(key) > 30
    return len(key) > 10
