"""Application configuration."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from the environment (prefix ``KEYPOOL_``) or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="KEYPOOL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: str = "http://localhost:3000,http://localhost:5173"
    log_level: str = "info"

    # Storage
    database_url: str = "sqlite+aiosqlite:///./data/keypool.db"
    sql_echo: bool = False

    # Legacy single-key storage is Fernet-encrypted with this key
    master_encryption_key: Optional[str] = None

    # Providers whose legacy key is promoted at startup
    known_providers: str = "openai,anthropic,google,gemini,deepseek,volc,zhipu"
    run_migration_on_startup: bool = True

    # Defaults for providers without a persisted key-management row
    default_strategy: str = "round_robin"
    default_max_failures_before_disable: int = Field(default=3, ge=1)
    default_failure_recovery_time_minutes: int = Field(default=5, ge=0)

    @field_validator("default_strategy")
    @classmethod
    def validate_default_strategy(cls, v: str) -> str:
        allowed = {"round_robin", "priority", "least_used", "random"}
        if v not in allowed:
            raise ValueError(f"default_strategy must be one of {sorted(allowed)}, got {v!r}")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def known_providers_list(self) -> list[str]:
        return [p.strip() for p in self.known_providers.split(",") if p.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
