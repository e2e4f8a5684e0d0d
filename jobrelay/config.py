"""
Engine configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Job record store (None selects the in-memory store)
    store_url: str | None = None
    store_echo: bool = False

    # Listener defaults
    default_delay_seconds: float = Field(default=0.0, ge=0)
    default_ttl_seconds: float | None = Field(default=None, gt=0)

    # Observability
    otel_service_name: str = "jobrelay"
    otel_exporter_otlp_endpoint: str | None = None
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
