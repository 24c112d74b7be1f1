"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./bioscope.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    seed_equipment: bool = Field(default=False, description="Insert the default bioscopes on startup")
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_seconds: int = Field(default=3600, description="Access token lifetime in seconds")
    refresh_token_expire_seconds: int = Field(default=604800, description="Refresh token lifetime in seconds")
    booking_day_start_minute: int = Field(default=480, description="Earliest bookable minute of the day (08:00)")
    booking_day_end_minute: int = Field(default=1020, description="Latest bookable minute of the day (17:00)")
    strict_booking_transitions: bool = Field(
        default=False,
        description="Only allow approve/reject on bookings that are still pending.",
    )
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="60/minute", description="Global rate limiting rule")
    equipment_cache_ttl: int = Field(default=60, description="TTL (s) for the cached equipment listing")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    audit_log_dir: str = Field(default="logs", description="Directory for per-service audit logs")

    auth_service_port: int = 8001
    bookings_service_port: int = 8002
    sessions_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
