"""Application configuration via Pydantic settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration object loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "MedBook Scheduling API"
    debug: bool = False
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    database_url: str = Field(..., alias="DATABASE_URL")
    jwt_secret: str = Field(..., alias="JWT_SECRET")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    default_timezone: str = Field("UTC", alias="DEFAULT_TIMEZONE")

    cancellation_notice_hours: int = Field(24, alias="CANCELLATION_NOTICE_HOURS")
    # Comma separated roles allowed to cancel inside the notice window.
    cancellation_bypass_roles: str = Field("provider,admin", alias="CANCELLATION_BYPASS_ROLES")
    booking_retry_attempts: int = Field(3, alias="BOOKING_RETRY_ATTEMPTS")

    reminder_lead_minutes: int = Field(30, alias="REMINDER_LEAD_MINUTES")
    no_show_grace_minutes: int = Field(15, alias="NO_SHOW_GRACE_MINUTES")
    # Minute step of the worker cron; divides the hour evenly.
    sweep_every_minutes: int = Field(1, ge=1, le=30, alias="SWEEP_EVERY_MINUTES")

    redis_url: str | None = Field(None, alias="REDIS_URL")
    provider_lock_timeout_seconds: float = Field(10.0, alias="PROVIDER_LOCK_TIMEOUT_SECONDS")

    notification_webhook_url: str | None = Field(None, alias="NOTIFICATION_WEBHOOK_URL")
    notification_timeout_seconds: float = Field(5.0, alias="NOTIFICATION_TIMEOUT_SECONDS")

    @property
    def bypass_roles(self) -> frozenset[str]:
        return frozenset(
            role.strip().lower() for role in self.cancellation_bypass_roles.split(",") if role.strip()
        )


@lru_cache(1)
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()


settings = get_settings()
