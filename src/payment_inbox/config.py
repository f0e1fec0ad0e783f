from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Core API Settings
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(8000, alias="API_PORT")
    environment: str = Field("development", alias="ENVIRONMENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    app_env: str = Field("dev", alias="APP_ENV")
    admin_api_keys: str | None = Field(None, alias="ADMIN_API_KEYS")  # comma-separated list of operator keys

    # Storage & broker
    database_url: str = Field("sqlite:///./payment_inbox.db", alias="DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")

    # Stripe webhook intake
    stripe_webhook_secret: str | None = Field(None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_signature_tolerance_seconds: int = Field(300, alias="STRIPE_SIGNATURE_TOLERANCE_SECONDS")

    # Processing / dead-letter policy
    webhook_max_attempts: int = Field(5, ge=1, alias="STRIPE_MAX_ATTEMPTS")
    webhook_retry_delay_seconds: float = Field(30.0, ge=0, alias="STRIPE_RETRY_DELAY_SECONDS")
    webhook_queue: str = Field("webhooks", alias="WEBHOOK_QUEUE")

    # Domain handler: tenant that receives orders created from checkout sessions
    target_company_id: str | None = Field(None, alias="STRIPE_TARGET_COMPANY_ID")
    google_maps_api_key: str | None = Field(None, alias="GOOGLE_MAPS_API_KEY")
    geocode_timeout_seconds: float = Field(10.0, alias="GEOCODE_TIMEOUT_SECONDS")

    # Best-effort realtime notifications
    notify_timeout_seconds: float = Field(5.0, alias="NOTIFY_TIMEOUT_SECONDS")
    notify_attempts: int = Field(3, ge=1, alias="NOTIFY_ATTEMPTS")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",  # Allow extra environment variables
        populate_by_name=True,
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings():
    """Clear cached settings (useful in tests when env vars change)."""
    get_settings.cache_clear()


def parse_api_keys(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]
