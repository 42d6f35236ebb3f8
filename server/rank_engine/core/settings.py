from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = Field(default="Rank Engine", alias="APP_NAME")
    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    database_url: str = Field(default="sqlite:///./ranks.db", alias="DATABASE_URL")
    admin_token: str = Field(default="change-me-admin-token", alias="ADMIN_TOKEN")

    cron_secret: str = Field(default="", alias="CRON_SECRET")
    trust_platform_cron_header: bool = Field(default=False, alias="TRUST_PLATFORM_CRON_HEADER")
    platform_cron_header: str = Field(default="x-vercel-cron", alias="PLATFORM_CRON_HEADER")

    payment_provider: str = Field(default="stripe", alias="PAYMENT_PROVIDER")
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_webhook_tolerance_seconds: int = Field(default=300, alias="STRIPE_WEBHOOK_TOLERANCE_SECONDS")
    square_access_token: str = Field(default="", alias="SQUARE_ACCESS_TOKEN")
    square_webhook_signature_key: str = Field(default="", alias="SQUARE_WEBHOOK_SIGNATURE_KEY")
    square_webhook_url: str = Field(default="", alias="SQUARE_WEBHOOK_URL")
    square_environment: str = Field(default="sandbox", alias="SQUARE_ENVIRONMENT")
    kofi_verification_token: str = Field(default="", alias="KOFI_VERIFICATION_TOKEN")
    provider_timeout_seconds: float = Field(default=5.0, alias="PROVIDER_TIMEOUT_SECONDS")

    rank_default_days: int = Field(default=30, alias="RANK_DEFAULT_DAYS")
    rank_min_days: int = Field(default=7, alias="RANK_MIN_DAYS")
    rank_max_days: int = Field(default=365, alias="RANK_MAX_DAYS")
    settings_cache_ttl_seconds: float = Field(default=60.0, alias="SETTINGS_CACHE_TTL_SECONDS")
    receipt_prefix: str = Field(default="VN", alias="RECEIPT_PREFIX")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str = Field(default="logs/rank_engine.log", alias="LOG_FILE")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
