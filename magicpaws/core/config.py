"""
Settings for the Magic Paws backend, read from the environment and .env.

Everything optional defaults to None so the app boots in development with
only a database; validate_config reports what is missing and validate_env
(core.validation) refuses to start production without it.
"""

import logging
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# Keys a deployment needs for every feature to work
REQUIRED_KEYS = (
    "DATABASE_URL",
    "AUTH_SECRET",
    "ADMIN_EMAIL",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "RESEND_API_KEY",
)
# Production additionally refuses to expose the cron endpoint unauthenticated
PRODUCTION_KEYS = REQUIRED_KEYS + ("CRON_SECRET",)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = "development"
    CONFIG_STRICT: bool = False

    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # HS256 session tokens minted by the identity provider
    AUTH_SECRET: Optional[str] = None
    AUTH_TOKEN_LEEWAY_SECONDS: int = 30
    # Signing in with this address makes the account an admin
    ADMIN_EMAIL: Optional[str] = None

    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_TIMEOUT_SECONDS: int = 20
    CURRENCY: str = "usd"
    SUBSCRIPTION_PRICE_CENTS: int = 1900
    SUBSCRIPTION_PERIOD_DAYS: int = 30

    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "Magic Paws <noreply@samanthamerlin.com>"
    EMAIL_REPLY_TO: Optional[str] = None
    EMAIL_TIMEOUT_SECONDS: int = 10

    PUBLIC_BASE_URL: str = "http://localhost:3000"
    CORS_ORIGINS: str = "http://localhost:3000"

    CRON_SECRET: Optional[str] = None
    BUSINESS_TIMEZONE: str = "America/Los_Angeles"

    OTEL_ENABLED: bool = False
    OTEL_EXPORTER: str = "console"


settings = Settings()


def missing_keys(cfg, keys=REQUIRED_KEYS) -> List[str]:
    return [key for key in keys if not getattr(cfg, key, None)]


def validate_config(strict: Optional[bool] = None, settings_obj=None, logger: Optional[logging.Logger] = None) -> bool:
    """Report unset required keys by name; raise RuntimeError instead when strict."""
    cfg = settings_obj or settings
    if strict is None:
        strict = bool(getattr(cfg, "CONFIG_STRICT", False))

    missing = missing_keys(cfg)
    if not missing:
        return True
    message = "Missing required configuration: " + ", ".join(missing)
    if strict:
        raise RuntimeError(message)
    (logger or logging.getLogger("magicpaws")).warning(message)
    return True


def cors_origins(cfg: Optional[Settings] = None) -> List[str]:
    """CORS_ORIGINS is a comma-separated list."""
    return [origin.strip() for origin in ((cfg or settings).CORS_ORIGINS or "").split(",") if origin.strip()]
