from __future__ import annotations

import secrets

from pydantic import ConfigDict
from pydantic_settings import BaseSettings

PAYPAL_LIVE_API_BASE = "https://api-m.paypal.com"
PAYPAL_SANDBOX_API_BASE = "https://api-m.sandbox.paypal.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "OpenAlert Billing"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    supabase_url: str | None = None
    supabase_db_host: str | None = None
    supabase_db_port: int | None = None
    supabase_db_user: str | None = None
    supabase_db_password: str | None = None
    pooled_supabase_dsn: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_webhook_tolerance_seconds: int = 300
    stripe_publishable_key: str | None = None
    staff_seat_price_ids: list[str] = [
        "price_1SqSvwGXlKB5nE0whqwMF8h9",  # monthly staff seat
        "price_1SqTURGXlKB5nE0wCBcgK7sV",  # annual staff seat
    ]

    # PayPal
    paypal_client_id: str | None = None
    paypal_client_secret: str | None = None
    paypal_webhook_id: str | None = None
    paypal_mode: str = "sandbox"
    paypal_timeout_seconds: float = 15.0

    # Security
    secret_key: str = ""  # Will be generated if empty
    cors_origins: list[str] = []  # Empty by default for security

    # Sentry
    sentry_dsn: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 3001

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "billing"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125
    metrics_schema_version: str = "billing.v1"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Generate a random secret key if not provided
        if not self.secret_key:
            self.secret_key = secrets.token_urlsafe(32)

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def paypal_configured(self) -> bool:
        return bool(self.paypal_client_id and self.paypal_client_secret)

    @property
    def paypal_api_base(self) -> str:
        """Return the PayPal REST base URL for the configured mode."""
        if (self.paypal_mode or "").lower() == "live":
            return PAYPAL_LIVE_API_BASE
        return PAYPAL_SANDBOX_API_BASE

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
