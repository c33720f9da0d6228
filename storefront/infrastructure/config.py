"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://storefront:storefront_dev_password@db:5432/storefront"

    # Authentication (tokens are issued elsewhere, only verified here)
    jwt_secret: str = "dev-jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"

    # Stripe
    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_webhook_secret: str = "whsec_dev-webhook-secret-change-in-production"
    stripe_webhook_tolerance_seconds: int = 300
    payment_currency: str = "usd"

    # Checkout redirects
    frontend_url: str = "http://localhost:3000"
    checkout_success_path: str = "/order/success"
    checkout_cancel_path: str = "/cart"
    checkout_session_ttl_minutes: int = 30

    # Reconciliation
    reconciliation_max_attempts: int = 3

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
