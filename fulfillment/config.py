"""
Application configuration using pydantic-settings.
Loads from environment variables / .env file.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "digital-fulfillment"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # API Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Public storefront URL (download links, checkout redirects)
    site_url: str = "http://localhost:3000"
    cors_origins: List[str] = []

    # Postgres
    database_url: str = ""

    # Redis (rate limiting, Celery broker)
    redis_url: str = "redis://localhost:6379/0"

    # Payments
    currency: str = "USD"
    default_gateway: Literal["razorpay", "paypal"] = "paypal"
    gateway_timeout_seconds: float = 15.0

    # Razorpay (card checkout via payment links)
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""

    # PayPal (wallet checkout)
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_webhook_id: str = ""
    paypal_environment: Literal["sandbox", "live"] = "sandbox"

    # Cloudinary (product file storage)
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_folder: str = "digital-fulfillment/files"
    storage_timeout_seconds: float = 30.0
    storage_upload_attempts: int = 3
    storage_backoff_seconds: float = 0.5

    # SendGrid (order e-mails)
    sendgrid_api_key: str = ""
    email_from_address: str = "noreply@mjkprints.com"
    email_from_name: str = "MJK Prints"
    support_email: str = "support@mjkprints.com"
    email_timeout_seconds: float = 20.0

    # Fulfillment
    download_max_count: int = 5
    download_ttl_days: int = 7
    attachment_max_bytes: int = 25 * 1024 * 1024
    # Base64 grows attachments by a third; SendGrid caps a message at 30MB
    attachment_total_max_bytes: int = 20 * 1024 * 1024
    processed_event_retention_days: int = 30

    # Rate limiting (token bucket per client)
    rate_limit_capacity: int = 20
    rate_limit_refill_per_second: float = 0.5

    # Admin
    admin_api_key: str = ""

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
