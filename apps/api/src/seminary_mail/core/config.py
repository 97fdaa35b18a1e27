"""
Application Configuration

Settings are loaded from environment variables (and an optional .env file)
using pydantic-settings. The delivery engine builds a fresh Settings instance
on every send so that a changed environment or settings store is picked up
without restarting the process.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SMTP_HOST = "smtp.gmail.com"
DEFAULT_SMTP_PORT = 587
DEFAULT_FROM_ADDRESS = "noreply@mopgomtheologicalseminary.com"
DEFAULT_ADMIN_EMAIL = "admin@mopgomtheologicalseminary.com"


class Settings(BaseSettings):
    """Environment-driven settings for the seminary mail service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    python_env: str = "development"
    frontend_url: str = "http://localhost:3000"
    cors_origins: str = "http://localhost:3000"
    redis_url: str = "redis://localhost:6379/0"

    # SMTP transport
    email_provider: str = "smtp"
    smtp_host: str | None = None
    smtp_port: int | None = None
    smtp_secure: bool = False
    smtp_user: str | None = None
    smtp_pass: str | None = None
    smtp_max_connections: int = Field(default=5, ge=1)
    smtp_max_messages: int = Field(default=100, ge=1)
    smtp_rate_delta_ms: int = Field(default=1000, ge=1)
    smtp_rate_limit: int = Field(default=5, ge=1)
    smtp_timeout_seconds: float = Field(default=30.0, gt=0)
    resend_api_key: str | None = None

    # Sender identity
    email_from_name: str = "Mopgom TS"
    email_from_address: str | None = None
    email_reply_to: str | None = None
    admin_emails: str = DEFAULT_ADMIN_EMAIL
    event_name: str = "LINGER NO LONGER 6.0"

    # Delivery policy
    max_recipients_per_email: int = Field(default=50, ge=1)
    email_retry_attempts: int = Field(default=3, ge=0)
    email_retry_delay: int = Field(default=5000, ge=0)  # milliseconds
    email_mask_failures_in_production: bool = False

    # Failed delivery outbox
    email_outbox_max_length: int = Field(default=1000, ge=1)
    email_resend_batch_size: int = Field(default=25, ge=1)
    email_resend_max_attempts: int = Field(default=3, ge=1)

    @property
    def is_development(self) -> bool:
        return self.python_env.lower() == "development"

    @property
    def is_production(self) -> bool:
        return self.python_env.lower() == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def admin_emails_list(self) -> list[str]:
        return [email.strip() for email in self.admin_emails.split(",") if email.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()


settings = get_settings()
