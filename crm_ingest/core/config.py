"""Application configuration with environment variables."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./crm_ingest.db"
    # SQLite only: how long a writer waits for the database lock
    SQLITE_BUSY_TIMEOUT_SECONDS: int = 30

    # Public base URL used when building tracking pixel/click links
    API_BASE_URL: str = "http://localhost:8000"

    # Tracking
    TRACKING_TOKEN_TTL_DAYS: int = 365  # 0 = tokens never expire
    TRACKING_FALLBACK_URL: str = "https://www.google.com"

    # Deal auto-creation for form leads
    AUTO_CREATE_DEALS: bool = True
    # What a form submission does when the person already has an open deal:
    # 'ignore' leaves the deal alone, 'attach' links the new activity to it
    EXISTING_DEAL_POLICY: Literal["ignore", "attach"] = "ignore"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Inbound webhook bodies larger than this are refused
    WEBHOOK_MAX_PAYLOAD_BYTES: int = 1_000_000

    # Rate Limiting (requests per minute)
    # Shared limiter storage for multi-worker deployments; empty = in-memory
    REDIS_URL: str = ""
    RATE_LIMIT_WEBHOOK: int = 100  # Inbound webhooks
    RATE_LIMIT_API: int = 60  # General API

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")


settings = Settings()
