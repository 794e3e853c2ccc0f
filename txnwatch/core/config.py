from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings loaded from environment variables and .env file.

    Secrets and deployment wiring live here. The engine behaviour (accounts,
    ignore-list, intervals) lives in the YAML file pointed to by CONFIG_FILE.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: selects console or JSON log rendering."""

    DEBUG: bool = False
    """Enable debug logging."""

    LOG_LEVEL: str = "INFO"
    """Root log level when DEBUG is off."""

    LOG_FILE: Optional[str] = None
    """Optional path of a file that mirrors the console log."""

    # DB
    DATABASE_URL: str = "sqlite+aiosqlite:///./txnwatch.db"
    """Async SQLAlchemy database URL."""

    # Engine configuration file
    CONFIG_FILE: str = "config.yaml"
    """Path to the YAML file with accounts, ignore-list and schedule."""

    # SMTP delivery
    SMTP_HOST: Optional[str] = None
    """SMTP server hostname for notification emails."""

    SMTP_PORT: int = 587
    """SMTP server port (587 for STARTTLS, 465 for SSL)."""

    SMTP_USER: Optional[str] = None
    """SMTP authentication username."""

    SMTP_PASSWORD: Optional[SecretStr] = None
    """SMTP authentication password."""

    SMTP_USE_TLS: bool = True
    """Whether to upgrade the SMTP connection with STARTTLS."""

    # Webhook delivery
    WEBHOOK_URL: Optional[str] = None
    """Endpoint receiving rendered notifications when the webhook channel is used."""

    # Scraper sidecar
    SCRAPER_SERVICE_URL: Optional[str] = None
    """Base URL of the scraper service that talks to the financial institutions."""

    SCRAPER_SERVICE_TOKEN: Optional[SecretStr] = None
    """Bearer token for the scraper service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()
