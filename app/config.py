"""
Application configuration using Pydantic Settings.

All configuration is loaded from environment variables, with an optional .env file
as a fallback. This pattern keeps secrets out of source code — the .env file is
gitignored, and .env.example provides a safe template for developers.

Pydantic Settings automatically:
  1. Reads from environment variables (highest priority)
  2. Falls back to .env file values
  3. Uses defaults defined here (lowest priority)

Usage:
    from app.config import settings
    print(settings.LEDGER_MAX_ATTEMPTS)
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the Ledger Service.

    Required fields (no defaults) MUST be set in .env or environment:
      - SECRET_KEY: Shared secret used to verify bearer tokens issued by the
        external authentication service
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # --- Application ---
    APP_NAME: str = "Ledger Service"
    APP_VERSION: str = "0.1.0"
    API_VERSION: str = "v1"
    DEBUG: bool = False

    # --- Database ---
    # SQLite for development; swap to a postgresql+asyncpg URL for production
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/ledger.db"

    # --- Bearer credentials ---
    # REQUIRED: must match the signing secret of the authentication service
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    # Where clients obtain tokens (documentation only, served by the auth service)
    TOKEN_URL: str = "/auth/login"

    # --- CORS ---
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:8080"]

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["standard", "json"] = "standard"

    # --- Ledger ---
    CURRENCY: str = "USD"
    # "allow": close regardless of balance; "require_zero_balance": reject
    # closing an account that still holds funds
    CLOSE_ACCOUNT_POLICY: Literal["allow", "require_zero_balance"] = "allow"
    LEDGER_MAX_ATTEMPTS: int = 3
    LEDGER_RETRY_BACKOFF_SECONDS: float = 0.01
    STORAGE_TIMEOUT_SECONDS: float = 5.0

    # --- Notifications ---
    # External messaging component; when unset, notifications stay PENDING
    NOTIFICATION_SERVICE_URL: str | None = None
    NOTIFICATION_CHANNELS: list[Literal["EMAIL", "SMS"]] = ["EMAIL"]
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0


# Singleton: import this instance everywhere instead of creating new Settings()
settings = Settings()
