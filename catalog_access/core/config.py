# catalog_access/core/config.py
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized application settings loaded from environment.

    Important env vars (.env):
      - DATABASE_URL (Postgres in production, SQLite locally)
      - SESSION_SECRET (signs the session cookie; override in production!)
      - BASE_URL (public origin used to build access links)
      - SMTP_* (mail delivery for access links)

    Optional:
      - ADMIN_PHONE / ADMIN_PASSWORD (seed the primary admin on startup)
    """

    PROJECT_NAME: str = "Catalog Access API"
    API_PREFIX: str = "/api"
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    # Browser origins allowed to call the API with cookies
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
    ]

    # Storage
    DATABASE_URL: str = "sqlite:///./catalog_access.db"
    STORAGE_BACKEND: Literal["sql", "memory"] = "sql"

    # Server-side session cookie
    SESSION_SECRET: str = "dev-session-secret-change-me"
    SESSION_ALG: str = "HS256"
    SESSION_COOKIE_NAME: str = "catalog_sid"
    SESSION_TTL_HOURS: int = 24

    # Access links
    BASE_URL: str | None = None
    ACCESS_PATH: str = "/access"

    # Rate limiting (per client IP, sliding window)
    TOKEN_RATE_LIMIT_MAX: int = 5
    TOKEN_RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    LOGIN_RATE_LIMIT_MAX: int = 5
    LOGIN_RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60

    # Phone handles are stored as +<country code><number>
    PHONE_COUNTRY_CODE: str = "91"

    # Housekeeping
    CLEANUP_PROBABILITY: float = 0.01
    OTP_TTL_MINUTES: int = 10
    OTP_MAX_ATTEMPTS: int = 3

    # SMTP
    SMTP_HOST: str | None = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_FROM_EMAIL: str | None = None
    SMTP_FROM_NAME: str = "Catalog Access"
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT_SECONDS: float = 10.0

    # Primary admin seed
    ADMIN_PHONE: str | None = None
    ADMIN_PASSWORD: str | None = None
    ADMIN_NAME: str = "Administrator"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings loader.
    Ensures we don't re-parse .env on every import / request.
    """
    return Settings()
