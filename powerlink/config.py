"""
PowerLink — Application Configuration
All settings loaded from environment variables via pydantic-settings.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Database ──────────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite:///./powerlink.db"
    DB_CONNECT_TIMEOUT_SECONDS: int = 5

    # ── Redis (auth throttle counters) ───────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"

    # ── Tokens ────────────────────────────────────────────────────────────────
    JWT_ACCESS_SECRET: str = "CHANGE_ME_ACCESS_SECRET_256_BIT"
    JWT_REFRESH_SECRET: str = "CHANGE_ME_REFRESH_SECRET_256_BIT"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_MINUTES: int = 15
    REFRESH_TOKEN_TTL_DAYS: int = 7

    # ── Refresh cookie ────────────────────────────────────────────────────────
    REFRESH_COOKIE_NAME: str = "pl_refresh"
    REFRESH_COOKIE_PATH: str = "/api/auth"

    # ── Auth throttle ─────────────────────────────────────────────────────────
    AUTH_RATE_LIMIT: int = 100
    AUTH_RATE_WINDOW_SECONDS: int = 15 * 60

    # ── Two-factor ────────────────────────────────────────────────────────────
    TOTP_ISSUER: str = "PowerLink"
    BACKUP_CODE_COUNT: int = 8

    # ── Application Settings ──────────────────────────────────────────────────
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = False  # expose exception text and tracebacks in 500 responses
    APP_TITLE: str = "PowerLink"
    APP_VERSION: str = "1.0.0"
    ALLOWED_ORIGINS: List[str] = ["http://localhost:5173"]
    LOG_LEVEL: str = "INFO"

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of {allowed}")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def refresh_cookie_max_age(self) -> int:
        return self.REFRESH_TOKEN_TTL_DAYS * 24 * 60 * 60


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton — safe for FastAPI Depends()."""
    return Settings()


# Module-level convenience alias
settings = get_settings()
