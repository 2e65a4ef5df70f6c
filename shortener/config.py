"""Configuration management for the URL shortener service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from shortener.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    encoder = ShortCodeEncoder.from_settings(settings)

**Step 3 — Override in tests**::
    settings = Settings(DATABASE_URL="sqlite+aiosqlite:///:memory:", HASHIDS_SALT="test")

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- Settings are passed explicitly into the encoder, database and cache
  factories; nothing reads them as mutable global state.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Persistent store
    STORE_BACKEND: Literal["sqlalchemy", "memory"] = "sqlalchemy"
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Cache
    CACHE_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_KEY_PREFIX: str = "shortener"
    CACHE_MAX_ENTRIES: int = 100_000
    CACHE_ABSOLUTE_TTL_SECONDS: float = 300.0  # 5 minutes
    CACHE_SLIDING_TTL_SECONDS: float = 120.0  # 2 minutes
    CACHE_NEGATIVE_TTL_SECONDS: float = 30.0

    # Short code encoding
    HASHIDS_SALT: str = "default-salt"
    HASHIDS_MIN_LENGTH: int = Field(default=7, ge=0)

    # HTTP
    CORS_ALLOW_ORIGINS: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
