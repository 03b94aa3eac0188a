"""Configuration management for the short-link service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram: get_settings()
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
**Step 1: Import**::
    from shortlinks.config import get_settings

**Step 2: Get settings**::
    settings = get_settings()
    ttl = settings.CACHE_TTL_SECONDS

Key Behaviours
===============
- Settings are cached after first access; call ``get_settings.cache_clear()``
  after changing the environment.
- Environment variables override defaults automatically.
- ``CACHE_BACKEND=memory`` swaps Redis for a process-local map.

Classes:
    Settings:  Pydantic model for all configuration values.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from shortlinks.enums import CacheBackend


class Settings(BaseSettings):
    APP_NAME: str = "shortlinks"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:3000"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://shortlinks:shortlinks@db:5432/shortlinks"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_BACKEND: CacheBackend = CacheBackend.REDIS
    CACHE_TTL_SECONDS: int = 3600
    # Upper bound for a single cache round trip; past it the lookup falls
    # through to the database.
    CACHE_OPERATION_TIMEOUT_SECONDS: float = 0.25

    # Short code allocation
    SHORT_CODE_LENGTH: int = 7
    SHORT_CODE_MAX_ATTEMPTS: int = 3

    # Expiration / analytics
    ANONYMOUS_TTL_HOURS: int = 24
    RECENT_CLICKS_LIMIT: int = 10

    # Admin listing
    ADMIN_PAGE_SIZE_DEFAULT: int = 20
    ADMIN_PAGE_SIZE_MAX: int = 100

    # Keep-alive scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_HEALTH_CHECK_URL: str = "http://localhost:3000/health"
    SCHEDULER_HEALTH_CHECK_INTERVAL_MINUTES: float = 14

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
