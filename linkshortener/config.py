"""Configuration management for the link shortener.

Every tunable of the core is a field on Settings, read from the process
environment or a local .env file and cached for the life of the process.

Wiring Diagram — who reads what
===============================
::
    Settings
      ├─ REDIS_URL ──────────────────────► ServiceManager (redis client)
      ├─ MULTI_TENANT, SCAN_BATCH_SIZE ──► LinkStore
      ├─ CLICK_* ────────────────────────► AnalyticsRecorder (retry loop)
      ├─ WATCH_* ────────────────────────► ChangeNotifier (live views)
      ├─ CREATE_MAX_ATTEMPTS ────────────► LinkService (code collisions)
      └─ BASE_URL ───────────────────────► LinkResponse.short_url

How to Use
===========
**Step 1 — Read settings**::
    from linkshortener.config import get_settings
    settings = get_settings()

**Step 2 — Toggle owner indexing**::
    MULTI_TENANT=true uvicorn linkshortener.main:app

Key Behaviours
===============
- Names are case sensitive and match the environment variable names.
- MULTI_TENANT is the capability flag for the owner index; it is off by default.
- WATCH_BACKEND selects Redis pub/sub or the polling fallback for live views.
"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from linkshortener.enums import WatchBackend


class Settings(BaseSettings):
    APP_NAME: str = "link-shortener"
    APP_ENV: str = "development"
    BASE_URL: str = "http://localhost:8000"
    LOG_LEVEL: str = "INFO"

    # Redis (single shared mutable resource)
    REDIS_URL: str = "redis://redis:6379/0"

    # Owner index capability flag
    MULTI_TENANT: bool = False

    # Short-code collision retry on create
    CREATE_MAX_ATTEMPTS: int = 5

    # Optimistic-concurrency retry for click increments
    CLICK_MAX_ATTEMPTS: int = 10
    CLICK_RETRY_BASE_DELAY_SECONDS: float = 0.005
    CLICK_RETRY_MAX_DELAY_SECONDS: float = 0.1

    # Live view
    WATCH_BACKEND: WatchBackend = WatchBackend.PUBSUB
    WATCH_POLL_INTERVAL_SECONDS: float = 0.5

    # Listing
    SCAN_BATCH_SIZE: int = 100

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
