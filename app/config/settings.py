# app/config/settings.py

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TimeoutPolicy(str, Enum):
    """What a worker concludes when a handler does not report completion in time."""

    RETRY = "retry"
    ASSUME_SUCCESS = "assume_success"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_name: str = "durable-event-bus"
    environment: Literal["dev", "test", "prod"] = "dev"
    debug: bool = False
    version: str = "0.1.0"

    # --- Database ---
    database_url: str = "sqlite+aiosqlite:///./events.db"

    # --- Poller ---
    poll_interval_seconds: float = Field(1.0, gt=0)
    batch_size: int = Field(20, ge=1)
    worker_concurrency: int = Field(5, ge=1)
    shutdown_timeout_seconds: float = Field(10.0, ge=0)

    # --- Delivery ---
    default_max_attempts: int = Field(5, ge=1)
    default_timeout_seconds: int = Field(5, ge=1)
    base_backoff_ms: int = Field(1000, ge=1)
    # Must exceed the longest handler timeout, otherwise a slow dispatch can be claimed twice.
    lease_seconds: float = Field(60.0, gt=0)
    on_timeout: TimeoutPolicy = TimeoutPolicy.RETRY

    # --- Observability ---
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


@lru_cache
def get_settings() -> AppSettings:
    return AppSettings()
