"""Centralised application configuration using pydantic-settings.

All environment variables are read through the Settings class.
Consumers call ``get_settings()`` to obtain a cached, validated instance.
Tests construct ``Settings(_env_file=None, ...)`` directly for isolation.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# src/amendsync/config.py  ->  parent x3  ->  project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


# ---------------------------------------------------------------------------
# Sub-models (one per configuration domain)
# ---------------------------------------------------------------------------
class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str | None = None
    pool_size: int = 5
    max_overflow: int = 10


class StoreConfig(BaseModel):
    """Remote document store selection.

    ``memory`` keeps everything in-process and is what the unit tests and
    local demos use; ``sql`` persists through PostgreSQL.
    """

    backend: Literal["sql", "memory"] = "sql"
    latency_seconds: float = 0.0


class SyncConfig(BaseModel):
    """Edit reconciler timing.

    Every window is expressed in time-units; ``time_unit_seconds`` says how
    long one unit is. Tests shrink the unit to keep timer-driven cases fast.
    """

    time_unit_seconds: float = 1.0
    content_throttle: float = 1.0
    quiet_window: float = 1.5
    local_change_decay: float = 2.0
    title_debounce: float = 0.5
    discussions_debounce: float = 1.0
    discussions_quiet_window: float = 2.0

    @field_validator(
        "time_unit_seconds",
        "content_throttle",
        "quiet_window",
        "local_change_decay",
        "title_debounce",
        "discussions_debounce",
        "discussions_quiet_window",
    )
    @classmethod
    def _must_be_positive(cls, value: float) -> float:
        if value <= 0:
            msg = "sync windows must be positive"
            raise ValueError(msg)
        return value

    def seconds(self, units: float) -> float:
        """Convert a duration in time-units to seconds."""
        return units * self.time_unit_seconds


class VersioningConfig(BaseModel):
    """Version numbering behaviour."""

    serialize_numbering: bool = True
    max_numbering_retries: int = 3


class AppConfig(BaseModel):
    """Application runtime configuration."""

    log_dir: Path = Path("logs")
    log_level: str = "INFO"


class DevConfig(BaseModel):
    """Development and testing toggles."""

    database_echo: bool = False
    test_database_url: str | None = None


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """Application settings with automatic .env loading and type validation.

    Environment variables use double-underscore delimiter for nesting:
    ``DATABASE__URL``, ``STORE__BACKEND``, ``SYNC__TIME_UNIT_SECONDS``, etc.
    """

    model_config = SettingsConfigDict(
        env_file=_PROJECT_ROOT / ".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database: DatabaseConfig = DatabaseConfig()
    store: StoreConfig = StoreConfig()
    sync: SyncConfig = SyncConfig()
    versioning: VersioningConfig = VersioningConfig()
    app: AppConfig = AppConfig()
    dev: DevConfig = DevConfig()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    settings = Settings()

    env_file = settings.model_config.get("env_file")
    if env_file is not None and Path(str(env_file)).is_file():
        logger.info("Settings loaded .env from: %s", env_file)
    else:
        logger.info("Settings: no .env file found, using env vars and defaults")

    return settings
