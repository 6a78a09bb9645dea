"""Tests for pydantic-settings configuration."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from amendsync.config import Settings, StoreConfig, SyncConfig, get_settings

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Drop AmendSync env vars that might leak in from the shell."""
    prefixes = ("DATABASE__", "STORE__", "SYNC__", "VERSIONING__", "APP__", "DEV__")
    for key in list(os.environ):
        if key.startswith(prefixes):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def fresh_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSyncConfig:
    """SyncConfig sub-model tests."""

    def test_defaults_in_time_units(self, clean_env: pytest.MonkeyPatch) -> None:
        """Windows default to the documented multiples of one unit."""
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        sync = s.sync
        assert sync.time_unit_seconds == 1.0
        assert sync.content_throttle == 1.0
        assert sync.quiet_window == 1.5
        assert sync.local_change_decay == 2.0
        assert sync.title_debounce == 0.5
        assert sync.discussions_debounce == 1.0
        assert sync.discussions_quiet_window == 2.0

    def test_seconds_scales_by_unit(self) -> None:
        """seconds() converts time-units using time_unit_seconds."""
        sync = SyncConfig(time_unit_seconds=0.25)
        assert sync.seconds(2) == 0.5
        assert sync.seconds(sync.quiet_window) == 0.375

    def test_unit_override_via_env(self, clean_env: pytest.MonkeyPatch) -> None:
        """SYNC__TIME_UNIT_SECONDS env var overrides the default."""
        clean_env.setenv("SYNC__TIME_UNIT_SECONDS", "0.01")
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.sync.time_unit_seconds == 0.01

    @pytest.mark.parametrize("field", ["quiet_window", "time_unit_seconds"])
    def test_non_positive_windows_rejected(self, field: str) -> None:
        """Zero or negative windows are configuration errors."""
        with pytest.raises(ValidationError, match="must be positive"):
            SyncConfig(**{field: 0})


class TestDevConfig:
    """DevConfig sub-model tests."""

    def test_test_database_url_via_env(self, clean_env: pytest.MonkeyPatch) -> None:
        """Integration tests find their database under DEV__TEST_DATABASE_URL."""
        url = "postgresql+asyncpg://postgres@localhost/amendsync_test"
        clean_env.setenv("DEV__TEST_DATABASE_URL", url)
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.dev.test_database_url == url
        assert s.database.url is None


class TestStoreConfig:
    """StoreConfig sub-model tests."""

    def test_default_backend_is_sql(self, clean_env: pytest.MonkeyPatch) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.store.backend == "sql"
        assert s.store.latency_seconds == 0.0

    def test_backend_via_env(self, clean_env: pytest.MonkeyPatch) -> None:
        """STORE__BACKEND selects the in-memory store."""
        clean_env.setenv("STORE__BACKEND", "memory")
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.store.backend == "memory"

    def test_unknown_backend_rejected(self) -> None:
        with pytest.raises(ValidationError):
            StoreConfig(backend="redis")  # type: ignore[arg-type]


class TestVersioningConfig:
    """VersioningConfig sub-model tests."""

    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.versioning.serialize_numbering is True
        assert s.versioning.max_numbering_retries == 3

    def test_retries_via_env(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("VERSIONING__MAX_NUMBERING_RETRIES", "0")
        s = Settings(_env_file=None)  # type: ignore[call-arg]
        assert s.versioning.max_numbering_retries == 0


@pytest.mark.usefixtures("fresh_settings_cache")
class TestGetSettings:
    """get_settings() caching tests."""

    def test_returns_cached_instance(self, clean_env: pytest.MonkeyPatch) -> None:
        """Repeated calls share one Settings object."""
        assert get_settings() is get_settings()

    def test_cache_clear_rereads_environment(
        self, clean_env: pytest.MonkeyPatch
    ) -> None:
        """After cache_clear() new env values are picked up."""
        clean_env.setenv("DATABASE__URL", "postgresql+asyncpg://a@h/one")
        assert get_settings().database.url == "postgresql+asyncpg://a@h/one"

        clean_env.setenv("DATABASE__URL", "postgresql+asyncpg://a@h/two")
        get_settings.cache_clear()
        assert get_settings().database.url == "postgresql+asyncpg://a@h/two"
