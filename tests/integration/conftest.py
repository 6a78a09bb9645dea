"""Integration test configuration.

Database tests read the test database from Settings.dev.test_database_url
(DEV__TEST_DATABASE_URL), point DATABASE__URL at it and migrate the schema
once per session. Tests use UUID-based isolation, never truncation.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from amendsync.config import get_settings
from amendsync.db.bootstrap import run_alembic_upgrade
from amendsync.db.engine import close_db, get_engine, init_db

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Generator


@pytest.fixture(scope="session")
def db_schema_guard() -> Generator[None]:
    """Point DATABASE__URL at the test database and migrate to head."""
    test_url = get_settings().dev.test_database_url
    if not test_url:
        pytest.fail(
            "DEV__TEST_DATABASE_URL is required for database tests. "
            "Set it to point to a test database (not production!)."
        )
        return

    os.environ["DATABASE__URL"] = test_url
    get_settings.cache_clear()

    try:
        run_alembic_upgrade()
    except RuntimeError as e:
        pytest.fail(str(e))

    yield

    get_settings.cache_clear()


@pytest.fixture
async def db_engine(db_schema_guard: None) -> AsyncIterator[None]:  # noqa: ARG001
    """Initialize the database engine for one test."""
    await init_db()
    assert get_engine() is not None, "Engine should be initialized after init_db()"

    yield

    await close_db()
