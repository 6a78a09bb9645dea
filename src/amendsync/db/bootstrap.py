"""Database bootstrap and schema management for AmendSync.

Key principles:
- Alembic is the ONLY way to create/modify schema
- All models must be imported before schema operations
- Fail fast if schema is invalid
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import inspect, make_url
from sqlmodel import SQLModel

from amendsync.config import get_settings

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def is_db_configured() -> bool:
    """Check if database URL is configured in Settings."""
    return bool(get_settings().database.url)


def run_alembic_upgrade() -> None:
    """Run Alembic migrations to upgrade schema to head.

    Raises:
        RuntimeError: If DATABASE__URL is not configured or migrations fail.
    """
    if not is_db_configured():
        msg = "DATABASE__URL not configured, cannot run migrations"
        raise RuntimeError(msg)

    # Project root is where alembic.ini lives
    project_root = Path(__file__).parent.parent.parent.parent

    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        encoding="utf-8",
        check=False,
        cwd=project_root,
        env=dict(os.environ),
    )

    if result.returncode != 0:
        raise RuntimeError(
            f"Alembic migrations failed:\n"
            f"stdout: {result.stdout}\n"
            f"stderr: {result.stderr}"
        )


def get_expected_tables() -> set[str]:
    """Get the set of table names expected from SQLModel metadata."""
    import amendsync.db.models  # noqa: F401, PLC0415

    return set(SQLModel.metadata.tables.keys())


# The services map IntegrityError to domain errors by these names
REQUIRED_UNIQUE_CONSTRAINTS: dict[str, str] = {
    "document_version": "uq_document_version_number",
    "change_request_vote": "uq_change_request_vote_voter",
}


def schema_problems(
    tables: set[str], unique_constraints: dict[str, set[str]]
) -> list[str]:
    """Describe what keeps an inspected schema from serving the stores.

    Args:
        tables: Table names present in the database.
        unique_constraints: Unique constraint names per present table.

    Returns:
        Human-readable problems; empty when the schema is usable.
    """
    problems = []
    missing = get_expected_tables() - tables
    if missing:
        problems.append(f"missing tables: {', '.join(sorted(missing))}")
    for table, constraint in REQUIRED_UNIQUE_CONSTRAINTS.items():
        if table in tables and constraint not in unique_constraints.get(table, set()):
            problems.append(f"{table} lacks unique constraint {constraint}")
    return problems


def _inspect_schema(sync_conn: Connection) -> tuple[set[str], dict[str, set[str]]]:
    inspector = inspect(sync_conn)
    tables = set(inspector.get_table_names())
    unique_constraints = {
        table: {uc["name"] for uc in inspector.get_unique_constraints(table)}
        for table in REQUIRED_UNIQUE_CONSTRAINTS
        if table in tables
    }
    return tables, unique_constraints


async def verify_schema(engine: AsyncEngine | None) -> None:
    """Fail fast unless the database holds the migrated AmendSync schema.

    Raises:
        RuntimeError: If engine is None, or tables or the unique
            constraints behind duplicate detection are missing.
    """
    if engine is None:
        raise RuntimeError("Database engine is not initialized")

    async with engine.connect() as connection:
        tables, unique_constraints = await connection.run_sync(_inspect_schema)

    problems = schema_problems(tables, unique_constraints)
    if problems:
        url = get_settings().database.url
        where = _mask_password(url) if url else "<unset>"
        raise RuntimeError(
            f"Database schema at {where} is not usable: {'; '.join(problems)}. "
            "Run 'manage-versions upgrade-db'."
        )
    logger.info("Database schema verified (%d tables)", len(tables))


def _mask_password(url: str) -> str:
    """Render a database URL with its password hidden."""
    return make_url(url).render_as_string(hide_password=True)
