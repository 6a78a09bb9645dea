"""Database module for AmendSync.

Provides async SQLModel operations with PostgreSQL.
"""

from __future__ import annotations

from amendsync.db.bootstrap import (
    get_expected_tables,
    is_db_configured,
    run_alembic_upgrade,
    verify_schema,
)
from amendsync.db.engine import close_db, get_engine, get_session, init_db
from amendsync.db.models import (
    Amendment,
    ChangeRequest,
    ChangeRequestVote,
    Document,
    DocumentVersion,
    User,
)

__all__ = [
    # Models
    "Amendment",
    "ChangeRequest",
    "ChangeRequestVote",
    "Document",
    "DocumentVersion",
    "User",
    # Engine
    "close_db",
    "get_engine",
    "get_session",
    "init_db",
    # Bootstrap
    "get_expected_tables",
    "is_db_configured",
    "run_alembic_upgrade",
    "verify_schema",
]
