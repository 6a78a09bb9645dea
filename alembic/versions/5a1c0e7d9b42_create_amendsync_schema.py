"""create amendsync schema

Revision ID: 5a1c0e7d9b42
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "5a1c0e7d9b42"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamptz(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False)


def _jsonb(name: str) -> sa.Column:
    return sa.Column(
        name, postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'")
    )


def upgrade() -> None:
    """Create users, documents, versions, change requests and votes."""
    op.create_table(
        "user",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        _timestamptz("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "document",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        _jsonb("content"),
        _jsonb("discussions"),
        _jsonb("promotions"),
        sa.Column(
            "editing_mode", sa.String(10), nullable=False, server_default="edit"
        ),
        sa.Column("updated_at", sa.Float(), nullable=False, server_default="0"),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        _timestamptz("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["owner_id"], ["user.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "editing_mode IN ('edit', 'view', 'suggest', 'vote')",
            name="ck_document_editing_mode",
        ),
    )

    op.create_table(
        "amendment",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("document_id", sa.Uuid(), nullable=True),
        _timestamptz("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["document_id"], ["document.id"], ondelete="SET NULL"
        ),
    )

    op.create_table(
        "document_version",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("document_id", sa.Uuid(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        _jsonb("content"),
        sa.Column("creation_type", sa.String(30), nullable=False),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        _timestamptz("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["document_id"], ["document.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["user.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "document_id", "version_number", name="uq_document_version_number"
        ),
        sa.CheckConstraint("version_number >= 1", name="ck_document_version_number"),
        sa.CheckConstraint(
            "creation_type IN ('manual', 'suggestion_added',"
            " 'suggestion_accepted', 'suggestion_declined')",
            name="ck_document_version_creation_type",
        ),
    )

    op.create_table(
        "change_request",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("amendment_id", sa.Uuid(), nullable=False),
        sa.Column("creator_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("proposed_change", sa.Text(), nullable=False, server_default=""),
        sa.Column("justification", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "status", sa.String(10), nullable=False, server_default="pending"
        ),
        sa.Column(
            "requires_voting",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        _timestamptz("created_at"),
        _timestamptz("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["amendment_id"], ["amendment.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["creator_id"], ["user.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="ck_change_request_status",
        ),
    )
    # Not unique: change requests are deduplicated by query-before-create
    op.create_index(
        "ix_change_request_amendment_title",
        "change_request",
        ["amendment_id", "title"],
    )

    op.create_table(
        "change_request_vote",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("change_request_id", sa.Uuid(), nullable=False),
        sa.Column("voter_id", sa.Uuid(), nullable=False),
        sa.Column("vote", sa.String(10), nullable=False),
        _timestamptz("created_at"),
        _timestamptz("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["change_request_id"], ["change_request.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["voter_id"], ["user.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "change_request_id", "voter_id", name="uq_change_request_vote_voter"
        ),
        sa.CheckConstraint(
            "vote IN ('accept', 'reject', 'abstain')",
            name="ck_change_request_vote_vote",
        ),
    )


def downgrade() -> None:
    """Drop every amendsync table."""
    op.drop_table("change_request_vote")
    op.drop_index("ix_change_request_amendment_title", table_name="change_request")
    op.drop_table("change_request")
    op.drop_table("document_version")
    op.drop_table("amendment")
    op.drop_table("document")
    op.drop_table("user")
