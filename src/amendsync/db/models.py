"""SQLModel database models for AmendSync.

These models define the durable schema for documents, their numbered
versions, change requests and change-request votes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(UTC)


def _timestamptz_column() -> Any:
    """Create a TIMESTAMP WITH TIME ZONE column for PostgreSQL."""
    return Column(DateTime(timezone=True), nullable=False)


def _cascade_fk_column(target: str) -> Any:
    """Create a UUID foreign key column with CASCADE DELETE."""
    return Column(Uuid(), ForeignKey(target, ondelete="CASCADE"), nullable=False)


def _set_null_fk_column(target: str) -> Any:
    """Create a UUID foreign key column with SET NULL on delete."""
    return Column(Uuid(), ForeignKey(target, ondelete="SET NULL"), nullable=True)


def _jsonb_column() -> Any:
    return Column(JSONB(), nullable=False, server_default="[]")


class User(SQLModel, table=True):
    """A collaborator as known to this core.

    Identity itself lives with the session provider; this row only keeps
    what version history and vote listings display.

    Attributes:
        id: Primary key UUID, supplied by the identity provider.
        display_name: Human-readable name shown in history and tallies.
        avatar_url: Optional avatar image.
        created_at: Timestamp when the row was created.
    """

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    display_name: str = Field(max_length=100)
    avatar_url: str | None = Field(default=None, max_length=500)
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )


class Document(SQLModel, table=True):
    """The shared, merge-written document row.

    ``updated_at`` is the client timestamp (epoch seconds) of the last
    merge-write. It is compared against reconciler watermarks, so it is
    kept exactly as written rather than as a server-side timestamp.

    Attributes:
        id: Primary key UUID, auto-generated.
        title: Document title.
        content: Opaque editor block tree.
        discussions: Embedded inline suggestions (camelCase JSON objects).
        promotions: In-progress promotion markers (camelCase JSON objects).
        editing_mode: One of edit, view, suggest, vote.
        updated_at: Client timestamp of the last merge-write.
        owner_id: Creator of the document.
        created_at: Timestamp when the row was created.
    """

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str = Field(default="", sa_column=Column(sa.Text(), nullable=False))
    content: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=_jsonb_column()
    )
    discussions: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=_jsonb_column()
    )
    promotions: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=_jsonb_column()
    )
    editing_mode: str = Field(
        default="edit",
        sa_column=Column(String(10), nullable=False, server_default="edit"),
    )
    updated_at: float = Field(
        default=0.0, sa_column=Column(sa.Float(), nullable=False, server_default="0")
    )
    owner_id: UUID | None = Field(
        default=None, sa_column=_set_null_fk_column("user.id")
    )
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )

    __table_args__ = (
        CheckConstraint(
            "editing_mode IN ('edit', 'view', 'suggest', 'vote')",
            name="ck_document_editing_mode",
        ),
    )


class Amendment(SQLModel, table=True):
    """The parent entity a document belongs to.

    Change requests are scoped to an amendment, and their uniqueness is
    checked per ``(amendment_id, title)``.

    Attributes:
        id: Primary key UUID, auto-generated.
        title: Amendment title.
        document_id: The amendment's document.
        created_at: Timestamp when the row was created.
    """

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str = Field(max_length=200)
    document_id: UUID | None = Field(
        default=None, sa_column=_set_null_fk_column("document.id")
    )
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )


class DocumentVersion(SQLModel, table=True):
    """A point-in-time snapshot of a document's content.

    Versions are created and renamed but never deleted by this core.
    ``version_number`` is unique per document.

    Attributes:
        id: Primary key UUID, auto-generated.
        document_id: Foreign key to Document (CASCADE DELETE).
        version_number: 1-based, strictly increasing per document.
        title: Display title, editable after creation.
        content: Full content snapshot.
        creation_type: manual, suggestion_added, suggestion_accepted or
            suggestion_declined.
        created_by: Author of the version (SET NULL on user delete).
        created_at: Timestamp when the version was created.
    """

    __tablename__ = "document_version"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    document_id: UUID = Field(sa_column=_cascade_fk_column("document.id"))
    version_number: int = Field(sa_column=Column(Integer, nullable=False))
    title: str = Field(sa_column=Column(String(200), nullable=False))
    content: list[dict[str, Any]] = Field(
        default_factory=list, sa_column=_jsonb_column()
    )
    creation_type: str = Field(sa_column=Column(String(30), nullable=False))
    created_by: UUID | None = Field(
        default=None, sa_column=_set_null_fk_column("user.id")
    )
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )

    __table_args__ = (
        UniqueConstraint(
            "document_id", "version_number", name="uq_document_version_number"
        ),
        CheckConstraint("version_number >= 1", name="ck_document_version_number"),
        CheckConstraint(
            "creation_type IN ('manual', 'suggestion_added',"
            " 'suggestion_accepted', 'suggestion_declined')",
            name="ck_document_version_creation_type",
        ),
    )


class ChangeRequest(SQLModel, table=True):
    """A standalone, votable record promoted from a discussion.

    At most one change request should exist per ``(amendment_id, title)``.
    That is enforced by query-before-create in the services, not by a
    unique constraint, so the pair is only indexed.

    Attributes:
        id: Primary key UUID, auto-generated.
        amendment_id: Foreign key to Amendment (CASCADE DELETE).
        creator_id: The promoting user, or the suggester for vote-created
            records (SET NULL on user delete).
        title: The discussion's crId.
        description: Copied from the discussion.
        proposed_change: Copied from the discussion.
        justification: Copied from the discussion.
        status: pending, accepted or rejected.
        requires_voting: Whether the record was created by the voting surface.
        created_at: Copied from the discussion when it has one.
        updated_at: Last status change.
    """

    __tablename__ = "change_request"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    amendment_id: UUID = Field(sa_column=_cascade_fk_column("amendment.id"))
    creator_id: UUID | None = Field(
        default=None, sa_column=_set_null_fk_column("user.id")
    )
    title: str = Field(sa_column=Column(String(200), nullable=False))
    description: str = Field(
        default="", sa_column=Column(sa.Text(), nullable=False, server_default="")
    )
    proposed_change: str = Field(
        default="", sa_column=Column(sa.Text(), nullable=False, server_default="")
    )
    justification: str = Field(
        default="", sa_column=Column(sa.Text(), nullable=False, server_default="")
    )
    status: str = Field(
        default="pending",
        sa_column=Column(String(10), nullable=False, server_default="pending"),
    )
    requires_voting: bool = Field(
        default=False,
        sa_column=Column(sa.Boolean, nullable=False, server_default="false"),
    )
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )
    updated_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )

    __table_args__ = (
        Index("ix_change_request_amendment_title", "amendment_id", "title"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="ck_change_request_status",
        ),
    )


class ChangeRequestVote(SQLModel, table=True):
    """One voter's vote on one change request.

    Casting again updates ``vote`` in place.

    Attributes:
        id: Primary key UUID, auto-generated.
        change_request_id: Foreign key to ChangeRequest (CASCADE DELETE).
        voter_id: Foreign key to User (CASCADE DELETE).
        vote: accept, reject or abstain.
        created_at: Timestamp of the first vote.
        updated_at: Timestamp of the latest change.
    """

    __tablename__ = "change_request_vote"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    change_request_id: UUID = Field(
        sa_column=_cascade_fk_column("change_request.id")
    )
    voter_id: UUID = Field(sa_column=_cascade_fk_column("user.id"))
    vote: str = Field(sa_column=Column(String(10), nullable=False))
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )
    updated_at: datetime = Field(
        default_factory=_utcnow, sa_column=_timestamptz_column()
    )

    __table_args__ = (
        UniqueConstraint(
            "change_request_id", "voter_id", name="uq_change_request_vote_voter"
        ),
        CheckConstraint(
            "vote IN ('accept', 'reject', 'abstain')",
            name="ck_change_request_vote_vote",
        ),
    )
