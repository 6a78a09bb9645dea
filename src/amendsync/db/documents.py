"""CRUD operations for Document and Amendment rows.

The document row is merge-written: callers pass only the fields they
changed and every other column is left as it is.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from amendsync.db.engine import get_session
from amendsync.db.models import Amendment, Document
from amendsync.errors import DocumentNotFoundError, InvalidFieldError
from amendsync.models.document import (
    DEFAULT_CONTENT,
    MERGEABLE_FIELDS,
    DocumentSnapshot,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

logger = logging.getLogger(__name__)

_JSON_FIELDS = {"content", "discussions", "promotions"}


def to_snapshot(document: Document) -> DocumentSnapshot:
    """Convert a Document row to the subscriber-facing snapshot."""
    return DocumentSnapshot.model_validate(
        {
            "id": document.id,
            "title": document.title,
            "content": document.content or list(DEFAULT_CONTENT),
            "discussions": document.discussions or [],
            "editing_mode": document.editing_mode,
            "updated_at": document.updated_at,
            "promotions": document.promotions or [],
        }
    )


def _column_values(snapshot: DocumentSnapshot, fields: set[str]) -> dict[str, Any]:
    """Render the named snapshot fields as column values."""
    dumped = snapshot.model_dump(mode="json", by_alias=True, include=_JSON_FIELDS)
    return {
        name: dumped[name] if name in _JSON_FIELDS else getattr(snapshot, name)
        for name in fields
    }


async def create_document(
    title: str = "",
    content: list[dict[str, Any]] | None = None,
    owner_id: UUID | None = None,
    editing_mode: str = "edit",
) -> Document:
    """Create a new document.

    Args:
        title: Document title.
        content: Initial blocks; the placeholder paragraph if omitted.
        owner_id: Creating user.
        editing_mode: Initial editing mode.

    Returns:
        The created Document with generated ID.
    """
    async with get_session() as session:
        document = Document(
            title=title,
            content=content if content is not None else list(DEFAULT_CONTENT),
            owner_id=owner_id,
            editing_mode=editing_mode,
            updated_at=time.time(),
        )
        session.add(document)
        await session.flush()
        await session.refresh(document)
        return document


async def get_document(document_id: UUID) -> Document | None:
    """Get a document by ID."""
    async with get_session() as session:
        return await session.get(Document, document_id)


async def merge_document_fields(
    document_id: UUID, fields: Mapping[str, Any]
) -> Document:
    """Apply a partial update to a document row.

    Args:
        document_id: The document UUID.
        fields: Subset of title, content, discussions, editing_mode,
            promotions and updated_at. ``updated_at`` defaults to now.

    Returns:
        The updated Document.

    Raises:
        InvalidFieldError: If ``fields`` names an unknown field.
        DocumentNotFoundError: If the document does not exist.
    """
    unknown = set(fields) - MERGEABLE_FIELDS
    if unknown:
        raise InvalidFieldError(unknown)

    changes = dict(fields)
    changes.setdefault("updated_at", time.time())

    async with get_session() as session:
        document = await session.get(Document, document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        merged = to_snapshot(document).merged(changes)
        for name, value in _column_values(merged, set(changes)).items():
            setattr(document, name, value)
        session.add(document)
        await session.flush()
        await session.refresh(document)
        logger.debug(
            "Merged fields %s into document %s", sorted(changes), document_id
        )
        return document


async def create_amendment(title: str, document_id: UUID | None = None) -> Amendment:
    """Create an amendment, optionally linked to its document."""
    async with get_session() as session:
        amendment = Amendment(title=title, document_id=document_id)
        session.add(amendment)
        await session.flush()
        await session.refresh(amendment)
        return amendment
