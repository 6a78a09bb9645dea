"""CRUD operations for DocumentVersion.

Numbering is decided by the caller (see ``amendsync.versioning``); this
module only enforces that a number is not reused.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from amendsync.db.engine import get_session
from amendsync.db.models import DocumentVersion
from amendsync.errors import DuplicateVersionNumberError, VersionNotFoundError

if TYPE_CHECKING:
    from uuid import UUID


async def list_versions(document_id: UUID) -> list[DocumentVersion]:
    """List all versions of a document ordered by version number."""
    async with get_session() as session:
        result = await session.exec(
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(col(DocumentVersion.version_number))
        )
        return list(result.all())


async def get_version(version_id: UUID) -> DocumentVersion | None:
    """Get a version by ID."""
    async with get_session() as session:
        return await session.get(DocumentVersion, version_id)


async def insert_version(version: DocumentVersion) -> DocumentVersion:
    """Persist a new version.

    Raises:
        DuplicateVersionNumberError: If the document already has a version
            with this number.
    """
    async with get_session() as session:
        session.add(version)
        try:
            await session.flush()
        except IntegrityError as e:
            if "uq_document_version_number" in str(e):
                raise DuplicateVersionNumberError(
                    version.document_id, version.version_number
                ) from e
            raise
        await session.refresh(version)
        return version


async def update_version_title(version_id: UUID, title: str) -> DocumentVersion:
    """Rename a version in place.

    Raises:
        VersionNotFoundError: If the version does not exist.
    """
    async with get_session() as session:
        version = await session.get(DocumentVersion, version_id)
        if version is None:
            raise VersionNotFoundError(version_id)
        version.title = title
        session.add(version)
        await session.flush()
        await session.refresh(version)
        return version
