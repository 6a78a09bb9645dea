"""Version store: numbered, titled snapshots of document content.

Version numbers are computed from a fresh read as ``max(existing) + 1``.
That read-then-insert is not transactional. Within one process a
per-document lock serialises numbering, and the unique
``(document_id, version_number)`` constraint turns a race lost to another
process into ``DuplicateVersionNumberError``, which is retried with a
fresh read.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from amendsync.config import get_settings
from amendsync.db.models import DocumentVersion
from amendsync.errors import DuplicateVersionNumberError
from amendsync.notify import LoggingNotifier, Toast

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from amendsync.config import VersioningConfig
    from amendsync.identity import SessionUser
    from amendsync.models.document import Block, CreationType
    from amendsync.notify import NotifierProtocol
    from amendsync.store.protocol import DocumentStoreProtocol
    from amendsync.sync.reconciler import EditSession

logger = logging.getLogger(__name__)

_TITLE_PREFIXES: dict[str, str] = {
    "manual": "Manual save",
    "suggestion_added": "Suggestion added",
    "suggestion_accepted": "Suggestion accepted",
    "suggestion_declined": "Suggestion declined",
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def default_version_title(creation_type: str, when: datetime) -> str:
    """Title used when a version is created without one.

    Example: ``"Suggestion accepted - Oct 19, 14:05"``.
    """
    prefix = _TITLE_PREFIXES.get(creation_type, "Auto-save")
    return f"{prefix} - {when:%b} {when.day}, {when:%H:%M}"


@dataclass(frozen=True)
class VersionEntry:
    """A version as listed in the history panel."""

    version: DocumentVersion
    author_name: str | None

    def matches(self, query: str) -> bool:
        """Case-insensitive match on title, version number or author name."""
        needle = query.strip().lower()
        if not needle:
            return True
        haystacks = [
            self.version.title.lower(),
            str(self.version.version_number),
            (self.author_name or "").lower(),
        ]
        return any(needle in haystack for haystack in haystacks)


class VersionStore:
    """Creates, lists, renames and restores document versions.

    Attributes:
        store: Remote document store.
        notifier: Toast channel for the user-facing operations.
        config: Numbering lock and retry settings.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        *,
        notifier: NotifierProtocol | None = None,
        config: VersioningConfig | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self.config = config or get_settings().versioning
        self._now = now
        self._locks: dict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_version(
        self,
        document_id: UUID,
        user_id: UUID | None,
        content: list[Block],
        creation_type: CreationType,
        title: str | None = None,
    ) -> DocumentVersion:
        """Snapshot ``content`` as the document's next version.

        Returns:
            The persisted version.

        Raises:
            DuplicateVersionNumberError: If every numbering attempt lost a
                race with another writer.
            Exception: Store failures propagate; the caller decides whether
                to surface them.
        """
        lock = (
            self._locks[document_id]
            if self.config.serialize_numbering
            else contextlib.nullcontext()
        )
        async with lock:
            attempt = 0
            while True:
                existing = await self.store.list_versions(document_id)
                number = max((v.version_number for v in existing), default=0) + 1
                created_at = self._now()
                version = DocumentVersion(
                    document_id=document_id,
                    version_number=number,
                    title=title or default_version_title(creation_type, created_at),
                    content=content,
                    creation_type=creation_type,
                    created_by=user_id,
                    created_at=created_at,
                )
                try:
                    version = await self.store.insert_version(version)
                except DuplicateVersionNumberError:
                    if attempt >= self.config.max_numbering_retries:
                        raise
                    attempt += 1
                    logger.warning(
                        "Version %d of document %s was taken, retrying (%d/%d)",
                        number,
                        document_id,
                        attempt,
                        self.config.max_numbering_retries,
                    )
                    continue
                logger.info(
                    "Created version %d (%s) of document %s",
                    number,
                    creation_type,
                    document_id,
                )
                return version

    async def save_manual_version(
        self,
        document_id: UUID,
        user: SessionUser | None,
        content: list[Block],
        title: str,
    ) -> DocumentVersion | None:
        """Save a named version from the version-control panel."""
        if user is None:
            return None
        if not title.strip():
            self.notifier.notify(
                Toast("Error", "Please enter a version title", "destructive")
            )
            return None
        try:
            version = await self.create_version(
                document_id, user.user_id, content, "manual", title=title
            )
        except Exception:
            logger.exception("Failed to create version of document %s", document_id)
            self.notifier.notify(
                Toast("Error", "Failed to create version", "destructive")
            )
            return None
        self.notifier.notify(
            Toast(
                "Success",
                f"Version {version.version_number} created successfully",
                "success",
            )
        )
        return version

    async def list_versions(self, document_id: UUID) -> list[DocumentVersion]:
        """All versions, newest first."""
        versions = await self.store.list_versions(document_id)
        return sorted(versions, key=lambda v: v.version_number, reverse=True)

    async def history(
        self, document_id: UUID, query: str | None = None
    ) -> list[VersionEntry]:
        """Versions newest first with author names, filtered by ``query``."""
        versions = await self.list_versions(document_id)
        author_ids = list({v.created_by for v in versions if v.created_by is not None})
        names = await self.store.get_user_names(author_ids)
        entries = [
            VersionEntry(
                version=v,
                author_name=names.get(v.created_by) if v.created_by else None,
            )
            for v in versions
        ]
        if query:
            entries = [entry for entry in entries if entry.matches(query)]
        return entries

    async def rename_version(self, version_id: UUID, new_title: str) -> bool:
        """Change a version's title; empty titles are rejected."""
        if not new_title.strip():
            self.notifier.notify(
                Toast("Error", "Version title cannot be empty", "destructive")
            )
            return False
        try:
            await self.store.update_version_title(version_id, new_title.strip())
        except Exception:
            logger.exception("Failed to rename version %s", version_id)
            self.notifier.notify(
                Toast("Error", "Failed to update version title", "destructive")
            )
            return False
        self.notifier.notify(Toast("Success", "Version title updated", "success"))
        return True

    async def restore_version(
        self, version: DocumentVersion, session: EditSession
    ) -> bool:
        """Put a version's content back into the document.

        This writes the document through the edit session, not a version:
        the version list is unchanged afterwards.
        """
        try:
            await session.restore(list(version.content))
        except Exception:
            logger.exception(
                "Failed to restore version %s of document %s",
                version.version_number,
                version.document_id,
            )
            self.notifier.notify(
                Toast("Error", "Failed to restore version", "destructive")
            )
            return False
        self.notifier.notify(
            Toast("Success", f"Restored to version {version.version_number}", "success")
        )
        return True
