"""Protocol defining the remote document store interface.

Both SqlDocumentStore and InMemoryDocumentStore implement this protocol,
allowing the sync services to run against either.

None of these operations is transactional with any other. Read-then-write
sequences (version numbering, change-request lookup) can race with other
clients, and callers are expected to cope with that.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

    from amendsync.db.models import ChangeRequest, ChangeRequestVote, DocumentVersion
    from amendsync.models.document import Block, DocumentSnapshot
    from amendsync.store.hub import Subscription


class DocumentStoreProtocol(Protocol):
    """Protocol for remote document stores."""

    def subscribe(self, document_id: UUID) -> Subscription:
        """Stream every snapshot written to ``document_id`` from now on."""
        ...

    async def get_document(self, document_id: UUID) -> DocumentSnapshot:
        """Read the current snapshot.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        ...

    async def create_document(
        self,
        title: str = "",
        content: list[Block] | None = None,
        owner_id: UUID | None = None,
        editing_mode: str = "edit",
    ) -> DocumentSnapshot:
        """Create a document and return its first snapshot."""
        ...

    async def merge_write(
        self, document_id: UUID, fields: Mapping[str, Any]
    ) -> DocumentSnapshot:
        """Overwrite only the given fields of a document.

        Args:
            document_id: The document UUID.
            fields: Subset of title, content, discussions, editing_mode,
                promotions and updated_at. ``updated_at`` is the writer's
                own clock; the store stamps its own time if it is omitted.

        Returns:
            The snapshot after the write, which is also published to
            subscribers.

        Raises:
            InvalidFieldError: If ``fields`` names an unknown field.
            DocumentNotFoundError: If the document does not exist.
        """
        ...

    async def list_versions(self, document_id: UUID) -> list[DocumentVersion]:
        """All versions of a document, in no guaranteed order."""
        ...

    async def get_version(self, version_id: UUID) -> DocumentVersion | None: ...

    async def insert_version(self, version: DocumentVersion) -> DocumentVersion:
        """Persist a version.

        Raises:
            DuplicateVersionNumberError: If the number is taken.
        """
        ...

    async def update_version_title(
        self, version_id: UUID, title: str
    ) -> DocumentVersion: ...

    async def find_change_requests(
        self, amendment_id: UUID, title: str
    ) -> list[ChangeRequest]: ...

    async def list_change_requests(self, amendment_id: UUID) -> list[ChangeRequest]: ...

    async def get_change_request(
        self, change_request_id: UUID
    ) -> ChangeRequest | None: ...

    async def insert_change_request(
        self, change_request: ChangeRequest
    ) -> ChangeRequest: ...

    async def update_change_request_status(
        self, change_request_id: UUID, status: str
    ) -> ChangeRequest: ...

    async def find_votes(
        self, change_request_ids: list[UUID], voter_id: UUID | None = None
    ) -> list[ChangeRequestVote]: ...

    async def insert_vote(self, vote: ChangeRequestVote) -> ChangeRequestVote:
        """Persist a vote.

        Raises:
            DuplicateVoteError: If the voter already voted on the request.
        """
        ...

    async def update_vote(self, vote_id: UUID, vote_type: str) -> ChangeRequestVote: ...

    async def get_user_names(self, user_ids: list[UUID]) -> dict[UUID, str]: ...
