"""PostgreSQL-backed document store.

Delegates to the ``amendsync.db`` CRUD modules and publishes every
document write to subscribers in this process.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from amendsync.db import change_requests as cr_db
from amendsync.db import documents as documents_db
from amendsync.db import users as users_db
from amendsync.db import versions as versions_db
from amendsync.errors import DocumentNotFoundError
from amendsync.store.hub import Subscription, SubscriptionHub

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

    from amendsync.db.models import ChangeRequest, ChangeRequestVote, DocumentVersion
    from amendsync.models.document import Block, DocumentSnapshot

logger = logging.getLogger(__name__)


class SqlDocumentStore:
    """DocumentStoreProtocol over SQLModel and asyncpg."""

    def __init__(self) -> None:
        self.hub = SubscriptionHub()

    def subscribe(self, document_id: UUID) -> Subscription:
        return self.hub.subscribe(document_id)

    async def get_document(self, document_id: UUID) -> DocumentSnapshot:
        document = await documents_db.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return documents_db.to_snapshot(document)

    async def create_document(
        self,
        title: str = "",
        content: list[Block] | None = None,
        owner_id: UUID | None = None,
        editing_mode: str = "edit",
    ) -> DocumentSnapshot:
        document = await documents_db.create_document(
            title=title, content=content, owner_id=owner_id, editing_mode=editing_mode
        )
        return documents_db.to_snapshot(document)

    async def merge_write(
        self, document_id: UUID, fields: Mapping[str, Any]
    ) -> DocumentSnapshot:
        document = await documents_db.merge_document_fields(document_id, fields)
        snapshot = documents_db.to_snapshot(document)
        self.hub.publish(snapshot)
        return snapshot

    async def list_versions(self, document_id: UUID) -> list[DocumentVersion]:
        return await versions_db.list_versions(document_id)

    async def get_version(self, version_id: UUID) -> DocumentVersion | None:
        return await versions_db.get_version(version_id)

    async def insert_version(self, version: DocumentVersion) -> DocumentVersion:
        return await versions_db.insert_version(version)

    async def update_version_title(
        self, version_id: UUID, title: str
    ) -> DocumentVersion:
        return await versions_db.update_version_title(version_id, title)

    async def find_change_requests(
        self, amendment_id: UUID, title: str
    ) -> list[ChangeRequest]:
        return await cr_db.find_change_requests(amendment_id, title)

    async def list_change_requests(self, amendment_id: UUID) -> list[ChangeRequest]:
        return await cr_db.list_change_requests(amendment_id)

    async def get_change_request(self, change_request_id: UUID) -> ChangeRequest | None:
        return await cr_db.get_change_request(change_request_id)

    async def insert_change_request(
        self, change_request: ChangeRequest
    ) -> ChangeRequest:
        return await cr_db.insert_change_request(change_request)

    async def update_change_request_status(
        self, change_request_id: UUID, status: str
    ) -> ChangeRequest:
        return await cr_db.update_change_request_status(change_request_id, status)

    async def find_votes(
        self, change_request_ids: list[UUID], voter_id: UUID | None = None
    ) -> list[ChangeRequestVote]:
        return await cr_db.find_votes(change_request_ids, voter_id)

    async def insert_vote(self, vote: ChangeRequestVote) -> ChangeRequestVote:
        return await cr_db.insert_vote(vote)

    async def update_vote(self, vote_id: UUID, vote_type: str) -> ChangeRequestVote:
        return await cr_db.update_vote(vote_id, vote_type)

    async def get_user_names(self, user_ids: list[UUID]) -> dict[UUID, str]:
        return await users_db.get_user_names(user_ids)
