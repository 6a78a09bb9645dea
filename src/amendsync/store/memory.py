"""In-process document store.

Every operation awaits a simulated round-trip before touching state, so
concurrent callers interleave the way network clients of the real store
do. Version-number and vote uniqueness are enforced like the database
constraints; change-request uniqueness is not, matching the SQL schema.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from amendsync.errors import (
    ChangeRequestNotFoundError,
    DocumentNotFoundError,
    DuplicateVersionNumberError,
    DuplicateVoteError,
    VersionNotFoundError,
)
from amendsync.models.document import DEFAULT_CONTENT, DocumentSnapshot
from amendsync.store.hub import Subscription, SubscriptionHub

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from uuid import UUID

    from amendsync.db.models import ChangeRequest, ChangeRequestVote, DocumentVersion
    from amendsync.models.document import Block

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """Dict-backed implementation of DocumentStoreProtocol.

    Attributes:
        latency: Seconds each call waits before acting. Zero still yields
            to the event loop once.
        write_count: Number of successful mutating calls, for tests.
    """

    def __init__(
        self,
        latency: float = 0.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.latency = latency
        self.clock = clock
        self.hub = SubscriptionHub()
        self.write_count = 0
        self._documents: dict[UUID, DocumentSnapshot] = {}
        self._versions: dict[UUID, DocumentVersion] = {}
        self._change_requests: dict[UUID, ChangeRequest] = {}
        self._votes: dict[UUID, ChangeRequestVote] = {}
        self._user_names: dict[UUID, str] = {}
        self._failures: dict[str, int] = {}

    async def _roundtrip(self, operation: str) -> None:
        await asyncio.sleep(self.latency)
        remaining = self._failures.get(operation, 0)
        if remaining:
            self._failures[operation] = remaining - 1
            msg = f"simulated {operation} failure"
            raise ConnectionError(msg)

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise ConnectionError."""
        self._failures[operation] = self._failures.get(operation, 0) + times

    def add_user(self, user_id: UUID, display_name: str) -> None:
        self._user_names[user_id] = display_name

    def subscribe(self, document_id: UUID) -> Subscription:
        return self.hub.subscribe(document_id)

    async def get_document(self, document_id: UUID) -> DocumentSnapshot:
        await self._roundtrip("get_document")
        snapshot = self._documents.get(document_id)
        if snapshot is None:
            raise DocumentNotFoundError(document_id)
        return snapshot

    async def create_document(
        self,
        title: str = "",
        content: list[Block] | None = None,
        owner_id: UUID | None = None,
        editing_mode: str = "edit",
        document_id: UUID | None = None,
    ) -> DocumentSnapshot:
        await self._roundtrip("create_document")
        snapshot = DocumentSnapshot.model_validate(
            {
                "id": document_id or uuid4(),
                "title": title,
                "content": content if content is not None else list(DEFAULT_CONTENT),
                "editing_mode": editing_mode,
                "updated_at": self.clock(),
            }
        )
        self._documents[snapshot.id] = snapshot
        self.write_count += 1
        return snapshot

    async def merge_write(
        self, document_id: UUID, fields: Mapping[str, Any]
    ) -> DocumentSnapshot:
        await self._roundtrip("merge_write")
        current = self._documents.get(document_id)
        if current is None:
            raise DocumentNotFoundError(document_id)
        changes = dict(fields)
        changes.setdefault("updated_at", self.clock())
        snapshot = current.merged(changes)
        self._documents[document_id] = snapshot
        self.write_count += 1
        logger.debug("MERGE doc=%s fields=%s", document_id, sorted(changes))
        self.hub.publish(snapshot)
        return snapshot

    async def list_versions(self, document_id: UUID) -> list[DocumentVersion]:
        await self._roundtrip("list_versions")
        return [v for v in self._versions.values() if v.document_id == document_id]

    async def get_version(self, version_id: UUID) -> DocumentVersion | None:
        await self._roundtrip("get_version")
        return self._versions.get(version_id)

    async def insert_version(self, version: DocumentVersion) -> DocumentVersion:
        await self._roundtrip("insert_version")
        for existing in self._versions.values():
            if (
                existing.document_id == version.document_id
                and existing.version_number == version.version_number
            ):
                raise DuplicateVersionNumberError(
                    version.document_id, version.version_number
                )
        self._versions[version.id] = version
        self.write_count += 1
        return version

    async def update_version_title(
        self, version_id: UUID, title: str
    ) -> DocumentVersion:
        await self._roundtrip("update_version_title")
        version = self._versions.get(version_id)
        if version is None:
            raise VersionNotFoundError(version_id)
        version.title = title
        self.write_count += 1
        return version

    async def find_change_requests(
        self, amendment_id: UUID, title: str
    ) -> list[ChangeRequest]:
        await self._roundtrip("find_change_requests")
        return [
            cr
            for cr in self._change_requests.values()
            if cr.amendment_id == amendment_id and cr.title == title
        ]

    async def list_change_requests(self, amendment_id: UUID) -> list[ChangeRequest]:
        await self._roundtrip("list_change_requests")
        return [
            cr
            for cr in self._change_requests.values()
            if cr.amendment_id == amendment_id
        ]

    async def get_change_request(self, change_request_id: UUID) -> ChangeRequest | None:
        await self._roundtrip("get_change_request")
        return self._change_requests.get(change_request_id)

    async def insert_change_request(
        self, change_request: ChangeRequest
    ) -> ChangeRequest:
        await self._roundtrip("insert_change_request")
        self._change_requests[change_request.id] = change_request
        self.write_count += 1
        return change_request

    async def update_change_request_status(
        self, change_request_id: UUID, status: str
    ) -> ChangeRequest:
        await self._roundtrip("update_change_request_status")
        change_request = self._change_requests.get(change_request_id)
        if change_request is None:
            raise ChangeRequestNotFoundError(change_request_id)
        change_request.status = status
        change_request.updated_at = datetime.now(UTC)
        self.write_count += 1
        return change_request

    async def find_votes(
        self, change_request_ids: list[UUID], voter_id: UUID | None = None
    ) -> list[ChangeRequestVote]:
        await self._roundtrip("find_votes")
        wanted = set(change_request_ids)
        return [
            vote
            for vote in self._votes.values()
            if vote.change_request_id in wanted
            and (voter_id is None or vote.voter_id == voter_id)
        ]

    async def insert_vote(self, vote: ChangeRequestVote) -> ChangeRequestVote:
        await self._roundtrip("insert_vote")
        for existing in self._votes.values():
            if (
                existing.change_request_id == vote.change_request_id
                and existing.voter_id == vote.voter_id
            ):
                raise DuplicateVoteError(vote.change_request_id, vote.voter_id)
        self._votes[vote.id] = vote
        self.write_count += 1
        return vote

    async def update_vote(self, vote_id: UUID, vote_type: str) -> ChangeRequestVote:
        await self._roundtrip("update_vote")
        vote = self._votes.get(vote_id)
        if vote is None:
            msg = f"Vote {vote_id} not found"
            raise LookupError(msg)
        vote.vote = vote_type
        vote.updated_at = datetime.now(UTC)
        self.write_count += 1
        return vote

    async def get_user_names(self, user_ids: list[UUID]) -> dict[UUID, str]:
        await self._roundtrip("get_user_names")
        names = self._user_names
        return {uid: names[uid] for uid in user_ids if uid in names}
