"""Change-request voting.

Votes are cast from the inline suggestion in the editor. The first vote
on a suggestion materialises its ChangeRequest (pending, requires voting,
credited to the original suggester). Each voter holds at most one vote
per change request; voting again changes it in place.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from amendsync.db.models import ChangeRequest, ChangeRequestVote
from amendsync.errors import DuplicateVoteError
from amendsync.identity import AllowAllPermissions
from amendsync.models.document import (
    VOTE_TYPES,
    Discussion,
    SuggestionRef,
    VoteView,
)
from amendsync.notify import LoggingNotifier, Toast

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from uuid import UUID

    from amendsync.identity import PermissionOracle, SessionUser
    from amendsync.models.document import VoteType
    from amendsync.notify import NotifierProtocol
    from amendsync.store.protocol import DocumentStoreProtocol

logger = logging.getLogger(__name__)

RESOLVED_STATUSES = frozenset({"accepted", "rejected"})


@dataclass(frozen=True)
class VoteTally:
    """Vote counts for one change request."""

    accept: int
    reject: int
    abstain: int
    total: int
    not_voted: list[UUID]


def tally_votes(
    votes: Iterable[ChangeRequestVote], collaborator_ids: Iterable[UUID]
) -> VoteTally:
    """Count votes and list the collaborators who have not voted yet."""
    votes = list(votes)
    voted = {vote.voter_id for vote in votes}
    return VoteTally(
        accept=sum(1 for v in votes if v.vote == "accept"),
        reject=sum(1 for v in votes if v.vote == "reject"),
        abstain=sum(1 for v in votes if v.vote == "abstain"),
        total=len(votes),
        not_voted=[uid for uid in collaborator_ids if uid not in voted],
    )


def is_voting_open(change_request: ChangeRequest) -> bool:
    return change_request.status not in RESOLVED_STATUSES


def discussions_with_votes(
    discussions: Iterable[Discussion],
    change_requests: Iterable[ChangeRequest],
    votes: Iterable[ChangeRequestVote],
) -> list[Discussion]:
    """Attach each discussion's change-request votes for display.

    A discussion matches the change request titled with its crId.
    """
    by_title: dict[str, ChangeRequest] = {}
    for change_request in change_requests:
        by_title.setdefault(change_request.title, change_request)

    votes_by_request: dict[UUID, list[VoteView]] = defaultdict(list)
    for vote in votes:
        votes_by_request[vote.change_request_id].append(
            VoteView(id=vote.id, vote=vote.vote, voter_id=vote.voter_id)
        )

    result = []
    for discussion in discussions:
        match = by_title.get(discussion.cr_id) if discussion.cr_id else None
        if match is None:
            result.append(discussion)
        else:
            result.append(
                discussion.model_copy(update={"votes": votes_by_request[match.id]})
            )
    return result


class ChangeRequestVoting:
    """Records votes on change requests."""

    def __init__(
        self,
        store: DocumentStoreProtocol,
        *,
        notifier: NotifierProtocol | None = None,
        permissions: PermissionOracle | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self.permissions = permissions or AllowAllPermissions()
        self._locks: dict[tuple[UUID, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def cast_vote(
        self,
        amendment_id: UUID,
        discussions: list[Discussion],
        suggestion: SuggestionRef | Mapping[str, Any] | str,
        vote_type: VoteType,
        user: SessionUser | None,
    ) -> ChangeRequestVote | None:
        """Vote on the change request behind an inline suggestion.

        Args:
            amendment_id: Scope for change-request lookup.
            discussions: The editor's current discussion list.
            suggestion: The suggestion mark payload (``keyId`` carries the
                discussion id behind a ``suggestion_`` prefix).
            vote_type: accept, reject or abstain.
            user: The voter.

        Returns:
            The created or updated vote, or None if nothing was recorded.
        """
        if vote_type not in VOTE_TYPES:
            msg = f"Unknown vote type: {vote_type!r}"
            raise ValueError(msg)
        if user is None:
            logger.debug("Vote without a user is forbidden")
            return None
        if not await self.permissions.can_manage(user, amendment_id):
            self.notifier.notify(
                Toast(
                    "Error",
                    "You do not have permission to vote on this amendment.",
                    "destructive",
                )
            )
            return None

        try:
            ref = SuggestionRef.from_payload(suggestion, prefer="keyId")
        except ValueError:
            ref = None
        discussion = ref.resolve(discussions) if ref else None
        if discussion is None:
            self.notifier.notify(
                Toast("Error", "Could not find suggestion data.", "destructive")
            )
            return None

        try:
            change_request = await self._get_or_create_change_request(
                amendment_id, discussion
            )
            if not is_voting_open(change_request):
                self.notifier.notify(
                    Toast(
                        "Voting closed",
                        "This change request has already been "
                        f"{change_request.status}.",
                        "destructive",
                    )
                )
                return None
            vote = await self._record_vote(change_request, user.user_id, vote_type)
        except Exception:
            logger.exception(
                "Failed to record %s vote on discussion %s", vote_type, discussion.id
            )
            self.notifier.notify(
                Toast(
                    "Error",
                    "Failed to record your vote. Please try again.",
                    "destructive",
                )
            )
            return None

        self.notifier.notify(Toast("Success", f"Vote recorded: {vote_type}", "success"))
        return vote

    async def _get_or_create_change_request(
        self, amendment_id: UUID, discussion: Discussion
    ) -> ChangeRequest:
        if not discussion.cr_id:
            # Nothing to look up by; every untitled suggestion gets its own record
            return await self._create_pending(amendment_id, discussion)

        async with self._locks[(amendment_id, discussion.cr_id)]:
            existing = await self.store.find_change_requests(
                amendment_id, discussion.cr_id
            )
            if existing:
                return existing[0]
            return await self._create_pending(amendment_id, discussion)

    async def _create_pending(
        self, amendment_id: UUID, discussion: Discussion
    ) -> ChangeRequest:
        now = datetime.now(UTC)
        change_request = await self.store.insert_change_request(
            ChangeRequest(
                amendment_id=amendment_id,
                creator_id=discussion.user_id,
                title=discussion.cr_id or "Change Request",
                description=discussion.description,
                proposed_change=discussion.proposed_change,
                justification=discussion.justification,
                status="pending",
                requires_voting=True,
                created_at=discussion.created_at or now,
                updated_at=now,
            )
        )
        logger.info(
            "Created pending change request %s (%s) for voting",
            change_request.id,
            change_request.title,
        )
        return change_request

    async def _record_vote(
        self, change_request: ChangeRequest, voter_id: UUID, vote_type: str
    ) -> ChangeRequestVote:
        existing = await self.store.find_votes([change_request.id], voter_id=voter_id)
        if existing:
            return await self.store.update_vote(existing[0].id, vote_type)

        now = datetime.now(UTC)
        try:
            return await self.store.insert_vote(
                ChangeRequestVote(
                    change_request_id=change_request.id,
                    voter_id=voter_id,
                    vote=vote_type,
                    created_at=now,
                    updated_at=now,
                )
            )
        except DuplicateVoteError:
            # Another tab of the same voter got there first
            existing = await self.store.find_votes(
                [change_request.id], voter_id=voter_id
            )
            return await self.store.update_vote(existing[0].id, vote_type)

    async def load_board(
        self, amendment_id: UUID
    ) -> tuple[list[ChangeRequest], list[ChangeRequestVote]]:
        """All change requests of an amendment and every vote on them."""
        change_requests = await self.store.list_change_requests(amendment_id)
        votes = await self.store.find_votes([cr.id for cr in change_requests])
        return change_requests, votes
