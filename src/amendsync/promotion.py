"""Suggestion promotion: accept or decline an inline suggestion.

Promoting a discussion takes three writes that the store cannot make
atomic:

1. a DocumentVersion snapshot of the content,
2. a ChangeRequest recording the outcome,
3. removal of the discussion from ``Document.discussions``.

The pipeline runs them as a saga. A ``PromotionMarker`` is merge-written
into ``Document.promotions`` before step 1 and advanced after each step;
step 3 removes the discussion and the marker in the same write. A crash
in between leaves the marker behind, and ``resume_pending`` rolls it
forward without creating a second version or change request.

Change requests are found by ``(amendment_id, title)`` before one is
created. Two processes promoting the same discussion at the same moment
can still both miss and create one each; within a process an in-flight
guard stops the second attempt.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from amendsync.db.models import ChangeRequest
from amendsync.identity import AllowAllPermissions
from amendsync.models.document import (
    Discussion,
    PromotionMarker,
    SuggestionRef,
)
from amendsync.notify import LoggingNotifier, Toast

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from uuid import UUID

    from amendsync.db.models import DocumentVersion
    from amendsync.identity import PermissionOracle, SessionUser
    from amendsync.models.document import (
        Block,
        DocumentSnapshot,
        EditingMode,
        PromotionAction,
    )
    from amendsync.notify import NotifierProtocol
    from amendsync.store.protocol import DocumentStoreProtocol
    from amendsync.sync.reconciler import EditSession
    from amendsync.versioning import VersionStore

logger = logging.getLogger(__name__)

VOTE_MODE_MESSAGES: dict[str, str] = {
    "accept": (
        "This document is in voting mode. "
        "Changes must be approved by vote on the Change Requests page."
    ),
    "decline": (
        "This document is in voting mode. "
        "Changes must be rejected by vote on the Change Requests page."
    ),
}

_STATUS = {"accept": "accepted", "decline": "rejected"}
_CREATION_TYPE = {"accept": "suggestion_accepted", "decline": "suggestion_declined"}
_PAST_TENSE = {"accept": "accepted", "decline": "declined"}

DEFAULT_CHANGE_REQUEST_TITLE = "Change Request"


def _version_title(cr_id: str | None, action: str) -> str | None:
    return f"{cr_id} {_PAST_TENSE[action]}" if cr_id else None


def _find_marker(
    snapshot: DocumentSnapshot, ref: SuggestionRef
) -> PromotionMarker | None:
    for candidate in ref.candidate_ids:
        marker = snapshot.find_promotion(candidate)
        if marker is not None:
            return marker
    return None


class PromotionOutcome(StrEnum):
    """How an accept or decline call ended."""

    PROMOTED = "promoted"
    # Version created but no discussion matched the suggestion
    VERSION_ONLY = "version_only"
    VOTE_MODE = "vote_mode"
    FORBIDDEN = "forbidden"
    IN_PROGRESS = "in_progress"
    ALREADY_PROMOTED = "already_promoted"
    FAILED = "failed"


@dataclass
class PromotionContext:
    """What the editor knows when the user clicks accept or decline.

    Attributes:
        document_id: The amendment's document.
        amendment_id: Scope for change-request lookup.
        content: The content to snapshot into the version.
        discussions: The editor's current discussion list.
        editing_mode: The mode the editor is showing.
    """

    document_id: UUID
    amendment_id: UUID
    content: list[Block]
    discussions: list[Discussion] = field(default_factory=list)
    editing_mode: EditingMode = "edit"

    @classmethod
    def from_session(cls, session: EditSession, amendment_id: UUID) -> PromotionContext:
        return cls(
            document_id=session.document_id,
            amendment_id=amendment_id,
            content=session.content,
            discussions=list(session.discussions),
            editing_mode=session.editing_mode,
        )


@dataclass
class PromotionResult:
    """Outcome of one accept/decline call."""

    outcome: PromotionOutcome
    version: DocumentVersion | None = None
    change_request: ChangeRequest | None = None
    discussions: list[Discussion] | None = None


class SuggestionPromotionPipeline:
    """Turns inline suggestions into versions plus change requests."""

    def __init__(
        self,
        store: DocumentStoreProtocol,
        versions: VersionStore,
        *,
        notifier: NotifierProtocol | None = None,
        permissions: PermissionOracle | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.versions = versions
        self.notifier = notifier or LoggingNotifier()
        self.permissions = permissions or AllowAllPermissions()
        self.clock = clock
        self._in_flight: set[tuple[UUID, str]] = set()

    async def accept(
        self,
        context: PromotionContext,
        suggestion: SuggestionRef | Mapping[str, Any],
        user: SessionUser | None,
    ) -> PromotionResult:
        """Accept a suggestion: version, accepted change request, removal."""
        return await self._promote("accept", context, suggestion, user)

    async def decline(
        self,
        context: PromotionContext,
        suggestion: SuggestionRef | Mapping[str, Any],
        user: SessionUser | None,
    ) -> PromotionResult:
        """Decline a suggestion: version, rejected change request, removal."""
        return await self._promote("decline", context, suggestion, user)

    async def _promote(
        self,
        action: PromotionAction,
        context: PromotionContext,
        suggestion: SuggestionRef | Mapping[str, Any],
        user: SessionUser | None,
    ) -> PromotionResult:
        if user is None:
            logger.debug("Promotion of a suggestion without a user is forbidden")
            return PromotionResult(PromotionOutcome.FORBIDDEN)
        if not await self.permissions.can_manage(user, context.amendment_id):
            self.notifier.notify(
                Toast(
                    "Error",
                    "You do not have permission to manage this document.",
                    "destructive",
                )
            )
            return PromotionResult(PromotionOutcome.FORBIDDEN)
        if context.editing_mode == "vote":
            self._reject_vote_mode(action)
            return PromotionResult(PromotionOutcome.VOTE_MODE)

        ref = SuggestionRef.from_payload(suggestion)
        on_screen = ref.resolve(context.discussions)
        discussion_id = on_screen.id if on_screen else ref.discussion_id
        key = (context.document_id, discussion_id)
        if key in self._in_flight:
            logger.info("Promotion of discussion %s already in progress", discussion_id)
            return PromotionResult(PromotionOutcome.IN_PROGRESS)

        self._in_flight.add(key)
        try:
            return await self._run(action, context, ref, user)
        except Exception:
            logger.exception(
                "Failed to %s suggestion %s on document %s",
                action,
                ref.discussion_id,
                context.document_id,
            )
            self.notifier.notify(
                Toast("Error", f"Failed to {action} suggestion", "destructive")
            )
            return PromotionResult(PromotionOutcome.FAILED)
        finally:
            self._in_flight.discard(key)

    def _reject_vote_mode(self, action: PromotionAction) -> None:
        self.notifier.notify(
            Toast("Voting mode", VOTE_MODE_MESSAGES[action], "destructive")
        )

    async def _run(
        self,
        action: PromotionAction,
        context: PromotionContext,
        ref: SuggestionRef,
        user: SessionUser,
    ) -> PromotionResult:
        snapshot = await self.store.get_document(context.document_id)
        if snapshot.editing_mode == "vote":
            self._reject_vote_mode(action)
            return PromotionResult(PromotionOutcome.VOTE_MODE)

        marker = _find_marker(snapshot, ref)
        if marker is not None:
            logger.warning(
                "Found unfinished %s of discussion %s, rolling it forward",
                marker.action,
                marker.discussion_id,
            )
            return await self._roll_forward(marker, snapshot, context)

        discussion = ref.resolve(snapshot.discussions)
        if discussion is None and ref.resolve(context.discussions):
            # Gone remotely but still on screen: someone already promoted it
            self.notifier.notify(
                Toast("Info", "This suggestion has already been resolved.", "info")
            )
            return PromotionResult(
                PromotionOutcome.ALREADY_PROMOTED,
                discussions=list(snapshot.discussions),
            )

        if discussion is None:
            version = await self.versions.create_version(
                context.document_id,
                user.user_id,
                context.content,
                _CREATION_TYPE[action],
                title=_version_title(ref.cr_id, action),
            )
            logger.warning(
                "No discussion %s on document %s; created version %d only, "
                "no change request recorded",
                ref.discussion_id,
                context.document_id,
                version.version_number,
            )
            self.notifier.notify(
                Toast("Success", f"Suggestion {_PAST_TENSE[action]}", "success")
            )
            return PromotionResult(
                PromotionOutcome.VERSION_ONLY,
                version=version,
                discussions=list(snapshot.discussions),
            )

        marker = PromotionMarker(
            discussion_id=discussion.id,
            action=action,
            user_id=user.user_id,
            started_at=self.clock(),
        )
        snapshot = await self._save_marker(context.document_id, marker)
        return await self._roll_forward(marker, snapshot, context)

    async def _roll_forward(
        self,
        marker: PromotionMarker,
        snapshot: DocumentSnapshot,
        context: PromotionContext,
    ) -> PromotionResult:
        if marker.version_id is None:
            discussion = snapshot.find_discussion(marker.discussion_id)
            cr_id = discussion.cr_id if discussion else None
            version = await self.versions.create_version(
                snapshot.id,
                marker.user_id,
                context.content,
                _CREATION_TYPE[marker.action],
                title=_version_title(cr_id, marker.action),
            )
            marker = marker.model_copy(
                update={"step": "version_created", "version_id": version.id}
            )
            snapshot = await self._save_marker(snapshot.id, marker)
        else:
            version = await self.store.get_version(marker.version_id)
        return await self._finish(marker, snapshot, context.amendment_id, version)

    async def _finish(
        self,
        marker: PromotionMarker,
        snapshot: DocumentSnapshot,
        amendment_id: UUID,
        version: DocumentVersion | None,
    ) -> PromotionResult:
        discussion = snapshot.find_discussion(marker.discussion_id)
        change_request = None
        if marker.change_request_id is not None:
            change_request = await self.store.get_change_request(
                marker.change_request_id
            )
        elif discussion is not None:
            change_request = await self._record_change_request(
                amendment_id, discussion, _STATUS[marker.action], marker.user_id
            )
            marker = marker.model_copy(
                update={
                    "step": "change_request_recorded",
                    "change_request_id": change_request.id,
                }
            )
            snapshot = await self._save_marker(snapshot.id, marker)

        remaining = [d for d in snapshot.discussions if d.id != marker.discussion_id]
        promotions = [
            m for m in snapshot.promotions if m.discussion_id != marker.discussion_id
        ]
        snapshot = await self.store.merge_write(
            snapshot.id,
            {
                "discussions": remaining,
                "promotions": promotions,
                "updated_at": self.clock(),
            },
        )
        logger.info(
            "Promoted discussion %s on document %s (%s)",
            marker.discussion_id,
            snapshot.id,
            marker.action,
        )
        self.notifier.notify(
            Toast("Success", f"Suggestion {_PAST_TENSE[marker.action]}", "success")
        )
        return PromotionResult(
            PromotionOutcome.PROMOTED,
            version=version,
            change_request=change_request,
            discussions=list(snapshot.discussions),
        )

    async def _save_marker(
        self, document_id: UUID, marker: PromotionMarker
    ) -> DocumentSnapshot:
        """Insert or replace this discussion's marker, keeping the others."""
        snapshot = await self.store.get_document(document_id)
        promotions = [
            m for m in snapshot.promotions if m.discussion_id != marker.discussion_id
        ]
        promotions.append(marker)
        return await self.store.merge_write(
            document_id, {"promotions": promotions, "updated_at": self.clock()}
        )

    async def _record_change_request(
        self,
        amendment_id: UUID,
        discussion: Discussion,
        status: str,
        creator_id: UUID,
    ) -> ChangeRequest:
        """Find the discussion's change request or create it."""
        if discussion.cr_id:
            existing = await self.store.find_change_requests(
                amendment_id, discussion.cr_id
            )
            if existing:
                change_request = existing[0]
                if change_request.status != status:
                    change_request = await self.store.update_change_request_status(
                        change_request.id, status
                    )
                return change_request

        now = datetime.now(UTC)
        return await self.store.insert_change_request(
            ChangeRequest(
                amendment_id=amendment_id,
                creator_id=creator_id,
                title=discussion.cr_id or DEFAULT_CHANGE_REQUEST_TITLE,
                description=discussion.description,
                proposed_change=discussion.proposed_change,
                justification=discussion.justification,
                status=status,
                requires_voting=False,
                created_at=discussion.created_at or now,
                updated_at=now,
            )
        )

    async def resume_pending(
        self,
        document_id: UUID,
        amendment_id: UUID,
    ) -> list[PromotionResult]:
        """Roll forward every promotion left unfinished on a document.

        Versions created while resuming snapshot the document's current
        remote content.
        """
        snapshot = await self.store.get_document(document_id)
        results: list[PromotionResult] = []
        for marker in list(snapshot.promotions):
            key = (document_id, marker.discussion_id)
            if key in self._in_flight:
                continue
            self._in_flight.add(key)
            try:
                current = await self.store.get_document(document_id)
                context = PromotionContext(
                    document_id=document_id,
                    amendment_id=amendment_id,
                    content=current.content,
                    discussions=list(current.discussions),
                    editing_mode=current.editing_mode,
                )
                pending = current.find_promotion(marker.discussion_id)
                if pending is not None:
                    results.append(
                        await self._roll_forward(pending, current, context)
                    )
            finally:
                self._in_flight.discard(key)
        return results
