"""Document payload models shared by every store backend.

The document row carries JSON fields (content blocks, embedded discussions,
promotion markers) whose shape is owned by the editing UI. These models
validate that JSON at the store boundary and keep the camelCase keys the UI
writes, while Python code uses snake_case attributes.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from amendsync.errors import InvalidFieldError

Block = dict[str, Any]

EditingMode = Literal["edit", "view", "suggest", "vote"]
CreationType = Literal[
    "manual", "suggestion_added", "suggestion_accepted", "suggestion_declined"
]
ChangeRequestStatus = Literal["pending", "accepted", "rejected"]
VoteType = Literal["accept", "reject", "abstain"]
PromotionAction = Literal["accept", "decline"]
PromotionStep = Literal["started", "version_created", "change_request_recorded"]
SuggestionKey = Literal["suggestionId", "keyId"]

EDITING_MODES: tuple[str, ...] = ("edit", "view", "suggest", "vote")
CREATION_TYPES: tuple[str, ...] = (
    "manual",
    "suggestion_added",
    "suggestion_accepted",
    "suggestion_declined",
)
CHANGE_REQUEST_STATUSES: tuple[str, ...] = ("pending", "accepted", "rejected")
VOTE_TYPES: tuple[str, ...] = ("accept", "reject", "abstain")

DEFAULT_CONTENT: list[Block] = [
    {"type": "p", "children": [{"text": "Start typing the amendment text..."}]},
]

# Editor key ids for suggestion marks are the discussion id with this prefix
SUGGESTION_KEY_PREFIX = "suggestion_"

MERGEABLE_FIELDS = frozenset(
    {"title", "content", "discussions", "editing_mode", "promotions", "updated_at"}
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VoteView(_CamelModel):
    """A change-request vote as shown next to its discussion."""

    id: UUID
    vote: VoteType
    voter_id: UUID | None = None


class Discussion(_CamelModel):
    """An inline suggestion embedded in ``Document.discussions``.

    Unknown keys written by the editor (comment threads, anchors) are kept
    so a round trip through the store never drops them.

    Attributes:
        id: Canonical discussion id, also the suggestion id.
        cr_id: Human-facing change-request label, e.g. ``CR-7``.
        description: Free text describing the suggestion.
        proposed_change: The replacement text being proposed.
        justification: Why the author proposes it.
        created_at: When the suggestion was authored.
        user_id: The suggester.
        votes: Votes merged in for display; never persisted by the core.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    id: str
    cr_id: str | None = None
    description: str = ""
    proposed_change: str = ""
    justification: str = ""
    created_at: datetime | None = None
    user_id: UUID | None = None
    votes: list[VoteView] | None = None


class PromotionMarker(_CamelModel):
    """Persisted progress of one discussion's promotion.

    Written to ``Document.promotions`` before the first promotion step and
    advanced after each one, so an interrupted promotion can be detected
    and rolled forward.
    """

    discussion_id: str
    action: PromotionAction
    step: PromotionStep = "started"
    user_id: UUID
    started_at: float
    version_id: UUID | None = None
    change_request_id: UUID | None = None


class DocumentSnapshot(_CamelModel):
    """The value a subscriber sees for one document."""

    id: UUID
    title: str = ""
    content: list[Block] = Field(default_factory=lambda: list(DEFAULT_CONTENT))
    discussions: list[Discussion] = Field(default_factory=list)
    editing_mode: EditingMode = "edit"
    updated_at: float = 0.0
    promotions: list[PromotionMarker] = Field(default_factory=list)

    def merged(self, fields: Mapping[str, Any]) -> DocumentSnapshot:
        """Return a new snapshot with ``fields`` overlaid on this one.

        Raises:
            InvalidFieldError: If ``fields`` names something not mergeable.
        """
        unknown = set(fields) - MERGEABLE_FIELDS
        if unknown:
            raise InvalidFieldError(unknown)
        data = self.model_dump()
        data.update(fields)
        return DocumentSnapshot.model_validate(data)

    def find_discussion(self, discussion_id: str) -> Discussion | None:
        return find_discussion(self.discussions, discussion_id)

    def find_promotion(self, discussion_id: str) -> PromotionMarker | None:
        for marker in self.promotions:
            if marker.discussion_id == discussion_id:
                return marker
        return None


class SuggestionRef(BaseModel):
    """Canonical reference to the discussion behind a suggestion.

    Editor callbacks identify a suggestion in different ways: accept and
    decline hand over ``suggestionId`` and ``id``, while vote controls hand
    over the mark's ``keyId``. Payloads often carry several of these at
    once, so every identifier is kept as a candidate, in the caller's
    order of preference. ``from_payload`` is the only place those shapes
    are translated.
    """

    discussion_id: str
    alternate_ids: tuple[str, ...] = ()
    cr_id: str | None = None

    @property
    def candidate_ids(self) -> tuple[str, ...]:
        return (self.discussion_id, *self.alternate_ids)

    def resolve(self, discussions: list[Discussion]) -> Discussion | None:
        """First discussion matching any candidate, in preference order."""
        for candidate in self.candidate_ids:
            discussion = find_discussion(discussions, candidate)
            if discussion is not None:
                return discussion
        return None

    @classmethod
    def from_payload(
        cls,
        payload: SuggestionRef | Mapping[str, Any] | str,
        prefer: SuggestionKey = "suggestionId",
    ) -> SuggestionRef:
        """Build a reference from whatever the editor handed over.

        Args:
            payload: A ref, a mark payload mapping, or a bare (possibly
                prefixed) discussion id.
            prefer: ``"suggestionId"`` tries suggestionId, then id, then
                keyId; ``"keyId"`` tries the stripped keyId first.

        Raises:
            ValueError: If the payload carries no usable identifier.
        """
        if isinstance(payload, SuggestionRef):
            return payload
        if isinstance(payload, str):
            return cls(discussion_id=payload.removeprefix(SUGGESTION_KEY_PREFIX))

        cr_id = payload.get("crId") or payload.get("cr_id")
        direct = [
            str(value)
            for key in ("suggestionId", "suggestion_id", "id")
            if (value := payload.get(key))
        ]
        key_id = payload.get("keyId") or payload.get("key_id")
        keyed = [str(key_id).removeprefix(SUGGESTION_KEY_PREFIX)] if key_id else []

        ordered = keyed + direct if prefer == "keyId" else direct + keyed
        candidates = list(dict.fromkeys(ordered))
        if not candidates:
            msg = "suggestion payload has no suggestionId, id or keyId"
            raise ValueError(msg)
        return cls(
            discussion_id=candidates[0],
            alternate_ids=tuple(candidates[1:]),
            cr_id=cr_id,
        )


def find_discussion(
    discussions: list[Discussion], discussion_id: str
) -> Discussion | None:
    """Return the discussion with ``discussion_id``, if present."""
    for discussion in discussions:
        if discussion.id == discussion_id:
            return discussion
    return None


def serialize_blocks(value: Any) -> str:
    """Stable serialisation used for no-op and equality checks."""
    if isinstance(value, list) and value and isinstance(value[0], BaseModel):
        value = [item.model_dump(mode="json", by_alias=True) for item in value]
    return json.dumps(value, sort_keys=True, default=str)
