"""Payload models for documents, discussions and promotion markers."""

from amendsync.models.document import (
    DEFAULT_CONTENT,
    SUGGESTION_KEY_PREFIX,
    Block,
    ChangeRequestStatus,
    CreationType,
    Discussion,
    DocumentSnapshot,
    EditingMode,
    PromotionAction,
    PromotionMarker,
    PromotionStep,
    SuggestionRef,
    VoteType,
    VoteView,
    find_discussion,
    serialize_blocks,
)

__all__ = [
    "DEFAULT_CONTENT",
    "SUGGESTION_KEY_PREFIX",
    "Block",
    "ChangeRequestStatus",
    "CreationType",
    "Discussion",
    "DocumentSnapshot",
    "EditingMode",
    "PromotionAction",
    "PromotionMarker",
    "PromotionStep",
    "SuggestionRef",
    "VoteType",
    "VoteView",
    "find_discussion",
    "serialize_blocks",
]
