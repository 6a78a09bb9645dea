"""Deterministic per-user colours for presence indicators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from amendsync.identity import SessionUser

_FALLBACK_COLORS = [
    "#e91e63",  # pink
    "#9c27b0",  # purple
    "#673ab7",  # deep purple
    "#3f51b5",  # indigo
    "#2196f3",  # blue
    "#009688",  # teal
    "#4caf50",  # green
    "#ff9800",  # orange
    "#795548",  # brown
]


def user_color(user_id: UUID | str) -> str:
    """Colour for a user, stable across sessions and clients.

    The hue is the first eight hex digits of the id modulo 360. Ids that
    do not start with hex digits fall back to a fixed palette.
    """
    prefix = str(user_id)[:8]
    try:
        hue = int(prefix, 16) % 360
    except ValueError:
        index = sum(ord(c) for c in str(user_id)) % len(_FALLBACK_COLORS)
        return _FALLBACK_COLORS[index]
    return f"hsl({hue}, 70%, 50%)"


@dataclass(frozen=True)
class PresencePeer:
    """What other clients see of a connected editor."""

    peer_id: str
    user_id: UUID
    name: str
    avatar_url: str | None
    color: str

    @classmethod
    def from_user(cls, peer_id: str, user: SessionUser) -> PresencePeer:
        return cls(
            peer_id=peer_id,
            user_id=user.user_id,
            name=user.display_name,
            avatar_url=user.avatar_url,
            color=user_color(user.user_id),
        )
