"""Seams to the identity provider and permission oracle.

Authentication and role computation happen elsewhere; the core only
receives the signed-in user (or None) and asks a yes/no permission
question before promoting or voting.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from uuid import UUID


@dataclass(frozen=True)
class SessionUser:
    """The signed-in user as supplied by the session provider."""

    user_id: UUID
    display_name: str
    avatar_url: str | None = None


class PermissionOracle(Protocol):
    """Answers whether a user may manage an amendment's document."""

    async def can_manage(self, user: SessionUser, amendment_id: UUID) -> bool: ...


class AllowAllPermissions:
    """Oracle that permits every signed-in user."""

    async def can_manage(self, user: SessionUser, amendment_id: UUID) -> bool:
        return True


class CollaboratorPermissions:
    """Oracle backed by a fixed owner/collaborator set per amendment."""

    def __init__(self, collaborators: dict[UUID, set[UUID]]) -> None:
        self._collaborators = collaborators

    async def can_manage(self, user: SessionUser, amendment_id: UUID) -> bool:
        return user.user_id in self._collaborators.get(amendment_id, set())
