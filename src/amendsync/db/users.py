"""CRUD operations for User."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlmodel import col, select

from amendsync.db.engine import get_session
from amendsync.db.models import User

if TYPE_CHECKING:
    from uuid import UUID


async def upsert_user(
    user_id: UUID, display_name: str, avatar_url: str | None = None
) -> User:
    """Create the user row or refresh its display fields."""
    async with get_session() as session:
        user = await session.get(User, user_id)
        if user is None:
            user = User(id=user_id, display_name=display_name, avatar_url=avatar_url)
        else:
            user.display_name = display_name
            user.avatar_url = avatar_url
        session.add(user)
        await session.flush()
        await session.refresh(user)
        return user


async def get_user_names(user_ids: list[UUID]) -> dict[UUID, str]:
    """Map user ids to display names; unknown ids are omitted."""
    if not user_ids:
        return {}
    async with get_session() as session:
        result = await session.exec(
            select(User).where(col(User.id).in_(user_ids))
        )
        return {user.id: user.display_name for user in result.all()}
