"""CRUD operations for ChangeRequest and ChangeRequestVote."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from amendsync.db.engine import get_session
from amendsync.db.models import ChangeRequest, ChangeRequestVote
from amendsync.errors import ChangeRequestNotFoundError, DuplicateVoteError

if TYPE_CHECKING:
    from uuid import UUID


async def find_change_requests(amendment_id: UUID, title: str) -> list[ChangeRequest]:
    """Find change requests of an amendment with the given title.

    Returns:
        Matching records, oldest first. More than one means the
        query-before-create race was lost somewhere.
    """
    async with get_session() as session:
        result = await session.exec(
            select(ChangeRequest)
            .where(ChangeRequest.amendment_id == amendment_id)
            .where(ChangeRequest.title == title)
            .order_by(col(ChangeRequest.created_at))
        )
        return list(result.all())


async def list_change_requests(amendment_id: UUID) -> list[ChangeRequest]:
    """List all change requests of an amendment, oldest first."""
    async with get_session() as session:
        result = await session.exec(
            select(ChangeRequest)
            .where(ChangeRequest.amendment_id == amendment_id)
            .order_by(col(ChangeRequest.created_at))
        )
        return list(result.all())


async def get_change_request(change_request_id: UUID) -> ChangeRequest | None:
    """Get a change request by ID."""
    async with get_session() as session:
        return await session.get(ChangeRequest, change_request_id)


async def insert_change_request(change_request: ChangeRequest) -> ChangeRequest:
    """Persist a new change request."""
    async with get_session() as session:
        session.add(change_request)
        await session.flush()
        await session.refresh(change_request)
        return change_request


async def update_change_request_status(
    change_request_id: UUID, status: str
) -> ChangeRequest:
    """Set a change request's status.

    Raises:
        ChangeRequestNotFoundError: If the record does not exist.
    """
    async with get_session() as session:
        change_request = await session.get(ChangeRequest, change_request_id)
        if change_request is None:
            raise ChangeRequestNotFoundError(change_request_id)
        change_request.status = status
        change_request.updated_at = datetime.now(UTC)
        session.add(change_request)
        await session.flush()
        await session.refresh(change_request)
        return change_request


async def find_votes(
    change_request_ids: list[UUID], voter_id: UUID | None = None
) -> list[ChangeRequestVote]:
    """Find votes on the given change requests, optionally by one voter."""
    if not change_request_ids:
        return []
    async with get_session() as session:
        query = select(ChangeRequestVote).where(
            col(ChangeRequestVote.change_request_id).in_(change_request_ids)
        )
        if voter_id is not None:
            query = query.where(ChangeRequestVote.voter_id == voter_id)
        result = await session.exec(query)
        return list(result.all())


async def insert_vote(vote: ChangeRequestVote) -> ChangeRequestVote:
    """Persist a new vote.

    Raises:
        DuplicateVoteError: If the voter already voted on this change request.
    """
    async with get_session() as session:
        session.add(vote)
        try:
            await session.flush()
        except IntegrityError as e:
            if "uq_change_request_vote_voter" in str(e):
                raise DuplicateVoteError(vote.change_request_id, vote.voter_id) from e
            raise
        await session.refresh(vote)
        return vote


async def update_vote(vote_id: UUID, vote_type: str) -> ChangeRequestVote:
    """Change an existing vote in place."""
    async with get_session() as session:
        vote = await session.get(ChangeRequestVote, vote_id)
        if vote is None:
            msg = f"Vote {vote_id} not found"
            raise LookupError(msg)
        vote.vote = vote_type
        vote.updated_at = datetime.now(UTC)
        session.add(vote)
        await session.flush()
        await session.refresh(vote)
        return vote
