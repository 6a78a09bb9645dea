"""In-process fan-out of document snapshots to subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from amendsync.models.document import DocumentSnapshot

logger = logging.getLogger(__name__)


class Subscription:
    """Async iterator over the snapshots pushed for one document.

    Iteration ends after ``close()``.
    """

    def __init__(self, hub: SubscriptionHub, document_id: UUID) -> None:
        self.document_id = document_id
        self._hub = hub
        self._queue: asyncio.Queue[DocumentSnapshot | None] = asyncio.Queue()
        self.closed = False

    def push(self, snapshot: DocumentSnapshot) -> None:
        if not self.closed:
            self._queue.put_nowait(snapshot)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._hub.remove(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> DocumentSnapshot:
        snapshot = await self._queue.get()
        if snapshot is None:
            raise StopAsyncIteration
        return snapshot


class SubscriptionHub:
    """Registry of live subscriptions keyed by document id."""

    def __init__(self) -> None:
        self._subscribers: dict[UUID, list[Subscription]] = defaultdict(list)

    def subscribe(self, document_id: UUID) -> Subscription:
        subscription = Subscription(self, document_id)
        self._subscribers[document_id].append(subscription)
        logger.debug(
            "SUBSCRIBE doc=%s count=%d",
            document_id,
            len(self._subscribers[document_id]),
        )
        return subscription

    def remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.document_id, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            self._subscribers.pop(subscription.document_id, None)

    def publish(self, snapshot: DocumentSnapshot) -> None:
        # Copy: a subscriber may close while we iterate
        for subscription in list(self._subscribers.get(snapshot.id, [])):
            subscription.push(snapshot)

    def subscriber_count(self, document_id: UUID) -> int:
        return len(self._subscribers.get(document_id, []))
