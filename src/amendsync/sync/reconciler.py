"""Edit reconciler: local editor buffers against a live remote document.

An ``EditSession`` owns the local buffers for content, title and
discussions of one document. It decides when a pushed remote snapshot may
replace a buffer and when local changes are persisted.

Echo suppression is heuristic. After writing, a field's watermark is
advanced to the write's own timestamp, so the store echoing that write
back is not mistaken for someone else's edit. A quiet window after each
local write, plus a decaying "local change" flag for content, keeps
late-arriving snapshots from clobbering text the user is still typing.
None of this resolves two users editing inside the same window: the most
recent externally timestamped snapshot eventually wins.

Known limitation: accepting a remote snapshot does not consult whether the
content buffer is still unpersisted. An edit made inside the throttle
window can be replaced by the echo of this session's own later title or
discussions write once the local-change flag has decayed; call ``flush()``
before such writes when that matters.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from amendsync.config import get_settings
from amendsync.models.document import (
    DEFAULT_CONTENT,
    EDITING_MODES,
    Discussion,
    serialize_blocks,
)
from amendsync.notify import LoggingNotifier, Toast
from amendsync.presence import PresencePeer, user_color

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from uuid import UUID

    from amendsync.config import SyncConfig
    from amendsync.identity import SessionUser
    from amendsync.models.document import Block, DocumentSnapshot, EditingMode
    from amendsync.notify import NotifierProtocol
    from amendsync.store.hub import Subscription
    from amendsync.store.protocol import DocumentStoreProtocol

logger = logging.getLogger(__name__)


@dataclass
class FieldState:
    """Write bookkeeping for one document field.

    Attributes:
        last_write_at: Clock time of the last write this session issued,
            or None if it has not written the field yet.
        watermark: ``updated_at`` of the newest remote value accepted or
            written for this field.
        dirty: The local buffer holds changes not yet persisted.
        timer: Pending debounce task, cancelled by newer edits.
        lock: Held while a write is in flight; one write per field at a time.
    """

    last_write_at: float | None = None
    watermark: float = 0.0
    dirty: bool = False
    timer: asyncio.Task[None] | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def in_flight(self) -> bool:
        return self.lock.locked()

    @property
    def timer_pending(self) -> bool:
        return self.timer is not None and not self.timer.done()

    def since_last_write(self, now: float) -> float:
        if self.last_write_at is None:
            return math.inf
        return now - self.last_write_at

    def cancel_timer(self) -> None:
        if self.timer is not None and not self.timer.done():
            self.timer.cancel()
        self.timer = None


@dataclass
class ReconcilerState:
    """All mutable reconciliation state of one edit session."""

    content: FieldState = field(default_factory=FieldState)
    title: FieldState = field(default_factory=FieldState)
    discussions: FieldState = field(default_factory=FieldState)
    local_change: bool = False
    decay_timer: asyncio.Task[None] | None = None
    closed: bool = False

    def cancel_timers(self) -> None:
        for field_state in (self.content, self.title, self.discussions):
            field_state.cancel_timer()
        if self.decay_timer is not None and not self.decay_timer.done():
            self.decay_timer.cancel()
        self.decay_timer = None


@dataclass(frozen=True)
class EditorView:
    """What the editor UI renders for a session."""

    document_id: UUID
    title: str
    content: list[Block]
    discussions: list[Discussion]
    editing_mode: EditingMode
    is_saving_title: bool
    user_color: str | None
    presence: PresencePeer | None


class EditSession:
    """A user's continuous editing session on one document.

    Usage:
        async with EditSession(store, document_id, user) as session:
            await session.on_local_edit(blocks)
            session.on_title_edit("New title")

    Teardown cancels pending timers; nothing is written after it.
    Call ``flush()`` first to persist buffers still ahead of the store.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        document_id: UUID,
        user: SessionUser | None,
        *,
        notifier: NotifierProtocol | None = None,
        config: SyncConfig | None = None,
        clock: Callable[[], float] = time.time,
        peer_id: str | None = None,
    ) -> None:
        self.store = store
        self.peer_id = peer_id or uuid4().hex
        self.document_id = document_id
        self.user = user
        self.notifier = notifier or LoggingNotifier()
        self.config = config or get_settings().sync
        self.clock = clock
        self.state = ReconcilerState()

        self.title = ""
        self.content: list[Block] = list(DEFAULT_CONTENT)
        self.discussions: list[Discussion] = []
        self.editing_mode: EditingMode = "edit"
        self.is_saving_title = False

        self._subscription: Subscription | None = None
        self._listener: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    async def __aenter__(self) -> EditSession:
        await self.start()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    # --- lifecycle ---------------------------------------------------------

    async def start(self) -> DocumentSnapshot:
        """Load the document into the buffers and follow remote updates."""
        snapshot = await self.store.get_document(self.document_id)
        self.title = snapshot.title
        self.content = snapshot.content or list(DEFAULT_CONTENT)
        self.discussions = list(snapshot.discussions)
        self.editing_mode = snapshot.editing_mode
        for field_state in (
            self.state.content,
            self.state.title,
            self.state.discussions,
        ):
            field_state.watermark = snapshot.updated_at

        self._subscription = self.store.subscribe(self.document_id)
        self._listener = asyncio.create_task(self._listen(self._subscription))
        logger.info(
            "Edit session started for document %s (user=%s)",
            self.document_id,
            self.user.user_id if self.user else None,
        )
        return snapshot

    async def _listen(self, subscription: Subscription) -> None:
        async for snapshot in subscription:
            try:
                self.on_remote_snapshot(snapshot)
            except Exception:
                logger.exception(
                    "Failed to reconcile snapshot for document %s", self.document_id
                )

    async def close(self) -> None:
        """Tear the session down without writing anything."""
        if self.state.closed:
            return
        self.state.closed = True
        self.state.cancel_timers()
        pending = [t for t in self._tasks if t is not asyncio.current_task()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if self._subscription is not None:
            self._subscription.close()
        if self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener
        logger.info("Edit session closed for document %s", self.document_id)

    # --- remote side -------------------------------------------------------

    def on_remote_snapshot(self, remote: DocumentSnapshot) -> frozenset[str]:
        """Fold a pushed snapshot into the local buffers where allowed.

        Returns:
            Names of the buffers that were replaced.
        """
        if self.state.closed:
            return frozenset()

        now = self.clock()
        applied: set[str] = set()

        # Fields without a local buffer always follow the store
        if remote.editing_mode != self.editing_mode:
            self.editing_mode = remote.editing_mode
            applied.add("editing_mode")

        if self._accepts_content(remote, now):
            self.content = remote.content
            self.state.content.watermark = remote.updated_at
            applied.add("content")

        if self._accepts_title(remote, now):
            self.title = remote.title
            self.state.title.watermark = remote.updated_at
            applied.add("title")

        if self._accepts_discussions(remote, now):
            self.discussions = list(remote.discussions)
            self.state.discussions.watermark = remote.updated_at
            applied.add("discussions")

        if applied:
            logger.debug(
                "Applied remote %s for document %s (updated_at=%s)",
                sorted(applied),
                self.document_id,
                remote.updated_at,
            )
        return frozenset(applied)

    def _quiet_window(self) -> float:
        return self.config.seconds(self.config.quiet_window)

    def _accepts_content(self, remote: DocumentSnapshot, now: float) -> bool:
        content = self.state.content
        return (
            remote.updated_at > content.watermark
            and serialize_blocks(remote.content) != serialize_blocks(self.content)
            and not self.state.local_change
            and content.since_last_write(now) > self._quiet_window()
        )

    def _accepts_title(self, remote: DocumentSnapshot, now: float) -> bool:
        title = self.state.title
        return (
            remote.updated_at > title.watermark
            and remote.title != self.title
            and not title.timer_pending
            and not title.in_flight
            and title.since_last_write(now) > self._quiet_window()
        )

    def _accepts_discussions(self, remote: DocumentSnapshot, now: float) -> bool:
        discussions = self.state.discussions
        quiet = self.config.seconds(self.config.discussions_quiet_window)
        return (
            remote.updated_at > discussions.watermark
            and serialize_blocks(remote.discussions)
            != serialize_blocks(self.discussions)
            and not discussions.timer_pending
            and not discussions.in_flight
            and discussions.since_last_write(now) > quiet
        )

    # --- content -----------------------------------------------------------

    async def on_local_edit(self, new_content: list[Block]) -> bool:
        """Take a content edit from the editor.

        The buffer is always updated. A write is issued only when no content
        write is in flight and the previous one is at least one throttle
        window old; edits inside the window are not queued.

        Returns:
            True if this call persisted the content.
        """
        if self.state.closed or self.user is None:
            return False

        self.state.local_change = True
        self.content = new_content
        self._arm_decay()

        content = self.state.content
        content.dirty = True
        now = self.clock()
        if content.in_flight:
            return False
        if content.since_last_write(now) < self.config.seconds(
            self.config.content_throttle
        ):
            return False
        return await self._write_content(new_content, now)

    async def _write_content(self, new_content: list[Block], now: float) -> bool:
        content = self.state.content
        async with content.lock:
            if self.state.closed:
                return False
            content.last_write_at = now
            try:
                await self.store.merge_write(
                    self.document_id, {"content": new_content, "updated_at": now}
                )
            except Exception:
                # Auto-save stays silent so typing is never interrupted
                logger.exception(
                    "Content save failed for document %s", self.document_id
                )
                return False
            content.watermark = max(content.watermark, now)
            if self.content is new_content:
                content.dirty = False
            return True

    def _arm_decay(self) -> None:
        if self.state.decay_timer is not None and not self.state.decay_timer.done():
            self.state.decay_timer.cancel()
        self.state.decay_timer = asyncio.create_task(self._decay_local_change())

    async def _decay_local_change(self) -> None:
        await asyncio.sleep(self.config.seconds(self.config.local_change_decay))
        self.state.local_change = False

    async def restore(self, content: list[Block]) -> None:
        """Overwrite the document content immediately.

        Bypasses the throttle, then moves both the last-write time and the
        content watermark to now so the restore is not undone by a late
        snapshot.

        Raises:
            Exception: Whatever the store raised; the buffer is unchanged.
        """
        field_state = self.state.content
        async with field_state.lock:
            if self.state.closed:
                msg = "edit session is closed"
                raise RuntimeError(msg)
            now = self.clock()
            await self.store.merge_write(
                self.document_id, {"content": content, "updated_at": now}
            )
            self.content = content
            field_state.last_write_at = now
            field_state.watermark = max(field_state.watermark, now)
            field_state.dirty = False
        logger.info("Restored content of document %s", self.document_id)

    # --- title -------------------------------------------------------------

    def on_title_edit(self, new_title: str) -> None:
        """Take a title keystroke; the save is debounced."""
        if self.state.closed or self.user is None:
            return
        self.title = new_title
        self.state.title.dirty = True
        self._schedule(
            self.state.title,
            self.config.seconds(self.config.title_debounce),
            lambda: self._save_title(new_title),
        )

    async def _save_title(self, title: str) -> bool:
        if not title.strip():
            self.notifier.notify(
                Toast(
                    "Title required",
                    "The document title cannot be empty.",
                    "destructive",
                )
            )
            return False

        field_state = self.state.title
        async with field_state.lock:
            if self.state.closed:
                return False
            now = self.clock()
            field_state.last_write_at = now
            self.is_saving_title = True
            try:
                await self.store.merge_write(
                    self.document_id, {"title": title, "updated_at": now}
                )
            except Exception:
                logger.exception(
                    "Failed to save title for document %s", self.document_id
                )
                self.notifier.notify(
                    Toast("Failed to save title", variant="destructive")
                )
                return False
            finally:
                self.is_saving_title = False
            field_state.watermark = max(field_state.watermark, now)
            if self.title == title:
                field_state.dirty = False
            return True

    # --- discussions -------------------------------------------------------

    async def on_discussions_change(
        self, new_discussions: list[Discussion] | list[dict[str, Any]]
    ) -> bool:
        """Take a new discussion list from the editor.

        Unchanged lists are ignored outright. Otherwise the list is saved
        now, or at the end of the current debounce window if a save
        happened recently or is still in flight.

        Returns:
            True if this call persisted the discussions.
        """
        if self.state.closed or self.user is None:
            return False

        discussions = [Discussion.model_validate(d) for d in new_discussions]
        if serialize_blocks(discussions) == serialize_blocks(self.discussions):
            return False

        self.discussions = discussions
        field_state = self.state.discussions
        field_state.dirty = True

        window = self.config.seconds(self.config.discussions_debounce)
        elapsed = field_state.since_last_write(self.clock())
        if elapsed < window or field_state.in_flight:
            self._schedule(
                field_state, max(window - elapsed, 0.0), self._save_discussions
            )
            return False

        field_state.cancel_timer()
        return await self._save_discussions()

    async def _save_discussions(self) -> bool:
        field_state = self.state.discussions
        async with field_state.lock:
            if self.state.closed:
                return False
            discussions = self.discussions
            now = self.clock()
            field_state.last_write_at = now
            try:
                await self.store.merge_write(
                    self.document_id,
                    {
                        "discussions": [
                            d.model_copy(update={"votes": None}) for d in discussions
                        ],
                        "updated_at": now,
                    },
                )
            except Exception:
                logger.exception(
                    "Discussions save failed for document %s", self.document_id
                )
                self.notifier.notify(
                    Toast("Failed to save comments", variant="destructive")
                )
                return False
            field_state.watermark = max(field_state.watermark, now)
            if self.discussions is discussions:
                field_state.dirty = False
            return True

    # --- editing mode ------------------------------------------------------

    async def change_editing_mode(self, mode: EditingMode) -> bool:
        """Switch the document between edit, view, suggest and vote."""
        if mode not in EDITING_MODES:
            msg = f"Unknown editing mode: {mode!r}"
            raise ValueError(msg)
        if self.state.closed or self.user is None:
            return False
        try:
            await self.store.merge_write(
                self.document_id, {"editing_mode": mode, "updated_at": self.clock()}
            )
        except Exception:
            logger.exception("Failed to change mode of document %s", self.document_id)
            self.notifier.notify(
                Toast("Failed to change document mode.", variant="destructive")
            )
            return False
        self.editing_mode = mode
        self.notifier.notify(Toast(f"Document is now in {mode} mode.", variant="info"))
        return True

    # --- scheduling --------------------------------------------------------

    def _schedule(
        self,
        field_state: FieldState,
        delay: float,
        save: Callable[[], Awaitable[bool]],
    ) -> None:
        field_state.cancel_timer()
        task = asyncio.create_task(self._save_after(field_state, delay, save))
        field_state.timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _save_after(
        self,
        field_state: FieldState,
        delay: float,
        save: Callable[[], Awaitable[bool]],
    ) -> None:
        await asyncio.sleep(delay)
        if self.state.closed:
            return
        # Past the debounce: newer edits schedule a new timer instead of
        # cancelling this write
        field_state.timer = None
        await save()

    async def flush(self) -> None:
        """Persist every buffer that is ahead of the store, right now."""
        if self.state.closed:
            return
        state = self.state
        if state.title.dirty:
            state.title.cancel_timer()
            await self._save_title(self.title)
        if state.discussions.dirty:
            state.discussions.cancel_timer()
            await self._save_discussions()
        if state.content.dirty:
            await self._write_content(self.content, self.clock())

    # --- UI-facing state ---------------------------------------------------

    def view(self) -> EditorView:
        return EditorView(
            document_id=self.document_id,
            title=self.title,
            content=self.content,
            discussions=list(self.discussions),
            editing_mode=self.editing_mode,
            is_saving_title=self.is_saving_title,
            user_color=user_color(self.user.user_id) if self.user else None,
            presence=(
                PresencePeer.from_user(self.peer_id, self.user) if self.user else None
            ),
        )
