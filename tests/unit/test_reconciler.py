"""Tests for the edit reconciler (EditSession).

Sync windows use ``time_unit_seconds=0.01``: content throttle 0.01s,
quiet window 0.015s, local-change decay 0.02s, title debounce 0.005s,
discussions debounce 0.01s and discussions quiet window 0.02s. Timestamps
come from a FakeClock; timers run on the real event loop.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from amendsync.models.document import DocumentSnapshot
from amendsync.notify import Toast
from amendsync.presence import user_color
from amendsync.sync import EditSession
from tests.conftest import paragraph

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from amendsync.config import SyncConfig
    from amendsync.identity import SessionUser
    from amendsync.notify import RecordingNotifier
    from amendsync.store.memory import InMemoryDocumentStore
    from tests.conftest import FakeClock

# Comfortably longer than any shrunk window
SETTLE = 0.05


@pytest.fixture
async def session(
    store: InMemoryDocumentStore,
    document: DocumentSnapshot,
    user: SessionUser,
    notifier: RecordingNotifier,
    sync_config: SyncConfig,
    clock: FakeClock,
) -> AsyncIterator[EditSession]:
    edit_session = EditSession(
        store,
        document.id,
        user,
        notifier=notifier,
        config=sync_config,
        clock=clock,
    )
    await edit_session.start()
    yield edit_session
    await edit_session.close()


def _remote(
    document: DocumentSnapshot, updated_at: float, **fields: object
) -> DocumentSnapshot:
    data = document.model_dump()
    data.update(updated_at=updated_at, **fields)
    return DocumentSnapshot.model_validate(data)


class TestStart:
    """Tests for loading the document into the buffers."""

    @pytest.mark.asyncio
    async def test_buffers_loaded_from_store(
        self, session: EditSession, document: DocumentSnapshot
    ) -> None:
        """Title, content and mode come from the stored document."""
        assert session.title == "Amendment 12"
        assert session.content == document.content
        assert session.editing_mode == "edit"
        assert session.state.content.watermark == document.updated_at

    @pytest.mark.asyncio
    async def test_subscribes_to_document(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
    ) -> None:
        """Starting a session registers one subscriber."""
        assert store.hub.subscriber_count(document.id) == 1
        await session.close()
        assert store.hub.subscriber_count(document.id) == 0


class TestContentWrites:
    """Tests for throttled content auto-save."""

    @pytest.mark.asyncio
    async def test_first_edit_writes_immediately(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """An edit with no earlier write is persisted at once."""
        blocks = [paragraph("Section 1 is repealed.")]

        assert await session.on_local_edit(blocks) is True

        stored = await store.get_document(document.id)
        assert stored.content == blocks
        assert stored.updated_at == clock.now
        assert session.state.content.dirty is False

    @pytest.mark.asyncio
    async def test_edit_inside_throttle_updates_buffer_only(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """Edits inside the throttle window are buffered, not queued."""
        first = [paragraph("one")]
        second = [paragraph("two")]
        await session.on_local_edit(first)
        writes = store.write_count

        clock.advance(0.005)
        assert await session.on_local_edit(second) is False

        assert session.content == second
        assert session.state.content.dirty is True
        assert (await store.get_document(document.id)).content == first
        assert store.write_count == writes

        clock.advance(0.01)
        assert await session.on_local_edit([paragraph("three")]) is True
        assert (await store.get_document(document.id)).content == [
            paragraph("three")
        ]

    @pytest.mark.asyncio
    async def test_edit_while_write_in_flight_is_not_written(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """At most one content write is outstanding at a time."""
        store.latency = SETTLE
        first_write = asyncio.create_task(session.on_local_edit([paragraph("one")]))
        await asyncio.sleep(0.01)
        assert session.state.content.in_flight

        clock.advance(5)
        assert await session.on_local_edit([paragraph("two")]) is False
        assert await first_write is True

        assert (await store.get_document(document.id)).content == [paragraph("one")]
        assert session.content == [paragraph("two")]
        assert session.state.content.dirty is True

    @pytest.mark.asyncio
    async def test_failed_content_write_is_silent(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        notifier: RecordingNotifier,
    ) -> None:
        """Auto-save failures are logged, never toasted."""
        store.fail_next("merge_write")

        assert await session.on_local_edit([paragraph("lost")]) is False

        assert notifier.toasts == []
        assert session.content == [paragraph("lost")]
        assert session.state.content.dirty is True

    @pytest.mark.asyncio
    async def test_no_user_means_no_write(
        self,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        sync_config: SyncConfig,
        clock: FakeClock,
    ) -> None:
        """Signed-out sessions never write."""
        async with EditSession(
            store, document.id, None, config=sync_config, clock=clock
        ) as anonymous:
            writes = store.write_count
            assert await anonymous.on_local_edit([paragraph("x")]) is False
            anonymous.on_title_edit("Hijacked")
            await asyncio.sleep(SETTLE)
            assert store.write_count == writes


class TestRemoteContent:
    """Tests for folding remote content into the buffer."""

    @pytest.mark.asyncio
    async def test_echo_of_own_write_is_ignored(
        self,
        session: EditSession,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """A snapshot carrying the content just written changes nothing."""
        blocks = [paragraph("mine")]
        await session.on_local_edit(blocks)

        applied = session.on_remote_snapshot(
            _remote(document, clock.now + 0.002, content=blocks)
        )

        assert "content" not in applied
        assert session.content == blocks

    @pytest.mark.asyncio
    async def test_remote_content_rejected_while_typing(
        self,
        session: EditSession,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """The local-change flag protects the buffer until it decays."""
        await session.on_local_edit([paragraph("mine")])
        clock.advance(1.0)

        applied = session.on_remote_snapshot(
            _remote(document, clock.now, content=[paragraph("theirs")])
        )

        assert "content" not in applied
        assert session.content == [paragraph("mine")]

    @pytest.mark.asyncio
    async def test_remote_content_rejected_inside_quiet_window(
        self,
        session: EditSession,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """Snapshots right after a local write are ignored."""
        await session.on_local_edit([paragraph("mine")])
        await asyncio.sleep(SETTLE)
        assert session.state.local_change is False

        clock.advance(0.005)
        applied = session.on_remote_snapshot(
            _remote(document, clock.now, content=[paragraph("theirs")])
        )

        assert "content" not in applied

    @pytest.mark.asyncio
    async def test_remote_content_applied_after_quiet_window(
        self,
        session: EditSession,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """Once typing has decayed and the window passed, remote wins."""
        await session.on_local_edit([paragraph("mine")])
        await asyncio.sleep(SETTLE)
        clock.advance(0.02)

        applied = session.on_remote_snapshot(
            _remote(document, clock.now, content=[paragraph("theirs")])
        )

        assert applied == frozenset({"content"})
        assert session.content == [paragraph("theirs")]
        assert session.state.content.watermark == clock.now

    @pytest.mark.asyncio
    async def test_stale_snapshot_is_ignored(
        self,
        session: EditSession,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """Snapshots not newer than the watermark never apply."""
        await session.on_local_edit([paragraph("mine")])
        await asyncio.sleep(SETTLE)
        clock.advance(1.0)

        applied = session.on_remote_snapshot(
            _remote(document, document.updated_at - 1, content=[paragraph("old")])
        )

        assert applied == frozenset()
        assert session.content == [paragraph("mine")]

    @pytest.mark.asyncio
    async def test_editing_mode_always_follows_remote(
        self,
        session: EditSession,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """Mode has no local buffer, so it applies even while typing."""
        await session.on_local_edit([paragraph("mine")])

        applied = session.on_remote_snapshot(
            _remote(document, clock.now, editing_mode="vote")
        )

        assert applied == frozenset({"editing_mode"})
        assert session.editing_mode == "vote"

    @pytest.mark.asyncio
    async def test_pushed_snapshot_reaches_session(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """Writes by other clients arrive through the subscription."""
        clock.advance(5)
        await store.merge_write(document.id, {"title": "Renamed elsewhere"})
        await asyncio.sleep(0.01)

        assert session.title == "Renamed elsewhere"


class TestTitle:
    """Tests for debounced title saves."""

    @pytest.mark.asyncio
    async def test_keystrokes_coalesce_into_one_write(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
    ) -> None:
        """Only the last title inside the debounce window is written."""
        writes = store.write_count
        session.on_title_edit("A")
        session.on_title_edit("Am")
        session.on_title_edit("Amended")
        await asyncio.sleep(SETTLE)

        assert (await store.get_document(document.id)).title == "Amended"
        assert store.write_count == writes + 1
        assert session.state.title.dirty is False

    @pytest.mark.asyncio
    async def test_saving_flag_set_during_write(
        self, session: EditSession, store: InMemoryDocumentStore
    ) -> None:
        """is_saving_title is true while the write is outstanding."""
        store.latency = SETTLE
        session.on_title_edit("Slow title")
        await asyncio.sleep(0.02)

        assert session.is_saving_title is True
        assert session.view().is_saving_title is True

        await asyncio.sleep(SETTLE * 2)
        assert session.is_saving_title is False

    @pytest.mark.asyncio
    async def test_empty_title_is_rejected(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        notifier: RecordingNotifier,
    ) -> None:
        """A blank title toasts and is not written."""
        session.on_title_edit("   ")
        await asyncio.sleep(SETTLE)

        assert notifier.titles == ["Title required"]
        assert (await store.get_document(document.id)).title == "Amendment 12"

    @pytest.mark.asyncio
    async def test_failed_title_save_toasts(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        notifier: RecordingNotifier,
    ) -> None:
        """A store failure is reported and the buffer kept."""
        store.fail_next("merge_write")
        session.on_title_edit("Doomed")
        await asyncio.sleep(SETTLE)

        assert notifier.toasts == [Toast("Failed to save title", variant="destructive")]
        assert session.title == "Doomed"

    @pytest.mark.asyncio
    async def test_remote_title_held_off_while_save_pending(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """A pending debounce keeps the local title."""
        session.on_title_edit("Local")

        applied = session.on_remote_snapshot(
            _remote(document, clock.now + 10, title="Remote")
        )

        assert "title" not in applied
        assert session.title == "Local"
        await asyncio.sleep(SETTLE)
        assert (await store.get_document(document.id)).title == "Local"

    @pytest.mark.asyncio
    async def test_remote_title_applied_when_idle(
        self,
        session: EditSession,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """With nothing pending the remote title replaces the buffer."""
        applied = session.on_remote_snapshot(
            _remote(document, clock.now + 1, title="Remote")
        )

        assert applied == frozenset({"title"})
        assert session.title == "Remote"


def _discussion(
    discussion_id: str, cr_id: str | None = None, **extra: object
) -> dict[str, object]:
    return {
        "id": discussion_id,
        "crId": cr_id,
        "description": f"Suggestion {discussion_id}",
        **extra,
    }


class TestDiscussions:
    """Tests for discussion-list saves."""

    @pytest.mark.asyncio
    async def test_first_change_saves_immediately(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
    ) -> None:
        """A change with no recent save is written at once."""
        assert await session.on_discussions_change([_discussion("d1", "CR-1")])

        stored = (await store.get_document(document.id)).discussions
        assert [d.id for d in stored] == ["d1"]
        assert stored[0].cr_id == "CR-1"

    @pytest.mark.asyncio
    async def test_unchanged_list_is_ignored(
        self, session: EditSession, store: InMemoryDocumentStore
    ) -> None:
        """Re-sending the same list issues no write."""
        await session.on_discussions_change([_discussion("d1")])
        writes = store.write_count

        assert await session.on_discussions_change([_discussion("d1")]) is False
        assert store.write_count == writes

    @pytest.mark.asyncio
    async def test_change_inside_window_saved_on_trailing_edge(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
    ) -> None:
        """A second change right after a save waits out the window."""
        await session.on_discussions_change([_discussion("d1")])

        saved = await session.on_discussions_change(
            [_discussion("d1"), _discussion("d2")]
        )

        assert saved is False
        stored = (await store.get_document(document.id)).discussions
        assert [d.id for d in stored] == ["d1"]

        await asyncio.sleep(SETTLE)
        stored = (await store.get_document(document.id)).discussions
        assert [d.id for d in stored] == ["d1", "d2"]

    @pytest.mark.asyncio
    async def test_votes_are_not_persisted(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
    ) -> None:
        """Display-only votes are stripped before writing."""
        votes = [{"id": str(uuid4()), "vote": "accept"}]
        await session.on_discussions_change([_discussion("d1", votes=votes)])

        stored = (await store.get_document(document.id)).discussions
        assert stored[0].votes is None
        assert session.discussions[0].votes is not None

    @pytest.mark.asyncio
    async def test_failed_save_toasts(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        notifier: RecordingNotifier,
    ) -> None:
        """A store failure shows the comments toast."""
        store.fail_next("merge_write")

        assert await session.on_discussions_change([_discussion("d1")]) is False
        assert notifier.titles == ["Failed to save comments"]

    @pytest.mark.asyncio
    async def test_remote_discussions_wait_for_quiet_window(
        self,
        session: EditSession,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """Remote lists apply only after the discussions quiet window."""
        await session.on_discussions_change([_discussion("d1")])
        remote_list = [_discussion("d1"), _discussion("r1")]

        clock.advance(0.01)
        early = session.on_remote_snapshot(
            _remote(document, clock.now, discussions=remote_list)
        )
        assert "discussions" not in early

        clock.advance(0.03)
        late = session.on_remote_snapshot(
            _remote(document, clock.now, discussions=remote_list)
        )
        assert "discussions" in late
        assert [d.id for d in session.discussions] == ["d1", "r1"]


class TestEditingMode:
    """Tests for change_editing_mode()."""

    @pytest.mark.asyncio
    async def test_mode_change_is_written_and_announced(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        notifier: RecordingNotifier,
    ) -> None:
        """The new mode is stored and an info toast shown."""
        assert await session.change_editing_mode("suggest") is True

        assert (await store.get_document(document.id)).editing_mode == "suggest"
        assert notifier.toasts == [
            Toast("Document is now in suggest mode.", variant="info")
        ]

    @pytest.mark.asyncio
    async def test_unknown_mode_raises(self, session: EditSession) -> None:
        """Modes outside edit/view/suggest/vote are rejected."""
        with pytest.raises(ValueError, match="draft"):
            await session.change_editing_mode("draft")  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_failed_mode_change_keeps_mode(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        notifier: RecordingNotifier,
    ) -> None:
        """On failure the mode is unchanged and an error toast shown."""
        store.fail_next("merge_write")

        assert await session.change_editing_mode("vote") is False
        assert session.editing_mode == "edit"
        assert notifier.titles == ["Failed to change document mode."]


class TestRestoreAndFlush:
    """Tests for restore(), flush() and close()."""

    @pytest.mark.asyncio
    async def test_restore_bypasses_throttle(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """Restore writes at once and moves the watermark to now."""
        await session.on_local_edit([paragraph("typing")])
        clock.advance(0.001)
        restored = [paragraph("Original text")]

        await session.restore(restored)

        assert (await store.get_document(document.id)).content == restored
        assert session.content == restored
        assert session.state.content.watermark == clock.now
        assert session.state.content.last_write_at == clock.now

    @pytest.mark.asyncio
    async def test_failed_restore_propagates(
        self, session: EditSession, store: InMemoryDocumentStore
    ) -> None:
        """The caller sees the failure and the buffer is unchanged."""
        before = session.content
        store.fail_next("merge_write")

        with pytest.raises(ConnectionError):
            await session.restore([paragraph("never")])

        assert session.content == before

    @pytest.mark.asyncio
    async def test_flush_writes_buffered_content_and_title(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        clock: FakeClock,
    ) -> None:
        """Dirty buffers are persisted without waiting for timers."""
        await session.on_local_edit([paragraph("one")])
        clock.advance(0.001)
        await session.on_local_edit([paragraph("two")])
        session.on_title_edit("Flushed")

        await session.flush()

        stored = await store.get_document(document.id)
        assert stored.content == [paragraph("two")]
        assert stored.title == "Flushed"
        assert session.state.content.dirty is False
        assert session.state.title.timer is None

    @pytest.mark.asyncio
    async def test_close_cancels_pending_saves(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
    ) -> None:
        """Nothing is written after teardown."""
        session.on_title_edit("Never saved")
        await session.close()
        await asyncio.sleep(SETTLE)

        assert (await store.get_document(document.id)).title == "Amendment 12"
        assert await session.on_local_edit([paragraph("late")]) is False

    @pytest.mark.asyncio
    async def test_close_drops_trailing_save_queued_behind_write(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
    ) -> None:
        """A trailing save already past its debounce never lands after close."""
        store.latency = 0.1
        in_flight = asyncio.create_task(
            session.on_discussions_change([_discussion("d1")])
        )
        await asyncio.sleep(0.01)
        await session.on_discussions_change([_discussion("d1"), _discussion("d2")])
        # Debounce elapsed: the trailing save now waits on the field lock
        await asyncio.sleep(0.03)
        writes = store.write_count

        await session.close()
        assert await in_flight is True
        await asyncio.sleep(0.15)

        assert store.write_count == writes + 1
        stored = (await store.get_document(document.id)).discussions
        assert [d.id for d in stored] == ["d1"]

    @pytest.mark.asyncio
    async def test_flush_waiting_on_lock_skips_write_after_close(
        self,
        session: EditSession,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
    ) -> None:
        """A save that gets the lock only after teardown does nothing."""
        store.latency = 0.1
        in_flight = asyncio.create_task(
            session.on_discussions_change([_discussion("d1")])
        )
        await asyncio.sleep(0.01)
        await session.on_discussions_change([_discussion("d1"), _discussion("d2")])
        flushing = asyncio.create_task(session.flush())
        await asyncio.sleep(0.01)
        writes = store.write_count

        await session.close()
        await in_flight
        await flushing

        assert store.write_count == writes + 1
        stored = (await store.get_document(document.id)).discussions
        assert [d.id for d in stored] == ["d1"]


class TestView:
    """Tests for the UI-facing view."""

    @pytest.mark.asyncio
    async def test_view_carries_user_color(
        self, session: EditSession, user: SessionUser
    ) -> None:
        """The presence colour is derived from the user id."""
        view = session.view()

        assert view.user_color == user_color(user.user_id)
        assert view.title == "Amendment 12"
        assert view.is_saving_title is False

    @pytest.mark.asyncio
    async def test_view_carries_presence_peer(
        self,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        user: SessionUser,
        sync_config: SyncConfig,
    ) -> None:
        """Other clients see this session under its peer id."""
        async with EditSession(
            store, document.id, user, config=sync_config, peer_id="tab-1"
        ) as edit_session:
            peer = edit_session.view().presence

        assert peer is not None
        assert peer.peer_id == "tab-1"
        assert peer.user_id == user.user_id
        assert peer.name == "Ada Lovelace"
        assert peer.color == user_color(user.user_id)

    @pytest.mark.asyncio
    async def test_anonymous_view_has_no_presence(
        self,
        store: InMemoryDocumentStore,
        document: DocumentSnapshot,
        sync_config: SyncConfig,
    ) -> None:
        async with EditSession(
            store, document.id, None, config=sync_config
        ) as edit_session:
            view = edit_session.view()

        assert view.presence is None
        assert view.user_color is None
