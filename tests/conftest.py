"""Shared pytest fixtures for AmendSync tests."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from dotenv import load_dotenv

from amendsync.config import SyncConfig, VersioningConfig
from amendsync.identity import SessionUser
from amendsync.notify import RecordingNotifier
from amendsync.store.memory import InMemoryDocumentStore

if TYPE_CHECKING:
    from amendsync.models.document import Block, DocumentSnapshot

load_dotenv()


class FakeClock:
    """Settable stand-in for ``time.time``.

    Timers still run on the event loop; only the timestamps the core
    compares come from here.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def set(self, value: float) -> None:
        self.now = value


def paragraph(text: str) -> Block:
    """A single editor paragraph block."""
    return {"type": "p", "children": [{"text": text}]}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sync_config() -> SyncConfig:
    """Sync windows shrunk to hundredths of a second."""
    return SyncConfig(time_unit_seconds=0.01)


@pytest.fixture
def versioning_config() -> VersioningConfig:
    return VersioningConfig()


@pytest.fixture
def user(store: InMemoryDocumentStore) -> SessionUser:
    session_user = SessionUser(user_id=uuid4(), display_name="Ada Lovelace")
    store.add_user(session_user.user_id, session_user.display_name)
    return session_user


@pytest.fixture
def other_user(store: InMemoryDocumentStore) -> SessionUser:
    session_user = SessionUser(user_id=uuid4(), display_name="Grace Hopper")
    store.add_user(session_user.user_id, session_user.display_name)
    return session_user


@pytest.fixture
async def document(
    store: InMemoryDocumentStore, user: SessionUser
) -> DocumentSnapshot:
    return await store.create_document(
        title="Amendment 12",
        content=[paragraph("Section 1 reads as follows.")],
        owner_id=user.user_id,
    )
