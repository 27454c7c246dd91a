"""Pytest configuration and fixtures."""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeSocket:
    """Collects text frames pushed to a session."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.closed = False
        self.sent: list[str] = []

    async def send(self, text: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(text)

    async def close(self) -> None:
        self.closed = True

    @property
    def events(self) -> list[dict]:
        return [json.loads(text) for text in self.sent]

    def of(self, event: str) -> list[dict]:
        """Data of every pushed event with the given name."""
        return [e["data"] for e in self.events if e["event"] == event]


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from messenger.storage import Storage

    st = Storage(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_socket():
    return FakeSocket


@pytest.fixture
def tracker(storage):
    """Create Tracker with storage."""
    from messenger.tracker import Tracker

    return Tracker(storage)


@pytest.fixture
def directory(storage):
    from messenger.directory import UserDirectory

    return UserDirectory(storage)


@pytest_asyncio.fixture
async def users(directory):
    """Three registered users: alice, bob, carol."""
    return {
        name: await directory.register(name)
        for name in ("alice", "bob", "carol")
    }


@pytest.fixture
def gate(storage):
    from messenger.membership import MembershipGate

    return MembershipGate(storage)


@pytest.fixture
def group_manager(storage, gate, tracker):
    from messenger.membership import GroupManager

    return GroupManager(storage, gate, tracker)


@pytest_asyncio.fixture
async def group(group_manager, users):
    """Group created by alice with bob as member; carol is outside."""
    return await group_manager.create_group(
        users["alice"].id, "Team", [users["bob"].id]
    )


@pytest.fixture
def store(storage, directory, gate, tracker, clock):
    from messenger.message_store import MessageStore

    return MessageStore(storage, directory, gate, tracker, clock=clock)


@pytest.fixture
def index(storage):
    from messenger.conversations import ConversationIndex

    return ConversationIndex(storage)


@pytest.fixture
def presence(storage, clock):
    from messenger.presence import PresenceTracker

    return PresenceTracker(storage, clock=clock)


@pytest.fixture
def sessions():
    from messenger.transport import SessionRegistry

    return SessionRegistry(push_timeout=0.2)


@pytest.fixture
def router(sessions, storage, directory, tracker):
    from messenger.router import DeliveryRouter

    return DeliveryRouter(sessions, storage, directory, tracker)


@pytest.fixture
def service(storage, store, index, presence, router, gate, directory, sessions):
    from messenger.service import MessagingService

    return MessagingService(
        storage=storage,
        store=store,
        index=index,
        presence=presence,
        router=router,
        gate=gate,
        directory=directory,
        sessions=sessions,
    )
