"""Shared fixtures for the presence tracker tests."""

import tempfile
from pathlib import Path
from typing import Optional

import pytest

from mc_presence.config import TrackerSettings
from mc_presence.db.store import SessionStore
from mc_presence.events import EventDispatcher, PlayerJoinedEvent, PlayerLeftEvent
from mc_presence.players.poller import PresencePoller
from mc_presence.players.session_tracker import SessionTracker
from mc_presence.rcon import PlayerList

START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch millisecond clock."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeRconClient:
    """Stands in for RconClient; returns whatever the test put in ``players``."""

    def __init__(self):
        self.connected = True
        self.players: list[str] = []
        # Set to make get_players report an unparsable response
        self.malformed = False
        self.error: Optional[Exception] = None
        self.disconnected = False

    def is_connected(self) -> bool:
        return self.connected

    async def get_players(self) -> PlayerList:
        if self.error:
            raise self.error
        if self.malformed:
            return PlayerList()
        return PlayerList(
            online=len(self.players), max=20, players=list(self.players), parsed=True
        )

    async def disconnect(self) -> None:
        self.disconnected = True


class StubResolver:
    """Resolves every name to ``uuid-<lowercase name>`` unless told otherwise."""

    def __init__(self):
        self.overrides: dict[str, Optional[str]] = {}
        self.error: Optional[Exception] = None
        self.calls: list[str] = []

    async def resolve(self, display_name: str) -> Optional[str]:
        self.calls.append(display_name)
        if self.error:
            raise self.error
        if display_name in self.overrides:
            return self.overrides[display_name]
        return f"uuid-{display_name.lower()}"


class EventRecorder:
    def __init__(self, dispatcher: EventDispatcher):
        self.joined: list[PlayerJoinedEvent] = []
        self.left: list[PlayerLeftEvent] = []
        dispatcher.on_player_joined(self._on_joined)
        dispatcher.on_player_left(self._on_left)

    async def _on_joined(self, event: PlayerJoinedEvent) -> None:
        self.joined.append(event)

    async def _on_left(self, event: PlayerLeftEvent) -> None:
        self.left.append(event)


@pytest.fixture
def db_path():
    temp_db = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    temp_db_path = Path(temp_db.name)
    temp_db.close()
    yield temp_db_path
    temp_db_path.unlink(missing_ok=True)


@pytest.fixture
async def store(db_path):
    store = SessionStore(f"sqlite:///{db_path}")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rcon():
    return FakeRconClient()


@pytest.fixture
def resolver():
    return StubResolver()


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def events(dispatcher):
    return EventRecorder(dispatcher)


@pytest.fixture
def poller(rcon, clock):
    return PresencePoller(
        rcon, poll_interval_ms=60_000, max_consecutive_failures=3, clock=clock
    )


@pytest.fixture
def tracker(store, poller, resolver, dispatcher, clock):
    return SessionTracker(
        store=store,
        poller=poller,
        identity_resolver=resolver,
        event_dispatcher=dispatcher,
        tracker_settings=TrackerSettings(),
        clock=clock,
    )
