"""Shared fixtures: a throwaway SQLite database and fake collaborators."""
import asyncio
from collections import defaultdict, deque
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from servicemon import models  # noqa: F401
from servicemon.database import Base, enable_sqlite_pragmas
from servicemon.repositories import HistoryRepository, MonitorRepository
from servicemon.schemas.monitor import MonitorCreate
from servicemon.services.batcher import NotificationBatcher
from servicemon.services.checker import ProbeOutcome
from servicemon.services.notifier import NotificationDispatcher
from servicemon.services.scheduler import MonitorScheduler


class FakeChecker:
    """Returns scripted outcomes per monitor; defaults to a fast healthy probe."""

    def __init__(self):
        self.outcomes: Dict[int, deque] = defaultdict(deque)
        self.gates: Dict[int, asyncio.Event] = {}
        self.entered: Dict[int, asyncio.Event] = defaultdict(asyncio.Event)
        self.calls: List[int] = []

    def script(self, monitor_id: int, *outcomes: ProbeOutcome):
        self.outcomes[monitor_id].extend(outcomes)

    def hold(self, monitor_id: int) -> asyncio.Event:
        """Make probes of this monitor wait until the returned event is set."""
        gate = asyncio.Event()
        self.gates[monitor_id] = gate
        return gate

    async def probe(self, monitor):
        self.calls.append(monitor.id)
        self.entered[monitor.id].set()
        gate = self.gates.get(monitor.id)
        if gate is not None:
            await gate.wait()
        queue = self.outcomes[monitor.id]
        if queue:
            outcome = queue.popleft()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return up()


class FakeSink:
    def __init__(self):
        self.notifications: List[dict] = []

    async def create_notification(self, **kwargs):
        self.notifications.append(kwargs)
        return kwargs

    def titles(self) -> List[str]:
        return [n["title"] for n in self.notifications]


class FakePreferences:
    """Everybody wants everything unless listed in ``muted``."""

    def __init__(self):
        self.muted = set()
        self.calls = []

    async def user_wants_event(self, user_id, domain, event_key, is_admin, webhook_config=None):
        self.calls.append((user_id, event_key, is_admin))
        return user_id not in self.muted


class FakeBroadcaster:
    def __init__(self):
        self.messages = []
        self.polls = []

    async def broadcast(self, topic, message):
        self.messages.append((topic, message))

    async def trigger_topic_poll(self, topic):
        self.polls.append(topic)


def up(ms: int = 50, code: Optional[int] = 200) -> ProbeOutcome:
    return ProbeOutcome(response_time_ms=ms, status_code=code)


def down(message: str = "Connection refused") -> ProbeOutcome:
    return ProbeOutcome(error_message=message, connect_failed=True)


def slow(ms: int = 5000) -> ProbeOutcome:
    return ProbeOutcome(response_time_ms=ms, status_code=200)


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    enable_sqlite_pragmas(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def monitor_repo(session_factory):
    return MonitorRepository(session_factory)


@pytest.fixture
def history_repo(session_factory):
    return HistoryRepository(session_factory)


@pytest.fixture
def checker():
    return FakeChecker()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def preferences():
    return FakePreferences()


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()


@pytest.fixture
def batcher(sink):
    return NotificationBatcher(sink, window_seconds=0)


@pytest.fixture
def dispatcher(monitor_repo, sink, preferences, batcher):
    return NotificationDispatcher(monitor_repo, sink, preferences, batcher)


@pytest.fixture
def scheduler(monitor_repo, history_repo, checker, dispatcher, broadcaster):
    service = MonitorScheduler(monitor_repo, history_repo, checker, dispatcher, broadcaster=broadcaster)
    yield service
    service.stop()


@pytest.fixture
def make_monitor(monitor_repo):
    """Create a monitor with test-friendly defaults."""
    async def _make(**overrides):
        fields = {
            "owner_id": "admin",
            "name": "Web",
            "type": "http",
            "url": "http://web.local",
            "interval_seconds": 60,
            "timeout_seconds": 10,
            "retries": 3,
            "degraded_threshold_ms": 2000,
        }
        fields.update(overrides)
        return await monitor_repo.create_monitor(MonitorCreate(**fields))

    return _make
