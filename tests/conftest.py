"""Shared fixtures: in-memory store, fake clock, wired engine and processor."""

from datetime import datetime, timedelta

import pytest

from screentime.core.auth import AuthorizationGate
from screentime.core.commands import CommandProcessor
from screentime.core.engine import SessionEngine
from screentime.core.models import EngineSettings, RemoteConfig
from screentime.persistence.sessions import SessionRepository
from screentime.persistence.store import QuotaStore

ADMIN_CHAT_ID = 4242


class FakeClock:
    """Clock whose time only moves when a test says so."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


@pytest.fixture
def store():
    """Create an in-memory QuotaStore for each test."""
    s = QuotaStore(":memory:")
    s.init_db()
    yield s
    s.close()


@pytest.fixture
def clock():
    # Wednesday: default limit 120 minutes
    return FakeClock(datetime(2025, 1, 15, 10, 0, 0))


@pytest.fixture
def repository(store):
    return SessionRepository(store)


@pytest.fixture
def make_engine(repository, clock):
    """Build and load a SessionEngine; the first tick is already done."""
    def _make(settings=None, clock_jump_threshold=3600):
        engine = SessionEngine(repository, settings or EngineSettings(),
                               clock_jump_threshold=clock_jump_threshold)
        engine.load(clock.now())
        engine.tick(clock.now())
        return engine
    return _make


@pytest.fixture
def gate(store):
    g = AuthorizationGate(store, RemoteConfig(enabled=True, bot_token="t", admin_chat_id=ADMIN_CHAT_ID),
                          hash_rounds=4)
    g.ensure_passcode()
    return g


@pytest.fixture
def make_processor(repository, gate, clock):
    """Build a started CommandProcessor with retries that don't sleep."""
    def _make(settings=None, retention=None):
        engine = SessionEngine(repository, settings or EngineSettings())
        processor = CommandProcessor(engine, gate, clock, retention=retention,
                                     retry_attempts=3, retry_wait_seconds=0)
        processor.start()
        processor.tick()
        return processor
    return _make


def advance(engine_or_processor, clock, seconds, step=1):
    """Tick every *step* seconds for *seconds* seconds; return all events."""
    events = []
    elapsed = 0
    while elapsed < seconds:
        clock.advance(step)
        elapsed += step
        if isinstance(engine_or_processor, SessionEngine):
            events.extend(engine_or_processor.tick(clock.now()))
        else:
            events.extend(engine_or_processor.tick())
    return events
