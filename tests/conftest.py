"""Shared test fixtures and configuration."""
import pytest
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_BACKEND", "memory")

from callscreen.main import app
from callscreen.core.config import settings
from callscreen.db.models import Base
from callscreen.core.dependencies import get_call_control, get_session_store
from callscreen.services.call_session.sql_store import SqlSessionStore
from callscreen.services.call_session.store import InMemorySessionStore
from callscreen.services.classifier.classifier import PatternClassifier
from callscreen.services.classifier.patterns import load_pattern_set
from callscreen.services.dispatcher.call_control import CallControl, CallSnapshot
from callscreen.services.dispatcher.dispatcher import ActionDispatcher
from callscreen.services.dispatcher.twiml import TwimlBuilder
from callscreen.services.resolver.resolver import ScenarioResolver


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
CALLBACK_URL = "https://screening.test/webhooks/voice/screening"
SCREENING_RESPONSE = "This is Twilio calling to test iOS 26 call screening detection"
VOICEMAIL_MESSAGE = "This is Twilio leaving a voicemail"
PRIMARY_PHRASE = (
    "Hi, if you record your name and reason for calling, I'll see if this person is available"
)
T0 = 1_700_000_000.0


class FakeClock:
    """Controllable epoch clock."""

    def __init__(self, start: float = T0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def set_elapsed(self, seconds: float) -> None:
        self.now = T0 + seconds


class FakeCallControl(CallControl):
    """In-memory stand-in for the Twilio call resource."""

    def __init__(self):
        self.status = "in-progress"
        self.date_updated: Optional[datetime] = datetime.now(timezone.utc) - timedelta(minutes=1)
        self.updates: List[Tuple[str, str]] = []
        self.fetch_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None

    async def fetch_call(self, call_sid: str) -> CallSnapshot:
        if self.fetch_error:
            raise self.fetch_error
        return CallSnapshot(call_sid=call_sid, status=self.status, date_updated=self.date_updated)

    async def update_call(self, call_sid: str, twiml: str) -> None:
        if self.update_error:
            raise self.update_error
        self.updates.append((call_sid, twiml))


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def clock():
    """Clock starting at the moment the call was answered."""
    return FakeClock()


@pytest.fixture
def call_control():
    """Fake call control with no recent updates."""
    return FakeCallControl()


@pytest.fixture
def twiml_builder():
    return TwimlBuilder(voice="alice", language="en-US")


@pytest.fixture
def patterns():
    """Bundled pattern set with the default primary phrase."""
    return load_pattern_set(primary_phrase=PRIMARY_PHRASE)


@pytest.fixture
def classifier(patterns):
    return PatternClassifier(patterns)


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def dispatcher(call_control, twiml_builder):
    """Dispatcher without the settle delay."""
    return ActionDispatcher(
        call_control,
        twiml_builder,
        callback_url=CALLBACK_URL,
        settle_delay=0.1,
        sleep=_no_sleep,
    )


@pytest.fixture
def resolver(store, classifier, dispatcher, clock):
    """Resolver wired to fakes."""
    return ScenarioResolver(
        store,
        classifier,
        dispatcher,
        screening_response=SCREENING_RESPONSE,
        voicemail_message=VOICEMAIL_MESSAGE,
        clock=clock,
    )


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def sql_store(test_db_engine):
    """SQL session store on the test database."""
    session_factory = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return SqlSessionStore(session_factory)


@pytest.fixture
def test_client(store, call_control, monkeypatch):
    """Create FastAPI test client with overrides."""
    # Override dependencies
    app.dependency_overrides[get_session_store] = lambda: store
    app.dependency_overrides[get_call_control] = lambda: call_control

    # Skip the settle delay
    monkeypatch.setattr(settings, "action_settle_delay_ms", 0)
    monkeypatch.setattr(settings, "base_url", "https://screening.test")

    client = TestClient(app)

    yield client

    # Clear overrides
    app.dependency_overrides.clear()


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test"
    )
