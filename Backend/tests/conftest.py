"""
Pytest configuration and fixtures for async database testing.

Every test gets its own in-memory SQLite database (via aiosqlite), so tests
never touch a real Postgres instance and need no cleanup.
"""
import os

# Settings are cached on first use; pin them before the package is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["OPERATOR_ID"] = "999"
os.environ["SCHEDULE_TIMEZONE"] = "UTC"
os.environ["DISPLAY_TIMEZONE"] = "Europe/Moscow"
os.environ["NOTIFY_WEBHOOK_URL"] = ""
os.environ["SEED_RECURRING_SLOTS"] = ""

from datetime import date, datetime, time, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tutorbot.clock import FixedClock
from tutorbot.core.db import Base
from tutorbot.models import Actor, ActorRole, ConversationState, RecurringSlot, SlotException
from tutorbot.orchestrator import BookingOrchestrator

TEST_DATABASE_URL = "sqlite+aiosqlite://"

OPERATOR_ID = 999
STUDENT_ID = 1001

# Sunday 2024-06-09 00:00 UTC; the next Monday is 2024-06-10
SUNDAY_MIDNIGHT = datetime(2024, 6, 9, 0, 0, tzinfo=timezone.utc)
NEXT_MONDAY = date(2024, 6, 10)


class RecordingNotifier:
    """Notifier that keeps every notification instead of delivering it."""

    def __init__(self):
        self.sent = []

    async def send(self, notification) -> bool:
        self.sent.append(notification)
        return True

    def to(self, recipient_id):
        return [n for n in self.sent if n.recipient_id == recipient_id]


@pytest.fixture(scope="function")
async def async_engine():
    """Fresh in-memory database with all tables created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def async_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def clock():
    return FixedClock(SUNDAY_MIDNIGHT)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def orchestrator(async_session, clock, notifier):
    return BookingOrchestrator(async_session, clock, notifier)


@pytest.fixture
async def monday_slots(async_session):
    """Weekly template: Monday 10:00 and 14:00, one hour each."""
    async_session.add_all(
        [
            RecurringSlot(weekday=0, start_time=time(10, 0), duration_minutes=60),
            RecurringSlot(weekday=0, start_time=time(14, 0), duration_minutes=60),
        ]
    )
    await async_session.commit()


@pytest.fixture
async def make_actor(async_session, clock):
    async def _make(
        actor_id=STUDENT_ID,
        display_name="Anna Petrova",
        state=ConversationState.IDLE,
        state_data=None,
        role=ActorRole.STUDENT,
    ):
        actor = Actor(
            id=actor_id,
            display_name=display_name,
            role=role,
            state=state,
            state_data=state_data,
            last_activity=clock.now(),
        )
        async_session.add(actor)
        await async_session.commit()
        return actor

    return _make


@pytest.fixture
async def operator(make_actor):
    return await make_actor(actor_id=OPERATOR_ID, display_name="Tutor", role=ActorRole.OPERATOR)


async def add_exception(session, on_date, full_day=True, until_time=None):
    session.add(SlotException(on_date=on_date, full_day=full_day, until_time=until_time))
    await session.commit()


@pytest.fixture(scope="function")
async def client(session_maker, clock, notifier):
    """
    FastAPI AsyncClient wired to the test database, clock and notifier.
    """
    from tutorbot.core.db import get_session
    from tutorbot.main import app, get_clock, get_notifier

    async def override_get_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
