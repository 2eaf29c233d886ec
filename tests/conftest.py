import os

# Configuration must exist before any booking_service import.
os.environ.setdefault("BOOKING_DB", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LINE_SECRET", "line-secret")
os.environ.setdefault("LINE_TOKEN", "line-token")

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from shared.database import get_engine, get_session
from booking_service.db import Base
from booking_service.store import BookingStore

from fakes import FakeClock, FakePublisher, FakeRedis


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = get_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return BookingStore(session_factory)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def fake_redis():
    return FakeRedis()
