import os
from datetime import datetime, timezone

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.pop("REDIS_URL", None)
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from petbooking import models  # noqa: F401
from petbooking.api.deps.calendar import get_calendar
from petbooking.core.config import BusinessHoursConfig
from petbooking.core.database import Base, get_db
from petbooking.main import app
from petbooking.services.slot_calendar import SlotCalendar

# Use environment variable to determine test database
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite://")

# 12:00 UTC is 09:00 in Sao Paulo: Sunday 2025-06-01 is "today" in every test
FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest.fixture
async def db():
    """Create a fresh database session for each test."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False, pool_pre_ping=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)  # Clean slate
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def business_hours() -> BusinessHoursConfig:
    return BusinessHoursConfig()


@pytest.fixture
def calendar(business_hours: BusinessHoursConfig) -> SlotCalendar:
    """Calendar pinned to FIXED_NOW."""
    return SlotCalendar(business_hours, clock=fixed_clock)


@pytest.fixture(autouse=True)
def override_dependencies(db: AsyncSession, calendar: SlotCalendar):
    """Point the API at the test session and the pinned calendar."""

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_calendar] = lambda: calendar
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def client():
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


# Import all booking fixtures to make them available
pytest_plugins = ["tests.fixtures.booking_fixtures"]
