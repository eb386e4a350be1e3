"""
Shared test fixtures for the Shift Tracker test suite.

Async support via aiosqlite + AsyncSession; the clock is pinned through
``shifttrack.core.timeutils._clock``.
"""

import os
import sys
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
from pytest_asyncio import is_async_test

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SHIFT_LOCK_BACKEND"] = "local"
os.environ["DEFAULT_TIMEZONE"] = "America/New_York"
os.environ["AUTO_COMPLETE_GRACE_MINUTES"] = "60"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shifttrack.api.v1.deps import get_current_employee, get_db
from shifttrack.core import timeutils
from shifttrack.db.base import Base
from shifttrack.main import app
from shifttrack.models.employee import Employee

test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def pytest_collection_modifyitems(items):
    """Run every async test in the one session-wide event loop."""
    session_scope = pytest.mark.asyncio(loop_scope="session")
    for item in items:
        if is_async_test(item):
            item.add_marker(session_scope, append=False)


@pytest.fixture
async def setup_db():
    """Create all tables before usage and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestingSessionLocal() as session:
        yield session


app.dependency_overrides[get_db] = _override_get_db


@pytest.fixture
async def async_client(setup_db) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def db_session(setup_db) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
async def other_db_session(setup_db) -> AsyncGenerator[AsyncSession, None]:
    """A second, independent session for interleaving two requests."""
    async with TestingSessionLocal() as session:
        yield session


# ── Clock ───────────────────────────────────────────────────────────
class FrozenClock:
    """Stand-in for ``timeutils._clock``; times are UTC."""

    def __init__(self) -> None:
        self.now = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def set(self, hhmm: str, day: str = "2025-01-15") -> None:
        hour, minute = (int(p) for p in hhmm.split(":"))
        year, month, dom = (int(p) for p in day.split("-"))
        self.now = datetime(year, month, dom, hour, minute, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock(monkeypatch) -> FrozenClock:
    frozen = FrozenClock()
    monkeypatch.setattr(timeutils, "_clock", frozen)
    return frozen


# ── Auth Overrides ──────────────────────────────────────────────────
ADMIN = Employee(
    id=1,
    employee_id="ADMIN01",
    name="Admin User",
    role="admin",
    timezone="UTC",
    is_active=True,
)
STAFF = Employee(
    id=2,
    employee_id="EMP001",
    name="Alice Smith",
    role="staff",
    timezone="UTC",
    is_active=True,
)


async def _override_get_current_employee():
    return ADMIN


app.dependency_overrides[get_current_employee] = _override_get_current_employee


@pytest.fixture
def as_staff():
    """Make requests as the staff member EMP001 for the duration of a test."""

    async def _staff():
        return STAFF

    app.dependency_overrides[get_current_employee] = _staff
    yield STAFF
    app.dependency_overrides[get_current_employee] = _override_get_current_employee
