"""Shared fixtures: a throwaway SQLite database and an API client bound to it."""

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.config import settings
from app.core.database import create_engine_and_sessionmaker, create_tables
from app.main import app
from app.models.user import User
from app.services.billing import BillingEngine
from app.services.reading_store import ReadingStore


class StepClock:
    """Deterministic clock advancing a fixed step on every call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(minutes=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory for a fresh database file."""
    engine, factory = create_engine_and_sessionmaker(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    )
    await create_tables(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> ReadingStore:
    return ReadingStore(session_factory)


@pytest.fixture
def billing(store: ReadingStore) -> BillingEngine:
    return BillingEngine(store)


@pytest.fixture
def make_user(session_factory) -> Callable:
    """Factory creating users directly in the database."""

    async def _make(username: str, token: str | None = None) -> int:
        async with session_factory() as db:
            user = User(username=username, email=f"{username}@example.com", expo_push_token=token)
            db.add(user)
            await db.commit()
            return user.user_id

    return _make


@pytest.fixture
async def client(store: ReadingStore, billing: BillingEngine):
    """API client wired to the test database."""
    app.state.settings = settings
    app.state.store = store
    app.state.billing_engine = billing
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
