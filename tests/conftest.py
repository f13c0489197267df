"""
Shared pytest fixtures for the settlement test suite.

Every test gets a fresh in-memory SQLite database. The FastAPI app is
exercised through httpx with ``get_db`` pointed at that database, and
Stripe webhooks are signed with the real header format so the production
verification path runs.
"""
import os

# Settings are read at import time; configure before importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYOUTS_VIA_STRIPE"] = "false"
os.environ["PAYOUT_SCHEDULER_ENABLED"] = "false"
os.environ["TIMEZONE"] = "UTC"
os.environ.pop("CRON_SECRET", None)
os.environ.pop("ADMIN_API_TOKEN", None)
os.environ.pop("REDIS_URL", None)

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bazaarmkt import models  # noqa: F401
from bazaarmkt.database import Base, get_db, custom_json_dumps
from bazaarmkt.services.cache_service import InMemoryCache
from tests.factories import FakePayoutGateway


@pytest.fixture
async def engine():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        json_serializer=custom_json_dumps,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def cache():
    return InMemoryCache(max_entries=64)


@pytest.fixture
async def client(session_factory, cache):
    """HTTP client against the app, bound to the test database."""
    from bazaarmkt.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.cache = cache

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def payout_gateway():
    return FakePayoutGateway()
