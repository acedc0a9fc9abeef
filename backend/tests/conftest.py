"""Pytest configuration and fixtures for async testing."""
import os

# The application engine is created at import time; point it at SQLite first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["APP_ENV"] = "test"

from pathlib import Path
from typing import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from entitlements.config import Settings
from entitlements.database import Base, create_engine_for, create_session_factory
from entitlements.main import create_app
from entitlements.models import Subscription
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.services.quota_gate import QuotaGate, build_quota_gate
from entitlements.services.subscription_service import SubscriptionService
from utils.factories import ADMIN_TOKEN, SubscriptionFactory

# Loggers must stay uncached so structlog.testing.capture_logs sees them
structlog.configure(cache_logger_on_first_use=False)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings with generous store timeouts; SQLite serializes writers."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'entitlements.db'}",
        store_timeout_seconds=30.0,
        authorize_timeout_seconds=30.0,
        usage_max_attempts=3,
        admin_token=ADMIN_TOKEN,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """
    Temp-file SQLite engine with the schema created.

    Every transaction starts with BEGIN IMMEDIATE so concurrent writers
    queue on the busy timeout instead of failing lock upgrades.
    """
    test_engine = create_engine_for(test_settings.database_url, connect_args={"timeout": 30})

    @event.listens_for(test_engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin_immediate(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def catalog() -> PlanCatalog:
    return PlanCatalog()


@pytest.fixture
def gate(test_settings: Settings, session_factory: async_sessionmaker[AsyncSession], catalog: PlanCatalog) -> QuotaGate:
    return build_quota_gate(test_settings, session_factory, catalog)


@pytest.fixture
def subscription_service(gate: QuotaGate) -> SubscriptionService:
    return SubscriptionService(gate.store, gate.catalog)


@pytest.fixture
def make_subscription(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Subscription]]:
    """
    Insert a subscription row built by SubscriptionFactory.

    Keyword arguments override factory fields.
    """

    async def _make(**overrides) -> Subscription:
        subscription = Subscription(**SubscriptionFactory.create(overrides))
        async with session_factory() as session:
            session.add(subscription)
            await session.commit()
        return subscription

    return _make


@pytest_asyncio.fixture
async def async_client(gate: QuotaGate, engine: AsyncEngine) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against an app wired to the test gate."""
    from entitlements.api.deps import get_settings

    app = create_app(gate=gate, db_engine=engine)
    app.dependency_overrides[get_settings] = lambda: Settings(admin_token=ADMIN_TOKEN)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
