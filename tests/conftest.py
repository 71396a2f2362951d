from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from order_insights.api.dependencies import get_query_engine
from order_insights.core import models
from order_insights.core.analytics.cache import ResultCache
from order_insights.core.analytics.filters import BUSINESS_TZ
from order_insights.core.analytics.registry import QueryEngine
from order_insights.core.analytics.store import OrderStore
from order_insights.core.database import Base
from order_insights.main import app

# 2026-03-15 12:00 in business time (UTC-3)
NOW = datetime(2026, 3, 15, 15, 0, tzinfo=timezone.utc)

# (tenant, status, marketplace, amount, business-time y/m/d/h/min)
SEED_ORDERS = [
    ("t1", "paid", "ml", 100, (2025, 12, 5, 10, 0)),
    ("t1", "paid", "bagy", 200, (2025, 12, 10, 14, 0)),
    ("t1", "cancelled", "ml", 50, (2025, 12, 20, 9, 0)),
    ("t1", "paid", "ml", 150, (2026, 1, 5, 10, 0)),
    # Stored as 2026-02-01T02:30Z, still January for the business
    ("t1", "paid", "shopee", 250, (2026, 1, 31, 23, 30)),
    ("t1", "paid", "ml", 300, (2026, 2, 14, 11, 0)),
    ("t1", "shipped", "bagy", 80, (2026, 2, 20, 16, 0)),
    ("t1", "paid", "ml", 120, (2026, 3, 2, 10, 0)),
    ("t1", "cancelled", "shopee", 60, (2026, 3, 10, 20, 0)),
    # Another tenant that must never leak into t1
    ("t2", "paid", "ml", 9999, (2026, 1, 10, 12, 0)),
]


def business_time(year, month, day, hour=12, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=BUSINESS_TZ).astimezone(timezone.utc)


@pytest.fixture
def now():
    return NOW


# Fresh in-memory database for every test
@pytest_asyncio.fixture(scope="function")
async def session_factory():
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def add_orders(session_factory):
    async def _add(orders):
        async with session_factory() as session:
            for tenant_id, status, marketplace, amount, moment in orders:
                session.add(
                    models.Order(
                        tenant_id=tenant_id,
                        status=status,
                        marketplace=marketplace,
                        total_amount=amount,
                        order_date=business_time(*moment),
                    )
                )
            await session.commit()

    return _add


@pytest_asyncio.fixture(scope="function")
async def store(session_factory, add_orders):
    await add_orders(SEED_ORDERS)
    return OrderStore(session_factory)


@pytest_asyncio.fixture(scope="function")
async def query_engine(store):
    return QueryEngine(store, ResultCache(), clock=lambda: NOW)


# Client
@pytest_asyncio.fixture(scope="function")
async def client(query_engine):
    app.dependency_overrides[get_query_engine] = lambda: query_engine

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
