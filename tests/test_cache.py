from unittest.mock import AsyncMock

import pytest

from order_insights.core.analytics.cache import MetadataCache, ResultCache, make_cache_key
from order_insights.core.analytics.registry import QueryEngine
from order_insights.core.analytics.store import OrderStore
from order_insights.core.errors import DataStoreError
from order_insights.core.schemas import QueryParams


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


GROUPS = [
    {"status": "paid", "count": 3, "total": 30.0},
    {"status": "cancelled", "count": 1, "total": 10.0},
]


def mock_store():
    store = AsyncMock(spec=OrderStore)
    store.grouped_totals.return_value = GROUPS
    return store


def test_cache_key_ignores_unset_params():
    assert make_cache_key("totalSales", QueryParams(), "t1") == make_cache_key(
        "totalSales", QueryParams(status=None), "t1"
    )
    assert make_cache_key("totalSales", QueryParams(), "t1") != make_cache_key(
        "totalSales", QueryParams(), "t2"
    )


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = ResultCache(ttl_seconds=60, clock=clock)
    cache.set("key", {"total": 1})

    clock.now += 59
    assert cache.get("key") == {"total": 1}

    clock.now += 1
    assert cache.get("key") is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_repeated_call_hits_the_store_once():
    store = mock_store()
    engine = QueryEngine(store, ResultCache(clock=FakeClock()))

    first = await engine.run("ordersByStatus", {}, "t1")
    second = await engine.run("ordersByStatus", {}, "t1")

    assert first == second
    assert store.grouped_totals.await_count == 1


@pytest.mark.asyncio
async def test_cache_is_per_tenant_and_params():
    store = mock_store()
    engine = QueryEngine(store, ResultCache(clock=FakeClock()))

    await engine.run("ordersByStatus", {}, "t1")
    await engine.run("ordersByStatus", {}, "t2")
    await engine.run("ordersByStatus", {"marketplace": "ml"}, "t1")

    assert store.grouped_totals.await_count == 3


@pytest.mark.asyncio
async def test_expired_result_is_recomputed():
    store = mock_store()
    clock = FakeClock()
    engine = QueryEngine(store, ResultCache(ttl_seconds=60, clock=clock))

    await engine.run("ordersByStatus", {}, "t1")
    clock.now += 61
    await engine.run("ordersByStatus", {}, "t1")

    assert store.grouped_totals.await_count == 2


@pytest.mark.asyncio
async def test_failures_are_not_cached():
    store = mock_store()
    store.grouped_totals.side_effect = [DataStoreError(), GROUPS]
    engine = QueryEngine(store, ResultCache(clock=FakeClock()))

    with pytest.raises(DataStoreError):
        await engine.run("ordersByStatus", {}, "t1")
    result = await engine.run("ordersByStatus", {}, "t1")

    assert result["total"] == 4
    assert store.grouped_totals.await_count == 2


@pytest.mark.asyncio
async def test_metadata_cache_refreshes_after_ttl():
    clock = FakeClock()
    loader = AsyncMock(return_value={"statuses": ["paid"], "marketplaces": ["ml"]})
    cache = MetadataCache(loader, ttl_seconds=300, clock=clock)

    await cache.get("t1")
    await cache.get("t1")
    assert loader.await_count == 1

    clock.now += 300
    await cache.get("t1")
    assert loader.await_count == 2


@pytest.mark.asyncio
async def test_metadata_cache_keeps_stale_value_on_failure():
    clock = FakeClock()
    loader = AsyncMock(side_effect=[{"statuses": ["paid"], "marketplaces": ["ml"]}, DataStoreError()])
    cache = MetadataCache(loader, ttl_seconds=300, clock=clock)

    fresh = await cache.get("t1")
    clock.now += 301
    stale = await cache.get("t1")

    assert stale == fresh


@pytest.mark.asyncio
async def test_metadata_cache_without_value_returns_empty_vocabulary():
    loader = AsyncMock(side_effect=DataStoreError())
    cache = MetadataCache(loader, clock=FakeClock())

    assert await cache.get("t1") == {"statuses": [], "marketplaces": []}
