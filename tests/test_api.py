from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from order_insights.ai_feature.service import AgentService
from order_insights.api.dependencies import get_agent_service, get_query_engine
from order_insights.core.analytics.cache import ResultCache
from order_insights.core.analytics.registry import QueryEngine
from order_insights.core.analytics.store import OrderStore
from order_insights.core.errors import DataStoreError
from order_insights.core.schemas import ChatResponse, TokenUsage
from order_insights.main import app

TENANT = {"X-Tenant-ID": "t1"}


@pytest.mark.asyncio
async def test_list_functions(client: AsyncClient):
    response = await client.get("/analytics/functions")

    assert response.status_code == 200
    data = response.json()
    assert len(data["functions"]) == 19
    assert data["escape_valve"] == "executeSQLQuery"


@pytest.mark.asyncio
async def test_run_query(client: AsyncClient):
    response = await client.post(
        "/analytics/query/totalSales", json={"status": "paid", "all_time": True}, headers=TENANT
    )

    assert response.status_code == 200
    assert response.json()["total_sales"] == 1120.0


@pytest.mark.asyncio
async def test_run_query_without_body(client: AsyncClient):
    response = await client.post("/analytics/query/countOrders", headers=TENANT)

    assert response.status_code == 200
    assert response.json()["total"] == 9


@pytest.mark.asyncio
async def test_missing_tenant_header(client: AsyncClient):
    response = await client.post("/analytics/query/countOrders", json={})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_function_returns_422(client: AsyncClient):
    response = await client.post("/analytics/query/dropEverything", json={}, headers=TENANT)

    assert response.status_code == 422
    assert response.json()["detail"]["error_type"] == "unknown_function"


@pytest.mark.asyncio
async def test_invalid_params_return_field_details(client: AsyncClient):
    response = await client.post(
        "/analytics/query/totalSales", json={"all_time": True, "period_days": 30}, headers=TENANT
    )

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["error_type"] == "validation"
    assert detail["details"]


@pytest.mark.asyncio
async def test_insufficient_history_returns_422(client: AsyncClient):
    response = await client.post(
        "/analytics/query/seasonalityAnalysis", json={}, headers={"X-Tenant-ID": "new-store"}
    )

    assert response.status_code == 422
    assert response.json()["detail"]["error_type"] == "insufficient_data"


@pytest.mark.asyncio
async def test_adhoc_rejected_query_returns_400(client: AsyncClient):
    response = await client.post("/analytics/adhoc", json={"sql": "DROP TABLE orders"}, headers=TENANT)

    assert response.status_code == 400
    assert response.json()["detail"] == {
        "error": "Only SELECT queries are allowed",
        "error_type": "sanitization",
    }


@pytest.mark.asyncio
async def test_adhoc_query(client: AsyncClient):
    response = await client.post(
        "/analytics/adhoc", json={"sql": "SELECT status, COUNT(*) AS n FROM orders GROUP BY status"}, headers=TENANT
    )

    assert response.status_code == 200
    data = response.json()
    assert data["row_count"] == 3
    assert {row["status"]: row["n"] for row in data["data"]}["paid"] == 6


@pytest.mark.asyncio
async def test_data_store_failure_is_generic_500():
    store = AsyncMock(spec=OrderStore)
    store.grouped_totals.side_effect = DataStoreError()
    app.dependency_overrides[get_query_engine] = lambda: QueryEngine(store, ResultCache())

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.post("/analytics/query/countOrders", json={}, headers=TENANT)

    app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json()["detail"]["error"] == "Failed to query order data"


@pytest.mark.asyncio
async def test_chat_uses_camel_case_fields():
    agent = AsyncMock(spec=AgentService)
    agent.process_message.return_value = ChatResponse(
        text="Hi",
        token_usage=TokenUsage(input_tokens=10, output_tokens=2, total_tokens=12, estimated_cost_usd=0.0000027),
        suggested_follow_ups=["Revenue month by month?"],
    )
    app.dependency_overrides[get_agent_service] = lambda: agent

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.post(
            "/agent/chat",
            json={"message": "hello", "history": [{"role": "user", "content": "before"}]},
            headers=TENANT,
        )

    app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()
    assert data["text"] == "Hi"
    assert data["tokenUsage"]["totalTokens"] == 12
    assert data["tokenUsage"]["estimatedCostUSD"] == 0.0000027
    assert data["suggestedFollowUps"] == ["Revenue month by month?"]

    message, history, tenant_id = agent.process_message.await_args.args
    assert message == "hello"
    assert history[0].content == "before"
    assert tenant_id == "t1"


@pytest.mark.asyncio
async def test_chat_rejects_empty_message():
    app.dependency_overrides[get_agent_service] = lambda: AsyncMock(spec=AgentService)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.post("/agent/chat", json={"message": ""}, headers=TENANT)

    app.dependency_overrides.clear()

    assert response.status_code == 422
