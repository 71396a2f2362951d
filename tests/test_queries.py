import pytest

from order_insights.core.analytics.registry import QueryEngine, available_functions
from order_insights.core.errors import QueryValidationError, UnknownFunctionError


@pytest.mark.asyncio
async def test_registry_lists_every_function():
    functions = available_functions()

    assert len(functions) == 19
    assert "totalSales" in functions
    assert "healthCheck" in functions
    assert "executeSQLQuery" not in functions


@pytest.mark.asyncio
async def test_unknown_function_is_rejected(query_engine: QueryEngine):
    with pytest.raises(UnknownFunctionError) as error:
        await query_engine.run("dropEverything", {}, "t1")

    assert error.value.error_type == "unknown_function"


@pytest.mark.asyncio
async def test_empty_tenant_is_rejected(query_engine: QueryEngine):
    with pytest.raises(QueryValidationError):
        await query_engine.run("countOrders", {}, "")


@pytest.mark.asyncio
async def test_count_orders_with_breakdowns(query_engine: QueryEngine):
    result = await query_engine.run("countOrders", {"all_time": True}, "t1")

    assert result["total"] == 9
    assert result["by_status"] == {"paid": 6, "cancelled": 2, "shipped": 1}
    assert result["by_marketplace"] == {"ml": 5, "bagy": 2, "shopee": 2}
    assert result["filters"]["period"] == "all_time"


@pytest.mark.asyncio
async def test_status_filter_drops_status_breakdown(query_engine: QueryEngine):
    """A paid-only count must not pretend to know about other statuses"""
    result = await query_engine.run("countOrders", {"status": "PAID"}, "t1")

    assert result["total"] == 6
    assert "by_status" not in result
    assert result["by_marketplace"] == {"ml": 4, "bagy": 1, "shopee": 1}


@pytest.mark.asyncio
async def test_tenants_are_isolated(query_engine: QueryEngine):
    other = await query_engine.run("totalSales", {}, "t2")
    own = await query_engine.run("totalSales", {}, "t1")

    assert other["order_count"] == 1
    assert other["total_sales"] == 9999.0
    assert own["total_sales"] == 1310.0


@pytest.mark.asyncio
async def test_total_sales_paid_only(query_engine: QueryEngine):
    result = await query_engine.run("totalSales", {"status": "paid"}, "t1")

    assert result["total_sales"] == 1120.0
    assert result["order_count"] == 6
    assert "by_status" not in result
    assert result["by_marketplace"]["ml"] == {"count": 4, "total": 670.0}


@pytest.mark.asyncio
async def test_marketplace_filter_is_partial_match(query_engine: QueryEngine):
    result = await query_engine.run("totalSales", {"marketplace": "sho"}, "t1")

    assert result["total_sales"] == 310.0
    assert result["order_count"] == 2
    assert "by_marketplace" not in result
    assert result["by_status"]["cancelled"] == {"count": 1, "total": 60.0}


@pytest.mark.asyncio
async def test_avg_ticket_statistics(query_engine: QueryEngine):
    result = await query_engine.run("avgTicket", {"status": "paid"}, "t1")

    assert result["avg_ticket"] == 186.67
    assert result["median_ticket"] == 175.0
    assert result["min_ticket"] == 100.0
    assert result["max_ticket"] == 300.0
    assert result["order_count"] == 6


@pytest.mark.asyncio
async def test_avg_ticket_without_orders(query_engine: QueryEngine):
    result = await query_engine.run("avgTicket", {}, "nobody")

    assert result["avg_ticket"] == 0
    assert result["order_count"] == 0


@pytest.mark.asyncio
async def test_orders_by_status_ignores_status_filter(query_engine: QueryEngine):
    result = await query_engine.run("ordersByStatus", {"status": "paid"}, "t1")

    assert result["total"] == 9
    assert result["distribution"]["paid"] == 6
    assert result["percentages"]["paid"] == 66.67
    assert "status" not in result["filters"]


@pytest.mark.asyncio
async def test_orders_by_marketplace_shares(query_engine: QueryEngine):
    result = await query_engine.run("ordersByMarketplace", {}, "t1")

    marketplaces = result["marketplaces"]
    assert list(marketplaces) == ["ml", "shopee", "bagy"]
    assert marketplaces["ml"]["order_share"] == 55.56
    assert marketplaces["ml"]["by_status"]["cancelled"]["count"] == 1
    assert result["total_orders"] == 9


@pytest.mark.asyncio
async def test_sales_by_month_buckets_in_business_time(query_engine: QueryEngine):
    result = await query_engine.run("salesByMonth", {}, "t1")

    months = {month["month"]: month for month in result["months"]}
    assert list(months) == ["2025-12", "2026-01", "2026-02", "2026-03"]
    # 23:30 on Jan 31st (UTC-3) belongs to January
    assert months["2026-01"]["total"] == 400.0
    assert months["2025-12"]["growth_pct"] is None
    assert months["2026-01"]["growth_pct"] == 14.29
    assert months["2026-02"]["growth_pct"] == -5.0
    assert result["grand_total"] == 1310.0
    assert result["best_month"]["month"] == "2026-01"


@pytest.mark.asyncio
async def test_explicit_range_includes_last_business_day(query_engine: QueryEngine):
    result = await query_engine.run(
        "salesByMonth",
        {"status": "paid", "start_date": "2026-01-01", "end_date": "2026-01-31"},
        "t1",
    )

    assert [month["month"] for month in result["months"]] == ["2026-01"]
    assert result["grand_total"] == 400.0
    assert "by_status" not in result


@pytest.mark.asyncio
async def test_sales_by_day_of_week_covers_every_day(query_engine: QueryEngine):
    result = await query_engine.run("salesByDayOfWeek", {}, "t1")

    assert [day["name"] for day in result["days"]][0] == "Monday"
    assert len(result["days"]) == 7
    assert sum(day["count"] for day in result["days"]) == 9


@pytest.mark.asyncio
async def test_top_days_best_by_revenue(query_engine: QueryEngine):
    result = await query_engine.run("topDays", {"status": "paid", "limit": 2}, "t1")

    assert [day["date"] for day in result["by_revenue"]] == ["2026-02-14", "2026-01-31"]
    assert result["type"] == "best"
    assert result["limit"] == 2


@pytest.mark.asyncio
async def test_top_days_worst_first(query_engine: QueryEngine):
    result = await query_engine.run("topDays", {"status": "paid", "order": "worst", "limit": 1}, "t1")

    assert result["by_revenue"] == [{"date": "2025-12-05", "count": 1, "total": 100.0}]


@pytest.mark.asyncio
async def test_cancellation_rate(query_engine: QueryEngine):
    result = await query_engine.run("cancellationRate", {}, "t1")

    assert result["total_orders"] == 9
    assert result["cancelled_orders"] == 2
    assert result["cancellation_rate"] == 22.22
    assert result["cancelled_amount"] == 110.0
    assert result["by_marketplace"]["shopee"] == {"total": 2, "cancelled": 1, "rate": 50.0}


@pytest.mark.asyncio
async def test_compare_marketplaces_sorted_by_revenue(query_engine: QueryEngine):
    result = await query_engine.run("compareMarketplaces", {}, "t1")

    first = result["comparison"][0]
    assert first["marketplace"] == "ml"
    assert first["revenue"] == 720.0
    assert first["revenue_share"] == 54.96
    assert first["conversion_rate"] == 80.0
    assert result["total_revenue"] == 1310.0


@pytest.mark.asyncio
async def test_compare_periods_needs_window(query_engine: QueryEngine):
    with pytest.raises(QueryValidationError):
        await query_engine.run("comparePeriods", {"all_time": True}, "t1")


@pytest.mark.asyncio
async def test_compare_periods_current_month(query_engine: QueryEngine):
    result = await query_engine.run("comparePeriods", {"current_month": True}, "t1")

    assert result["current_period"]["orders"] == 2
    assert result["current_period"]["revenue"] == 180.0
    assert result["previous_period"]["orders"] == 2
    assert result["previous_period"]["revenue"] == 380.0
    assert result["changes"]["revenue"] == -52.63
    assert result["changes"]["orders"] == 0.0


@pytest.mark.asyncio
async def test_sales_by_hour_peak(query_engine: QueryEngine):
    result = await query_engine.run("salesByHour", {}, "t1")

    assert len(result["hours"]) == 24
    assert result["peak_hour"]["label"] == "10:00"
    assert result["peak_hour"]["count"] == 3


@pytest.mark.asyncio
async def test_executive_summary(query_engine: QueryEngine):
    result = await query_engine.run("executiveSummary", {}, "t1")

    assert result["overview"]["total_orders"] == 9
    assert result["overview"]["total_revenue"] == 1310.0
    assert result["health"]["paid_orders"] == 6
    assert result["health"]["cancellation_rate"] == 22.22
    assert result["channels"][0]["marketplace"] == "ml"
    assert result["timeline"]["months_count"] == 4


@pytest.mark.asyncio
async def test_marketplace_growth(query_engine: QueryEngine):
    result = await query_engine.run("marketplaceGrowth", {}, "t1")

    growth = {entry["marketplace"]: entry for entry in result["marketplaces"]}
    assert growth["ml"]["overall_growth"] == -20.0
    assert growth["bagy"]["overall_growth"] == -60.0
    assert result["fastest_growing"] == "ml"
    assert result["slowest_growing"] == "shopee"


@pytest.mark.asyncio
async def test_cancellation_by_month(query_engine: QueryEngine):
    result = await query_engine.run("cancellationByMonth", {}, "t1")

    december = result["months"][0]
    assert december["month"] == "2025-12"
    assert december["cancellation_rate"] == 33.33
    assert december["lost_revenue"] == 50.0
    assert result["summary"]["total_cancelled"] == 2
    assert result["summary"]["total_lost_revenue"] == 110.0


@pytest.mark.asyncio
async def test_year_over_year(query_engine: QueryEngine, add_orders):
    await add_orders([("t1", "paid", "ml", 100, (2025, 3, 10, 12, 0))])

    result = await query_engine.run("yearOverYear", {"status": "paid"}, "t1")

    march = next(month for month in result["monthly_comparison"] if month["month"] == "03")
    assert march["by_year"]["2025"] == {"revenue": 100.0, "orders": 1}
    assert march["by_year"]["2026"] == {"revenue": 120.0, "orders": 1}
    assert march["revenue_change"] == 20.0
    assert [entry["year"] for entry in result["yearly_totals"]] == ["2025", "2026"]


@pytest.mark.asyncio
async def test_adhoc_query_is_tenant_scoped(query_engine: QueryEngine):
    result = await query_engine.run_adhoc("SELECT COUNT(*) AS n FROM orders", "t1")

    assert result == {"data": [{"n": 9}], "row_count": 1}


@pytest.mark.asyncio
async def test_adhoc_query_with_alias_and_grouping(query_engine: QueryEngine):
    result = await query_engine.run_adhoc(
        "SELECT o.marketplace, COUNT(*) AS n FROM orders o GROUP BY o.marketplace ORDER BY n DESC", "t1"
    )

    assert result["data"][0] == {"marketplace": "ml", "n": 5}
    assert result["row_count"] == 3


@pytest.mark.asyncio
async def test_adhoc_quoted_identifier_cannot_escape_tenant_scope(query_engine: QueryEngine):
    result = await query_engine.run_adhoc(
        "SELECT 1 AS \"x'\", SUM(total_amount) AS s FROM orders WHERE status = 'paid'", "t1"
    )

    assert result["data"][0]["s"] == 1120


@pytest.mark.asyncio
async def test_status_breakdown_adds_up_to_total(query_engine: QueryEngine):
    result = await query_engine.run("totalSales", {"all_time": True}, "t1")

    by_status = result["by_status"]
    assert sum(entry["total"] for entry in by_status.values()) == pytest.approx(result["total_sales"])
    assert sum(entry["count"] for entry in by_status.values()) == result["order_count"]

    counted = await query_engine.run("countOrders", {"all_time": True}, "t1")
    assert sum(counted["by_status"].values()) == counted["total"]


@pytest.mark.asyncio
async def test_compare_periods_empty_baseline_is_null(query_engine: QueryEngine):
    result = await query_engine.run(
        "comparePeriods", {"start_date": "2025-12-01", "end_date": "2025-12-31"}, "t1"
    )

    assert result["current_period"]["orders"] == 3
    assert result["current_period"]["revenue"] == 350.0
    assert result["previous_period"]["orders"] == 0
    assert result["changes"]["orders"] is None
    assert result["changes"]["revenue"] is None


@pytest.mark.asyncio
async def test_marketplace_growth_applies_date_window(query_engine: QueryEngine):
    result = await query_engine.run(
        "marketplaceGrowth", {"start_date": "2026-01-01", "end_date": "2026-02-28"}, "t1"
    )

    growth = {entry["marketplace"]: entry for entry in result["marketplaces"]}
    assert growth["ml"]["overall_growth"] == 100.0
    assert result["filters"]["period"] != "all_time"
