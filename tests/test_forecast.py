import pytest

from order_insights.core.analytics.forecast import (
    classify_seasonal_index,
    complete_months,
    forecast_from_monthly,
    project_month,
)
from order_insights.core.analytics.metrics import MonthBucket
from order_insights.core.analytics.registry import QueryEngine
from order_insights.core.errors import InsufficientDataError


def test_flat_history_forecasts_the_same_level():
    stats = forecast_from_monthly([100, 100, 100])

    assert stats["forecast_next_month"] == 100.0
    assert stats["slope"] == 0.0
    assert stats["trend"] == "stable"


def test_growing_history_blends_average_and_trend():
    """0.7 * 200 (moving average) + 0.3 * 400 (trend at index 3)"""
    stats = forecast_from_monthly([100, 200, 300])

    assert stats["moving_avg_3m"] == 200.0
    assert stats["linear_trend_forecast"] == 400.0
    assert stats["forecast_next_month"] == 260.0
    assert stats["trend"] == "growth"


def test_declining_history():
    stats = forecast_from_monthly([300, 200, 100])

    assert stats["trend"] == "decline"


def test_forecast_needs_three_months():
    with pytest.raises(InsufficientDataError):
        forecast_from_monthly([100, 200])


def test_project_month_is_linear():
    assert project_month(100, 10, 30) == 300
    assert project_month(100, 0, 30) == 0.0


def test_seasonal_index_thresholds():
    assert classify_seasonal_index(120) == "strong"
    assert classify_seasonal_index(119) == "normal"
    assert classify_seasonal_index(90) == "normal"
    assert classify_seasonal_index(89) == "weak"


def test_complete_months_fill_gaps_up_to_last_month():
    buckets = {"2025-11": MonthBucket(count=1, total=10.0), "2026-03": MonthBucket(count=1, total=5.0)}

    history = complete_months(buckets, "2026-03")

    assert list(history) == ["2025-11", "2025-12", "2026-01", "2026-02"]
    assert history["2026-01"].total == 0.0


@pytest.mark.asyncio
async def test_sales_forecast_excludes_current_month(query_engine: QueryEngine):
    result = await query_engine.run("salesForecast", {"status": "paid"}, "t1")

    # Dec 300, Jan 400, Feb 300: no slope, forecast equals the average
    assert result["months_analyzed"] == 3
    assert result["forecast_next_month"] == 333.33
    assert result["trend"] == "stable"
    assert result["last_complete_month"] == {"month": "2026-02", "revenue": 300.0, "orders": 1}
    assert result["current_month"]["actual_so_far"] == 120.0
    assert result["current_month"]["days_passed"] == 15
    assert result["current_month"]["projected_total"] == 248.0
    assert result["strong_months"] == ["2026-01"]


@pytest.mark.asyncio
async def test_sales_forecast_without_history(query_engine: QueryEngine):
    with pytest.raises(InsufficientDataError):
        await query_engine.run("salesForecast", {}, "nobody")


@pytest.mark.asyncio
async def test_sales_forecast_applies_date_window(query_engine: QueryEngine):
    # Only January and February remain complete inside the window
    with pytest.raises(InsufficientDataError):
        await query_engine.run(
            "salesForecast", {"status": "paid", "start_date": "2026-01-01", "end_date": "2026-03-15"}, "t1"
        )

    result = await query_engine.run(
        "salesForecast", {"status": "paid", "start_date": "2025-12-01", "end_date": "2026-03-15"}, "t1"
    )
    assert result["months_analyzed"] == 3
    assert result["filters"]["period"]["start"].startswith("2025-12-01")


@pytest.mark.asyncio
async def test_seasonality_analysis(query_engine: QueryEngine):
    result = await query_engine.run("seasonalityAnalysis", {"status": "paid"}, "t1")

    pattern = {month["name"]: month for month in result["monthly_pattern"]}
    assert [month["month"] for month in result["monthly_pattern"]] == [1, 2, 12]
    assert pattern["January"]["seasonal_index"] == 120
    assert pattern["January"]["classification"] == "strong"
    assert result["strong_months"] == ["January"]
    assert result["months_analyzed"] == 3
    assert len(result["weekly_pattern"]) == 7


@pytest.mark.asyncio
async def test_seasonality_needs_three_complete_months(query_engine: QueryEngine, add_orders):
    await add_orders([("t3", "paid", "ml", 50, (2026, 2, 10, 12, 0))])

    with pytest.raises(InsufficientDataError):
        await query_engine.run("seasonalityAnalysis", {}, "t3")
