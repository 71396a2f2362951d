"""
FORECAST - next-month revenue projection and seasonal patterns

Purpose:
    1. Forecast next month from complete months only
    2. Extrapolate the current, still running month separately
    3. Find strong / weak calendar months and weekdays

Method:
    forecast = 0.7 * (3-month moving average) + 0.3 * (OLS trend at next index)

    The moving average reacts to the latest level, the linear term keeps
    the long-run direction in the number.
"""

import logging
import statistics
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from order_insights.core.analytics.filters import (
    build_date_range,
    business_now,
    days_in_month,
    to_business_time,
)
from order_insights.core.analytics.metrics import (
    MONTH_NAMES,
    WEEKDAY_NAMES,
    MonthBucket,
    bucket_months,
    filters_echo,
    month_keys_between,
    rate,
    round2,
)
from order_insights.core.analytics.store import OrderStore
from order_insights.core.errors import InsufficientDataError
from order_insights.core.schemas import QueryParams

logger = logging.getLogger(__name__)

MIN_MONTHS = 3
MOVING_AVERAGE_WEIGHT = 0.7
TREND_WEIGHT = 0.3
# Slope must move more than 2% of the average month to count as a trend
TREND_THRESHOLD = 0.02

STRONG_INDEX = 120
WEAK_INDEX = 90


# ============================================================================
# PURE HELPERS
# ============================================================================


def classify_trend(slope: float, mean_revenue: float) -> str:
    if slope > mean_revenue * TREND_THRESHOLD:
        return "growth"
    if slope < -mean_revenue * TREND_THRESHOLD:
        return "decline"
    return "stable"


def classify_seasonal_index(index: float) -> str:
    if index >= STRONG_INDEX:
        return "strong"
    if index < WEAK_INDEX:
        return "weak"
    return "normal"


def forecast_from_monthly(revenues: Sequence[float]) -> Dict[str, Any]:
    """
    Blend a 3-month moving average with an OLS trend over the month index.

    Example:
        forecast_from_monthly([100, 100, 100])
        -> {"moving_avg_3m": 100.0, "slope": 0.0, "forecast_next_month": 100.0,
            "trend": "stable", ...}
    """
    if len(revenues) < MIN_MONTHS:
        raise InsufficientDataError(
            f"Not enough history for a forecast: need at least {MIN_MONTHS} complete months, "
            f"got {len(revenues)}"
        )

    n = len(revenues)
    moving_avg = sum(revenues[-3:]) / 3
    slope, intercept = statistics.linear_regression(range(n), revenues)
    linear_forecast = intercept + slope * n
    mean_revenue = sum(revenues) / n

    return {
        "forecast_next_month": round2(
            MOVING_AVERAGE_WEIGHT * moving_avg + TREND_WEIGHT * linear_forecast
        ),
        "moving_avg_3m": round2(moving_avg),
        "linear_trend_forecast": round2(linear_forecast),
        "slope": round2(slope),
        "intercept": round2(intercept),
        "trend": classify_trend(slope, mean_revenue),
        "avg_monthly_revenue": round2(mean_revenue),
        "months_analyzed": n,
    }


def project_month(revenue_so_far: float, days_elapsed: int, month_length: int) -> float:
    """Straight-line extrapolation of a running month."""
    if days_elapsed <= 0:
        return 0.0
    return revenue_so_far / days_elapsed * month_length


def _previous_month_key(month_key: str) -> str:
    year, month = (int(part) for part in month_key.split("-"))
    if month == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{month - 1:02d}"


def complete_months(buckets: Dict[str, MonthBucket], current_key: str) -> Dict[str, MonthBucket]:
    """
    Months strictly before the current one, gap-filled up to last month.

    A tenant that stopped selling in December still has empty January and
    February buckets when asked in March.
    """
    keys = [key for key in buckets if key < current_key]
    if not keys:
        return {}
    return {
        key: buckets.get(key, MonthBucket())
        for key in month_keys_between(keys[0], _previous_month_key(current_key))
    }


# ============================================================================
# REGISTRY FUNCTIONS
# ============================================================================


async def sales_forecast(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Without a date mode the forecast looks at the whole history."""
    window = build_date_range(params, now)
    rows = await store.fetch_orders(
        tenant_id, window=window, status=params.status, marketplace=params.marketplace
    )

    today = business_now(now)
    current_key = today.strftime("%Y-%m")
    buckets = bucket_months(rows)
    history = complete_months(buckets, current_key)

    stats = forecast_from_monthly([bucket.total for bucket in history.values()])
    logger.info(f"Forecast for tenant {tenant_id}: {stats['trend']} over {stats['months_analyzed']} months")

    month_length = days_in_month(today.year, today.month)
    current = buckets.get(current_key)
    current_month = None
    if current is not None:
        current_month = {
            "month": current_key,
            "actual_so_far": round2(current.total),
            "orders_so_far": current.count,
            "days_passed": today.day,
            "days_in_month": month_length,
            "projected_total": round2(project_month(current.total, today.day, month_length)),
        }

    last_key = list(history)[-1]
    mean_revenue = sum(bucket.total for bucket in history.values()) / len(history)

    return {
        **stats,
        "current_month": current_month,
        "last_complete_month": {
            "month": last_key,
            "revenue": round2(history[last_key].total),
            "orders": history[last_key].count,
        },
        "strong_months": [key for key, bucket in history.items() if bucket.total > mean_revenue],
        "weak_months": [key for key, bucket in history.items() if bucket.total < mean_revenue],
        "filters": filters_echo(params, window),
    }


async def seasonality_analysis(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Average month per calendar month across years, indexed against the
    overall monthly average (100 = a normal month).
    """
    window = build_date_range(params, now)
    rows = await store.fetch_orders(
        tenant_id, window=window, status=params.status, marketplace=params.marketplace
    )

    current_key = business_now(now).strftime("%Y-%m")
    history = complete_months(bucket_months(rows), current_key)
    if len(history) < MIN_MONTHS:
        raise InsufficientDataError(
            f"Not enough history for seasonality: need at least {MIN_MONTHS} complete months, "
            f"got {len(history)}"
        )

    grand_avg = sum(bucket.total for bucket in history.values()) / len(history)

    by_calendar_month: Dict[int, List[MonthBucket]] = defaultdict(list)
    for key, bucket in history.items():
        by_calendar_month[int(key.split("-")[1])].append(bucket)

    monthly_pattern = []
    for month_number in sorted(by_calendar_month):
        buckets = by_calendar_month[month_number]
        avg_revenue = sum(bucket.total for bucket in buckets) / len(buckets)
        avg_orders = sum(bucket.count for bucket in buckets) / len(buckets)
        index = round(avg_revenue / grand_avg * 100) if grand_avg > 0 else 100
        monthly_pattern.append(
            {
                "month": month_number,
                "name": MONTH_NAMES[month_number - 1],
                "avg_revenue": round2(avg_revenue),
                "avg_orders": round(avg_orders),
                "seasonal_index": index,
                "classification": classify_seasonal_index(index),
                "data_points": len(buckets),
            }
        )

    weekdays = [MonthBucket() for _ in WEEKDAY_NAMES]
    for row in rows:
        moment = to_business_time(row.order_date)
        if moment.strftime("%Y-%m") in history:
            weekdays[moment.weekday()].add(row.status, row.total_amount)
    weekly_total = sum(bucket.total for bucket in weekdays)

    return {
        "monthly_pattern": monthly_pattern,
        "strong_months": [m["name"] for m in monthly_pattern if m["classification"] == "strong"],
        "weak_months": [m["name"] for m in monthly_pattern if m["classification"] == "weak"],
        "weekly_pattern": [
            {
                "day": WEEKDAY_NAMES[index],
                "orders": bucket.count,
                "revenue": round2(bucket.total),
                "avg_ticket": round2(bucket.avg_ticket),
                "revenue_share": rate(bucket.total, weekly_total),
            }
            for index, bucket in enumerate(weekdays)
        ],
        "avg_monthly_revenue": round2(grand_avg),
        "months_analyzed": len(history),
        "filters": filters_echo(params, window),
    }
