import logging
import statistics
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from order_insights.core.analytics.filters import (
    DateWindow,
    build_date_range,
    day_key,
    describe_period,
    month_key,
    to_business_time,
)
from order_insights.core.analytics.metrics import (
    CANCELLED,
    PAID,
    WEEKDAY_NAMES,
    MonthBucket,
    average,
    bucket_months,
    collapse,
    filters_echo,
    has_status,
    pct_change,
    rate,
    round2,
    sum_groups,
)
from order_insights.core.analytics.store import OrderStore
from order_insights.core.errors import QueryValidationError
from order_insights.core.schemas import QueryParams, RankingOrder


# -----------------------------------------------------------------------------
# QUERIES MODULE
# Purpose: the fixed set of questions the assistant can answer with real numbers.
# Why: each function returns a plain dict the model can quote and the fallback
# formatter can render without inventing anything.
#
# Every function has the same shape:
#     async fn(tenant_id, params, store, now) -> dict
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


def _breakdown_columns(params: QueryParams, *, status: bool = True, marketplace: bool = True) -> tuple:
    # A breakdown only makes sense along a dimension that was not filtered
    columns = []
    if status and not params.status:
        columns.append("status")
    if marketplace and not params.marketplace:
        columns.append("marketplace")
    return tuple(columns)


# =========================
# countOrders
# =========================
async def count_orders(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Number of orders, broken down by status and marketplace when unfiltered.

    Example:
        {"total": 150, "by_status": {"paid": 120, "cancelled": 30},
         "by_marketplace": {"ml": 100, "bagy": 50}, "filters": {...}}
    """
    window = build_date_range(params, now)
    columns = _breakdown_columns(params)
    groups = await store.grouped_totals(
        tenant_id, columns, window=window, status=params.status, marketplace=params.marketplace
    )

    result: Dict[str, Any] = {"total": sum_groups(groups)["count"]}
    for column in columns:
        result[f"by_{column}"] = {
            key: entry["count"] for key, entry in collapse(groups, column).items()
        }
    result["filters"] = filters_echo(params, window)
    return result


# =========================
# totalSales
# =========================
async def total_sales(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Sum of total_amount. Without a status filter this includes cancelled
    orders, so by_status comes back alongside it.
    """
    window = build_date_range(params, now)
    columns = _breakdown_columns(params)
    groups = await store.grouped_totals(
        tenant_id, columns, window=window, status=params.status, marketplace=params.marketplace
    )

    totals = sum_groups(groups)
    result: Dict[str, Any] = {
        "total_sales": round2(totals["total"]),
        "order_count": totals["count"],
    }
    for column in columns:
        result[f"by_{column}"] = collapse(groups, column)
    result["filters"] = filters_echo(params, window)
    return result


# =========================
# avgTicket
# =========================
async def avg_ticket(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    window = build_date_range(params, now)
    rows = await store.fetch_orders(
        tenant_id, window=window, status=params.status, marketplace=params.marketplace
    )
    amounts = [row.total_amount for row in rows]

    if not amounts:
        return {
            "avg_ticket": 0,
            "median_ticket": 0,
            "min_ticket": 0,
            "max_ticket": 0,
            "std_deviation": 0,
            "total_sales": 0,
            "order_count": 0,
            "filters": filters_echo(params, window),
        }

    return {
        "avg_ticket": round2(statistics.fmean(amounts)),
        "median_ticket": round2(statistics.median(amounts)),
        "min_ticket": round2(min(amounts)),
        "max_ticket": round2(max(amounts)),
        "std_deviation": round2(statistics.pstdev(amounts)),
        "total_sales": round2(sum(amounts)),
        "order_count": len(amounts),
        "filters": filters_echo(params, window),
    }


# =========================
# ordersByStatus
# =========================
async def orders_by_status(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Status distribution. A status filter would make this pointless, so it is ignored."""
    window = build_date_range(params, now)
    groups = await store.grouped_totals(
        tenant_id, ("status",), window=window, marketplace=params.marketplace
    )

    total = sum_groups(groups)["count"]
    ordered = sorted(groups, key=lambda group: group["count"], reverse=True)
    return {
        "distribution": {group["status"]: group["count"] for group in ordered},
        "percentages": {group["status"]: rate(group["count"], total) for group in ordered},
        "total": total,
        "filters": filters_echo(params, window, status=False),
    }


# =========================
# ordersByMarketplace
# =========================
async def orders_by_marketplace(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    window = build_date_range(params, now)
    columns = ("marketplace",) if params.status else ("marketplace", "status")
    groups = await store.grouped_totals(tenant_id, columns, window=window, status=params.status)

    total_orders = sum_groups(groups)["count"]
    marketplaces: Dict[str, Dict[str, Any]] = {}
    for name, entry in sorted(
        collapse(groups, "marketplace").items(), key=lambda item: item[1]["total"], reverse=True
    ):
        marketplaces[name] = {
            "count": entry["count"],
            "total": entry["total"],
            "order_share": rate(entry["count"], total_orders),
        }
        if not params.status:
            marketplaces[name]["by_status"] = collapse(
                [group for group in groups if group["marketplace"] == name], "status"
            )

    result: Dict[str, Any] = {"marketplaces": marketplaces, "total_orders": total_orders}
    if not params.status:
        result["by_status"] = collapse(groups, "status")
    result["filters"] = filters_echo(params, window, marketplace=False)
    return result


# =========================
# salesByMonth
# =========================
async def sales_by_month(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    window = build_date_range(params, now)
    rows = await store.fetch_orders(
        tenant_id, window=window, status=params.status, marketplace=params.marketplace
    )
    buckets = bucket_months(rows)

    status_by_month: Dict[str, Dict[str, List[Any]]] = defaultdict(lambda: defaultdict(list))
    if not params.status:
        for row in rows:
            status_by_month[month_key(row.order_date)][row.status or "unknown"].append(row)

    months = []
    previous_total = None
    for key, bucket in buckets.items():
        entry: Dict[str, Any] = {
            "month": key,
            "count": bucket.count,
            "total": round2(bucket.total),
            "avg_ticket": round2(bucket.avg_ticket),
        }
        if not params.status:
            entry["by_status"] = _status_totals(status_by_month.get(key, {}))
        entry["growth_pct"] = None if previous_total is None else pct_change(bucket.total, previous_total)
        previous_total = bucket.total
        months.append(entry)

    result: Dict[str, Any] = {
        "months": months,
        "grand_total": round2(sum(bucket.total for bucket in buckets.values())),
        "grand_count": sum(bucket.count for bucket in buckets.values()),
    }
    if not params.status:
        grouped: Dict[str, List[Any]] = defaultdict(list)
        for row in rows:
            grouped[row.status or "unknown"].append(row)
        result["by_status"] = _status_totals(grouped)

    result["best_month"] = max(months, key=lambda month: month["total"]) if months else None
    result["worst_month"] = min(months, key=lambda month: month["total"]) if months else None
    result["filters"] = filters_echo(params, window)
    return result


def _status_totals(rows_by_status: Dict[str, List[Any]]) -> Dict[str, Dict[str, Any]]:
    return {
        status: {"count": len(rows), "total": round2(sum(row.total_amount for row in rows))}
        for status, rows in rows_by_status.items()
    }


# =========================
# salesByDayOfWeek
# =========================
async def sales_by_day_of_week(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    window = build_date_range(params, now)
    rows = await store.fetch_orders(
        tenant_id, window=window, status=params.status, marketplace=params.marketplace
    )

    buckets = [MonthBucket() for _ in WEEKDAY_NAMES]
    for row in rows:
        buckets[to_business_time(row.order_date).weekday()].add(row.status, row.total_amount)

    days = [
        {
            "day": index,
            "name": WEEKDAY_NAMES[index],
            "count": bucket.count,
            "total": round2(bucket.total),
            "avg_ticket": round2(bucket.avg_ticket),
        }
        for index, bucket in enumerate(buckets)
    ]

    return {
        "days": days,
        "best_day": max(days, key=lambda day: day["total"]),
        "worst_day": min(days, key=lambda day: day["total"]),
        "total_orders": len(rows),
        "filters": filters_echo(params, window),
    }


# =========================
# topDays
# =========================
async def top_days(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Best (or worst) calendar days, ranked twice: by revenue and by order count.

    Only days with at least one order can be ranked.
    """
    window = build_date_range(params, now)
    rows = await store.fetch_orders(
        tenant_id, window=window, status=params.status, marketplace=params.marketplace
    )

    per_day: Dict[str, MonthBucket] = defaultdict(MonthBucket)
    for row in rows:
        per_day[day_key(row.order_date)].add(row.status, row.total_amount)

    days = [
        {"date": key, "count": bucket.count, "total": round2(bucket.total)}
        for key, bucket in sorted(per_day.items())
    ]
    limit = params.limit or 10
    best_first = params.order == RankingOrder.BEST

    return {
        "by_revenue": sorted(days, key=lambda day: day["total"], reverse=best_first)[:limit],
        "by_volume": sorted(days, key=lambda day: day["count"], reverse=best_first)[:limit],
        "type": params.order.value,
        "limit": limit,
        "filters": filters_echo(params, window),
    }


# =========================
# cancellationRate
# =========================
async def cancellation_rate(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Status filter is ignored: the rate is cancelled over everything."""
    window = build_date_range(params, now)
    groups = await store.grouped_totals(
        tenant_id, ("marketplace", "status"), window=window, marketplace=params.marketplace
    )

    total = sum_groups(groups)["count"]
    cancelled = sum_groups(group for group in groups if has_status(group["status"], CANCELLED))
    paid = sum_groups(group for group in groups if has_status(group["status"], PAID))

    result: Dict[str, Any] = {
        "total_orders": total,
        "cancelled_orders": cancelled["count"],
        "cancellation_rate": rate(cancelled["count"], total),
        "cancelled_amount": round2(cancelled["total"]),
        "paid_orders": paid["count"],
        "paid_amount": round2(paid["total"]),
    }

    if not params.marketplace:
        by_marketplace = {}
        for name, entry in collapse(groups, "marketplace").items():
            cancelled_here = sum(
                group["count"]
                for group in groups
                if group["marketplace"] == name and has_status(group["status"], CANCELLED)
            )
            by_marketplace[name] = {
                "total": entry["count"],
                "cancelled": cancelled_here,
                "rate": rate(cancelled_here, entry["count"]),
            }
        result["by_marketplace"] = by_marketplace

    result["filters"] = filters_echo(params, window, status=False)
    return result


# =========================
# compareMarketplaces
# =========================
async def compare_marketplaces(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Side-by-side channel matrix. Only the date window applies."""
    window = build_date_range(params, now)
    groups = await store.grouped_totals(tenant_id, ("marketplace", "status"), window=window)

    grand = sum_groups(groups)
    comparison = []
    for name, entry in collapse(groups, "marketplace").items():
        own = [group for group in groups if group["marketplace"] == name]
        paid = sum(group["count"] for group in own if has_status(group["status"], PAID))
        cancelled = sum(group["count"] for group in own if has_status(group["status"], CANCELLED))
        comparison.append(
            {
                "marketplace": name,
                "orders": entry["count"],
                "revenue": entry["total"],
                "revenue_share": rate(entry["total"], grand["total"]),
                "avg_ticket": average(entry["total"], entry["count"]),
                "paid_orders": paid,
                "cancelled_orders": cancelled,
                "cancellation_rate": rate(cancelled, entry["count"]),
                "conversion_rate": rate(paid, entry["count"]),
            }
        )
    comparison.sort(key=lambda row: row["revenue"], reverse=True)

    return {
        "comparison": comparison,
        "total_orders": grand["count"],
        "total_revenue": round2(grand["total"]),
        "filters": filters_echo(params, window, status=False, marketplace=False),
    }


# =========================
# comparePeriods
# =========================
async def compare_periods(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Current window vs the window of the same length right before it.

    Example:
        period_days=30 on 2026-03-15 compares 02-13..03-15 with 01-13..02-12.
    """
    current_window = build_date_range(params, now)
    if current_window is None:
        raise QueryValidationError(
            "comparePeriods needs a date window (start_date/end_date, period_days or current_month)",
            details=[{"field": "period", "message": "a date window is required"}],
        )
    previous_window = current_window.previous()
    logger.info(
        f"Comparing {current_window.start.date()}..{current_window.end.date()} "
        f"with {previous_window.start.date()}..{previous_window.end.date()} for tenant {tenant_id}"
    )

    current = await _period_metrics(store, tenant_id, params, current_window)
    previous = await _period_metrics(store, tenant_id, params, previous_window)

    return {
        "current_period": {**current_window.as_dict(), **current},
        "previous_period": {**previous_window.as_dict(), **previous},
        "changes": {
            "orders": pct_change(current["orders"], previous["orders"]),
            "revenue": pct_change(current["revenue"], previous["revenue"]),
            "avg_ticket": pct_change(current["avg_ticket"], previous["avg_ticket"]),
            "paid_orders": pct_change(current["paid_orders"], previous["paid_orders"]),
        },
        "filters": filters_echo(params, period=False),
    }


async def _period_metrics(
    store: OrderStore, tenant_id: str, params: QueryParams, window: DateWindow
) -> Dict[str, Any]:
    groups = await store.grouped_totals(
        tenant_id, ("status",), window=window, status=params.status, marketplace=params.marketplace
    )
    totals = sum_groups(groups)
    paid = sum_groups(group for group in groups if has_status(group["status"], PAID))
    return {
        "orders": totals["count"],
        "revenue": round2(totals["total"]),
        "avg_ticket": average(totals["total"], totals["count"]),
        "paid_orders": paid["count"],
        "paid_revenue": round2(paid["total"]),
    }


# =========================
# salesByHour
# =========================
async def sales_by_hour(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    window = build_date_range(params, now)
    rows = await store.fetch_orders(
        tenant_id, window=window, status=params.status, marketplace=params.marketplace
    )

    buckets = [MonthBucket() for _ in range(24)]
    for row in rows:
        buckets[to_business_time(row.order_date).hour].add(row.status, row.total_amount)

    hours = [
        {"hour": hour, "label": f"{hour:02d}:00", "count": bucket.count, "total": round2(bucket.total)}
        for hour, bucket in enumerate(buckets)
    ]
    active = [hour for hour in hours if hour["count"] > 0]

    return {
        "hours": hours,
        "peak_hour": max(hours, key=lambda hour: hour["count"]),
        "quiet_hour": min(active, key=lambda hour: hour["count"]) if active else hours[0],
        "total_orders": len(rows),
        "filters": filters_echo(params, window),
    }


# =========================
# executiveSummary
# =========================
async def executive_summary(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """One-shot business overview: totals, health, channels, timeline, statuses."""
    window = build_date_range(params, now)
    rows = await store.fetch_orders(tenant_id, window=window)

    total_orders = len(rows)
    total_revenue = sum(row.total_amount for row in rows)

    by_status: Dict[str, MonthBucket] = defaultdict(MonthBucket)
    by_marketplace: Dict[str, MonthBucket] = defaultdict(MonthBucket)
    overall = MonthBucket()
    for row in rows:
        by_status[row.status or "unknown"].add(row.status, row.total_amount)
        by_marketplace[row.marketplace or "unknown"].add(row.status, row.total_amount)
        overall.add(row.status, row.total_amount)

    months = bucket_months(rows)
    month_keys = list(months)
    timeline: Dict[str, Any] = {"months_count": len(month_keys)}
    if month_keys:
        best = max(month_keys, key=lambda key: months[key].total)
        worst = min(month_keys, key=lambda key: months[key].total)
        timeline["best_month"] = {"month": best, "revenue": round2(months[best].total)}
        timeline["worst_month"] = {"month": worst, "revenue": round2(months[worst].total)}
    else:
        timeline["best_month"] = None
        timeline["worst_month"] = None
    timeline["latest_month_trend"] = (
        pct_change(months[month_keys[-1]].total, months[month_keys[-2]].total)
        if len(month_keys) >= 2
        else None
    )

    return {
        "overview": {
            "total_orders": total_orders,
            "total_revenue": round2(total_revenue),
            "avg_ticket": average(total_revenue, total_orders),
            "period": describe_period(window),
        },
        "health": {
            "paid_orders": overall.paid,
            "paid_revenue": round2(overall.paid_amount),
            "paid_pct": rate(overall.paid, total_orders),
            "cancelled_orders": overall.cancelled,
            "cancelled_revenue": round2(overall.cancelled_amount),
            "cancellation_rate": rate(overall.cancelled, total_orders),
        },
        "channels": [
            {
                "marketplace": name,
                "revenue": round2(bucket.total),
                "share": rate(bucket.total, total_revenue),
                "orders": bucket.count,
                "avg_ticket": round2(bucket.avg_ticket),
            }
            for name, bucket in sorted(by_marketplace.items(), key=lambda item: item[1].total, reverse=True)
        ],
        "timeline": timeline,
        "status_breakdown": [
            {
                "status": name,
                "count": bucket.count,
                "pct": rate(bucket.count, total_orders),
                "revenue": round2(bucket.total),
            }
            for name, bucket in sorted(by_status.items(), key=lambda item: item[1].count, reverse=True)
        ],
        "filters": filters_echo(params, window, status=False, marketplace=False),
    }


# =========================
# marketplaceGrowth
# =========================
async def marketplace_growth(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Monthly series per channel, over the whole history unless a date mode is set."""
    window = build_date_range(params, now)
    rows = await store.fetch_orders(
        tenant_id, window=window, status=params.status, marketplace=params.marketplace
    )

    rows_by_marketplace: Dict[str, List[Any]] = defaultdict(list)
    for row in rows:
        rows_by_marketplace[row.marketplace or "unknown"].append(row)

    marketplaces = []
    for name, own_rows in rows_by_marketplace.items():
        buckets = bucket_months(own_rows)
        series = []
        previous_total = None
        for key, bucket in buckets.items():
            series.append(
                {
                    "month": key,
                    "revenue": round2(bucket.total),
                    "orders": bucket.count,
                    "growth": None if previous_total is None else pct_change(bucket.total, previous_total),
                }
            )
            previous_total = bucket.total

        totals = [bucket.total for bucket in buckets.values()]
        revenue = sum(totals)
        marketplaces.append(
            {
                "marketplace": name,
                "months": series,
                "total_revenue": round2(revenue),
                "avg_monthly": average(revenue, len(totals)),
                "overall_growth": pct_change(totals[-1], totals[0]) if len(totals) >= 2 else None,
                "months_active": sum(1 for bucket in buckets.values() if bucket.count),
            }
        )

    marketplaces.sort(key=lambda entry: entry["overall_growth"] or 0, reverse=True)

    return {
        "marketplaces": marketplaces,
        "fastest_growing": marketplaces[0]["marketplace"] if marketplaces else None,
        "slowest_growing": marketplaces[-1]["marketplace"] if marketplaces else None,
        "filters": filters_echo(params, window),
    }


# =========================
# cancellationByMonth
# =========================
async def cancellation_by_month(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    rows = await store.fetch_orders(tenant_id, marketplace=params.marketplace)

    months = [
        {
            "month": key,
            "total_orders": bucket.count,
            "paid_orders": bucket.paid,
            "cancelled_orders": bucket.cancelled,
            "cancellation_rate": rate(bucket.cancelled, bucket.count),
            "paid_revenue": round2(bucket.paid_amount),
            "lost_revenue": round2(bucket.cancelled_amount),
        }
        for key, bucket in bucket_months(rows).items()
    ]

    total_orders = sum(month["total_orders"] for month in months)
    total_cancelled = sum(month["cancelled_orders"] for month in months)
    active = [month for month in months if month["total_orders"]]

    return {
        "months": months,
        "summary": {
            "total_cancelled": total_cancelled,
            "total_lost_revenue": round2(sum(month["lost_revenue"] for month in months)),
            "avg_cancellation_rate": rate(total_cancelled, total_orders),
            "worst_month": max(active, key=lambda month: month["cancellation_rate"]) if active else None,
            "best_month": min(active, key=lambda month: month["cancellation_rate"]) if active else None,
        },
        "filters": filters_echo(params, status=False, period=False),
    }


# =========================
# yearOverYear
# =========================
async def year_over_year(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Same calendar month across years, plus yearly totals.

    Example:
        {"month": "03", "by_year": {"2025": {"revenue": 900.0, "orders": 9},
                                    "2026": {"revenue": 1200.0, "orders": 10}},
         "revenue_change": 33.33, "orders_change": 11.11}
    """
    window = build_date_range(params, now)
    rows = await store.fetch_orders(
        tenant_id, window=window, status=params.status, marketplace=params.marketplace
    )
    buckets = bucket_months(rows, fill_gaps=False)

    by_month_number: Dict[str, Dict[str, MonthBucket]] = defaultdict(dict)
    by_year: Dict[str, MonthBucket] = defaultdict(MonthBucket)
    for key, bucket in buckets.items():
        year, month = key.split("-")
        by_month_number[month][year] = bucket
        year_bucket = by_year[year]
        year_bucket.count += bucket.count
        year_bucket.total += bucket.total

    comparisons = []
    for month in sorted(by_month_number):
        years = by_month_number[month]
        entry: Dict[str, Any] = {
            "month": month,
            "by_year": {
                year: {"revenue": round2(bucket.total), "orders": bucket.count}
                for year, bucket in sorted(years.items())
            },
        }
        if len(years) >= 2:
            previous_year, latest_year = sorted(years)[-2:]
            entry["revenue_change"] = pct_change(years[latest_year].total, years[previous_year].total)
            entry["orders_change"] = pct_change(years[latest_year].count, years[previous_year].count)
        comparisons.append(entry)

    return {
        "monthly_comparison": comparisons,
        "yearly_totals": [
            {
                "year": year,
                "revenue": round2(bucket.total),
                "orders": bucket.count,
                "avg_ticket": round2(bucket.avg_ticket),
            }
            for year, bucket in sorted(by_year.items())
        ],
        "filters": filters_echo(params, window),
    }
