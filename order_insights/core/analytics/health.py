import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from order_insights.core.analytics.filters import business_now, days_in_month, month_key, to_business_time
from order_insights.core.analytics.forecast import project_month
from order_insights.core.analytics.metrics import MonthBucket, bucket_months, round2
from order_insights.core.analytics.store import OrderRow, OrderStore
from order_insights.core.config import settings
from order_insights.core.schemas import QueryParams


# -----------------------------------------------------------------------------
# HEALTH MODULE
# Purpose: proactive alerts comparing this month against the business's own past.
# Why: owners ask "is everything ok?" more often than any precise metric.
#
# Rules are independent: each one looks at the same snapshot and returns zero
# or more alerts. Thresholds are fixed constants.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

MIN_PROJECTION_DAY = 5
WEEKS_PER_MONTH = 4.33

PROJECTION_DANGER_PCT = -30
PROJECTION_WARNING_PCT = -10
PROJECTION_SUCCESS_PCT = 20
YOY_FLAG_PCT = 15
CANCELLATION_MIN_ORDERS = 20
CANCELLATION_DANGER_PP = 5
CANCELLATION_SUCCESS_PP = 3
MARKETPLACE_MIN_ORDERS = 10
MARKETPLACE_SPIKE_PP = 8
WEEKLY_MIN_ORDERS = 20
WEEKLY_SUCCESS_PCT = 30


@dataclass
class HealthSnapshot:
    today: datetime
    current_key: str
    month_length: int
    months: Dict[str, MonthBucket]
    complete_keys: List[str]
    avg_revenue: float
    avg_orders: float
    rows: Sequence[OrderRow] = field(default_factory=list)

    @property
    def current(self) -> Optional[MonthBucket]:
        return self.months.get(self.current_key)

    @property
    def projected_revenue(self) -> Optional[float]:
        if self.current is None or self.today.day < MIN_PROJECTION_DAY:
            return None
        return project_month(self.current.total, self.today.day, self.month_length)


def _money(value: float) -> str:
    return f"{settings.CURRENCY_SYMBOL} {value:,.0f}"


def _alert(kind: str, metric: Optional[str], message: str) -> Dict[str, Any]:
    alert = {"type": kind, "message": message}
    if metric:
        alert["metric"] = metric
    return alert


# ============================================================================
# RULES
# ============================================================================


def revenue_projection_rule(snapshot: HealthSnapshot) -> List[Dict[str, Any]]:
    projected = snapshot.projected_revenue
    if projected is None or snapshot.avg_revenue <= 0:
        return []

    pct = (projected - snapshot.avg_revenue) / snapshot.avg_revenue * 100
    days_left = snapshot.month_length - snapshot.today.day
    if pct < PROJECTION_DANGER_PCT:
        return [_alert(
            "danger",
            "revenue_projection",
            f"Revenue is projected at {_money(projected)}, {abs(round(pct))}% below the monthly "
            f"average of {_money(snapshot.avg_revenue)}. {days_left} days left.",
        )]
    if pct < PROJECTION_WARNING_PCT:
        return [_alert(
            "warning",
            "revenue_projection",
            f"Revenue is projected {abs(round(pct))}% below average. So far: "
            f"{_money(snapshot.current.total)} in {snapshot.today.day} days.",
        )]
    if pct > PROJECTION_SUCCESS_PCT:
        return [_alert(
            "success",
            "revenue_projection",
            f"Strong month: projected {_money(projected)}, {round(pct)}% above average.",
        )]
    return []


def year_over_year_rule(snapshot: HealthSnapshot) -> List[Dict[str, Any]]:
    projected = snapshot.projected_revenue
    last_year_key = f"{snapshot.today.year - 1:04d}-{snapshot.today.month:02d}"
    last_year = snapshot.months.get(last_year_key)
    if projected is None or last_year is None or last_year.total <= 0:
        return []

    delta = (projected - last_year.total) / last_year.total * 100
    if abs(delta) <= YOY_FLAG_PCT:
        return []
    sign = "+" if delta > 0 else ""
    return [_alert(
        "warning" if delta < 0 else "success",
        "yoy",
        f"vs {last_year_key}: {sign}{round(delta)}% revenue (was {_money(last_year.total)}).",
    )]


def cancellation_rule(snapshot: HealthSnapshot) -> List[Dict[str, Any]]:
    current = snapshot.current
    if current is None or current.count <= CANCELLATION_MIN_ORDERS:
        return []

    rates = [
        snapshot.months[key].cancellation_rate
        for key in snapshot.complete_keys
        if snapshot.months[key].count
    ]
    if not rates:
        return []
    avg_rate = sum(rates) / len(rates)
    current_rate = current.cancellation_rate

    if current_rate >= avg_rate + CANCELLATION_DANGER_PP:
        return [_alert(
            "danger",
            "cancellation",
            f"Cancellation rate at {current_rate:.1f}%, above the {avg_rate:.1f}% average. "
            f"Lost: {_money(current.cancelled_amount)}.",
        )]
    if current_rate <= avg_rate - CANCELLATION_SUCCESS_PP:
        return [_alert(
            "success",
            "cancellation",
            f"Cancellations at {current_rate:.1f}%, better than the {avg_rate:.1f}% average.",
        )]
    return []


def marketplace_cancellation_rule(snapshot: HealthSnapshot) -> List[Dict[str, Any]]:
    if not snapshot.complete_keys:
        return []
    previous_key = snapshot.complete_keys[-1]

    per_marketplace: Dict[str, Dict[str, MonthBucket]] = defaultdict(lambda: defaultdict(MonthBucket))
    for row in snapshot.rows:
        key = month_key(row.order_date)
        if key in (snapshot.current_key, previous_key):
            per_marketplace[row.marketplace or "unknown"][key].add(row.status, row.total_amount)

    alerts = []
    for name in sorted(per_marketplace):
        current = per_marketplace[name].get(snapshot.current_key)
        previous = per_marketplace[name].get(previous_key)
        if current is None or previous is None:
            continue
        if current.count <= MARKETPLACE_MIN_ORDERS or previous.count <= MARKETPLACE_MIN_ORDERS:
            continue
        if current.cancellation_rate >= previous.cancellation_rate + MARKETPLACE_SPIKE_PP:
            alerts.append(_alert(
                "warning",
                "marketplace_cancellation",
                f"Cancellations on {name} rose from {previous.cancellation_rate:.1f}% "
                f"to {current.cancellation_rate:.1f}% this month.",
            ))
    return alerts


def average_ticket_rule(snapshot: HealthSnapshot) -> List[Dict[str, Any]]:
    last_three = snapshot.complete_keys[-3:]
    if len(last_three) < 3:
        return []

    first, middle, last = (snapshot.months[key].avg_ticket for key in last_three)
    path = f"{_money(first)} -> {_money(middle)} -> {_money(last)}"
    if first > middle > last:
        return [_alert("warning", "avg_ticket", f"Average ticket falling for 3 months: {path}.")]
    if first < middle < last:
        return [_alert("success", "avg_ticket", f"Average ticket rising for 3 months: {path}.")]
    return []


def weekly_rule(snapshot: HealthSnapshot) -> List[Dict[str, Any]]:
    week_start = snapshot.today - timedelta(days=7)
    week_total, week_orders = 0.0, 0
    for row in snapshot.rows:
        moment = to_business_time(row.order_date)
        if week_start < moment <= snapshot.today:
            week_total += row.total_amount
            week_orders += 1

    avg_weekly = snapshot.avg_revenue / WEEKS_PER_MONTH
    if week_orders <= WEEKLY_MIN_ORDERS or avg_weekly <= 0:
        return []

    pct = (week_total / avg_weekly - 1) * 100
    if pct >= WEEKLY_SUCCESS_PCT:
        return [_alert(
            "success",
            "weekly",
            f"Great week: {_money(week_total)} in the last 7 days ({week_orders} orders), "
            f"{round(pct)}% above the average week.",
        )]
    return []


HEALTH_RULES: List[Callable[[HealthSnapshot], List[Dict[str, Any]]]] = [
    revenue_projection_rule,
    year_over_year_rule,
    cancellation_rule,
    marketplace_cancellation_rule,
    average_ticket_rule,
    weekly_rule,
]


# ============================================================================
# ENTRY POINTS
# ============================================================================


def evaluate_health(rows: Sequence[OrderRow], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Run every rule over one snapshot of the tenant's history.

    Less than two months of history is not enough to compare anything, so
    that case returns a single info alert and no summary.
    """
    months = bucket_months(rows)
    if len(months) < 2:
        return {
            "alerts": [_alert("info", None, "Not enough data for a health check (less than 2 months of history).")],
            "summary": None,
        }

    today = business_now(now)
    current_key = today.strftime("%Y-%m")
    complete_keys = [key for key in months if key < current_key]
    avg_revenue = (
        sum(months[key].total for key in complete_keys) / len(complete_keys) if complete_keys else 0.0
    )
    avg_orders = (
        sum(months[key].count for key in complete_keys) / len(complete_keys) if complete_keys else 0.0
    )

    snapshot = HealthSnapshot(
        today=today,
        current_key=current_key,
        month_length=days_in_month(today.year, today.month),
        months=months,
        complete_keys=complete_keys,
        avg_revenue=avg_revenue,
        avg_orders=avg_orders,
        rows=rows,
    )

    alerts: List[Dict[str, Any]] = []
    for rule in HEALTH_RULES:
        alerts.extend(rule(snapshot))

    if not alerts:
        alerts.append(_alert("info", None, "All normal: no alerts or anomalies detected."))

    current = snapshot.current
    return {
        "alerts": alerts,
        "summary": {
            "current_month": current_key,
            "days_passed": today.day,
            "days_remaining": snapshot.month_length - today.day,
            "revenue_so_far": round2(current.total) if current else 0,
            "orders_so_far": current.count if current else 0,
            "avg_monthly_revenue": round2(avg_revenue),
            "avg_monthly_orders": round(avg_orders),
        },
    }


async def health_check(
    tenant_id: str, params: QueryParams, store: OrderStore, now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Params are accepted for a uniform signature; the check always covers all history."""
    rows = await store.fetch_orders(tenant_id)
    result = evaluate_health(rows, now)
    logger.info(f"Health check for tenant {tenant_id}: {len(result['alerts'])} alerts")
    return result
