from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from order_insights.core.analytics.filters import DateWindow, describe_period, month_key
from order_insights.core.schemas import QueryParams

PAID = "paid"
CANCELLED = "cancelled"

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


# =========================
# Numeric policy
# =========================
def round2(value: float) -> float:
    return round(float(value), 2)


def rate(part: float, whole: float) -> float:
    """Percentage of a whole; 0 when there is nothing to divide by."""
    if not whole:
        return 0
    return round2(part / whole * 100)


def pct_change(current: float, previous: float) -> Optional[float]:
    """Growth percentage; None when the baseline is empty, never a fake 0%."""
    if previous is None or previous <= 0:
        return None
    return round2((current - previous) / previous * 100)


def average(total: float, count: int) -> float:
    return round2(total / count) if count else 0


def has_status(status: Optional[str], expected: str) -> bool:
    return (status or "").lower() == expected


# =========================
# Grouping helpers
# =========================
def collapse(groups: Iterable[Dict[str, Any]], column: str) -> Dict[str, Dict[str, Any]]:
    """
    Fold GROUP BY rows down to one column.

    Example:
        collapse([{"status": "paid", "marketplace": "ml", "count": 2, "total": 10.0},
                  {"status": "paid", "marketplace": "bagy", "count": 1, "total": 5.0}], "status")
        -> {"paid": {"count": 3, "total": 15.0}}
    """
    folded: Dict[str, Dict[str, Any]] = {}
    for group in groups:
        entry = folded.setdefault(group[column], {"count": 0, "total": 0.0})
        entry["count"] += group["count"]
        entry["total"] += group["total"]
    for entry in folded.values():
        entry["total"] = round2(entry["total"])
    return folded


def sum_groups(groups: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    count, total = 0, 0.0
    for group in groups:
        count += group["count"]
        total += group["total"]
    return {"count": count, "total": total}


@dataclass
class MonthBucket:
    count: int = 0
    total: float = 0.0
    paid: int = 0
    paid_amount: float = 0.0
    cancelled: int = 0
    cancelled_amount: float = 0.0

    def add(self, status: Optional[str], amount: float) -> None:
        self.count += 1
        self.total += amount
        if has_status(status, PAID):
            self.paid += 1
            self.paid_amount += amount
        elif has_status(status, CANCELLED):
            self.cancelled += 1
            self.cancelled_amount += amount

    @property
    def avg_ticket(self) -> float:
        return self.total / self.count if self.count else 0.0

    @property
    def cancellation_rate(self) -> float:
        return self.cancelled / self.count * 100 if self.count else 0.0


def month_keys_between(first: str, last: str) -> List[str]:
    """Every YYYY-MM key from first to last, inclusive."""
    year, month = (int(part) for part in first.split("-"))
    keys = []
    while f"{year:04d}-{month:02d}" <= last:
        keys.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return keys


def bucket_months(rows: Sequence[Any], fill_gaps: bool = True) -> Dict[str, MonthBucket]:
    """
    Group order rows by business month, oldest first.

    Months without orders between the first and last one are kept as empty
    buckets so growth and trends see the gap.
    """
    buckets: Dict[str, MonthBucket] = {}
    for row in rows:
        buckets.setdefault(month_key(row.order_date), MonthBucket()).add(row.status, row.total_amount)

    if not buckets:
        return {}

    keys = sorted(buckets)
    if fill_gaps:
        keys = month_keys_between(keys[0], keys[-1])
    return {key: buckets.get(key, MonthBucket()) for key in keys}


def filters_echo(
    params: QueryParams,
    window: Optional[DateWindow] = None,
    *,
    status: bool = True,
    marketplace: bool = True,
    period: bool = True,
) -> Dict[str, Any]:
    """The filters a function actually applied, echoed back with its result."""
    echo: Dict[str, Any] = {}
    if status:
        echo["status"] = params.status
    if marketplace:
        echo["marketplace"] = params.marketplace
    if period:
        echo["period"] = describe_period(window)
    return echo
