"""
FILTERS - normalize request parameters into absolute business-time windows

Purpose:
    1. Turn period_days / current_month / start_date + end_date into one
       absolute [start, end] window
    2. Bucket timestamps (day, month, hour, weekday) in the business timezone

Why a fixed offset:
    Orders are stored in UTC but the business closes its books in Brasilia
    time (UTC-3). An order placed at 2025-01-31T23:30-03:00 is stored as
    2025-02-01T02:30Z and must still count towards January.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Union

from order_insights.core.config import settings
from order_insights.core.errors import QueryValidationError
from order_insights.core.schemas import QueryParams

BUSINESS_TZ = timezone(timedelta(hours=settings.BUSINESS_UTC_OFFSET_HOURS))

# YYYY-MM-DD, optionally followed by a time part that is ignored
_DATE_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")


@dataclass(frozen=True)
class DateWindow:
    """Inclusive [start, end] window, both ends timezone-aware."""

    start: datetime
    end: datetime

    def previous(self) -> "DateWindow":
        """Same length, ending right before this window starts."""
        length = self.end - self.start
        previous_end = self.start - timedelta(microseconds=1)
        return DateWindow(start=previous_end - length, end=previous_end)

    def as_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


# ============================================================================
# BUSINESS TIME HELPERS
# ============================================================================


def business_now(now: Optional[datetime] = None) -> datetime:
    return to_business_time(now or datetime.now(timezone.utc))


def to_business_time(moment: datetime) -> datetime:
    # Some drivers (SQLite) hand back naive datetimes; they are stored as UTC
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(BUSINESS_TZ)


def month_key(moment: datetime) -> str:
    return to_business_time(moment).strftime("%Y-%m")


def day_key(moment: datetime) -> str:
    return to_business_time(moment).strftime("%Y-%m-%d")


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=BUSINESS_TZ)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=BUSINESS_TZ)


# ============================================================================
# DATE PARSING
# ============================================================================


def parse_date(value: str, field: str = "date") -> date:
    """
    Parse a YYYY-MM-DD string, clamping impossible days to the month end.

    "2026-02-30" -> date(2026, 2, 28). Anything that is not a date at all
    raises instead of being dropped, so a typo never widens the query.
    """
    match = _DATE_PATTERN.match(str(value).strip())
    if not match:
        raise QueryValidationError(
            f"Invalid {field}: expected YYYY-MM-DD",
            details=[{"field": field, "value": value, "message": "expected YYYY-MM-DD"}],
        )

    year, month, day = (int(part) for part in match.groups())
    if not 1 <= month <= 12 or not 1 <= day <= 31 or year < 1:
        raise QueryValidationError(
            f"Invalid {field}: {value}",
            details=[{"field": field, "value": value, "message": "month or day out of range"}],
        )

    return date(year, month, min(day, days_in_month(year, month)))


def normalize_date_string(value: str, field: str = "date") -> str:
    return parse_date(value, field).isoformat()


def build_date_range(
    params: QueryParams, now: Optional[datetime] = None
) -> Optional[DateWindow]:
    """
    Resolve the active date mode into an absolute window.

    Returns None for all-time queries (explicit all_time or no mode at all).
    """
    if params.all_time:
        return None

    if params.start_date and params.end_date:
        start_day = parse_date(params.start_date, "start_date")
        end_day = parse_date(params.end_date, "end_date")
        if end_day < start_day:
            raise QueryValidationError(
                "end_date is before start_date",
                details=[
                    {"field": "end_date", "value": params.end_date, "message": "before start_date"}
                ],
            )
        return DateWindow(start=start_of_day(start_day), end=end_of_day(end_day))

    today = business_now(now).date()

    if params.period_days is not None:
        return DateWindow(
            start=start_of_day(today - timedelta(days=params.period_days)),
            end=end_of_day(today),
        )

    if params.current_month:
        return DateWindow(start=start_of_day(today.replace(day=1)), end=end_of_day(today))

    return None


def describe_period(window: Optional[DateWindow]) -> Union[Dict[str, Any], str]:
    return window.as_dict() if window else "all_time"
