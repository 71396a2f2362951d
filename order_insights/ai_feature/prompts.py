from datetime import date
from typing import Any, Dict, List, Optional

from order_insights.core.analytics.registry import ADHOC_FUNCTION_NAME, QueryFunction
from order_insights.core.config import settings


# =========================
# Tool declarations
# =========================
STATUS_PARAM = {"status": {"type": "STRING", "description": "Filter by order status (exact, case-insensitive)"}}
MARKETPLACE_PARAM = {"marketplace": {"type": "STRING", "description": "Filter by marketplace (partial match)"}}
DATE_PARAMS = {
    "start_date": {"type": "STRING", "description": "Start date YYYY-MM-DD (use with end_date)"},
    "end_date": {"type": "STRING", "description": "End date YYYY-MM-DD (use with start_date)"},
    "period_days": {"type": "INTEGER", "description": "Days back from today (30, 90, 365)"},
    "current_month": {"type": "BOOLEAN", "description": "true = from the 1st of this month until today"},
    "all_time": {"type": "BOOLEAN", "description": "true = every order, no date filter"},
}
RANKING_PARAMS = {
    "limit": {"type": "INTEGER", "description": "Number of days in the ranking (default 10)"},
    "order": {"type": "STRING", "description": "'best' for best days, 'worst' for worst days"},
}


def _declaration(name: str, description: str, *param_groups: Dict[str, Any]) -> Dict[str, Any]:
    declaration: Dict[str, Any] = {"name": name, "description": description}
    properties: Dict[str, Any] = {}
    for group in param_groups:
        properties.update(group)
    if properties:
        declaration["parameters"] = {"type": "OBJECT", "properties": properties}
    return declaration


TOOL_DECLARATIONS: List[Dict[str, Any]] = [
    _declaration(
        QueryFunction.COUNT_ORDERS.value,
        "Count orders. Returns by_status and by_marketplace breakdowns when not filtered by them.",
        STATUS_PARAM, MARKETPLACE_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.TOTAL_SALES.value,
        "Total sales amount and order count. For real revenue pass status='paid'. "
        "When filtered by status there is no data about other statuses.",
        STATUS_PARAM, MARKETPLACE_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.AVG_TICKET.value,
        "Average ticket with median, min, max and standard deviation.",
        STATUS_PARAM, MARKETPLACE_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.ORDERS_BY_STATUS.value,
        "Order distribution by status with percentages.",
        MARKETPLACE_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.ORDERS_BY_MARKETPLACE.value,
        "Orders and sales per marketplace with a per-status breakdown. For revenue per channel pass status='paid'.",
        STATUS_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.SALES_BY_MONTH.value,
        "Monthly series: revenue, orders, average ticket, month-over-month growth. "
        "Use for 'month by month', 'evolution', 'history', 'trend'.",
        STATUS_PARAM, MARKETPLACE_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.SALES_BY_DAY_OF_WEEK.value,
        "Performance per weekday, Monday to Sunday. Use for 'best weekday', 'weekly pattern'.",
        STATUS_PARAM, MARKETPLACE_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.TOP_DAYS.value,
        "Ranking of the best or worst sales days by revenue and by volume.",
        STATUS_PARAM, MARKETPLACE_PARAM, RANKING_PARAMS, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.CANCELLATION_RATE.value,
        "Cancellation rate overall and per marketplace, cancelled vs paid amounts.",
        MARKETPLACE_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.COMPARE_MARKETPLACES.value,
        "Detailed channel comparison: revenue, share, average ticket, cancellation and conversion rate.",
        DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.COMPARE_PERIODS.value,
        "Compare a date window with the window of the same length right before it. Needs a date window.",
        STATUS_PARAM, MARKETPLACE_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.SALES_BY_HOUR.value,
        "Sales per hour of day (0h-23h), peak and quiet hours.",
        STATUS_PARAM, MARKETPLACE_PARAM, DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.SALES_FORECAST.value,
        "Next month revenue forecast from a 3-month moving average and a linear trend. "
        "For a revenue forecast pass status='paid'.",
        STATUS_PARAM, MARKETPLACE_PARAM,
    ),
    _declaration(
        QueryFunction.EXECUTIVE_SUMMARY.value,
        "Executive summary with the main KPIs: revenue, ticket, cancellations, channel mix, best and worst month.",
        DATE_PARAMS,
    ),
    _declaration(
        QueryFunction.MARKETPLACE_GROWTH.value,
        "Monthly evolution of each marketplace separately and which one grows fastest.",
        STATUS_PARAM, MARKETPLACE_PARAM,
    ),
    _declaration(
        QueryFunction.CANCELLATION_BY_MONTH.value,
        "Cancellation rate month by month with lost revenue.",
        MARKETPLACE_PARAM,
    ),
    _declaration(
        QueryFunction.YEAR_OVER_YEAR.value,
        "Year-over-year comparison of the same calendar months plus yearly totals.",
        STATUS_PARAM, MARKETPLACE_PARAM,
    ),
    _declaration(
        QueryFunction.SEASONALITY_ANALYSIS.value,
        "Seasonality: strong and weak months, seasonal index and weekday pattern.",
        STATUS_PARAM, MARKETPLACE_PARAM,
    ),
    _declaration(
        QueryFunction.HEALTH_CHECK.value,
        "Quick diagnosis with automatic alerts: revenue vs average, cancellations, ticket trend, "
        "year over year, last week. Use for 'how are things', 'any alerts'.",
    ),
    {
        "name": ADHOC_FUNCTION_NAME,
        "description": "Custom read-only SELECT on the orders table. LAST RESORT, only when no other function fits.",
        "parameters": {
            "type": "OBJECT",
            "properties": {"sql": {"type": "STRING", "description": "A single SELECT statement"}},
            "required": ["sql"],
        },
    },
]


# =========================
# System instruction
# =========================
def _quoted(values: List[str]) -> str:
    return ", ".join(f'"{value}"' for value in values) or "N/A"


def build_system_instruction(metadata: Dict[str, List[str]], today: Optional[date] = None) -> str:
    """
    System instruction for both the dispatch and the compose call.

    metadata carries the tenant's own status and marketplace values so the
    model filters with values that exist.
    """
    today = today or date.today()
    currency = settings.CURRENCY_SYMBOL

    return f"""You are a data analyst for a multichannel e-commerce business.

## GOLDEN RULE: REVENUE = PAID ONLY
Revenue, sales and income mean ONLY orders with status "paid".
- For any revenue question ALWAYS pass status="paid" to the function.
- Cancelled, pending or shipped orders are not revenue.
- When you filter by status="paid" the result contains ONLY paid orders. Do not describe other statuses.

## ABSOLUTE RULE: NEVER INVENT NUMBERS
Every number in your answer MUST exist in a function result.
- If the result has no "by_status", do not build a status breakdown.
- If a function returned an "error", say you could not get that data. Do not guess.
- To show a full breakdown, call another function (ordersByStatus or executiveSummary).

## Data
Table "orders": marketplace, status, total_amount ({currency}), order_date
Statuses: {_quoted(metadata.get("statuses", []))}
Marketplaces: {_quoted(metadata.get("marketplaces", []))}

## Rules
1. ALWAYS use a function. Without a period, use all_time=true.
2. Use exactly one date mode per call: all_time, start_date+end_date, period_days or current_month.
3. Money as {currency} 1,234.56. Include percentages and one short actionable insight.
4. Never show raw database values, table or column names. Say "paid orders", not status "paid".
5. Tables in markdown with at most 6 columns.
6. executeSQLQuery is a last resort: one SELECT on the orders table only.
7. Today is {today.isoformat()}.

## CHARTS
You may add a chart block after your explanation:
```chart
{{"type": "bar", "title": "Revenue", "labels": ["Jan", "Feb"], "datasets": [{{"label": "Revenue", "data": [1000, 2000]}}], "options": {{"currency": true}}}}
```
Types: "bar", "line", "pie", "doughnut", "horizontalBar".
Options: "currency", "percentage", "stacked".
At most 1-2 charts per answer, always with explanatory text, values rounded to integers."""
