"""
FALLBACK - deterministic answers when the model cannot compose one

Purpose:
    Turn a registry result straight into markdown (plus a chart block) when
    the compose call fails or comes back empty.

Rule:
    Every number printed here is read from the result dict. Nothing is
    computed that the result does not already contain. Percentages are
    printed as the result carries them; only currency charts are rounded.
"""

import json
from typing import Any, Callable, Dict, List, Optional

from order_insights.core.analytics.registry import ADHOC_FUNCTION_NAME, QueryFunction
from order_insights.core.config import settings
from order_insights.core.schemas import ChartDataset, ChartOptions, ChartSpec, ChartType

STATUS_LABELS = {
    "paid": "Paid",
    "cancelled": "Cancelled",
    "pending": "Pending",
    "shipped": "Shipped",
    "partially_refunded": "Partially refunded",
    "pending processing": "Processing",
    "pending shipment": "Awaiting shipment",
}

MARKETPLACE_LABELS = {
    "bagy": "Bagy",
    "ml": "Mercado Livre",
    "shopee": "Shopee",
    "shein": "Shein",
    "physical store": "Physical store",
}

SUGGESTIONS: Dict[str, List[str]] = {
    QueryFunction.COUNT_ORDERS.value: [
        "What was the total revenue for this period?",
        "How are orders split by status?",
        "And by marketplace?",
    ],
    QueryFunction.TOTAL_SALES.value: [
        "What is the average ticket?",
        "Show revenue month by month",
        "Which marketplace sells the most?",
    ],
    QueryFunction.AVG_TICKET.value: [
        "Average ticket per marketplace?",
        "How did the ticket evolve month by month?",
        "Compare with last month",
    ],
    QueryFunction.ORDERS_BY_STATUS.value: [
        "How much did I lose to cancellations?",
        "Cancellations month by month?",
        "Cancellation rate per marketplace?",
    ],
    QueryFunction.ORDERS_BY_MARKETPLACE.value: [
        "Which marketplace grows fastest?",
        "Detailed channel comparison",
        "Cancellations per channel?",
    ],
    QueryFunction.SALES_BY_MONTH.value: [
        "What is the forecast for next month?",
        "What is the seasonality of the business?",
        "Compare with last year",
    ],
    QueryFunction.SALES_BY_DAY_OF_WEEK.value: [
        "And by hour of day?",
        "Which were the best sales days?",
        "Revenue month by month?",
    ],
    QueryFunction.SALES_BY_HOUR.value: [
        "And by weekday?",
        "Which were the best days?",
        "Monthly sales evolution?",
    ],
    QueryFunction.TOP_DAYS.value: [
        "And the worst days?",
        "Revenue month by month?",
        "Which weekday sells the most?",
    ],
    QueryFunction.CANCELLATION_RATE.value: [
        "Cancellations month by month?",
        "Which marketplace cancels the most?",
        "How much revenue was lost?",
    ],
    QueryFunction.COMPARE_MARKETPLACES.value: [
        "Which marketplace grows fastest?",
        "Monthly evolution per channel?",
        "Average ticket per marketplace?",
    ],
    QueryFunction.COMPARE_PERIODS.value: [
        "Compare with last year",
        "Full month by month evolution?",
        "Forecast for next month?",
    ],
    QueryFunction.SALES_FORECAST.value: [
        "Give me a full executive summary",
        "What is the seasonality of the business?",
        "Compare with last year",
    ],
    QueryFunction.EXECUTIVE_SUMMARY.value: [
        "What is the forecast for next month?",
        "Cancellations month by month?",
        "Which marketplace grows fastest?",
    ],
    QueryFunction.MARKETPLACE_GROWTH.value: [
        "Detailed channel comparison",
        "What is the seasonality?",
        "Revenue forecast?",
    ],
    QueryFunction.CANCELLATION_BY_MONTH.value: [
        "Cancellation rate per marketplace?",
        "What is the cancellation trend?",
        "Full executive summary?",
    ],
    QueryFunction.YEAR_OVER_YEAR.value: [
        "Seasonality of the business?",
        "Forecast for next month?",
        "Executive summary?",
    ],
    QueryFunction.SEASONALITY_ANALYSIS.value: [
        "Forecast for next month?",
        "Which were the best days of the year?",
        "Full executive summary?",
    ],
    QueryFunction.HEALTH_CHECK.value: [
        "Give me a full executive summary",
        "What is the forecast for next month?",
        "Revenue month by month?",
    ],
    ADHOC_FUNCTION_NAME: [
        "Executive summary?",
        "Sales by marketplace?",
        "Revenue month by month?",
    ],
}

ALERT_ICONS = {"danger": "[!]", "warning": "[~]", "success": "[+]", "info": "[i]"}


# =========================
# Formatting helpers
# =========================
def money(value: Optional[float]) -> str:
    return f"{settings.CURRENCY_SYMBOL} {(value or 0):,.2f}"


def number(value: Optional[float]) -> str:
    return f"{(value or 0):,}"


def signed_pct(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    return f"{'+' if value >= 0 else ''}{value}%"


def percent(value: Optional[float]) -> str:
    return "N/A" if value is None else f"{value}%"


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


def marketplace_label(marketplace: str) -> str:
    return MARKETPLACE_LABELS.get(marketplace, marketplace)


def chart(
    chart_type: ChartType,
    title: str,
    labels: List[str],
    datasets: Dict[str, List[float]],
    currency: bool = False,
    percentage: bool = False,
) -> str:
    options = None
    if currency or percentage:
        options = ChartOptions(currency=currency or None, percentage=percentage or None)
    spec = ChartSpec(
        type=chart_type,
        title=title,
        labels=labels,
        datasets=[
            ChartDataset(label=label, data=[round(value) if currency else value for value in data])
            for label, data in datasets.items()
        ],
        options=options,
    )
    return "\n\n" + spec.to_block()


def _filtered_note(result: Dict[str, Any]) -> str:
    status = (result.get("filters") or {}).get("status")
    if not status:
        return ""
    return f"\n\n_Only {status_label(status).lower()} orders; no data about other statuses._"


# =========================
# Per-function formatters
# =========================
def _count_orders(result: Dict[str, Any]) -> str:
    total = result.get("total", 0)
    lines = [f"Total: **{number(total)} orders**"]
    by_status = result.get("by_status")
    if by_status:
        lines.append("")
        for status, count in sorted(by_status.items(), key=lambda item: item[1], reverse=True):
            lines.append(f"- **{status_label(status)}:** {number(count)}")
    return "\n".join(lines) + _filtered_note(result)


def _total_sales(result: Dict[str, Any]) -> str:
    lines = [
        f"**Sales:** {money(result.get('total_sales'))}",
        f"**Orders:** {number(result.get('order_count'))}",
    ]
    by_status = result.get("by_status")
    if by_status:
        lines.append("\n**By status:**")
        for status, entry in sorted(by_status.items(), key=lambda item: item[1]["total"], reverse=True):
            lines.append(
                f"- **{status_label(status)}:** {number(entry['count'])} orders, "
                f"{money(entry['total'])}"
            )
    return "\n".join(lines) + _filtered_note(result)


def _avg_ticket(result: Dict[str, Any]) -> str:
    return "\n".join([
        f"**Average ticket:** {money(result.get('avg_ticket'))}",
        f"**Median:** {money(result.get('median_ticket'))}",
        f"**Min / Max:** {money(result.get('min_ticket'))} / {money(result.get('max_ticket'))}",
        f"**Standard deviation:** {money(result.get('std_deviation'))}",
        f"**Orders:** {number(result.get('order_count'))}",
    ])


def _orders_by_status(result: Dict[str, Any]) -> str:
    distribution = result.get("distribution") or {}
    percentages = result.get("percentages") or {}
    entries = sorted(distribution.items(), key=lambda item: item[1], reverse=True)
    lines = [f"**By status** ({number(result.get('total'))} orders):", ""]
    lines += [
        f"- **{status_label(status)}:** {number(count)} ({percent(percentages.get(status, 0))})"
        for status, count in entries
    ]
    return "\n".join(lines) + chart(
        ChartType.DOUGHNUT,
        "Orders by status",
        [status_label(status) for status, _ in entries],
        {"Orders": [count for _, count in entries]},
    )


def _orders_by_marketplace(result: Dict[str, Any]) -> str:
    marketplaces = result.get("marketplaces") or {}
    lines = [f"**By marketplace** ({number(result.get('total_orders'))} orders):", ""]
    for name, entry in marketplaces.items():
        line = (
            f"- **{marketplace_label(name)}:** {money(entry['total'])} | "
            f"{number(entry['count'])} orders ({percent(entry.get('order_share', 0))})"
        )
        by_status = entry.get("by_status")
        if by_status:
            parts = [f"{status_label(status)}: {number(item['count'])}" for status, item in by_status.items()]
            line += f" [{', '.join(parts)}]"
        lines.append(line)
    return "\n".join(lines) + _filtered_note(result) + chart(
        ChartType.BAR,
        "Sales by marketplace",
        [marketplace_label(name) for name in marketplaces],
        {"Sales": [entry["total"] for entry in marketplaces.values()]},
        currency=True,
    )


def _month_label(key: str) -> str:
    year, month = key.split("-")
    return f"{['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec'][int(month) - 1]}/{year[2:]}"


def _sales_by_month(result: Dict[str, Any]) -> str:
    months = result.get("months") or []
    lines = [
        "| Month | Orders | Sales | Avg ticket | Growth |",
        "|---|---|---|---|---|",
    ]
    for month in months:
        lines.append(
            f"| {_month_label(month['month'])} | {number(month['count'])} | {money(month['total'])} | "
            f"{money(month['avg_ticket'])} | {signed_pct(month.get('growth_pct'))} |"
        )
    lines.append(f"\n**Total:** {money(result.get('grand_total'))} in {number(result.get('grand_count'))} orders")
    best, worst = result.get("best_month"), result.get("worst_month")
    if best and worst:
        lines.append(
            f"**Best month:** {_month_label(best['month'])} ({money(best['total'])}) | "
            f"**Worst month:** {_month_label(worst['month'])} ({money(worst['total'])})"
        )
    return "\n".join(lines) + _filtered_note(result) + chart(
        ChartType.LINE,
        "Sales by month",
        [_month_label(month["month"]) for month in months],
        {"Sales": [month["total"] for month in months]},
        currency=True,
    )


def _sales_by_day_of_week(result: Dict[str, Any]) -> str:
    days = result.get("days") or []
    lines = [f"- **{day['name']}:** {money(day['total'])} | {number(day['count'])} orders" for day in days]
    best, worst = result.get("best_day"), result.get("worst_day")
    if best and worst:
        lines.append(f"\n**Best day:** {best['name']} | **Worst day:** {worst['name']}")
    return "\n".join(lines) + chart(
        ChartType.BAR,
        "Sales by weekday",
        [day["name"] for day in days],
        {"Sales": [day["total"] for day in days]},
        currency=True,
    )


def _sales_by_hour(result: Dict[str, Any]) -> str:
    hours = result.get("hours") or []
    peak, quiet = result.get("peak_hour"), result.get("quiet_hour")
    lines = [f"**Orders:** {number(result.get('total_orders'))}"]
    if peak:
        lines.append(f"**Peak hour:** {peak['label']} ({number(peak['count'])} orders)")
    if quiet:
        lines.append(f"**Quietest hour:** {quiet['label']} ({number(quiet['count'])} orders)")
    return "\n".join(lines) + chart(
        ChartType.LINE,
        "Orders by hour",
        [hour["label"] for hour in hours],
        {"Orders": [hour["count"] for hour in hours]},
    )


def _top_days(result: Dict[str, Any]) -> str:
    by_revenue = result.get("by_revenue") or []
    title = "Best" if result.get("type") == "best" else "Worst"
    lines = [f"**{title} {result.get('limit')} days by revenue:**", ""]
    lines += [
        f"{index}. {day['date']}: {money(day['total'])} ({number(day['count'])} orders)"
        for index, day in enumerate(by_revenue, start=1)
    ]
    return "\n".join(lines) + chart(
        ChartType.HORIZONTAL_BAR,
        f"{title} days",
        [day["date"] for day in by_revenue],
        {"Revenue": [day["total"] for day in by_revenue]},
        currency=True,
    )


def _cancellation_rate(result: Dict[str, Any]) -> str:
    lines = [
        f"**Cancellation rate:** {percent(result.get('cancellation_rate', 0))}",
        f"**Cancelled:** {number(result.get('cancelled_orders'))} orders, {money(result.get('cancelled_amount'))}",
        f"**Paid:** {number(result.get('paid_orders'))} orders, {money(result.get('paid_amount'))}",
        f"**Total orders:** {number(result.get('total_orders'))}",
    ]
    by_marketplace = result.get("by_marketplace")
    if by_marketplace:
        lines.append("\n**By marketplace:**")
        for name, entry in sorted(by_marketplace.items(), key=lambda item: item[1]["rate"], reverse=True):
            lines.append(
                f"- **{marketplace_label(name)}:** {percent(entry['rate'])} "
                f"({number(entry['cancelled'])} of {number(entry['total'])})"
            )
    return "\n".join(lines) + chart(
        ChartType.PIE,
        "Paid vs cancelled",
        ["Paid", "Cancelled"],
        {"Orders": [result.get("paid_orders", 0), result.get("cancelled_orders", 0)]},
    )


def _compare_marketplaces(result: Dict[str, Any]) -> str:
    comparison = result.get("comparison") or []
    lines = [
        "| Marketplace | Revenue | Share | Avg ticket | Cancel. rate |",
        "|---|---|---|---|---|",
    ]
    for row in comparison:
        lines.append(
            f"| {marketplace_label(row['marketplace'])} | {money(row['revenue'])} | {percent(row['revenue_share'])} | "
            f"{money(row['avg_ticket'])} | {percent(row['cancellation_rate'])} |"
        )
    lines.append(f"\n**Total:** {money(result.get('total_revenue'))} in {number(result.get('total_orders'))} orders")
    return "\n".join(lines) + chart(
        ChartType.PIE,
        "Revenue share by marketplace",
        [marketplace_label(row["marketplace"]) for row in comparison],
        {"Revenue": [row["revenue"] for row in comparison]},
        currency=True,
    )


def _compare_periods(result: Dict[str, Any]) -> str:
    current = result.get("current_period") or {}
    previous = result.get("previous_period") or {}
    changes = result.get("changes") or {}
    return "\n".join([
        "| Metric | Current | Previous | Change |",
        "|---|---|---|---|",
        f"| Orders | {number(current.get('orders'))} | {number(previous.get('orders'))} | {signed_pct(changes.get('orders'))} |",
        f"| Revenue | {money(current.get('revenue'))} | {money(previous.get('revenue'))} | {signed_pct(changes.get('revenue'))} |",
        f"| Avg ticket | {money(current.get('avg_ticket'))} | {money(previous.get('avg_ticket'))} | {signed_pct(changes.get('avg_ticket'))} |",
        f"| Paid orders | {number(current.get('paid_orders'))} | {number(previous.get('paid_orders'))} | {signed_pct(changes.get('paid_orders'))} |",
    ]) + _filtered_note(result)


def _sales_forecast(result: Dict[str, Any]) -> str:
    lines = [
        f"**Forecast for next month:** {money(result.get('forecast_next_month'))}",
        f"**3-month moving average:** {money(result.get('moving_avg_3m'))}",
        f"**Linear trend:** {money(result.get('linear_trend_forecast'))} ({result.get('trend')})",
        f"**Average month:** {money(result.get('avg_monthly_revenue'))} over {result.get('months_analyzed')} months",
    ]
    current = result.get("current_month")
    if current:
        lines.append(
            f"**{current['month']} so far:** {money(current['actual_so_far'])} in {current['days_passed']} days, "
            f"projected {money(current['projected_total'])}"
        )
    return "\n".join(lines) + _filtered_note(result)


def _executive_summary(result: Dict[str, Any]) -> str:
    overview = result.get("overview") or {}
    health = result.get("health") or {}
    channels = result.get("channels") or []
    lines = [
        f"**Orders:** {number(overview.get('total_orders'))} | **Revenue:** {money(overview.get('total_revenue'))} | "
        f"**Avg ticket:** {money(overview.get('avg_ticket'))}",
        f"**Paid:** {number(health.get('paid_orders'))} ({percent(health.get('paid_pct', 0))}), {money(health.get('paid_revenue'))}",
        f"**Cancelled:** {number(health.get('cancelled_orders'))} ({percent(health.get('cancellation_rate', 0))}), "
        f"{money(health.get('cancelled_revenue'))}",
        "",
        "**Channels:**",
    ]
    lines += [
        f"- **{marketplace_label(channel['marketplace'])}:** {money(channel['revenue'])} ({percent(channel['share'])})"
        for channel in channels
    ]
    return "\n".join(lines) + chart(
        ChartType.PIE,
        "Channel mix",
        [marketplace_label(channel["marketplace"]) for channel in channels],
        {"Revenue": [channel["revenue"] for channel in channels]},
        currency=True,
    )


def _marketplace_growth(result: Dict[str, Any]) -> str:
    marketplaces = result.get("marketplaces") or []
    lines = [
        f"- **{marketplace_label(entry['marketplace'])}:** {signed_pct(entry.get('overall_growth'))} overall, "
        f"avg {money(entry['avg_monthly'])}/month over {entry['months_active']} months"
        for entry in marketplaces
    ]
    if result.get("fastest_growing"):
        lines.append(f"\n**Fastest growing:** {marketplace_label(result['fastest_growing'])}")
    return "\n".join(lines) + _filtered_note(result)


def _cancellation_by_month(result: Dict[str, Any]) -> str:
    months = result.get("months") or []
    summary = result.get("summary") or {}
    lines = ["| Month | Orders | Cancelled | Rate | Lost |", "|---|---|---|---|---|"]
    for month in months:
        lines.append(
            f"| {_month_label(month['month'])} | {number(month['total_orders'])} | {number(month['cancelled_orders'])} | "
            f"{percent(month['cancellation_rate'])} | {money(month['lost_revenue'])} |"
        )
    lines.append(
        f"\n**Total lost:** {money(summary.get('total_lost_revenue'))} | "
        f"**Average rate:** {percent(summary.get('avg_cancellation_rate', 0))}"
    )
    return "\n".join(lines) + chart(
        ChartType.LINE,
        "Cancellation rate by month",
        [_month_label(month["month"]) for month in months],
        {"Cancellation rate": [month["cancellation_rate"] for month in months]},
        percentage=True,
    )


def _year_over_year(result: Dict[str, Any]) -> str:
    lines = [
        f"- **{entry['year']}:** {money(entry['revenue'])} in {number(entry['orders'])} orders"
        for entry in result.get("yearly_totals") or []
    ]
    for month in result.get("monthly_comparison") or []:
        if "revenue_change" in month:
            lines.append(f"- Month {month['month']}: revenue {signed_pct(month['revenue_change'])} vs previous year")
    return "\n".join(lines) + _filtered_note(result)


def _seasonality_analysis(result: Dict[str, Any]) -> str:
    pattern = result.get("monthly_pattern") or []
    lines = [
        f"**Strong months:** {', '.join(result.get('strong_months') or []) or 'none'}",
        f"**Weak months:** {', '.join(result.get('weak_months') or []) or 'none'}",
        f"**Average month:** {money(result.get('avg_monthly_revenue'))}",
    ]
    return "\n".join(lines) + chart(
        ChartType.BAR,
        "Seasonal index (100 = average)",
        [month["name"][:3] for month in pattern],
        {"Seasonal index": [month["seasonal_index"] for month in pattern]},
    )


def _health_check(result: Dict[str, Any]) -> str:
    lines = [
        f"{ALERT_ICONS.get(alert['type'], '-')} {alert['message']}"
        for alert in result.get("alerts") or []
    ]
    summary = result.get("summary")
    if summary:
        lines.append(
            f"\n**{summary['current_month']}:** {money(summary['revenue_so_far'])} in "
            f"{summary['days_passed']} days ({summary['days_remaining']} left)"
        )
    return "\n".join(lines)


def _adhoc(result: Dict[str, Any]) -> str:
    rows = result.get("data") or []
    if not rows:
        return "The query returned no rows."
    columns = list(rows[0].keys())
    lines = ["| " + " | ".join(columns) + " |", "|" + "---|" * len(columns)]
    for row in rows[:20]:
        lines.append("| " + " | ".join(str(row.get(column, "")) for column in columns) + " |")
    if result.get("row_count", len(rows)) > 20:
        lines.append(f"\n_Showing 20 of {number(result['row_count'])} rows._")
    return "\n".join(lines)


FORMATTERS: Dict[str, Callable[[Dict[str, Any]], str]] = {
    QueryFunction.COUNT_ORDERS.value: _count_orders,
    QueryFunction.TOTAL_SALES.value: _total_sales,
    QueryFunction.AVG_TICKET.value: _avg_ticket,
    QueryFunction.ORDERS_BY_STATUS.value: _orders_by_status,
    QueryFunction.ORDERS_BY_MARKETPLACE.value: _orders_by_marketplace,
    QueryFunction.SALES_BY_MONTH.value: _sales_by_month,
    QueryFunction.SALES_BY_DAY_OF_WEEK.value: _sales_by_day_of_week,
    QueryFunction.TOP_DAYS.value: _top_days,
    QueryFunction.CANCELLATION_RATE.value: _cancellation_rate,
    QueryFunction.COMPARE_MARKETPLACES.value: _compare_marketplaces,
    QueryFunction.COMPARE_PERIODS.value: _compare_periods,
    QueryFunction.SALES_BY_HOUR.value: _sales_by_hour,
    QueryFunction.SALES_FORECAST.value: _sales_forecast,
    QueryFunction.EXECUTIVE_SUMMARY.value: _executive_summary,
    QueryFunction.MARKETPLACE_GROWTH.value: _marketplace_growth,
    QueryFunction.CANCELLATION_BY_MONTH.value: _cancellation_by_month,
    QueryFunction.YEAR_OVER_YEAR.value: _year_over_year,
    QueryFunction.SEASONALITY_ANALYSIS.value: _seasonality_analysis,
    QueryFunction.HEALTH_CHECK.value: _health_check,
    ADHOC_FUNCTION_NAME: _adhoc,
}


def format_fallback(function_name: str, result: Dict[str, Any]) -> str:
    """
    Render a result without the model.

    Example:
        format_fallback("countOrders", {"total": 3, "by_status": {"paid": 2, "cancelled": 1}})
        -> "Total: **3 orders**\\n\\n- **Paid:** 2\\n- **Cancelled:** 1"
    """
    if "error" in result:
        return f"I could not get that data: {result['error']}"

    formatter = FORMATTERS.get(function_name)
    if formatter is None:
        return "Here is the raw result:\n\n```json\n" + json.dumps(result, indent=2, default=str) + "\n```"

    try:
        return formatter(result)
    except (KeyError, TypeError, ValueError, IndexError):
        return "Here is the raw result:\n\n```json\n" + json.dumps(result, indent=2, default=str) + "\n```"
