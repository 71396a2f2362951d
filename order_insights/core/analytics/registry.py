import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from order_insights.core.analytics import forecast, health, queries
from order_insights.core.analytics.cache import ResultCache, make_cache_key
from order_insights.core.analytics.sanitizer import require_safe_sql
from order_insights.core.analytics.store import OrderStore
from order_insights.core.errors import QueryValidationError, UnknownFunctionError
from order_insights.core.schemas import QueryParams


logger = logging.getLogger(__name__)

QueryHandler = Callable[[str, QueryParams, OrderStore, Optional[datetime]], Awaitable[Dict[str, Any]]]


# =========================
# Closed set of functions
# =========================
class QueryFunction(str, Enum):
    COUNT_ORDERS = "countOrders"
    TOTAL_SALES = "totalSales"
    AVG_TICKET = "avgTicket"
    ORDERS_BY_STATUS = "ordersByStatus"
    ORDERS_BY_MARKETPLACE = "ordersByMarketplace"
    SALES_BY_MONTH = "salesByMonth"
    SALES_BY_DAY_OF_WEEK = "salesByDayOfWeek"
    TOP_DAYS = "topDays"
    CANCELLATION_RATE = "cancellationRate"
    COMPARE_MARKETPLACES = "compareMarketplaces"
    COMPARE_PERIODS = "comparePeriods"
    SALES_BY_HOUR = "salesByHour"
    SALES_FORECAST = "salesForecast"
    EXECUTIVE_SUMMARY = "executiveSummary"
    MARKETPLACE_GROWTH = "marketplaceGrowth"
    CANCELLATION_BY_MONTH = "cancellationByMonth"
    YEAR_OVER_YEAR = "yearOverYear"
    SEASONALITY_ANALYSIS = "seasonalityAnalysis"
    HEALTH_CHECK = "healthCheck"


QUERY_FUNCTIONS: Dict[QueryFunction, QueryHandler] = {
    QueryFunction.COUNT_ORDERS: queries.count_orders,
    QueryFunction.TOTAL_SALES: queries.total_sales,
    QueryFunction.AVG_TICKET: queries.avg_ticket,
    QueryFunction.ORDERS_BY_STATUS: queries.orders_by_status,
    QueryFunction.ORDERS_BY_MARKETPLACE: queries.orders_by_marketplace,
    QueryFunction.SALES_BY_MONTH: queries.sales_by_month,
    QueryFunction.SALES_BY_DAY_OF_WEEK: queries.sales_by_day_of_week,
    QueryFunction.TOP_DAYS: queries.top_days,
    QueryFunction.CANCELLATION_RATE: queries.cancellation_rate,
    QueryFunction.COMPARE_MARKETPLACES: queries.compare_marketplaces,
    QueryFunction.COMPARE_PERIODS: queries.compare_periods,
    QueryFunction.SALES_BY_HOUR: queries.sales_by_hour,
    QueryFunction.SALES_FORECAST: forecast.sales_forecast,
    QueryFunction.EXECUTIVE_SUMMARY: queries.executive_summary,
    QueryFunction.MARKETPLACE_GROWTH: queries.marketplace_growth,
    QueryFunction.CANCELLATION_BY_MONTH: queries.cancellation_by_month,
    QueryFunction.YEAR_OVER_YEAR: queries.year_over_year,
    QueryFunction.SEASONALITY_ANALYSIS: forecast.seasonality_analysis,
    QueryFunction.HEALTH_CHECK: health.health_check,
}

ADHOC_FUNCTION_NAME = "executeSQLQuery"


def resolve_function(name: str) -> QueryFunction:
    try:
        return QueryFunction(name)
    except ValueError:
        raise UnknownFunctionError(name) from None


def parse_params(raw_params: Optional[Dict[str, Any]]) -> QueryParams:
    """Validate raw arguments, turning pydantic errors into field-level details."""
    try:
        return QueryParams.model_validate(raw_params or {})
    except ValidationError as error:
        details = [
            {
                "field": ".".join(str(part) for part in item["loc"]) or "params",
                "message": item["msg"],
            }
            for item in error.errors()
        ]
        raise QueryValidationError("Invalid query parameters", details=details) from error


def available_functions() -> List[str]:
    return [function.value for function in QueryFunction]


class QueryEngine:
    """
    Entry point for every aggregate and ad-hoc query.

    Holds the store and the result cache; the clock is injectable so tests
    can pin "today".
    """

    def __init__(
        self,
        store: OrderStore,
        cache: Optional[ResultCache] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.cache = cache if cache is not None else ResultCache()
        self.clock = clock

    async def run(
        self, function_name: str, raw_params: Optional[Dict[str, Any]], tenant_id: str
    ) -> Dict[str, Any]:
        function = resolve_function(function_name)
        params = parse_params(raw_params)
        if not tenant_id:
            raise QueryValidationError(
                "tenant_id is required",
                details=[{"field": "tenant_id", "message": "missing tenant context"}],
            )

        handler = QUERY_FUNCTIONS[function]
        key = make_cache_key(function.value, params, tenant_id)

        async def compute() -> Dict[str, Any]:
            started = time.perf_counter()
            result = await handler(tenant_id, params, self.store, self.clock())
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.info(f"{function.value} for tenant {tenant_id} computed in {elapsed_ms:.0f}ms")
            return result

        return await self.cache.get_or_compute(key, compute)

    async def run_adhoc(self, sql: str, tenant_id: str) -> Dict[str, Any]:
        """Sanitize, then execute inside the tenant scope. Never cached."""
        query = require_safe_sql(sql)
        logger.info(f"Ad-hoc query for tenant {tenant_id}: {query}")
        rows = await self.store.execute_readonly(tenant_id, query)
        return {"data": rows, "row_count": len(rows)}

    async def metadata(self, tenant_id: str) -> Dict[str, List[str]]:
        return await self.store.distinct_values(tenant_id)
