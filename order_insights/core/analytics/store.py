import logging
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from sqlalchemy import func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_insights.core import models
from order_insights.core.analytics.filters import DateWindow
from order_insights.core.analytics.sanitizer import CLAUSE_WORDS, find_table_references
from order_insights.core.errors import DataStoreError, QueryValidationError


# -----------------------------------------------------------------------------
# STORE MODULE
# Purpose: the single place that talks to the orders table.
# Why: every query goes through _scoped(), so no registry function can forget
# the tenant filter.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

TENANT_SCOPE_NAME = "tenant_orders"

GROUPABLE_COLUMNS = {
    "status": models.Order.status,
    "marketplace": models.Order.marketplace,
}


class OrderRow(NamedTuple):
    status: Optional[str]
    marketplace: Optional[str]
    total_amount: float
    order_date: datetime


def _to_utc(moment: datetime) -> datetime:
    return moment.astimezone(timezone.utc)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def scope_query_to_tenant(sanitized_sql: str) -> str:
    """
    Point every allow-listed table reference at a tenant-filtered CTE.

    "SELECT status FROM orders WHERE orders.total_amount > 10" becomes
    "WITH tenant_orders AS (...) SELECT status FROM tenant_orders AS orders
    WHERE orders.total_amount > 10", so qualified columns keep working.
    """
    scoped = sanitized_sql
    for start, end, _name in reversed(find_table_references(sanitized_sql)):
        follower = re.match(r"\s+(\w+)", scoped[end:])
        has_alias = follower is not None and follower.group(1).lower() not in CLAUSE_WORDS
        replacement = TENANT_SCOPE_NAME if has_alias else f"{TENANT_SCOPE_NAME} AS orders"
        scoped = scoped[:start] + replacement + scoped[end:]

    return (
        f"WITH {TENANT_SCOPE_NAME} AS "
        f"(SELECT * FROM orders WHERE tenant_id = :tenant_id) {scoped}"
    )


class OrderStore:
    """
    Tenant-scoped, read-only access to the orders fact table.

    Sessions are opened per call, so concurrent registry functions never
    share one.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    def _scoped(
        self,
        stmt,
        tenant_id: str,
        window: Optional[DateWindow] = None,
        status: Optional[str] = None,
        marketplace: Optional[str] = None,
    ):
        if not tenant_id:
            raise QueryValidationError(
                "tenant_id is required",
                details=[{"field": "tenant_id", "message": "missing tenant context"}],
            )

        stmt = stmt.where(models.Order.tenant_id == tenant_id)
        if window is not None:
            stmt = stmt.where(
                models.Order.order_date >= _to_utc(window.start),
                models.Order.order_date <= _to_utc(window.end),
            )
        if status:
            stmt = stmt.where(func.lower(models.Order.status) == status.lower())
        if marketplace:
            stmt = stmt.where(
                models.Order.marketplace.ilike(f"%{_escape_like(marketplace)}%", escape="\\")
            )
        return stmt

    async def _fetch_all(self, stmt, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt, params or {})
                return list(result.mappings().all())
        except SQLAlchemyError as error:
            logger.error(f"Order query failed: {error}")
            raise DataStoreError() from error

    async def fetch_orders(
        self,
        tenant_id: str,
        *,
        window: Optional[DateWindow] = None,
        status: Optional[str] = None,
        marketplace: Optional[str] = None,
    ) -> List[OrderRow]:
        """
        Raw rows for the functions that bucket by business time.

        Example:
            rows = await store.fetch_orders("t1", status="paid")
        """
        stmt = self._scoped(
            select(
                models.Order.status,
                models.Order.marketplace,
                models.Order.total_amount,
                models.Order.order_date,
            ),
            tenant_id,
            window,
            status,
            marketplace,
        ).order_by(models.Order.order_date)

        rows = await self._fetch_all(stmt)
        return [
            OrderRow(
                status=row["status"],
                marketplace=row["marketplace"],
                total_amount=float(row["total_amount"] or 0),
                order_date=row["order_date"],
            )
            for row in rows
        ]

    async def grouped_totals(
        self,
        tenant_id: str,
        group_by: Sequence[str] = (),
        *,
        window: Optional[DateWindow] = None,
        status: Optional[str] = None,
        marketplace: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        COUNT/SUM per group, computed by the database.

        Example:
            [{"status": "paid", "count": 120, "total": 15320.5}, ...]
        """
        unknown = [column for column in group_by if column not in GROUPABLE_COLUMNS]
        if unknown:
            raise QueryValidationError(f"Cannot group by: {', '.join(unknown)}")

        columns = [GROUPABLE_COLUMNS[name].label(name) for name in group_by]
        stmt = self._scoped(
            select(
                *columns,
                func.count(models.Order.id).label("count"),
                func.coalesce(func.sum(models.Order.total_amount), 0).label("total"),
            ),
            tenant_id,
            window,
            status,
            marketplace,
        )
        if group_by:
            stmt = stmt.group_by(*[GROUPABLE_COLUMNS[name] for name in group_by])

        groups = []
        for row in await self._fetch_all(stmt):
            group = {name: row[name] or "unknown" for name in group_by}
            group["count"] = int(row["count"] or 0)
            group["total"] = float(row["total"] or 0)
            groups.append(group)
        return groups

    async def distinct_values(self, tenant_id: str) -> Dict[str, List[str]]:
        """Status and marketplace vocabulary for the system instruction."""
        values = {}
        for key, column in (("statuses", models.Order.status), ("marketplaces", models.Order.marketplace)):
            stmt = self._scoped(
                select(column.label("value")).distinct(), tenant_id
            ).where(column.isnot(None))
            rows = await self._fetch_all(stmt)
            values[key] = sorted(row["value"] for row in rows if row["value"])
        return values

    async def execute_readonly(self, tenant_id: str, sanitized_sql: str) -> List[Dict[str, Any]]:
        """Run an already sanitized SELECT against this tenant's rows only."""
        if not tenant_id:
            raise QueryValidationError("tenant_id is required")

        rows = await self._fetch_all(
            text(scope_query_to_tenant(sanitized_sql)), {"tenant_id": tenant_id}
        )
        return [{key: _jsonable(value) for key, value in row.items()} for row in rows]
