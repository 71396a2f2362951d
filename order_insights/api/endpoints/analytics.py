from typing import Any, Dict, Optional

from fastapi import APIRouter, Body

from order_insights.api.dependencies import engine_dep, tenant_dep, to_http_exception
from order_insights.core import schemas
from order_insights.core.analytics.registry import ADHOC_FUNCTION_NAME, available_functions
from order_insights.core.errors import OrderInsightsError

router = APIRouter(prefix="/analytics", tags=["Analytics"])


@router.get("/functions", response_model=schemas.FunctionListResponse)
async def list_functions():
    """Every registry function name plus the ad-hoc escape valve."""
    return schemas.FunctionListResponse(functions=available_functions(), escape_valve=ADHOC_FUNCTION_NAME)


@router.post("/query/{function_name}")
async def run_query(
    function_name: str,
    engine: engine_dep,
    tenant_id: tenant_dep,
    params: Optional[Dict[str, Any]] = Body(default=None),
):
    """
    Run one registry function. The body is validated as QueryParams by the
    engine so unknown names and bad params come back with the same error shape.
    """
    try:
        return await engine.run(function_name, params, tenant_id)
    except OrderInsightsError as error:
        raise to_http_exception(error) from error


@router.post("/adhoc")
async def run_adhoc(request: schemas.AdhocQueryRequest, engine: engine_dep, tenant_id: tenant_dep):
    try:
        return await engine.run_adhoc(request.sql, tenant_id)
    except OrderInsightsError as error:
        raise to_http_exception(error) from error
