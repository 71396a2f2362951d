import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from order_insights.ai_feature.service import AgentService
from order_insights.core.analytics.registry import QueryEngine
from order_insights.core.errors import (
    DataStoreError,
    InsufficientDataError,
    OrderInsightsError,
    QueryValidationError,
    SanitizationRejected,
)

logger = logging.getLogger(__name__)


# Services are built once in the lifespan and live on app.state
def get_query_engine(request: Request) -> QueryEngine:
    return request.app.state.query_engine


def get_agent_service(request: Request) -> AgentService:
    return request.app.state.agent_service


def get_tenant_id(x_tenant_id: Annotated[str, Header(alias="X-Tenant-ID")] = "") -> str:
    """
    Tenant comes from a trusted header set by the gateway.

    Example:
        X-Tenant-ID: store-42  ->  "store-42"
    """
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return tenant_id


engine_dep = Annotated[QueryEngine, Depends(get_query_engine)]
agent_dep = Annotated[AgentService, Depends(get_agent_service)]
tenant_dep = Annotated[str, Depends(get_tenant_id)]


def to_http_exception(error: OrderInsightsError) -> HTTPException:
    if isinstance(error, (QueryValidationError, InsufficientDataError)):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=error.to_dict())
    if isinstance(error, SanitizationRejected):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.to_dict())
    if isinstance(error, DataStoreError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.to_dict())

    logger.error(f"Unmapped analytics error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "Internal error", "error_type": "internal"},
    )
