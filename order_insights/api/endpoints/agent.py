from fastapi import APIRouter

from order_insights.api.dependencies import agent_dep, tenant_dep
from order_insights.core import schemas

router = APIRouter(prefix="/agent", tags=["Agent"])


@router.post("/chat", response_model=schemas.ChatResponse, response_model_by_alias=True)
async def chat(request: schemas.ChatRequest, agent: agent_dep, tenant_id: tenant_dep):
    """One conversational turn. Failures are answered in text, never as HTTP errors."""
    return await agent.process_message(request.message, request.history, tenant_id)
