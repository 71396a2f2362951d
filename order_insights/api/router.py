from fastapi import APIRouter
from order_insights.api.endpoints import agent, analytics

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(analytics.router)
api_router.include_router(agent.router)
