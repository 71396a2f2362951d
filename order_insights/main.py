import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from order_insights.ai_feature.provider import GeminiProvider
from order_insights.ai_feature.service import AgentService
from order_insights.api.router import api_router
from order_insights.core.analytics.cache import MetadataCache, ResultCache
from order_insights.core.analytics.registry import QueryEngine
from order_insights.core.analytics.store import OrderStore
from order_insights.core.config import settings
from order_insights.core.database import AsyncSessionLocal, engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# Build the services once and close the engine once everything is done
@asynccontextmanager
async def lifespan(app: FastAPI):
    store = OrderStore(AsyncSessionLocal)
    query_engine = QueryEngine(store, ResultCache(settings.RESULT_CACHE_TTL_SECONDS))
    app.state.query_engine = query_engine
    app.state.agent_service = AgentService(
        query_engine,
        GeminiProvider(),
        MetadataCache(store.distinct_values, settings.METADATA_CACHE_TTL_SECONDS),
    )
    if not settings.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set; /agent/chat will answer with a retry message")

    yield
    await engine.dispose()


app = FastAPI(title="Order Insights API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the Order Insights API"}
