"""
AGENT SERVICE - one conversational turn over the analytics registry

Flow:
    1. Dispatch: the model picks one function (or answers in plain text)
    2. Execute:  registry function or sanitized ad-hoc SQL, tenant bound
    3. Compose:  the model writes the answer from the real result
    4. Fallback: deterministic formatter when compose fails or is empty

Numbers in the answer always come from step 2. The model only chooses
what to run and how to phrase it.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from order_insights.ai_feature.fallback import SUGGESTIONS, format_fallback
from order_insights.ai_feature.prompts import TOOL_DECLARATIONS, build_system_instruction
from order_insights.ai_feature.provider import FunctionCall, LLMProvider, LLMReply
from order_insights.core.analytics.cache import MetadataCache
from order_insights.core.analytics.filters import business_now
from order_insights.core.analytics.registry import ADHOC_FUNCTION_NAME, QueryEngine
from order_insights.core.config import settings
from order_insights.core.errors import OrderInsightsError, ProviderUnavailable
from order_insights.core.schemas import ChatMessage, ChatResponse, TokenUsage

logger = logging.getLogger(__name__)

INPUT_PRICE_PER_TOKEN = 0.15 / 1_000_000
OUTPUT_PRICE_PER_TOKEN = 0.60 / 1_000_000

MAX_RESULT_CHARS = 15_000
MAX_RESULT_ROWS = 50

RETRY_LATER_TEXT = "Sorry, I could not process your question right now. Please try again in a moment."
BUSY_TEXT = "The assistant is busy right now. Please wait a few seconds and try again."


def estimate_cost(input_tokens: int, output_tokens: int) -> float:
    return input_tokens * INPUT_PRICE_PER_TOKEN + output_tokens * OUTPUT_PRICE_PER_TOKEN


def build_usage(replies: Sequence[LLMReply]) -> TokenUsage:
    input_tokens = sum(reply.prompt_tokens for reply in replies)
    output_tokens = sum(reply.completion_tokens for reply in replies)
    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        estimated_cost_usd=estimate_cost(input_tokens, output_tokens),
    )


def truncate_for_model(
    result: Dict[str, Any],
    max_chars: int = MAX_RESULT_CHARS,
    max_rows: int = MAX_RESULT_ROWS,
) -> Dict[str, Any]:
    """
    Keep the compose prompt bounded.

    Row lists (ad-hoc results) are cut to max_rows first; anything still
    over max_chars is replaced by a serialized preview.

    Example:
        truncate_for_model({"data": [...120 rows...], "row_count": 120})
        -> {"data": [...50 rows...], "row_count": 120, "_truncated": True, "_total_rows": 120}
    """
    bounded = dict(result)
    rows = bounded.get("data")
    if isinstance(rows, list) and len(rows) > max_rows:
        bounded["data"] = rows[:max_rows]
        bounded["_truncated"] = True
        bounded["_total_rows"] = len(rows)

    serialized = json.dumps(bounded, default=str)
    if len(serialized) <= max_chars:
        return bounded
    return {"_truncated": True, "preview": serialized[:max_chars]}


def history_to_contents(history: Sequence[ChatMessage], limit: int) -> List[Dict[str, Any]]:
    # Anything that is not the user is the model
    recent = list(history)[-limit:] if limit > 0 else []
    return [
        {"role": "user" if message.role == "user" else "model", "text": message.content}
        for message in recent
    ]


class AgentService:
    def __init__(
        self,
        engine: QueryEngine,
        provider: LLMProvider,
        metadata_cache: Optional[MetadataCache] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        history_limit: int = settings.AGENT_HISTORY_LIMIT,
    ):
        self.engine = engine
        self.provider = provider
        self.metadata_cache = metadata_cache or MetadataCache(engine.metadata)
        self.clock = clock
        self.history_limit = history_limit

    async def _execute(self, call: FunctionCall, tenant_id: str) -> Dict[str, Any]:
        """Run the chosen function. Never raises: failures become error dicts."""
        try:
            if call.name == ADHOC_FUNCTION_NAME:
                return await self.engine.run_adhoc(str(call.args.get("sql", "")), tenant_id)
            return await self.engine.run(call.name, call.args, tenant_id)
        except OrderInsightsError as error:
            logger.warning(f"{call.name} failed for tenant {tenant_id}: {error.message}")
            return error.to_dict()
        except Exception as error:
            logger.exception(f"Unexpected failure running {call.name} for tenant {tenant_id}: {error}")
            return {"error": "Unexpected error while querying the data", "error_type": "internal"}

    async def process_message(
        self, message: str, history: Sequence[ChatMessage], tenant_id: str
    ) -> ChatResponse:
        metadata = await self.metadata_cache.get(tenant_id)
        system_instruction = build_system_instruction(metadata, business_now(self.clock()).date())

        contents = history_to_contents(history, self.history_limit)
        contents.append({"role": "user", "text": message})

        # 1. Dispatch
        try:
            dispatch = await self.provider.generate(system_instruction, contents, TOOL_DECLARATIONS)
        except ProviderUnavailable as error:
            logger.error(f"Dispatch call failed for tenant {tenant_id}: {error.message}")
            return ChatResponse(
                text=BUSY_TEXT if error.rate_limited else RETRY_LATER_TEXT,
                token_usage=TokenUsage(),
            )
        except Exception as error:
            logger.exception(f"Dispatch call crashed for tenant {tenant_id}: {error}")
            return ChatResponse(text=RETRY_LATER_TEXT, token_usage=TokenUsage())

        call = dispatch.function_call
        if call is None:
            return ChatResponse(text=dispatch.text, token_usage=build_usage([dispatch]))

        # 2. Execute
        logger.info(f"Tenant {tenant_id} -> {call.name}({json.dumps(call.args, default=str)})")
        result = await self._execute(call, tenant_id)
        bounded = truncate_for_model(result)
        logger.info(f"{call.name} result: {json.dumps(bounded, default=str)[:500]}")

        # 3. Compose
        replies = [dispatch]
        compose_contents = contents + [
            {"role": "model", "function_call": {"name": call.name, "args": call.args}},
            {"role": "user", "function_response": {"name": call.name, "response": bounded}},
        ]
        text = ""
        try:
            compose = await self.provider.generate(system_instruction, compose_contents, TOOL_DECLARATIONS)
            replies.append(compose)
            text = compose.text.strip()
        except ProviderUnavailable as error:
            logger.warning(f"Compose call failed, using fallback for {call.name}: {error.message}")
        except Exception as error:
            logger.exception(f"Compose call crashed, using fallback for {call.name}: {error}")

        # 4. Fallback
        if not text:
            text = format_fallback(call.name, result)

        return ChatResponse(
            text=text,
            token_usage=build_usage(replies),
            suggested_follow_ups=SUGGESTIONS.get(call.name),
        )
