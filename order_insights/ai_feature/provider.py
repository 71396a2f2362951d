import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from order_insights.core.config import settings
from order_insights.core.errors import ProviderUnavailable


# -----------------------------------------------------------------------------
# PROVIDER MODULE
# Purpose: the only place that knows the Gemini SDK.
# Why: the orchestrator speaks plain dicts, so tests can swap in a fake
# provider and another vendor only needs a new adapter.
#
# Neutral content items:
#     {"role": "user", "text": "..."}
#     {"role": "model", "function_call": {"name": "...", "args": {...}}}
#     {"role": "user", "function_response": {"name": "...", "response": {...}}}
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


@dataclass
class FunctionCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMReply:
    text: str = ""
    function_call: Optional[FunctionCall] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0


class LLMProvider(Protocol):
    async def generate(
        self,
        system_instruction: str,
        contents: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> LLMReply: ...


class GeminiProvider:
    """google-genai adapter using the async client."""

    def __init__(
        self,
        api_key: Optional[str] = settings.GEMINI_API_KEY,
        model: str = settings.GEMINI_MODEL,
        temperature: float = settings.GEMINI_TEMPERATURE,
        max_output_tokens: int = settings.GEMINI_MAX_OUTPUT_TOKENS,
        client: Optional[genai.Client] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.client = client
        if self.client is None and api_key:
            self.client = genai.Client(api_key=api_key)

    @staticmethod
    def _to_content(item: Dict[str, Any]) -> genai_types.Content:
        if "function_call" in item:
            call = item["function_call"]
            part = genai_types.Part(
                function_call=genai_types.FunctionCall(name=call["name"], args=call.get("args") or {})
            )
        elif "function_response" in item:
            response = item["function_response"]
            part = genai_types.Part(
                function_response=genai_types.FunctionResponse(
                    name=response["name"], response=response["response"]
                )
            )
        else:
            part = genai_types.Part(text=item.get("text", ""))
        return genai_types.Content(role=item["role"], parts=[part])

    @staticmethod
    def _to_tools(declarations: Optional[List[Dict[str, Any]]]) -> Optional[List[genai_types.Tool]]:
        if not declarations:
            return None
        return [
            genai_types.Tool(
                function_declarations=[
                    genai_types.FunctionDeclaration(**declaration) for declaration in declarations
                ]
            )
        ]

    @staticmethod
    def _to_reply(response: genai_types.GenerateContentResponse) -> LLMReply:
        reply = LLMReply()

        usage = response.usage_metadata
        if usage is not None:
            reply.prompt_tokens = usage.prompt_token_count or 0
            reply.completion_tokens = usage.candidates_token_count or 0

        candidates = response.candidates or []
        if not candidates or candidates[0].content is None:
            return reply

        texts = []
        for part in candidates[0].content.parts or []:
            if part.function_call is not None and reply.function_call is None:
                reply.function_call = FunctionCall(
                    name=part.function_call.name or "",
                    args=dict(part.function_call.args or {}),
                )
            elif part.text and not part.thought:
                texts.append(part.text)
        reply.text = "".join(texts)
        return reply

    async def generate(
        self,
        system_instruction: str,
        contents: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> LLMReply:
        if self.client is None:
            raise ProviderUnavailable("GEMINI_API_KEY is not configured")

        config = genai_types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            tools=self._to_tools(tools),
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=[self._to_content(item) for item in contents],
                config=config,
            )
        except genai_errors.APIError as error:
            logger.error(f"Gemini API error {error.code}: {error}")
            raise ProviderUnavailable(
                f"Gemini call failed: {error}", rate_limited=error.code == 429
            ) from error
        except httpx.HTTPError as error:
            logger.error(f"Gemini transport error: {error}")
            raise ProviderUnavailable(f"Gemini call failed: {error}") from error

        return self._to_reply(response)
