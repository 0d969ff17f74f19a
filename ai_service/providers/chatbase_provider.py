"""
Chatbase provider.

Chatbase serves a trained chatbot over ``/api/v1/chat``. It is billed by
subscription and reports no token usage, so responses carry zero usage and
zero cost. It has no tool-calling surface.
"""

import json
import logging
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ai_service.core.errors import ProviderErrorCode
from ai_service.core.tokens import TokenUsage
from ai_service.core.types import (
    AIModel,
    AIProvider,
    CompletionRequest,
    CompletionResponse,
    FunctionCallRequest,
    FunctionCallResult,
    StreamChunk,
)

from .base import DEFAULT_TEMPERATURE, ProviderAdapter, temperature_of
from .sse import iter_sse_data

logger = logging.getLogger(__name__)

CHATBASE_API_URL = "https://www.chatbase.co/api/v1/chat"

CHAT_ROLES = ("user", "assistant")


class ChatbaseProvider(ProviderAdapter):
    """Chatbase hosted chatbot."""

    provider = AIProvider.CHATBASE

    def __init__(
        self,
        api_key: str,
        chatbot_id: str,
        client: Optional[httpx.AsyncClient] = None,
        api_url: str = CHATBASE_API_URL,
        timeout: float = 60.0
    ):
        if not api_key:
            raise self._error("CHATBASE_API_KEY is not configured", ProviderErrorCode.MISSING_API_KEY)
        if not chatbot_id:
            raise self._error("CHATBASE_CHATBOT_ID is not configured", ProviderErrorCode.MISSING_API_KEY)
        self.api_key = api_key
        self.chatbot_id = chatbot_id
        self.api_url = api_url
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _body(self, messages: List[Dict[str, str]], temperature: float, stream: bool) -> Dict[str, Any]:
        return {
            "messages": messages,
            "chatbotId": self.chatbot_id,
            "temperature": temperature,
            "stream": stream,
        }

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        return await self._chat(
            [{"role": "user", "content": request.prompt}],
            temperature_of(request.options),
        )

    async def chat_with_context(
        self,
        messages: List[Dict[str, str]],
        temperature: float = DEFAULT_TEMPERATURE
    ) -> CompletionResponse:
        """Send a whole conversation so the chatbot answers in context.

        Args:
            messages: ``{"role": "user"|"assistant", "content": str}`` turns,
                oldest first
            temperature: Sampling temperature

        Returns:
            CompletionResponse for the next assistant turn
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")
        for message in messages:
            if message.get("role") not in CHAT_ROLES:
                raise ValueError(f"message role must be one of: {list(CHAT_ROLES)}")
        return await self._chat(list(messages), temperature)

    async def _chat(self, messages: List[Dict[str, str]], temperature: float) -> CompletionResponse:
        model = AIModel.CHATBASE
        started = time.perf_counter()

        try:
            r = await self.client.post(
                self.api_url,
                headers=self._headers(),
                json=self._body(messages, temperature, stream=False),
            )
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Chatbase API error %s", status, extra={"provider": "chatbase"})
            raise self._error(
                f"Chatbase API error: {status} - {e.response.text[:200]}",
                ProviderErrorCode.API_ERROR,
                model,
                http_status=status,
            ) from e
        except httpx.RequestError as e:
            logger.error("Chatbase request failed: %s", e, extra={"provider": "chatbase"})
            raise self._error(f"Chatbase request failed: {e}", ProviderErrorCode.API_ERROR, model) from e

        try:
            data = r.json()
        except ValueError as e:
            raise self._error(
                f"Unexpected Chatbase response: {r.text[:200]}",
                ProviderErrorCode.INVALID_RESPONSE,
                model,
            ) from e

        text = data.get("text") if isinstance(data, dict) else None
        content = self._require_content(text, False, model)
        return self._response(content, TokenUsage(), model, started)

    async def stream_complete(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        model = AIModel.CHATBASE
        body = self._body(
            [{"role": "user", "content": request.prompt}],
            temperature_of(request.options),
            stream=True,
        )

        try:
            async with self.client.stream("POST", self.api_url, headers=self._headers(), json=body) as response:
                if response.status_code >= 400:
                    text = await response.aread()
                    raise self._error(
                        f"Chatbase API error: {response.status_code} - {text[:200]!r}",
                        ProviderErrorCode.API_ERROR,
                        model,
                        http_status=response.status_code,
                    )
                async with aclosing(iter_sse_data(response)) as events:
                    async for data in events:
                        try:
                            event = json.loads(data)
                        except json.JSONDecodeError:
                            logger.warning("Skipping malformed Chatbase stream frame", extra={"provider": "chatbase"})
                            continue
                        text = event.get("text") if isinstance(event, dict) else None
                        if text:
                            yield StreamChunk(content=text)
        except httpx.RequestError as e:
            logger.error("Chatbase stream failed: %s", e, extra={"provider": "chatbase"})
            raise self._error(f"Chatbase stream failed: {e}", ProviderErrorCode.STREAM_ERROR, model) from e

        yield StreamChunk(content="", done=True, tokens_used=TokenUsage())

    async def function_call(self, request: FunctionCallRequest) -> FunctionCallResult:
        raise self._error(
            "Chatbase does not support function calling",
            ProviderErrorCode.UNSUPPORTED_FEATURE,
            AIModel.CHATBASE,
        )

    async def aclose(self) -> None:
        await self.client.aclose()
