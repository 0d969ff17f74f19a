"""
Anthropic provider.

Messages API through an injected ``anthropic.AsyncAnthropic`` client.
"""

import logging
import time
from typing import Any, AsyncIterator, Dict, Optional

from anthropic import APIError, APIStatusError, AsyncAnthropic

from ai_service.core.errors import ProviderErrorCode
from ai_service.core.tokens import TokenUsage, usage_or_zero
from ai_service.core.types import (
    AIModel,
    AIProvider,
    CompletionOptions,
    CompletionRequest,
    CompletionResponse,
    FunctionCallRequest,
    FunctionCallResult,
    StreamChunk,
)

from .base import JSON_INSTRUCTION, ProviderAdapter, max_tokens_of, temperature_of

logger = logging.getLogger(__name__)


def _text_of(content_blocks: Any) -> str:
    return "".join(
        block.text for block in content_blocks or []
        if getattr(block, "type", None) == "text"
    )


class AnthropicProvider(ProviderAdapter):
    """Anthropic Claude models."""

    provider = AIProvider.ANTHROPIC

    def __init__(self, client: AsyncAnthropic):
        self.client = client

    def _params(self, prompt: str, options: CompletionOptions) -> Dict[str, Any]:
        # Anthropic requires an explicit max_tokens
        params: Dict[str, Any] = {
            "model": self._model(options).value,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens_of(options),
            "temperature": temperature_of(options),
        }
        if options.top_p is not None:
            params["top_p"] = options.top_p
        if options.response_format == "json":
            params["system"] = JSON_INSTRUCTION
        return params

    def _usage(self, usage: Any) -> TokenUsage:
        if usage is None:
            return TokenUsage()
        return usage_or_zero(
            getattr(usage, "input_tokens", 0),
            getattr(usage, "output_tokens", 0),
        )

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        model = self._model(request.options)
        started = time.perf_counter()

        try:
            response = await self.client.messages.create(**self._params(request.prompt, request.options))
        except APIError as e:
            raise self._translate(e, model) from e

        content = self._require_content(
            _text_of(response.content), response.stop_reason == "max_tokens", model
        )
        return self._response(content, self._usage(response.usage), model, started)

    async def stream_complete(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        model = self._model(request.options)
        params = self._params(request.prompt, request.options)

        try:
            async with self.client.messages.stream(**params) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield StreamChunk(content=text)
                final = await stream.get_final_message()
        except APIStatusError as e:
            raise self._translate(e, model) from e
        except APIError as e:
            logger.error("Anthropic stream failed: %s", e, extra={"provider": "anthropic", "model": model.value})
            raise self._error(f"Anthropic stream failed: {e}", ProviderErrorCode.STREAM_ERROR, model) from e

        yield StreamChunk(content="", done=True, tokens_used=self._usage(final.usage))

    async def function_call(self, request: FunctionCallRequest) -> FunctionCallResult:
        model = self._model(request.options)
        params = self._params(request.prompt, request.options)
        params.pop("system", None)
        params["tools"] = [
            {
                "name": fn.name,
                "description": fn.description,
                "input_schema": fn.parameters,
            }
            for fn in request.functions
        ]

        try:
            response = await self.client.messages.create(**params)
        except APIError as e:
            raise self._translate(e, model) from e

        tool_use = next(
            (block for block in response.content or [] if getattr(block, "type", None) == "tool_use"),
            None,
        )
        if tool_use is None:
            raise self._error("No function call in Anthropic response", ProviderErrorCode.NO_FUNCTION_CALL, model)

        return self._function_result(
            tool_use.name,
            dict(tool_use.input or {}),
            self._usage(response.usage),
            model,
            content=_text_of(response.content),
        )

    async def aclose(self) -> None:
        await self.client.close()

    def _translate(self, e: APIError, model: AIModel):
        status: Optional[int] = e.status_code if isinstance(e, APIStatusError) else None
        logger.error(
            "Anthropic API error %s: %s", status, e.message,
            extra={"provider": "anthropic", "model": model.value},
        )
        return self._error(
            f"Anthropic API error: {e.message}",
            ProviderErrorCode.API_ERROR,
            model,
            http_status=status,
        )
