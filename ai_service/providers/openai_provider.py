"""
OpenAI provider.

Chat Completions API through an injected ``openai.AsyncOpenAI`` client.
"""

import json
import logging
import time
from typing import Any, AsyncIterator, Dict

from openai import APIError, APIStatusError, AsyncOpenAI

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

from .base import ProviderAdapter, max_tokens_of, temperature_of

logger = logging.getLogger(__name__)


class OpenAIProvider(ProviderAdapter):
    """OpenAI GPT models."""

    provider = AIProvider.OPENAI

    def __init__(self, client: AsyncOpenAI):
        self.client = client

    def _params(self, prompt: str, options: CompletionOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": self._model(options).value,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature_of(options),
            "max_tokens": max_tokens_of(options),
        }
        if options.top_p is not None:
            params["top_p"] = options.top_p
        if options.response_format == "json":
            params["response_format"] = {"type": "json_object"}
        return params

    def _usage(self, usage: Any) -> TokenUsage:
        if usage is None:
            return TokenUsage()
        return usage_or_zero(
            getattr(usage, "prompt_tokens", 0),
            getattr(usage, "completion_tokens", 0),
        )

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        model = self._model(request.options)
        started = time.perf_counter()

        response = await self._create(model, **self._params(request.prompt, request.options))
        if not response.choices:
            raise self._error("OpenAI response has no choices", ProviderErrorCode.INVALID_RESPONSE, model)

        choice = response.choices[0]
        content = choice.message.content if choice.message is not None else None
        content = self._require_content(content, choice.finish_reason == "length", model)
        return self._response(content, self._usage(response.usage), model, started)

    async def stream_complete(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        model = self._model(request.options)
        params = self._params(request.prompt, request.options)
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}

        stream = await self._create(model, **params)
        usage = TokenUsage()
        try:
            async for chunk in stream:
                # usage arrives on a final chunk with no choices
                if getattr(chunk, "usage", None) is not None:
                    usage = self._usage(chunk.usage)
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    yield StreamChunk(content=text)
        except APIError as e:
            logger.error("OpenAI stream failed: %s", e, extra={"provider": "openai", "model": model.value})
            raise self._error(f"OpenAI stream failed: {e}", ProviderErrorCode.STREAM_ERROR, model) from e
        finally:
            await stream.close()

        yield StreamChunk(content="", done=True, tokens_used=usage)

    async def function_call(self, request: FunctionCallRequest) -> FunctionCallResult:
        model = self._model(request.options)
        params = self._params(request.prompt, request.options)
        params.pop("response_format", None)
        params["tools"] = [
            {
                "type": "function",
                "function": {
                    "name": fn.name,
                    "description": fn.description,
                    "parameters": fn.parameters,
                },
            }
            for fn in request.functions
        ]
        params["tool_choice"] = "auto"

        response = await self._create(model, **params)
        if not response.choices:
            raise self._error("OpenAI response has no choices", ProviderErrorCode.INVALID_RESPONSE, model)

        message = response.choices[0].message
        tool_calls = getattr(message, "tool_calls", None) or []
        if not tool_calls:
            raise self._error("No function call in OpenAI response", ProviderErrorCode.NO_FUNCTION_CALL, model)

        call = tool_calls[0].function
        try:
            arguments = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            raise self._error(
                f"OpenAI returned malformed arguments for {call.name}",
                ProviderErrorCode.INVALID_RESPONSE,
                model,
            ) from e

        return self._function_result(
            call.name, arguments, self._usage(response.usage), model, content=message.content
        )

    async def aclose(self) -> None:
        await self.client.close()

    async def _create(self, model: AIModel, /, **params: Any) -> Any:
        try:
            return await self.client.chat.completions.create(**params)
        except APIStatusError as e:
            logger.error(
                "OpenAI API error %s: %s", e.status_code, e.message,
                extra={"provider": "openai", "model": model.value},
            )
            raise self._error(
                f"OpenAI API error: {e.message}",
                ProviderErrorCode.API_ERROR,
                model,
                http_status=e.status_code,
            ) from e
        except APIError as e:
            logger.error("OpenAI request failed: %s", e, extra={"provider": "openai", "model": model.value})
            raise self._error(f"OpenAI request failed: {e}", ProviderErrorCode.API_ERROR, model) from e
