"""
Deterministic mock provider.

Stands in for any vendor in development and tests. Output, usage and
failure modes are scripted at construction; nothing is random and nothing
touches the network.
"""

import asyncio
import time
from typing import Any, AsyncIterator, Dict, Optional

from ai_service.core.errors import ProviderErrorCode
from ai_service.core.tokens import TokenUsage
from ai_service.core.types import (
    AIProvider,
    CompletionRequest,
    CompletionResponse,
    FunctionCallRequest,
    FunctionCallResult,
    StreamChunk,
)

from .base import ProviderAdapter

DEFAULT_USAGE = TokenUsage(input=100, output=50)


class MockProvider(ProviderAdapter):
    """Scriptable fake adapter.

    Args:
        content: Fixed reply; defaults to an echo of the prompt
        usage: Token usage reported for every call
        delay: Seconds to sleep before answering (and between stream chunks)
        truncated: Report the reply as cut off by the token limit
        error: Exception raised by every call instead of answering
        function_arguments: Arguments returned by ``function_call``
    """

    provider = AIProvider.MOCK

    def __init__(
        self,
        content: Optional[str] = None,
        usage: TokenUsage = DEFAULT_USAGE,
        delay: float = 0.0,
        truncated: bool = False,
        error: Optional[Exception] = None,
        function_arguments: Optional[Dict[str, Any]] = None
    ):
        self.content = content
        self.usage = usage
        self.delay = delay
        self.truncated = truncated
        self.error = error
        self.function_arguments = function_arguments
        self.calls = 0
        self.chunks_sent = 0

    def _reply(self, prompt: str) -> str:
        if self.content is not None:
            return self.content
        return f"Mock response to: {prompt}"

    async def _begin(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        model = self._model(request.options)
        started = time.perf_counter()
        await self._begin()

        content = self._require_content(self._reply(request.prompt), self.truncated, model)
        return self._response(content, self.usage, model, started)

    async def stream_complete(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        model = self._model(request.options)
        await self._begin()

        words = self._reply(request.prompt).split(" ")
        if not any(words):
            raise self._error("mock stream has no content", ProviderErrorCode.STREAM_ERROR, model)
        for index, word in enumerate(words):
            if self.delay:
                await asyncio.sleep(self.delay)
            self.chunks_sent += 1
            yield StreamChunk(content=word if index == 0 else " " + word)

        yield StreamChunk(content="", done=True, tokens_used=self.usage)

    async def function_call(self, request: FunctionCallRequest) -> FunctionCallResult:
        model = self._model(request.options)
        await self._begin()

        if self.function_arguments is None:
            raise self._error("No function call in mock response", ProviderErrorCode.NO_FUNCTION_CALL, model)
        return self._function_result(
            request.functions[0].name, dict(self.function_arguments), self.usage, model
        )
