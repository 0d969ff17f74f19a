"""
Provider adapter contract.

Every vendor adapter implements the same three operations over requests
whose options the orchestrator has already resolved against the feature
defaults. Adapters own their client, which is injected at construction.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

from ai_service.core.errors import ProviderError, ProviderErrorCode
from ai_service.core.pricing import calculate_cost
from ai_service.core.tokens import TokenUsage
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

# Used when a request reaches an adapter without a token budget
DEFAULT_MAX_TOKENS = 1024
DEFAULT_TEMPERATURE = 0.7

JSON_INSTRUCTION = "Respond with valid JSON only."


class ProviderAdapter(ABC):
    """Normalizes one vendor's wire protocol into the common result shapes."""

    provider: AIProvider

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Issue a single completion.

        Raises:
            ProviderError: On transport failure, non-2xx status, truncated
                empty output or a body missing expected fields
        """

    @abstractmethod
    def stream_complete(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        """Yield content increments, then one ``done`` chunk with total usage.

        Closing the iterator stops reading the vendor stream.
        """

    @abstractmethod
    async def function_call(self, request: FunctionCallRequest) -> FunctionCallResult:
        """Ask the model to invoke one of ``request.functions``.

        Raises:
            ProviderError: ``NO_FUNCTION_CALL`` if the reply has no tool call
        """

    async def aclose(self) -> None:
        """Release the underlying client."""

    def _model(self, options: CompletionOptions) -> AIModel:
        if options.model is None:
            raise ValueError("request options must be resolved before reaching an adapter")
        return options.model

    def _error(
        self,
        message: str,
        code: ProviderErrorCode,
        model: Optional[AIModel] = None,
        http_status: Optional[int] = None
    ) -> ProviderError:
        return ProviderError(
            message,
            code=code,
            provider=self.provider.value,
            model=model.value if model is not None else None,
            http_status=http_status,
        )

    def _require_content(self, content: Optional[str], truncated: bool, model: AIModel) -> str:
        """Return content, or raise the code that explains why it is missing."""
        if content:
            return content
        if truncated:
            raise self._error(
                f"{self.provider.value} response hit the token limit before producing content",
                ProviderErrorCode.MAX_TOKENS_EXCEEDED,
                model,
            )
        raise self._error(
            f"{self.provider.value} response contained no content",
            ProviderErrorCode.INVALID_RESPONSE,
            model,
        )

    def _response(
        self,
        content: str,
        usage: TokenUsage,
        model: AIModel,
        started: float
    ) -> CompletionResponse:
        return CompletionResponse(
            content=content,
            tokens_used=usage,
            cost_cents=calculate_cost(model, usage.input, usage.output),
            model=model,
            provider=self.provider,
            cache_hit=False,
            execution_time_ms=elapsed_ms(started),
        )

    def _function_result(
        self,
        name: str,
        arguments: Dict[str, Any],
        usage: TokenUsage,
        model: AIModel,
        content: Optional[str] = None
    ) -> FunctionCallResult:
        return FunctionCallResult(
            function_name=name,
            arguments=arguments,
            tokens_used=usage,
            cost_cents=calculate_cost(model, usage.input, usage.output),
            content=content or None,
        )


def elapsed_ms(started: float) -> int:
    """Milliseconds since a ``time.perf_counter()`` reading."""
    return int((time.perf_counter() - started) * 1000)


def temperature_of(options: CompletionOptions) -> float:
    return DEFAULT_TEMPERATURE if options.temperature is None else options.temperature


def max_tokens_of(options: CompletionOptions) -> int:
    return options.max_tokens or DEFAULT_MAX_TOKENS
