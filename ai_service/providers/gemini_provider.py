"""
Gemini provider.

Google Generative Language REST API over ``httpx``: ``generateContent`` for
single completions and ``streamGenerateContent?alt=sse`` for streaming.
"""

import json
import logging
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

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
from .sse import iter_sse_data

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


def _parts(candidate: Any) -> List[Dict[str, Any]]:
    content = candidate.get("content") if isinstance(candidate, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [part for part in parts if isinstance(part, dict)]


def _parts_text(candidate: Any) -> str:
    texts = (part.get("text") for part in _parts(candidate))
    return "".join(text for text in texts if isinstance(text, str))


class GeminiProvider(ProviderAdapter):
    """Google Gemini models."""

    provider = AIProvider.GEMINI

    def __init__(
        self,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = GEMINI_API_BASE,
        timeout: float = 60.0
    ):
        if not api_key:
            raise self._error("GEMINI_API_KEY is not configured", ProviderErrorCode.MISSING_API_KEY)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _url(self, model: AIModel, method: str) -> str:
        return f"{self.base_url}/models/{model.value}:{method}"

    def _payload(self, prompt: str, options: CompletionOptions) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {
            "temperature": temperature_of(options),
            "maxOutputTokens": max_tokens_of(options),
        }
        if options.top_p is not None:
            generation_config["topP"] = options.top_p
        if options.response_format == "json":
            generation_config["responseMimeType"] = "application/json"
        return {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }

    def _usage(self, data: Dict[str, Any]) -> TokenUsage:
        metadata = data.get("usageMetadata") or {}
        return usage_or_zero(metadata.get("promptTokenCount"), metadata.get("candidatesTokenCount"))

    async def _post(self, model: AIModel, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            r = await self.client.post(
                self._url(model, "generateContent"),
                params={"key": self.api_key},
                json=payload,
            )
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("Gemini API error %s", status, extra={"provider": "gemini", "model": model.value})
            raise self._error(
                f"Gemini API error: {status} - {e.response.text[:200]}",
                ProviderErrorCode.API_ERROR,
                model,
                http_status=status,
            ) from e
        except httpx.RequestError as e:
            logger.error("Gemini request failed: %s", e, extra={"provider": "gemini", "model": model.value})
            raise self._error(f"Gemini request failed: {e}", ProviderErrorCode.API_ERROR, model) from e

        try:
            data = r.json()
        except ValueError as e:
            raise self._error(
                f"Unexpected Gemini response: {r.text[:200]}",
                ProviderErrorCode.INVALID_RESPONSE,
                model,
            ) from e
        if not isinstance(data, dict):
            raise self._error("Gemini response is not an object", ProviderErrorCode.INVALID_RESPONSE, model)
        return data

    def _first_candidate(self, data: Dict[str, Any], model: AIModel) -> Dict[str, Any]:
        candidates = data.get("candidates")
        if not candidates or not isinstance(candidates[0], dict):
            raise self._error("Gemini response has no candidates", ProviderErrorCode.INVALID_RESPONSE, model)
        return candidates[0]

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        model = self._model(request.options)
        started = time.perf_counter()

        data = await self._post(model, self._payload(request.prompt, request.options))
        candidate = self._first_candidate(data, model)
        content = self._require_content(
            _parts_text(candidate), candidate.get("finishReason") == "MAX_TOKENS", model
        )
        return self._response(content, self._usage(data), model, started)

    async def stream_complete(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        model = self._model(request.options)
        usage = TokenUsage()

        try:
            async with self.client.stream(
                "POST",
                self._url(model, "streamGenerateContent"),
                params={"key": self.api_key, "alt": "sse"},
                json=self._payload(request.prompt, request.options),
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    raise self._error(
                        f"Gemini API error: {response.status_code} - {body[:200]!r}",
                        ProviderErrorCode.API_ERROR,
                        model,
                        http_status=response.status_code,
                    )
                async with aclosing(iter_sse_data(response)) as events:
                    async for data in events:
                        try:
                            event = json.loads(data)
                        except json.JSONDecodeError as e:
                            raise self._error(
                                "Malformed Gemini stream frame",
                                ProviderErrorCode.STREAM_ERROR,
                                model,
                            ) from e
                        # usageMetadata is cumulative; the last frame wins
                        if event.get("usageMetadata"):
                            usage = self._usage(event)
                        for candidate in event.get("candidates") or []:
                            text = _parts_text(candidate)
                            if text:
                                yield StreamChunk(content=text)
        except httpx.RequestError as e:
            logger.error("Gemini stream failed: %s", e, extra={"provider": "gemini", "model": model.value})
            raise self._error(f"Gemini stream failed: {e}", ProviderErrorCode.STREAM_ERROR, model) from e

        yield StreamChunk(content="", done=True, tokens_used=usage)

    async def function_call(self, request: FunctionCallRequest) -> FunctionCallResult:
        model = self._model(request.options)
        payload = self._payload(request.prompt, request.options)
        payload["generationConfig"].pop("responseMimeType", None)
        payload["tools"] = [{
            "functionDeclarations": [
                {
                    "name": fn.name,
                    "description": fn.description,
                    "parameters": fn.parameters,
                }
                for fn in request.functions
            ]
        }]

        data = await self._post(model, payload)
        candidate = self._first_candidate(data, model)
        call = next((part["functionCall"] for part in _parts(candidate) if "functionCall" in part), None)
        if call is None:
            raise self._error("No function call in Gemini response", ProviderErrorCode.NO_FUNCTION_CALL, model)
        if not isinstance(call, dict) or not isinstance(call.get("args") or {}, dict):
            raise self._error("Malformed Gemini function call", ProviderErrorCode.INVALID_RESPONSE, model)

        return self._function_result(
            call.get("name", ""),
            dict(call.get("args") or {}),
            self._usage(data),
            model,
            content=_parts_text(candidate),
        )

    async def aclose(self) -> None:
        await self.client.aclose()
