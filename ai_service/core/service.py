"""
AI service orchestrator.

The single entry point feature code calls. For each request it resolves
the effective model and options from the feature defaults, enforces quota,
consults the response cache, delegates to the provider adapter, and
records usage.

Policies:
    - Cache hits bypass quota. They are logged with zero tokens and zero
      cost, but the returned response replays the stored cost.
    - Requests with no bound user skip quota and the usage log.
    - Provider errors propagate unchanged. The only retry is the caller's
      explicit ``fallback_model``.
    - Concurrent misses on one fingerprint share a single provider call.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import replace
from enum import Enum
from typing import AsyncIterator, Dict, Optional, Set

from ai_service.config.loader import DEFAULT_AI_CONFIG, AIConfig
from ai_service.providers.base import elapsed_ms
from ai_service.storage.models import UsageLogEntry

from .cache import ResponseCache, fingerprint, utc_now
from .capabilities import get_capabilities
from .errors import CacheError, ProviderError, ProviderErrorCode, QuotaExceededError
from .pricing import PRICING_TABLE, calculate_cost
from .quota import QuotaManager
from .registry import ProviderRegistry
from .tokens import TokenUsage
from .types import (
    AIModel,
    AIProvider,
    AIUsageStats,
    CompletionOptions,
    CompletionRequest,
    CompletionResponse,
    FeatureType,
    FunctionCallRequest,
    FunctionCallResult,
    StreamChunk,
)
from .usage import UsageLog

logger = logging.getLogger(__name__)


class RequestState(str, Enum):
    RECEIVED = "received"
    QUOTA_CHECKED = "quota_checked"
    CACHE_CHECKED = "cache_checked"
    PROVIDER_CALLED = "provider_called"
    ACCOUNTED = "accounted"
    LOGGED = "logged"
    RETURNED = "returned"
    ERRORED = "errored"


class AIService:
    """Routes completions to providers with quota, caching and accounting."""

    def __init__(
        self,
        registry: ProviderRegistry,
        cache: ResponseCache,
        quota: QuotaManager,
        usage_log: UsageLog,
        config: AIConfig = DEFAULT_AI_CONFIG,
        user_id: Optional[str] = None,
        clock=utc_now
    ):
        self.registry = registry
        self.cache = cache
        self.quota = quota
        self.usage_log = usage_log
        self.config = config
        self.clock = clock
        self._user_id = user_id
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def set_user_id(self, user_id: Optional[str]) -> None:
        """Bind subsequent calls to a user; None makes them anonymous."""
        self._user_id = user_id

    def _resolve(self, feature_type: FeatureType, options: CompletionOptions) -> CompletionOptions:
        """Fill every unset option from the feature's defaults."""
        defaults = self.config.get_feature_config(feature_type)
        model = options.model or defaults.model
        # unknown models fail before any quota or provider work
        PRICING_TABLE.get_pricing(model)
        return CompletionOptions(
            model=model,
            temperature=defaults.temperature if options.temperature is None else options.temperature,
            max_tokens=options.max_tokens or defaults.max_tokens,
            top_p=defaults.top_p if options.top_p is None else options.top_p,
            response_format=options.response_format or "text",
            cache_enabled=defaults.cache_enabled if options.cache_enabled is None else options.cache_enabled,
            cache_ttl=defaults.cache_ttl if options.cache_ttl is None else options.cache_ttl,
            fallback_model=options.fallback_model,
        )

    def _transition(self, state: RequestState, feature_type: FeatureType, **extra) -> None:
        logger.debug(
            "request %s", state.value,
            extra={"state": state.value, "feature_type": feature_type.value, "user_id": self._user_id, **extra},
        )

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Serve a completion from cache or from the feature's provider.

        Args:
            request: Completion request; unset options take feature defaults

        Returns:
            CompletionResponse with ``cache_hit`` telling how it was served

        Raises:
            QuotaExceededError: The bound user has no budget left for the feature
            ProviderError: The provider failed (after the fallback, if one was set)
            AccountingError: The resolved model has no pricing
        """
        feature_type = request.feature_type
        user_id = self._user_id
        self._transition(RequestState.RECEIVED, feature_type)
        try:
            request = replace(request, options=self._resolve(feature_type, request.options))
            options = request.options

            if user_id is not None:
                await self._check_quota(user_id, feature_type)
            self._transition(RequestState.QUOTA_CHECKED, feature_type)

            fp = None
            if options.cache_enabled and options.cache_ttl:
                fp = fingerprint(request)
                started = time.perf_counter()
                hit = await self._lookup(fp)
                self._transition(RequestState.CACHE_CHECKED, feature_type, fingerprint=fp)
                if hit is not None:
                    response = replace(hit, execution_time_ms=elapsed_ms(started))
                    await self._log_hit(user_id, feature_type, response)
                    self._transition(RequestState.RETURNED, feature_type, fingerprint=fp)
                    return response

                leader = self._in_flight.get(fp)
                if leader is not None:
                    shared = await self._follow(leader, started)
                    if shared is not None:
                        await self._log_hit(user_id, feature_type, shared)
                        self._transition(RequestState.RETURNED, feature_type, fingerprint=fp)
                        return shared

            response = await asyncio.shield(self._start_fill(user_id, request, fp))
            self._transition(RequestState.RETURNED, feature_type)
            return response
        except Exception:
            self._transition(RequestState.ERRORED, feature_type)
            raise

    def _start_fill(self, user_id: Optional[str], request: CompletionRequest, fp: Optional[str]) -> asyncio.Task:
        # registered before the first await so concurrent misses find it
        task = asyncio.create_task(self._fill(user_id, request, fp))
        self._tasks.add(task)
        if fp is not None:
            self._in_flight[fp] = task
        task.add_done_callback(lambda t: self._finish(t, fp))
        return task

    def _finish(self, task: asyncio.Task, fp: Optional[str]) -> None:
        self._tasks.discard(task)
        if fp is not None and self._in_flight.get(fp) is task:
            del self._in_flight[fp]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("provider fill failed: %r", task.exception())

    async def _follow(self, leader: asyncio.Task, started: float) -> Optional[CompletionResponse]:
        """Wait for an identical in-flight request and share its result.

        Returns None when the leader was refused quota, so this caller makes
        its own attempt under its own budget.
        """
        try:
            response = await asyncio.shield(leader)
        except QuotaExceededError:
            return None
        return replace(response, cache_hit=True, execution_time_ms=elapsed_ms(started))

    async def _fill(self, user_id: Optional[str], request: CompletionRequest, fp: Optional[str]) -> CompletionResponse:
        feature_type = request.feature_type
        if user_id is not None:
            await self._reserve(user_id, feature_type)

        response = await self._call_provider(request)
        self._transition(RequestState.PROVIDER_CALLED, feature_type, provider=response.provider.value)

        if fp is not None:
            await self._store(fp, feature_type, response, request.options.cache_ttl)
        self._transition(RequestState.ACCOUNTED, feature_type)

        if user_id is not None:
            await self._account(user_id, feature_type, response.provider, response.model, response.tokens_used,
                                response.cost_cents)
        self._transition(RequestState.LOGGED, feature_type)
        return response

    async def _call_provider(self, request: CompletionRequest) -> CompletionResponse:
        model = request.options.model
        try:
            return await self.registry.pick(model.provider).complete(request)
        except ProviderError as e:
            fallback = request.options.fallback_model
            if fallback is None or fallback == model:
                logger.error("provider call failed: %s", e, extra={"provider": e.provider, "model": e.model})
                raise
            logger.warning(
                "provider call failed on %s, retrying on fallback %s: %s", model.value, fallback.value, e,
                extra={"provider": e.provider, "model": e.model},
            )
            retry = replace(request, options=replace(request.options, model=fallback, fallback_model=None))
            return await self.registry.pick(fallback.provider).complete(retry)

    async def _lookup(self, fp: str) -> Optional[CompletionResponse]:
        try:
            entry = await self.cache.lookup(fp)
        except CacheError as e:
            logger.warning("cache read failed, treating as miss: %s", e, extra={"fingerprint": fp})
            return None
        if entry is None:
            return None
        logger.debug("cache hit", extra={"fingerprint": fp})
        return entry.as_hit()

    async def _store(self, fp: str, feature_type: FeatureType, response: CompletionResponse, ttl: int) -> None:
        try:
            await self.cache.store(fp, feature_type, response, ttl)
        except CacheError as e:
            logger.warning("cache write failed: %s", e, extra={"fingerprint": fp})

    async def _check_quota(self, user_id: str, feature_type: FeatureType) -> None:
        result = await self.quota.check(user_id, feature_type)
        if not result.allowed:
            logger.info(
                "quota denied: %s", result.reason,
                extra={"user_id": user_id, "feature_type": feature_type.value},
            )
            raise QuotaExceededError(
                f"{result.reason}. Resets at {result.reset_at.isoformat()}",
                reset_at=result.reset_at,
            )

    async def _reserve(self, user_id: str, feature_type: FeatureType) -> None:
        if await self.quota.reserve(user_id, feature_type):
            return
        # lost the race for the last slot
        result = await self.quota.check(user_id, feature_type)
        logger.info(
            "quota denied at reservation",
            extra={"user_id": user_id, "feature_type": feature_type.value},
        )
        raise QuotaExceededError(
            f"Quota exhausted for {feature_type.value}. Resets at {result.reset_at.isoformat()}",
            reset_at=result.reset_at,
        )

    async def _account(
        self,
        user_id: str,
        feature_type: FeatureType,
        provider: AIProvider,
        model: AIModel,
        usage: TokenUsage,
        cost_cents: int
    ) -> None:
        """Append the usage entry, then charge tokens to the reserved window."""
        await self.usage_log.append(UsageLogEntry(
            user_id=user_id,
            feature_type=feature_type,
            provider=provider,
            model=model,
            tokens_used=usage,
            cost_cents=cost_cents,
            cache_hit=False,
            timestamp=self.clock(),
        ))
        await self.quota.record(user_id, feature_type, usage.total, requests=0)

    async def _log_hit(self, user_id: Optional[str], feature_type: FeatureType, response: CompletionResponse) -> None:
        if user_id is None:
            return
        await self.usage_log.append(UsageLogEntry(
            user_id=user_id,
            feature_type=feature_type,
            provider=response.provider,
            model=response.model,
            tokens_used=TokenUsage(),
            cost_cents=0,
            cache_hit=True,
            timestamp=self.clock(),
        ))

    async def stream_complete(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        """Stream a completion. Streams are never cached.

        Usage is logged when the final chunk arrives, so a stream the caller
        abandons early is not logged. Its reserved request slot stays
        consumed.
        """
        feature_type = request.feature_type
        user_id = self._user_id
        request = replace(request, options=self._resolve(feature_type, request.options))
        model = request.options.model

        if not get_capabilities(model).supports_streaming:
            raise ProviderError(
                f"{model.value} does not support streaming",
                code=ProviderErrorCode.UNSUPPORTED_FEATURE,
                provider=model.provider.value,
                model=model.value,
            )
        if user_id is not None:
            await self._check_quota(user_id, feature_type)
            await self._reserve(user_id, feature_type)

        adapter = self.registry.pick(model.provider)
        async with aclosing(adapter.stream_complete(request)) as chunks:
            async for chunk in chunks:
                if chunk.done and user_id is not None:
                    usage = chunk.tokens_used or TokenUsage()
                    await self._account(
                        user_id, feature_type, adapter.provider, model, usage,
                        calculate_cost(model, usage.input, usage.output),
                    )
                yield chunk

    async def function_call(self, request: FunctionCallRequest) -> FunctionCallResult:
        """Have the model pick one of ``request.functions``. Not cached.

        Raises:
            ProviderError: ``UNSUPPORTED_FEATURE`` before any spend when the
                model has no tool calling; otherwise as the adapter raises
            QuotaExceededError: The bound user has no budget left
        """
        feature_type = request.feature_type
        user_id = self._user_id
        options = self._resolve(feature_type, request.options)
        model = options.model

        if not get_capabilities(model).supports_function_calling:
            raise ProviderError(
                f"{model.value} does not support function calling",
                code=ProviderErrorCode.UNSUPPORTED_FEATURE,
                provider=model.provider.value,
                model=model.value,
            )
        if user_id is not None:
            await self._check_quota(user_id, feature_type)
            await self._reserve(user_id, feature_type)

        adapter = self.registry.pick(model.provider)
        result = await adapter.function_call(replace(request, options=options))
        if user_id is not None:
            await self._account(user_id, feature_type, adapter.provider, model, result.tokens_used,
                                result.cost_cents)
        return result

    async def get_usage_stats(self, lookback_days: int = 30) -> AIUsageStats:
        """Aggregate the bound user's usage; all zeros when there is none."""
        if self._user_id is None:
            return AIUsageStats.empty()
        return await self.usage_log.stats(self._user_id, lookback_days)

    async def aclose(self) -> None:
        """Wait for in-flight provider calls, then close provider clients."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.registry.aclose()
