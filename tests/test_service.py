"""
Unit tests for the AI service orchestrator.

Tests the end-to-end request path: quota, cache, provider delegation,
accounting and usage logging.
"""

import asyncio
import os
import shutil
import tempfile
from unittest.mock import AsyncMock, patch

import pytest

from ai_service.config.loader import DEFAULT_AI_CONFIG, QuotaLimit
from ai_service.core.cache import ResponseCache
from ai_service.core.errors import AccountingError, CacheError, ProviderError, ProviderErrorCode, QuotaExceededError
from ai_service.core.quota import QuotaManager
from ai_service.core.registry import ProviderRegistry
from ai_service.core.service import AIService
from ai_service.core.tokens import TokenUsage
from ai_service.core.types import (
    AIFunction,
    AIModel,
    AIProvider,
    CompletionOptions,
    CompletionRequest,
    FeatureType,
    FunctionCallRequest,
)
from ai_service.core.usage import UsageLog
from ai_service.providers import MockProvider
from ai_service.storage.repository import (
    CacheRepository,
    QuotaRepository,
    UsageRepository,
    initialize_schema,
)

CACHED_CHAT = DEFAULT_AI_CONFIG.with_feature(FeatureType.CHAT, cache_enabled=True, cache_ttl=3600)

SCHEDULE_FN = AIFunction(
    name="schedule_session",
    description="Book a study session",
    parameters={"type": "object", "properties": {"day": {"type": "string"}}},
)


def _chat(prompt: str = "What is 2+2?", **options) -> CompletionRequest:
    return CompletionRequest(
        prompt=prompt,
        feature_type=FeatureType.CHAT,
        options=CompletionOptions(**options),
    )


async def _collect(chunks):
    return [chunk async for chunk in chunks]


class TestAIService:
    """Test AIService orchestration."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.mock = MockProvider()
        # chat defaults to a Claude model
        self.registry = ProviderRegistry({
            AIProvider.ANTHROPIC: self.mock,
            AIProvider.MOCK: self.mock,
        })

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _service(self, config=DEFAULT_AI_CONFIG, user_id="user-1", registry=None) -> AIService:
        return AIService(
            registry=registry or self.registry,
            cache=ResponseCache(CacheRepository(self.db_path)),
            quota=QuotaManager(QuotaRepository(self.db_path), config),
            usage_log=UsageLog(UsageRepository(self.db_path)),
            config=config,
            user_id=user_id,
        )

    async def _quota_used(self, service: AIService, feature_type=FeatureType.CHAT):
        return await service.quota.record("user-1", feature_type, tokens_used=0, requests=0)

    @pytest.mark.asyncio
    async def test_second_identical_request_is_a_cache_hit(self):
        """Verify a repeat request replays the stored response without a provider call."""
        service = self._service(CACHED_CHAT)

        first = await service.complete(_chat())
        second = await service.complete(_chat())

        assert first.cache_hit is False
        assert first.cost_cents > 0
        assert second.cache_hit is True
        assert second.content == first.content
        assert second.cost_cents == first.cost_cents
        assert second.tokens_used == first.tokens_used
        assert self.mock.calls == 1

        entries = await service.usage_log.entries("user-1")
        assert len(entries) == 2
        hit = next(e for e in entries if e.cache_hit)
        miss = next(e for e in entries if not e.cache_hit)
        assert hit.tokens_used == TokenUsage()
        assert hit.cost_cents == 0
        assert miss.tokens_used == TokenUsage(input=100, output=50)
        assert miss.cost_cents == first.cost_cents

    @pytest.mark.asyncio
    async def test_cache_hit_does_not_consume_quota(self):
        """Verify only the provider call is charged to the window."""
        service = self._service(CACHED_CHAT)

        await service.complete(_chat())
        await service.complete(_chat())

        record = await self._quota_used(service)
        assert record.request_count == 1
        assert record.token_count == 150

    @pytest.mark.asyncio
    async def test_per_request_cache_opt_in(self):
        """Verify request options enable caching for a feature that defaults to off."""
        service = self._service()

        first = await service.complete(_chat(cache_enabled=True, cache_ttl=3600))
        second = await service.complete(_chat(cache_enabled=True, cache_ttl=3600))

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert first.cost_cents > 0
        assert second.cost_cents == first.cost_cents
        assert self.mock.calls == 1

    @pytest.mark.asyncio
    async def test_model_and_feature_accepted_as_strings(self):
        """Verify identifier strings are normalized to enum members."""
        service = self._service()
        request = CompletionRequest(
            prompt="What is 2+2?",
            feature_type="chat",
            options=CompletionOptions(model="mock-model", cache_enabled=True, cache_ttl=3600),
        )

        first = await service.complete(request)
        second = await service.complete(request)

        assert request.feature_type is FeatureType.CHAT
        assert request.options.model is AIModel.MOCK
        assert first.model is AIModel.MOCK
        assert first.provider is AIProvider.MOCK
        assert second.cache_hit is True
        assert self.mock.calls == 1

    @pytest.mark.asyncio
    async def test_unknown_model_string_uses_no_quota(self):
        """Verify an unknown model is rejected before any slot is reserved."""
        service = self._service()

        with pytest.raises(AccountingError, match="Unsupported model: gpt-17"):
            await service.complete(_chat(model="gpt-17"))

        record = await self._quota_used(service)
        assert record.request_count == 0
        assert self.mock.calls == 0

    def test_unknown_feature_string_rejected(self):
        """Verify feature names outside the closed set fail on construction."""
        with pytest.raises(ValueError, match="Unknown feature: homework"):
            CompletionRequest(prompt="hi", feature_type="homework")
        with pytest.raises(ValueError, match="Unknown feature: homework"):
            FunctionCallRequest(prompt="hi", functions=(SCHEDULE_FN,), feature_type="homework")

    @pytest.mark.asyncio
    async def test_over_quota_is_refused_before_provider(self):
        """Verify a user at the ceiling gets QuotaExceededError and nothing is logged."""
        config = DEFAULT_AI_CONFIG.with_quota(FeatureType.CHAT, QuotaLimit(max_requests=1, max_tokens=None))
        service = self._service(config)
        await service.complete(_chat())

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.complete(_chat("Another question"))

        assert exc_info.value.reset_at is not None
        assert "Resets at" in str(exc_info.value)
        assert self.mock.calls == 1
        assert len(await service.usage_log.entries("user-1")) == 1

    @pytest.mark.asyncio
    async def test_cache_disabled_by_default_for_chat(self):
        """Verify chat is always fresh under the built-in defaults."""
        service = self._service()

        await service.complete(_chat())
        second = await service.complete(_chat())

        assert second.cache_hit is False
        assert self.mock.calls == 2

    @pytest.mark.asyncio
    async def test_per_request_cache_opt_out(self):
        """Verify cache_enabled=False skips both lookup and store."""
        service = self._service(CACHED_CHAT)

        await service.complete(_chat(cache_enabled=False))
        second = await service.complete(_chat())

        assert second.cache_hit is False
        assert self.mock.calls == 2

    @pytest.mark.asyncio
    async def test_different_temperature_misses(self):
        """Verify a changed temperature is a different cache entry."""
        service = self._service(CACHED_CHAT)

        await service.complete(_chat(temperature=0.7))
        second = await service.complete(_chat(temperature=0.8))

        assert second.cache_hit is False
        assert self.mock.calls == 2

    @pytest.mark.asyncio
    async def test_explicit_defaults_share_cache_entry(self):
        """Verify spelling out a feature default still hits the same entry."""
        service = self._service(CACHED_CHAT)

        await service.complete(_chat())
        second = await service.complete(_chat(model=AIModel.CLAUDE_3_SONNET, temperature=0.7))

        assert second.cache_hit is True

    @pytest.mark.asyncio
    async def test_cache_read_failure_is_a_miss(self):
        """Verify a broken cache read still serves from the provider."""
        service = self._service(CACHED_CHAT)

        with patch.object(service.cache, "lookup", AsyncMock(side_effect=CacheError("disk I/O error"))):
            response = await service.complete(_chat())

        assert response.cache_hit is False
        assert self.mock.calls == 1

    @pytest.mark.asyncio
    async def test_cache_write_failure_is_swallowed(self):
        """Verify a broken cache write still returns the provider response."""
        service = self._service(CACHED_CHAT)

        with patch.object(service.cache, "store", AsyncMock(side_effect=CacheError("database is locked"))):
            first = await service.complete(_chat())
            second = await service.complete(_chat())

        assert first.cache_hit is False
        assert second.cache_hit is False
        assert self.mock.calls == 2
        assert len(await service.usage_log.entries("user-1")) == 2

    @pytest.mark.asyncio
    async def test_concurrent_identical_misses_share_one_call(self):
        """Verify identical concurrent requests make a single provider call."""
        self.mock.delay = 0.2
        service = self._service(CACHED_CHAT)

        responses = await asyncio.gather(*[service.complete(_chat()) for _ in range(5)])

        assert self.mock.calls == 1
        assert sum(1 for r in responses if not r.cache_hit) == 1
        assert len({r.content for r in responses}) == 1
        entries = await service.usage_log.entries("user-1")
        assert len(entries) == 5
        assert sum(1 for e in entries if not e.cache_hit) == 1

    @pytest.mark.asyncio
    async def test_abandoned_caller_does_not_cancel_fill(self):
        """Verify the provider call and cache write finish after the caller cancels."""
        self.mock.delay = 0.1
        service = self._service(CACHED_CHAT)

        caller = asyncio.create_task(service.complete(_chat()))
        while self.mock.calls == 0:
            await asyncio.sleep(0.005)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        await service.aclose()

        self.mock.delay = 0.0
        replay = await service.complete(_chat())
        assert replay.cache_hit is True
        assert self.mock.calls == 1

    @pytest.mark.asyncio
    async def test_provider_error_propagates_without_retry(self):
        """Verify a failing provider is called once and its error surfaces unchanged."""
        error = ProviderError("overloaded", code=ProviderErrorCode.API_ERROR, provider="anthropic", http_status=529)
        failing = MockProvider(error=error)
        registry = ProviderRegistry({AIProvider.ANTHROPIC: failing})
        service = self._service(registry=registry)

        with pytest.raises(ProviderError) as exc_info:
            await service.complete(_chat())

        assert exc_info.value is error
        assert failing.calls == 1
        assert await service.usage_log.entries("user-1") == []
        # the reserved slot stays consumed
        assert (await self._quota_used(service)).request_count == 1

    @pytest.mark.asyncio
    async def test_fallback_model_serves_after_failure(self):
        """Verify an explicit fallback model is tried once after a provider error."""
        failing = MockProvider(error=ProviderError("down", code=ProviderErrorCode.API_ERROR, provider="anthropic"))
        backup = MockProvider(content="from backup")
        registry = ProviderRegistry({AIProvider.ANTHROPIC: failing, AIProvider.OPENAI: backup})
        service = self._service(registry=registry)

        response = await service.complete(_chat(fallback_model=AIModel.GPT_35_TURBO))

        assert response.content == "from backup"
        assert response.model == AIModel.GPT_35_TURBO
        assert failing.calls == 1
        assert backup.calls == 1
        entries = await service.usage_log.entries("user-1")
        assert entries[0].model == AIModel.GPT_35_TURBO

    @pytest.mark.asyncio
    async def test_unregistered_provider(self):
        """Verify a feature whose provider has no adapter fails with MISSING_API_KEY."""
        service = self._service(registry=ProviderRegistry({AIProvider.MOCK: self.mock}))

        with pytest.raises(ProviderError) as exc_info:
            await service.complete(_chat())
        assert exc_info.value.code == ProviderErrorCode.MISSING_API_KEY

    @pytest.mark.asyncio
    async def test_anonymous_calls_skip_quota_and_log(self):
        """Verify calls without a user are served but not recorded."""
        service = self._service(user_id=None)

        response = await service.complete(_chat())

        assert response.content
        assert await service.usage_log.entries("user-1") == []
        stats = await service.get_usage_stats()
        assert stats.total_requests == 0

    @pytest.mark.asyncio
    async def test_set_user_id_rebinds(self):
        """Verify usage is attributed to the currently bound user."""
        service = self._service(user_id=None)
        service.set_user_id("user-2")

        await service.complete(_chat())

        assert service.user_id == "user-2"
        assert len(await service.usage_log.entries("user-2")) == 1

    @pytest.mark.asyncio
    async def test_usage_stats_zero_case(self):
        """Verify a user with no history gets zeros."""
        stats = await self._service().get_usage_stats(lookback_days=7)

        assert stats.total_requests == 0
        assert stats.cache_hit_rate == 0
        assert stats.average_tokens_per_request == 0

    @pytest.mark.asyncio
    async def test_usage_stats_after_traffic(self):
        """Verify stats reflect misses and hits."""
        service = self._service(CACHED_CHAT)
        await service.complete(_chat())
        await service.complete(_chat())

        stats = await service.get_usage_stats()

        assert stats.total_requests == 2
        assert stats.total_tokens == 150
        assert stats.cache_hit_rate == 50.0
        assert stats.requests_by_feature == {"chat": 2}

    @pytest.mark.asyncio
    async def test_stream_logs_usage_on_final_chunk(self):
        """Verify a completed stream is logged once with the final usage."""
        service = self._service(CACHED_CHAT)

        chunks = await _collect(service.stream_complete(_chat(prompt="hello there")))

        assert chunks[-1].done is True
        assert "".join(c.content for c in chunks) == "Mock response to: hello there"
        entries = await service.usage_log.entries("user-1")
        assert len(entries) == 1
        assert entries[0].tokens_used == TokenUsage(input=100, output=50)
        assert entries[0].cost_cents > 0

    @pytest.mark.asyncio
    async def test_streams_are_not_cached(self):
        """Verify streaming neither reads nor writes the cache."""
        service = self._service(CACHED_CHAT)

        await _collect(service.stream_complete(_chat()))
        response = await service.complete(_chat())

        assert response.cache_hit is False
        assert (await service.cache.stats()).total_entries == 1

    @pytest.mark.asyncio
    async def test_abandoned_stream_is_not_logged(self):
        """Verify closing a stream early logs nothing but keeps the reserved slot."""
        service = self._service()

        stream = service.stream_complete(_chat())
        first = await stream.__anext__()
        await stream.aclose()

        assert first.done is False
        assert self.mock.chunks_sent < 4
        assert await service.usage_log.entries("user-1") == []
        assert (await self._quota_used(service)).request_count == 1

    @pytest.mark.asyncio
    async def test_stream_respects_quota(self):
        """Verify streaming is refused once the ceiling is reached."""
        config = DEFAULT_AI_CONFIG.with_quota(FeatureType.CHAT, QuotaLimit(max_requests=0, max_tokens=None))
        service = self._service(config)

        with pytest.raises(QuotaExceededError):
            await _collect(service.stream_complete(_chat()))
        assert self.mock.calls == 0

    @pytest.mark.asyncio
    async def test_function_call(self):
        """Verify function calls are delegated and accounted."""
        self.mock.function_arguments = {"day": "tuesday"}
        service = self._service()
        request = FunctionCallRequest(
            prompt="Book me a session",
            functions=(SCHEDULE_FN,),
            feature_type=FeatureType.SCHEDULING_ASSISTANT,
        )

        result = await service.function_call(request)

        assert result.function_name == "schedule_session"
        assert result.arguments == {"day": "tuesday"}
        entries = await service.usage_log.entries("user-1")
        assert len(entries) == 1
        assert entries[0].feature_type == FeatureType.SCHEDULING_ASSISTANT
        assert entries[0].cost_cents == result.cost_cents

    @pytest.mark.asyncio
    async def test_function_call_unsupported_model(self):
        """Verify a model without tool calling fails before any spend."""
        service = self._service()
        request = FunctionCallRequest(
            prompt="Book me a session",
            functions=(SCHEDULE_FN,),
            feature_type=FeatureType.CHAT,
            options=CompletionOptions(model=AIModel.CHATBASE),
        )

        with pytest.raises(ProviderError) as exc_info:
            await service.function_call(request)

        assert exc_info.value.code == ProviderErrorCode.UNSUPPORTED_FEATURE
        assert (await self._quota_used(service)).request_count == 0
        assert await service.usage_log.entries("user-1") == []
