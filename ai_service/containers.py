"""
Service wiring.

Builds the provider registry from settings and assembles an AIService
over the sqlite-backed cache, quota and usage log.
"""

from __future__ import annotations

from typing import Optional

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ai_service.config.loader import DEFAULT_AI_CONFIG, AIConfig, load_ai_config
from ai_service.config.settings import Settings, load_settings
from ai_service.core.cache import ResponseCache
from ai_service.core.quota import QuotaManager
from ai_service.core.registry import ProviderRegistry
from ai_service.core.service import AIService
from ai_service.core.types import AIProvider
from ai_service.core.usage import UsageLog
from ai_service.providers.anthropic_provider import AnthropicProvider
from ai_service.providers.chatbase_provider import ChatbaseProvider
from ai_service.providers.gemini_provider import GeminiProvider
from ai_service.providers.mock_provider import MockProvider
from ai_service.providers.openai_provider import OpenAIProvider
from ai_service.storage.repository import (
    CacheRepository,
    QuotaRepository,
    UsageRepository,
    initialize_schema,
)


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    """Register an adapter for every provider that has credentials.

    With ``AI_USE_MOCK`` set, the deterministic mock serves every provider
    and no API keys are needed.

    To add a provider:
    1. Implement ``ProviderAdapter`` in ``ai_service/providers/``
    2. ``registry.register(...)`` it here behind its credentials
    3. Add its key to ``Settings``
    """
    registry = ProviderRegistry()

    if settings.AI_USE_MOCK:
        mock = MockProvider()
        for provider in AIProvider:
            registry.register(provider, mock)
        return registry

    timeout = settings.REQUEST_TIMEOUT_SECONDS

    if settings.OPENAI_API_KEY:
        registry.register(
            AIProvider.OPENAI,
            OpenAIProvider(AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=timeout)),
        )

    if settings.ANTHROPIC_API_KEY:
        registry.register(
            AIProvider.ANTHROPIC,
            AnthropicProvider(AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY, timeout=timeout)),
        )

    if settings.GEMINI_API_KEY:
        registry.register(
            AIProvider.GEMINI,
            GeminiProvider(settings.GEMINI_API_KEY, client=httpx.AsyncClient(timeout=timeout)),
        )

    if settings.CHATBASE_API_KEY and settings.CHATBASE_CHATBOT_ID:
        registry.register(
            AIProvider.CHATBASE,
            ChatbaseProvider(
                settings.CHATBASE_API_KEY,
                settings.CHATBASE_CHATBOT_ID,
                client=httpx.AsyncClient(timeout=timeout),
            ),
        )

    # Always available for tests and local runs that pick the mock model
    registry.register(AIProvider.MOCK, MockProvider())

    return registry


def build_ai_config(settings: Settings) -> AIConfig:
    if settings.AI_CONFIG_PATH:
        return load_ai_config(settings.AI_CONFIG_PATH)
    return DEFAULT_AI_CONFIG


def build_ai_service(
    settings: Optional[Settings] = None,
    config: Optional[AIConfig] = None,
    registry: Optional[ProviderRegistry] = None,
    user_id: Optional[str] = None
) -> AIService:
    """Wire storage, quota, cache and providers into an ``AIService``."""
    settings = settings or load_settings()
    config = config or build_ai_config(settings)
    registry = registry or build_provider_registry(settings)

    db_path = settings.AI_DB_PATH
    initialize_schema(db_path)

    return AIService(
        registry=registry,
        cache=ResponseCache(CacheRepository(db_path)),
        quota=QuotaManager(QuotaRepository(db_path), config),
        usage_log=UsageLog(UsageRepository(db_path)),
        config=config,
        user_id=user_id,
    )
