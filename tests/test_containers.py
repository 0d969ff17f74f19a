"""
Tests for service wiring.

Tests which adapters get registered for a given set of settings.
"""

import os
import shutil
import tempfile

import pytest

from ai_service.config.loader import DEFAULT_AI_CONFIG
from ai_service.config.settings import Settings
from ai_service.containers import build_ai_config, build_ai_service, build_provider_registry
from ai_service.core.types import AIProvider
from ai_service.providers import AnthropicProvider, GeminiProvider, MockProvider, OpenAIProvider
from ai_service.storage.db import get_connection


class TestContainers:
    """Test the composition root."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "wired.db")

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_mock_mode_serves_every_provider(self):
        """Verify AI_USE_MOCK registers the mock for all providers."""
        registry = build_provider_registry(Settings(AI_USE_MOCK=True))

        assert set(registry.list()) == set(AIProvider)
        assert all(isinstance(registry.get(p), MockProvider) for p in AIProvider)

    def test_only_keyed_providers_registered(self):
        """Verify providers without credentials are left out."""
        registry = build_provider_registry(Settings(
            OPENAI_API_KEY="sk-test",
            ANTHROPIC_API_KEY="sk-ant-test",
            GEMINI_API_KEY="g-test",
            CHATBASE_API_KEY="cb-test",
        ))

        assert isinstance(registry.get(AIProvider.OPENAI), OpenAIProvider)
        assert isinstance(registry.get(AIProvider.ANTHROPIC), AnthropicProvider)
        assert isinstance(registry.get(AIProvider.GEMINI), GeminiProvider)
        # a Chatbase key without a chatbot id is not enough
        assert registry.get(AIProvider.CHATBASE) is None
        assert isinstance(registry.get(AIProvider.MOCK), MockProvider)

    def test_config_defaults_without_path(self):
        """Verify the built-in config is used when no file is set."""
        assert build_ai_config(Settings()) is DEFAULT_AI_CONFIG

    @pytest.mark.asyncio
    async def test_build_ai_service_initializes_storage(self):
        """Verify the wired service has its tables and bound user."""
        service = build_ai_service(Settings(AI_USE_MOCK=True, AI_DB_PATH=self.db_path), user_id="user-1")

        conn = get_connection(self.db_path)
        try:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        finally:
            conn.close()

        assert {"ai_response_cache", "ai_quota_usage", "ai_usage_log"} <= tables
        assert service.user_id == "user-1"
        stats = await service.get_usage_stats()
        assert stats.total_requests == 0
        await service.aclose()
