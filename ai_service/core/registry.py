"""Provider registry: maps each AIProvider to the adapter that serves it.

Usage::

    registry = ProviderRegistry()
    registry.register(AIProvider.OPENAI, OpenAIProvider(AsyncOpenAI(api_key=...)))
    registry.register(AIProvider.MOCK, MockProvider())

    adapter = registry.pick(AIProvider.OPENAI)   # raises if missing
    names = registry.list()                      # [AIProvider.OPENAI, AIProvider.MOCK]
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from .errors import ProviderError, ProviderErrorCode
from .types import AIProvider

if TYPE_CHECKING:
    from ai_service.providers.base import ProviderAdapter


class ProviderRegistry:
    """Registry of configured provider adapters."""

    def __init__(self, adapters: Optional[Dict[AIProvider, "ProviderAdapter"]] = None) -> None:
        self._adapters: Dict[AIProvider, ProviderAdapter] = dict(adapters or {})

    def register(self, provider: AIProvider, adapter: "ProviderAdapter") -> None:
        self._adapters[provider] = adapter

    def get(self, provider: AIProvider) -> Optional["ProviderAdapter"]:
        return self._adapters.get(provider)

    def pick(self, provider: AIProvider) -> "ProviderAdapter":
        adapter = self.get(provider)
        if adapter is None:
            available = ", ".join(p.value for p in self.list()) or "none"
            raise ProviderError(
                f"No adapter configured for provider '{provider.value}'. "
                f"Set its API key. Available: {available}",
                code=ProviderErrorCode.MISSING_API_KEY,
                provider=provider.value,
            )
        return adapter

    def list(self) -> List[AIProvider]:
        """All registered providers."""
        return list(self._adapters.keys())

    async def aclose(self) -> None:
        """Close every adapter's underlying client."""
        for adapter in self._adapters.values():
            await adapter.aclose()
