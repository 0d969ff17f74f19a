"""
Provider adapters for the AI service.

One adapter per upstream vendor, plus a deterministic mock.
"""

from .anthropic_provider import AnthropicProvider
from .base import ProviderAdapter
from .chatbase_provider import ChatbaseProvider
from .gemini_provider import GeminiProvider
from .mock_provider import MockProvider
from .openai_provider import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "ChatbaseProvider",
    "GeminiProvider",
    "MockProvider",
    "OpenAIProvider",
    "ProviderAdapter",
]
