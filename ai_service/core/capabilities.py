"""
Static model capabilities.

Used to reject requests a model cannot serve before any provider spend.
"""

from dataclasses import dataclass
from typing import Dict

from .types import AIModel


@dataclass(frozen=True)
class ModelCapabilities:
    max_tokens: int
    context_window: int
    supports_streaming: bool
    supports_function_calling: bool
    cost_tier: str  # low | medium | high


MODEL_CAPABILITIES: Dict[AIModel, ModelCapabilities] = {
    AIModel.GPT_4: ModelCapabilities(8192, 8192, True, True, "high"),
    AIModel.GPT_4_TURBO: ModelCapabilities(4096, 128000, True, True, "high"),
    AIModel.GPT_4O_MINI: ModelCapabilities(16384, 128000, True, True, "low"),
    AIModel.GPT_35_TURBO: ModelCapabilities(4096, 16385, True, True, "low"),
    AIModel.CLAUDE_3_OPUS: ModelCapabilities(4096, 200000, True, True, "high"),
    AIModel.CLAUDE_3_SONNET: ModelCapabilities(4096, 200000, True, True, "medium"),
    AIModel.CLAUDE_3_HAIKU: ModelCapabilities(4096, 200000, True, True, "low"),
    AIModel.GEMINI_25_FLASH: ModelCapabilities(8192, 1048576, True, True, "low"),
    AIModel.GEMINI_15_PRO: ModelCapabilities(8192, 2097152, True, True, "medium"),
    AIModel.CHATBASE: ModelCapabilities(4096, 16385, True, False, "low"),
    AIModel.MOCK: ModelCapabilities(4096, 8192, True, True, "low"),
}


def get_capabilities(model: AIModel) -> ModelCapabilities:
    return MODEL_CAPABILITIES[model]
