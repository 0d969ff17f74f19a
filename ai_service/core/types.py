"""
Request and response types for the AI service.

Closed enumerations for providers, models and feature types, plus the
immutable value objects that flow between the orchestrator and adapters.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import AccountingError
from .tokens import TokenUsage


class AIProvider(str, Enum):
    """Upstream LLM vendors, plus the deterministic mock."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    CHATBASE = "chatbase"
    MOCK = "mock"


class AIModel(str, Enum):
    """Supported model identifiers.

    Every model belongs to exactly one provider and has exactly one row in
    the pricing table.
    """
    GPT_4 = "gpt-4"
    GPT_4_TURBO = "gpt-4-turbo-preview"
    GPT_4O_MINI = "gpt-4o-mini"
    GPT_35_TURBO = "gpt-3.5-turbo"
    CLAUDE_3_OPUS = "claude-3-opus-20240229"
    CLAUDE_3_SONNET = "claude-3-sonnet-20240229"
    CLAUDE_3_HAIKU = "claude-3-haiku-20240307"
    GEMINI_25_FLASH = "gemini-2.5-flash"
    GEMINI_15_PRO = "gemini-1.5-pro"
    CHATBASE = "chatbase"
    MOCK = "mock-model"

    @property
    def provider(self) -> AIProvider:
        return _MODEL_PROVIDERS[self]


_MODEL_PROVIDERS: Dict[AIModel, AIProvider] = {
    AIModel.GPT_4: AIProvider.OPENAI,
    AIModel.GPT_4_TURBO: AIProvider.OPENAI,
    AIModel.GPT_4O_MINI: AIProvider.OPENAI,
    AIModel.GPT_35_TURBO: AIProvider.OPENAI,
    AIModel.CLAUDE_3_OPUS: AIProvider.ANTHROPIC,
    AIModel.CLAUDE_3_SONNET: AIProvider.ANTHROPIC,
    AIModel.CLAUDE_3_HAIKU: AIProvider.ANTHROPIC,
    AIModel.GEMINI_25_FLASH: AIProvider.GEMINI,
    AIModel.GEMINI_15_PRO: AIProvider.GEMINI,
    AIModel.CHATBASE: AIProvider.CHATBASE,
    AIModel.MOCK: AIProvider.MOCK,
}


class FeatureType(str, Enum):
    """Product feature issuing a request; selects model, TTL and quota."""
    STUDY_COACH = "study_coach"
    SCHEDULING_ASSISTANT = "scheduling_assistant"
    COURSE_TUTOR = "course_tutor"
    GRADE_PROJECTION = "grade_projection"
    FEEDBACK_ANALYZER = "feedback_analyzer"
    CHAT = "chat"
    QUIZ_GENERATOR = "quiz_generator"
    SUMMARIZER = "summarizer"
    WEEKLY_SUMMARY = "weekly_summary"
    STUDENT_BRIEF = "student_brief"
    TEACHER_ASSISTANT = "teacher_assistant"
    PROACTIVE_SUGGESTION = "proactive_suggestion"


RESPONSE_FORMATS = ("text", "json")


def _as_model(value) -> Optional[AIModel]:
    if value is None or isinstance(value, AIModel):
        return value
    try:
        return AIModel(value)
    except ValueError:
        raise AccountingError(f"Unsupported model: {value}") from None


def _as_feature(value) -> FeatureType:
    try:
        return FeatureType(value)
    except ValueError:
        raise ValueError(f"Unknown feature: {value}") from None


@dataclass(frozen=True)
class CompletionOptions:
    """Per-request overrides. Unset fields fall back to feature defaults."""
    model: Optional[AIModel] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    response_format: Optional[str] = None
    cache_enabled: Optional[bool] = None
    cache_ttl: Optional[int] = None
    fallback_model: Optional[AIModel] = None

    def __post_init__(self):
        # identifier strings are accepted and normalized to enum members
        object.__setattr__(self, "model", _as_model(self.model))
        object.__setattr__(self, "fallback_model", _as_model(self.fallback_model))
        if self.response_format is not None and self.response_format not in RESPONSE_FORMATS:
            raise ValueError(f"response_format must be one of: {list(RESPONSE_FORMATS)}")
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.cache_ttl is not None and self.cache_ttl < 0:
            raise ValueError("cache_ttl cannot be negative")


@dataclass(frozen=True)
class CompletionRequest:
    """Immutable completion request; the cache fingerprint derives from it."""
    prompt: str
    feature_type: FeatureType
    options: CompletionOptions = field(default_factory=CompletionOptions)
    prompt_version: Optional[str] = None

    def __post_init__(self):
        if not self.prompt or not self.prompt.strip():
            raise ValueError("prompt is required and cannot be empty")
        object.__setattr__(self, "feature_type", _as_feature(self.feature_type))


@dataclass(frozen=True)
class CompletionResponse:
    """Normalized result of a completion, live or replayed from cache."""
    content: str
    tokens_used: TokenUsage
    cost_cents: int
    model: AIModel
    provider: AIProvider
    cache_hit: bool
    execution_time_ms: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "tokens_used": self.tokens_used.to_dict(),
            "cost_cents": self.cost_cents,
            "model": self.model.value,
            "provider": self.provider.value,
            "cache_hit": self.cache_hit,
            "execution_time_ms": self.execution_time_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompletionResponse":
        return cls(
            content=data["content"],
            tokens_used=TokenUsage.from_dict(data["tokens_used"]),
            cost_cents=int(data["cost_cents"]),
            model=AIModel(data["model"]),
            provider=AIProvider(data["provider"]),
            cache_hit=bool(data["cache_hit"]),
            execution_time_ms=int(data["execution_time_ms"]),
        )


@dataclass(frozen=True)
class StreamChunk:
    """One increment of a streamed completion.

    The final chunk has ``done=True`` and carries the cumulative usage.
    """
    content: str
    done: bool = False
    tokens_used: Optional[TokenUsage] = None


@dataclass(frozen=True)
class AIFunction:
    """Caller-side function/tool schema (JSON-schema ``parameters``)."""
    name: str
    description: str
    parameters: Dict[str, Any]

    def __post_init__(self):
        if not self.name:
            raise ValueError("function name is required")
        if self.parameters.get("type") != "object":
            raise ValueError(f"parameters for '{self.name}' must be a JSON object schema")


@dataclass(frozen=True)
class FunctionCallRequest:
    prompt: str
    functions: Tuple[AIFunction, ...]
    feature_type: FeatureType
    options: CompletionOptions = field(default_factory=CompletionOptions)

    def __post_init__(self):
        if not self.functions:
            raise ValueError("at least one function is required")
        object.__setattr__(self, "feature_type", _as_feature(self.feature_type))


@dataclass(frozen=True)
class FunctionCallResult:
    function_name: str
    arguments: Dict[str, Any]
    tokens_used: TokenUsage
    cost_cents: int
    content: Optional[str] = None


@dataclass(frozen=True)
class AIUsageStats:
    """Aggregates over a user's usage log within a lookback window."""
    total_requests: int
    total_tokens: int
    total_cost_cents: int
    cache_hit_rate: float
    average_tokens_per_request: float
    requests_by_feature: Dict[str, int] = field(default_factory=dict)
    tokens_by_provider: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "AIUsageStats":
        return cls(
            total_requests=0,
            total_tokens=0,
            total_cost_cents=0,
            cache_hit_rate=0.0,
            average_tokens_per_request=0.0,
        )
