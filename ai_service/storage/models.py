"""
Data models for storage layer.

Row types for the cache, quota and usage-log tables.
"""

from dataclasses import dataclass, replace
from datetime import datetime

from ai_service.core.tokens import TokenUsage
from ai_service.core.types import AIModel, AIProvider, CompletionResponse, FeatureType


@dataclass(frozen=True)
class CacheEntry:
    """Cached completion keyed by request fingerprint.

    Read-only once written. An entry whose ``expires_at`` has passed is
    treated as absent even while the row still exists.
    """
    fingerprint: str
    feature_type: FeatureType
    response: CompletionResponse
    created_at: datetime
    expires_at: datetime

    def as_hit(self) -> CompletionResponse:
        """Stored response with ``cache_hit`` forced to True."""
        return replace(self.response, cache_hit=True)


@dataclass(frozen=True)
class QuotaRecord:
    """Usage counters for one (user, feature, window).

    Counters only ever increase within a window; a new window starts a new
    record.
    """
    user_id: str
    feature_type: FeatureType
    window_start: datetime
    request_count: int = 0
    token_count: int = 0


@dataclass(frozen=True)
class UsageLogEntry:
    """Immutable record of one served request.

    Append-only; the core never updates or deletes these rows.
    """
    user_id: str
    feature_type: FeatureType
    provider: AIProvider
    model: AIModel
    tokens_used: TokenUsage
    cost_cents: int
    cache_hit: bool
    timestamp: datetime
