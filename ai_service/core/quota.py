"""
Quota management.

Per-user, per-feature usage ceilings over fixed windows. Windows start at
multiples of the feature's window length since the Unix epoch, so every
process computes the same window for the same instant.

Over-quota is a normal outcome reported through ``QuotaCheckResult``;
exceptions are reserved for storage failures.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ai_service.config.loader import AIConfig, QuotaLimit
from ai_service.storage.models import QuotaRecord
from ai_service.storage.repository import QuotaRepository

from .cache import utc_now
from .types import FeatureType


@dataclass(frozen=True)
class QuotaCheckResult:
    allowed: bool
    remaining: Optional[int]
    remaining_tokens: Optional[int]
    reset_at: datetime
    reason: Optional[str] = None


def window_start_for(now: datetime, window_seconds: int) -> datetime:
    """Start of the fixed window containing ``now``."""
    epoch_seconds = int(now.timestamp())
    start = epoch_seconds - (epoch_seconds % window_seconds)
    return datetime.fromtimestamp(start, tz=timezone.utc)


class QuotaManager:
    """Checks and records usage against per-feature ``QuotaLimit``s."""

    def __init__(
        self,
        repository: QuotaRepository,
        config: AIConfig,
        clock: Callable[[], datetime] = utc_now
    ):
        self.repository = repository
        self.config = config
        self.clock = clock

    def _window(self, feature_type: FeatureType):
        limit = self.config.get_quota_limit(feature_type)
        start = window_start_for(self.clock(), limit.window_seconds)
        return limit, start, start + timedelta(seconds=limit.window_seconds)

    async def check(self, user_id: str, feature_type: FeatureType) -> QuotaCheckResult:
        """Compare the current window's counters with the feature limit.

        Creates an empty record for the window if none exists yet.

        Args:
            user_id: User to check
            feature_type: Feature being requested

        Returns:
            QuotaCheckResult with ``allowed=False`` and ``reset_at`` when
            the request or token ceiling has been reached
        """
        limit, start, reset_at = self._window(feature_type)
        record = await asyncio.to_thread(
            self.repository.get_or_create, user_id, feature_type, start
        )
        return _evaluate(limit, record, reset_at)

    async def record(
        self,
        user_id: str,
        feature_type: FeatureType,
        tokens_used: int,
        requests: int = 1
    ) -> QuotaRecord:
        """Atomically add usage to the current window.

        Safe under concurrent calls for the same (user, feature): N calls
        adding one request each leave ``request_count`` exactly N higher.
        """
        _, start, _ = self._window(feature_type)
        return await asyncio.to_thread(
            self.repository.increment, user_id, feature_type, start, requests, tokens_used
        )

    async def reserve(self, user_id: str, feature_type: FeatureType) -> bool:
        """Claim one request slot if the window is still under its limits.

        The check and the increment are one statement, so the request limit
        holds as a hard ceiling even when many requests race for the last
        slot.
        """
        limit, start, _ = self._window(feature_type)
        if limit.max_requests == 0 or limit.max_tokens == 0:
            return False
        return await asyncio.to_thread(
            self.repository.try_reserve,
            user_id,
            feature_type,
            start,
            limit.max_requests,
            limit.max_tokens,
        )


def _evaluate(limit: QuotaLimit, record: QuotaRecord, reset_at: datetime) -> QuotaCheckResult:
    remaining = None
    if limit.max_requests is not None:
        remaining = max(0, limit.max_requests - record.request_count)
    remaining_tokens = None
    if limit.max_tokens is not None:
        remaining_tokens = max(0, limit.max_tokens - record.token_count)

    if remaining == 0:
        return QuotaCheckResult(
            allowed=False,
            remaining=0,
            remaining_tokens=remaining_tokens,
            reset_at=reset_at,
            reason=f"Request limit of {limit.max_requests} reached for {record.feature_type.value}",
        )
    if remaining_tokens == 0:
        return QuotaCheckResult(
            allowed=False,
            remaining=remaining,
            remaining_tokens=0,
            reset_at=reset_at,
            reason=f"Token limit of {limit.max_tokens} reached for {record.feature_type.value}",
        )
    return QuotaCheckResult(
        allowed=True,
        remaining=remaining,
        remaining_tokens=remaining_tokens,
        reset_at=reset_at,
    )
