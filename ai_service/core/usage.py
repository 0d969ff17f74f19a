"""
Usage log.

Async append and aggregation over the ``ai_usage_log`` ledger.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ai_service.storage.models import UsageLogEntry
from ai_service.storage.repository import UsageRepository

from .cache import utc_now
from .types import AIUsageStats, FeatureType


class UsageLog:

    def __init__(self, repository: UsageRepository, clock: Callable[[], datetime] = utc_now):
        self.repository = repository
        self.clock = clock

    async def append(self, entry: UsageLogEntry) -> None:
        await asyncio.to_thread(self.repository.append, entry)

    async def entries(
        self,
        user_id: str,
        lookback_days: Optional[int] = None,
        feature_type: Optional[FeatureType] = None
    ) -> List[UsageLogEntry]:
        since = None
        if lookback_days is not None:
            since = self.clock() - timedelta(days=lookback_days)
        return await asyncio.to_thread(
            self.repository.get_entries, user_id, since, feature_type
        )

    async def stats(self, user_id: str, lookback_days: int) -> AIUsageStats:
        """Aggregate a user's log over the last ``lookback_days`` days."""
        if lookback_days <= 0:
            raise ValueError("lookback_days must be > 0")
        since = self.clock() - timedelta(days=lookback_days)
        return await asyncio.to_thread(self.repository.get_usage_stats, user_id, since)
