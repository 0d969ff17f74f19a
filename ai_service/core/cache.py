"""
Response cache.

Persistent completion cache keyed by a deterministic fingerprint of the
request's cache-relevant fields. Expiry is checked lazily on lookup; expired
rows stay in the table until ``purge_expired`` is called.
"""

import asyncio
import hashlib
import json
import sqlite3
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ai_service.storage.models import CacheEntry
from ai_service.storage.repository import CacheRepository

from .errors import CacheError
from .types import CompletionRequest, CompletionResponse, FeatureType


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_number(value: Any) -> Any:
    # 1 and 1.0 must serialize identically
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        as_float = float(value)
        if as_float.is_integer():
            return int(as_float)
        return round(as_float, 12)
    return value


def fingerprint(request: CompletionRequest) -> str:
    """SHA-256 hex of the request's cache-relevant fields.

    Hashes prompt, feature type, model, temperature, max tokens, response
    format and prompt version. Keys are sorted and numbers normalized, so
    logically identical requests collide regardless of how they were
    built. Pass a request whose options are already resolved against the
    feature defaults.
    """
    options = request.options
    payload = {
        "prompt": request.prompt,
        "feature_type": request.feature_type.value,
        "model": options.model.value if options.model is not None else None,
        "temperature": _normalize_number(options.temperature),
        "max_tokens": _normalize_number(options.max_tokens),
        "response_format": options.response_format or "text",
        "prompt_version": request.prompt_version,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    live_entries: int

    @property
    def expired_entries(self) -> int:
        return self.total_entries - self.live_entries


class ResponseCache:
    """Async facade over the cache table.

    Storage failures surface as ``CacheError``; the orchestrator decides how
    to degrade.
    """

    def __init__(self, repository: CacheRepository, clock: Callable[[], datetime] = utc_now):
        self.repository = repository
        self.clock = clock

    async def lookup(self, fp: str) -> Optional[CacheEntry]:
        """Return the live entry for a fingerprint, or None.

        An entry is absent once ``now >= expires_at``.
        """
        now = self.clock()
        try:
            return await asyncio.to_thread(self.repository.get, fp, now)
        except (sqlite3.Error, ValueError, KeyError) as e:
            raise CacheError(f"Cache read failed for {fp[:12]}: {e}") from e

    async def store(
        self,
        fp: str,
        feature_type: FeatureType,
        response: CompletionResponse,
        ttl_seconds: int
    ) -> CacheEntry:
        """Upsert a response with ``expires_at = now + ttl_seconds``.

        The stored copy always has ``cache_hit`` set to False.
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")

        now = self.clock()
        entry = CacheEntry(
            fingerprint=fp,
            feature_type=feature_type,
            response=replace(response, cache_hit=False),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        try:
            await asyncio.to_thread(self.repository.upsert, entry)
        except sqlite3.Error as e:
            raise CacheError(f"Cache write failed for {fp[:12]}: {e}") from e
        return entry

    async def invalidate_feature(self, feature_type: FeatureType) -> int:
        """Delete every entry for one feature; returns rows removed."""
        return await self._run(self.repository.delete_feature, feature_type)

    async def clear_all(self) -> int:
        return await self._run(self.repository.delete_all)

    async def purge_expired(self) -> int:
        """Physically delete rows that lookups already treat as absent."""
        return await self._run(self.repository.delete_expired, self.clock())

    async def stats(self) -> CacheStats:
        total, live = await self._run(self.repository.count, self.clock())
        return CacheStats(total_entries=total, live_entries=live)

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            raise CacheError(f"Cache maintenance failed: {e}") from e
