"""
Repository pattern for data access.

Synchronous SQLite access for the three tables the AI service owns:
``ai_response_cache``, ``ai_quota_usage`` and ``ai_usage_log``. The async
layers in ``ai_service.core`` call into these from worker threads.
"""

import json
from datetime import datetime
from typing import List, Optional

from ai_service.core.tokens import TokenUsage
from ai_service.core.types import (
    AIModel,
    AIProvider,
    AIUsageStats,
    CompletionResponse,
    FeatureType,
)

from .db import DEFAULT_DB_PATH, from_db_timestamp, get_connection, to_db_timestamp
from .models import CacheEntry, QuotaRecord, UsageLogEntry


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the cache, quota and usage-log tables if they don't exist.

    ``ai_usage_log`` is an append-only ledger: no UPDATE or DELETE is ever
    issued against it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ai_response_cache (
                fingerprint TEXT PRIMARY KEY,
                feature_type TEXT NOT NULL,
                response TEXT NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ai_response_cache_feature
            ON ai_response_cache (feature_type)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ai_quota_usage (
                user_id TEXT NOT NULL,
                feature_type TEXT NOT NULL,
                window_start TEXT NOT NULL,
                request_count INTEGER NOT NULL DEFAULT 0,
                token_count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, feature_type, window_start)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ai_usage_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                feature_type TEXT NOT NULL,
                provider TEXT NOT NULL,
                model TEXT NOT NULL,
                input_tokens INTEGER NOT NULL,
                output_tokens INTEGER NOT NULL,
                total_tokens INTEGER NOT NULL,
                cost_cents INTEGER NOT NULL,
                cache_hit INTEGER NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_ai_usage_log_user_time
            ON ai_usage_log (user_id, timestamp)
        """)
        conn.commit()
    finally:
        conn.close()


class CacheRepository:
    """Rows of ``ai_response_cache``, keyed by fingerprint."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, fingerprint: str, now: datetime) -> Optional[CacheEntry]:
        """Return the live entry for a fingerprint.

        Rows with ``expires_at <= now`` are ignored but left in place.
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT fingerprint, feature_type, response, created_at, expires_at
                FROM ai_response_cache
                WHERE fingerprint = ? AND expires_at > ?
            """, (fingerprint, to_db_timestamp(now)))
            row = cursor.fetchone()
            if row is None:
                return None
            return CacheEntry(
                fingerprint=row[0],
                feature_type=FeatureType(row[1]),
                response=CompletionResponse.from_dict(json.loads(row[2])),
                created_at=from_db_timestamp(row[3]),
                expires_at=from_db_timestamp(row[4]),
            )
        finally:
            conn.close()

    def upsert(self, entry: CacheEntry) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO ai_response_cache
                (fingerprint, feature_type, response, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(fingerprint) DO UPDATE SET
                    feature_type = excluded.feature_type,
                    response = excluded.response,
                    created_at = excluded.created_at,
                    expires_at = excluded.expires_at
            """, (
                entry.fingerprint,
                entry.feature_type.value,
                json.dumps(entry.response.to_dict(), sort_keys=True),
                to_db_timestamp(entry.created_at),
                to_db_timestamp(entry.expires_at),
            ))
            conn.commit()
        finally:
            conn.close()

    def delete_feature(self, feature_type: FeatureType) -> int:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM ai_response_cache WHERE feature_type = ?",
                (feature_type.value,),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def delete_all(self) -> int:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM ai_response_cache")
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def delete_expired(self, now: datetime) -> int:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "DELETE FROM ai_response_cache WHERE expires_at <= ?",
                (to_db_timestamp(now),),
            )
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def count(self, now: datetime) -> tuple:
        """Return ``(total_rows, live_rows)``."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT
                    COUNT(*),
                    SUM(CASE WHEN expires_at > ? THEN 1 ELSE 0 END)
                FROM ai_response_cache
            """, (to_db_timestamp(now),))
            row = cursor.fetchone()
            return row[0] or 0, row[1] or 0
        finally:
            conn.close()


class QuotaRepository:
    """Per-window counters in ``ai_quota_usage``.

    Every mutation is a single upsert statement, so concurrent increments
    for the same window serialize on the SQLite write lock instead of
    racing through a read-modify-write.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_or_create(
        self,
        user_id: str,
        feature_type: FeatureType,
        window_start: datetime
    ) -> QuotaRecord:
        conn = get_connection(self.db_path)
        try:
            key = (user_id, feature_type.value, to_db_timestamp(window_start))
            conn.execute("""
                INSERT OR IGNORE INTO ai_quota_usage
                (user_id, feature_type, window_start, request_count, token_count)
                VALUES (?, ?, ?, 0, 0)
            """, key)
            conn.commit()
            return self._fetch(conn, key)
        finally:
            conn.close()

    def increment(
        self,
        user_id: str,
        feature_type: FeatureType,
        window_start: datetime,
        requests: int,
        tokens: int
    ) -> QuotaRecord:
        """Atomically add to the window's counters, creating the row if needed.

        Args:
            user_id: Owner of the quota
            feature_type: Feature being charged
            window_start: Start of the current window
            requests: Requests to add (>= 0)
            tokens: Tokens to add (>= 0)

        Returns:
            The record after the increment
        """
        if requests < 0 or tokens < 0:
            raise ValueError("quota counters cannot be decremented")

        conn = get_connection(self.db_path)
        try:
            key = (user_id, feature_type.value, to_db_timestamp(window_start))
            conn.execute("""
                INSERT INTO ai_quota_usage
                (user_id, feature_type, window_start, request_count, token_count)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, feature_type, window_start) DO UPDATE SET
                    request_count = request_count + excluded.request_count,
                    token_count = token_count + excluded.token_count
            """, key + (requests, tokens))
            conn.commit()
            return self._fetch(conn, key)
        finally:
            conn.close()

    def try_reserve(
        self,
        user_id: str,
        feature_type: FeatureType,
        window_start: datetime,
        max_requests: Optional[int],
        max_tokens: Optional[int]
    ) -> bool:
        """Claim one request slot only while the window is under its limits.

        The limit test and the increment happen in one conditional upsert,
        so N concurrent callers can never push ``request_count`` past
        ``max_requests``.

        Returns:
            True if a slot was claimed
        """
        conditions = []
        params: list = []
        if max_requests is not None:
            conditions.append("request_count < ?")
            params.append(max_requests)
        if max_tokens is not None:
            conditions.append("token_count < ?")
            params.append(max_tokens)
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                INSERT INTO ai_quota_usage
                (user_id, feature_type, window_start, request_count, token_count)
                VALUES (?, ?, ?, 1, 0)
                ON CONFLICT(user_id, feature_type, window_start) DO UPDATE SET
                    request_count = request_count + 1{where}
            """, [user_id, feature_type.value, to_db_timestamp(window_start)] + params)
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    @staticmethod
    def _fetch(conn, key) -> QuotaRecord:
        cursor = conn.execute("""
            SELECT user_id, feature_type, window_start, request_count, token_count
            FROM ai_quota_usage
            WHERE user_id = ? AND feature_type = ? AND window_start = ?
        """, key)
        row = cursor.fetchone()
        return QuotaRecord(
            user_id=row[0],
            feature_type=FeatureType(row[1]),
            window_start=from_db_timestamp(row[2]),
            request_count=row[3],
            token_count=row[4],
        )


class UsageRepository:
    """Append-only access to ``ai_usage_log`` plus aggregate queries."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def append(self, entry: UsageLogEntry) -> None:
        """Insert a single usage entry into the append-only ledger."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO ai_usage_log
                (user_id, feature_type, provider, model, input_tokens,
                 output_tokens, total_tokens, cost_cents, cache_hit, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.user_id,
                entry.feature_type.value,
                entry.provider.value,
                entry.model.value,
                entry.tokens_used.input,
                entry.tokens_used.output,
                entry.tokens_used.total,
                entry.cost_cents,
                1 if entry.cache_hit else 0,
                to_db_timestamp(entry.timestamp),
            ))
            conn.commit()
        finally:
            conn.close()

    def get_entries(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        feature_type: Optional[FeatureType] = None,
        limit: int = 1000
    ) -> List[UsageLogEntry]:
        """Get a user's usage entries, newest first.

        Args:
            user_id: User whose entries to return
            since: Optional lower bound on timestamp (inclusive)
            feature_type: Optional feature filter
            limit: Maximum number of entries to return

        Returns:
            List of usage entries ordered by timestamp (newest first)
        """
        conn = get_connection(self.db_path)
        try:
            query = """
                SELECT user_id, feature_type, provider, model, input_tokens,
                       output_tokens, cost_cents, cache_hit, timestamp
                FROM ai_usage_log
                WHERE user_id = ?
            """
            params: list = [user_id]
            if since is not None:
                query += " AND timestamp >= ?"
                params.append(to_db_timestamp(since))
            if feature_type is not None:
                query += " AND feature_type = ?"
                params.append(feature_type.value)
            query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
            params.append(limit)

            cursor = conn.execute(query, params)
            return [
                UsageLogEntry(
                    user_id=row[0],
                    feature_type=FeatureType(row[1]),
                    provider=AIProvider(row[2]),
                    model=AIModel(row[3]),
                    tokens_used=TokenUsage(input=row[4], output=row[5]),
                    cost_cents=row[6],
                    cache_hit=bool(row[7]),
                    timestamp=from_db_timestamp(row[8]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def get_usage_stats(self, user_id: str, since: datetime) -> AIUsageStats:
        """Aggregate a user's usage since a point in time.

        Returns all-zero stats when there are no entries; rates and averages
        are never NaN.
        """
        conn = get_connection(self.db_path)
        try:
            cutoff = to_db_timestamp(since)
            cursor = conn.execute("""
                SELECT
                    COUNT(*) as total_requests,
                    SUM(total_tokens) as total_tokens,
                    SUM(cost_cents) as total_cost_cents,
                    SUM(cache_hit) as cache_hits
                FROM ai_usage_log
                WHERE user_id = ? AND timestamp >= ?
            """, (user_id, cutoff))
            row = cursor.fetchone()
            total_requests = row[0] or 0
            if total_requests == 0:
                return AIUsageStats.empty()

            total_tokens = row[1] or 0
            cache_hits = row[3] or 0

            by_feature = conn.execute("""
                SELECT feature_type, COUNT(*)
                FROM ai_usage_log
                WHERE user_id = ? AND timestamp >= ?
                GROUP BY feature_type
            """, (user_id, cutoff)).fetchall()
            by_provider = conn.execute("""
                SELECT provider, SUM(total_tokens)
                FROM ai_usage_log
                WHERE user_id = ? AND timestamp >= ?
                GROUP BY provider
            """, (user_id, cutoff)).fetchall()

            return AIUsageStats(
                total_requests=total_requests,
                total_tokens=total_tokens,
                total_cost_cents=row[2] or 0,
                cache_hit_rate=round(cache_hits / total_requests * 100, 2),
                average_tokens_per_request=round(total_tokens / total_requests, 2),
                requests_by_feature={feature: count for feature, count in by_feature},
                tokens_by_provider={provider: tokens or 0 for provider, tokens in by_provider},
            )
        finally:
            conn.close()
