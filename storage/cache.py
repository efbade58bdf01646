"""
SQLite response cache and the cached, rate-limit-aware GET used by the GitHub client.
Entries are raw JSON bodies keyed by request identity and stamped with their fetch time.
"""

import json
import logging
import sqlite3
import threading
import time
from typing import Any, Dict, Optional

import requests  # noqa: F401  (tests patch storage.cache.requests.get)

from .retry import RateLimitState, configure_retry, perform_request_with_retries

logger = logging.getLogger(__name__)

DB_PATH = None  # can be overridden by caller

# noinspection SqlResolve
SQL_CREATE = """
CREATE TABLE IF NOT EXISTS api_cache (
    key TEXT PRIMARY KEY,
    response TEXT,
    status INTEGER,
    timestamp REAL
);
"""


class Cache:
    def __init__(self, path: Optional[str] = None, max_entries: Optional[int] = None, ttl_seconds: Optional[float] = None):
        """Create a cache instance.

        :param path: SQLite file path or None for in-memory.
        :param max_entries: keep at most this many entries; the oldest are pruned first.
        :param ttl_seconds: entries older than this are dropped on access and on write.
        """
        self.path = path or DB_PATH or ':memory:'
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self._lock = threading.RLock()
        self.max_entries = int(max_entries) if max_entries is not None else None
        self.ttl_seconds = float(ttl_seconds) if ttl_seconds is not None else None
        with self._lock:
            self.conn.executescript(SQL_CREATE)
            self.conn.commit()

    def close(self):
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # noinspection SqlResolve
    def stats(self) -> Dict[str, Any]:
        """Entry count plus oldest/newest timestamps."""
        with self._lock:
            cur = self.conn.execute('SELECT COUNT(1), MIN(timestamp), MAX(timestamp) FROM api_cache')
            count, oldest, newest = cur.fetchone()
        return {
            'path': self.path,
            'count': int(count or 0),
            'oldest': float(oldest) if oldest is not None else None,
            'newest': float(newest) if newest is not None else None,
        }

    # noinspection SqlResolve
    def list_keys(self, limit: int = 1000) -> list:
        """Cache keys with status and timestamp, newest first."""
        with self._lock:
            rows = self.conn.execute(
                'SELECT key, status, timestamp FROM api_cache ORDER BY timestamp DESC LIMIT ?', (limit,)
            ).fetchall()
        return [{'key': k, 'status': int(status or 0), 'timestamp': float(ts or 0)} for k, status, ts in rows]

    # noinspection SqlWithoutWhere
    def clear(self) -> int:
        with self._lock:
            cur = self.conn.execute('DELETE FROM api_cache')
            self.conn.commit()
            return cur.rowcount

    # noinspection SqlResolve
    def delete_key(self, key: str) -> int:
        with self._lock:
            cur = self.conn.execute('DELETE FROM api_cache WHERE key = ?', (key,))
            self.conn.commit()
            return cur.rowcount

    # noinspection SqlResolve
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute('SELECT response, status, timestamp FROM api_cache WHERE key = ?', (key,)).fetchone()
        if not row:
            return None
        response, status, timestamp = row
        if self.ttl_seconds is not None and timestamp is not None and time.time() - float(timestamp) > self.ttl_seconds:
            self.delete_key(key)
            return None
        try:
            parsed = json.loads(response)
        except ValueError:
            logger.warning("Cache entry %s is not valid JSON; returning raw text", key)
            parsed = response
        return {'response': parsed, 'status': status, 'timestamp': timestamp}

    # noinspection SqlResolve
    def _prune(self, cur):
        if self.ttl_seconds is not None:
            cur.execute('DELETE FROM api_cache WHERE timestamp < ?', (time.time() - self.ttl_seconds,))
        if self.max_entries is not None:
            count = cur.execute('SELECT COUNT(1) FROM api_cache').fetchone()[0] or 0
            excess = int(count - self.max_entries)
            if excess > 0:
                cur.execute(
                    'DELETE FROM api_cache WHERE key IN (SELECT key FROM api_cache ORDER BY timestamp ASC LIMIT ?)',
                    (excess,),
                )

    # noinspection SqlResolve
    def set(self, key: str, response: Any, status: int = 200):
        try:
            payload = json.dumps(response)
        except (TypeError, ValueError):
            payload = json.dumps(str(response))
        with self._lock:
            cur = self.conn.cursor()
            cur.execute(
                'REPLACE INTO api_cache(key, response, status, timestamp) VALUES (?, ?, ?, ?)',
                (key, payload, status, time.time()),
            )
            self._prune(cur)
            self.conn.commit()


def _cached_fresh(cache: Optional[Cache], cache_key: Optional[str], max_age: Optional[float]):
    if cache is None or not cache_key:
        return None
    cached = cache.get(cache_key)
    if not cached:
        return None
    if max_age is not None and time.time() - float(cached.get('timestamp') or 0) > float(max_age):
        return None
    return cached


def rate_limited_get(
    url: str,
    headers: Dict[str, str] = None,
    params: Dict[str, Any] = None,
    cache: Cache = None,
    cache_key: str = None,
    min_wait: float = 0.5,
    max_age: Optional[float] = None,
    max_retries: Optional[int] = None,
    rate_state: Optional[RateLimitState] = None,
) -> Dict[str, Any]:
    """GET with cache lookup first (honoring max_age), then retries/backoff via storage.retry."""
    cached = _cached_fresh(cache, cache_key, max_age)
    if cached:
        logger.debug("Cache hit: %s", cache_key)
        return cached
    return perform_request_with_retries(
        url, headers or {}, params or {}, cache, cache_key or '', min_wait, max_retries, rate_state=rate_state
    )


__all__ = ["Cache", "configure_retry", "rate_limited_get"]
