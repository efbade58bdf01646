"""
Retry/backoff and rate-limit-aware HTTP GET helper for the GitHub REST API.

Every response's X-RateLimit-* headers are recorded into a RateLimitState so callers can
report remaining capacity, or refuse to start a large fetch, without spending a request.
"""

import email.utils
import logging
import os
import random
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

# retry/backoff defaults from environment
DEFAULT_MAX_RETRIES = int(os.getenv("GITSTATUS_MAX_RETRIES", "3"))
DEFAULT_BACKOFF_BASE = float(os.getenv("GITSTATUS_BACKOFF_BASE", "0.5"))
_env_jitter = os.getenv("GITSTATUS_BACKOFF_JITTER")
DEFAULT_BACKOFF_JITTER = float(_env_jitter) if _env_jitter else None
DEFAULT_MAX_BACKOFF = float(os.getenv("GITSTATUS_MAX_BACKOFF", "120.0"))
# a single wait (Retry-After or rate-limit reset) is never longer than this
MAX_SINGLE_WAIT = 300.0
REQUEST_TIMEOUT = 30

# runtime overrides
_runtime_max_retries: Optional[int] = None
_runtime_backoff_base: Optional[float] = None
_runtime_backoff_jitter: Optional[float] = None
_runtime_max_backoff: Optional[float] = None


def configure_retry(
    max_retries: Optional[int] = None, backoff_base: Optional[float] = None, backoff_jitter: Optional[float] = None, max_backoff: Optional[float] = None
):
    """Configure retry/backoff defaults at runtime (e.g. from CLI)."""
    global _runtime_max_retries, _runtime_backoff_base, _runtime_backoff_jitter, _runtime_max_backoff
    if max_retries is not None:
        _runtime_max_retries = int(max_retries)
    if backoff_base is not None:
        _runtime_backoff_base = float(backoff_base)
    if backoff_jitter is not None:
        _runtime_backoff_jitter = float(backoff_jitter)
    if max_backoff is not None:
        _runtime_max_backoff = float(max_backoff)


def reset_retry_config():
    global _runtime_max_retries, _runtime_backoff_base, _runtime_backoff_jitter, _runtime_max_backoff
    _runtime_max_retries = _runtime_backoff_base = _runtime_backoff_jitter = _runtime_max_backoff = None


class RateLimitState:
    """
    Last observed rate-limit window: {limit, remaining, reset_at}.
    Shared by the fetch worker threads, hence the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.limit: Optional[int] = None
        self.remaining: Optional[int] = None
        self.reset_at: Optional[int] = None

    def record(self, headers) -> None:
        limit = _safe_int(headers, 'X-RateLimit-Limit')
        remaining = _safe_int(headers, 'X-RateLimit-Remaining')
        reset_at = _safe_int(headers, 'X-RateLimit-Reset')
        if limit is None and remaining is None and reset_at is None:
            return
        with self._lock:
            if limit is not None:
                self.limit = limit
            if remaining is not None:
                self.remaining = remaining
            if reset_at is not None:
                self.reset_at = reset_at

    def update(self, limit: Optional[int], remaining: Optional[int], reset_at: Optional[int]) -> None:
        with self._lock:
            self.limit, self.remaining, self.reset_at = limit, remaining, reset_at

    def snapshot(self) -> Dict[str, Optional[int]]:
        with self._lock:
            return {'limit': self.limit, 'remaining': self.remaining, 'reset_at': self.reset_at}


def _parse_retry_after(raw_ra: Optional[str]) -> Optional[float]:
    if not raw_ra or not isinstance(raw_ra, str):
        return None
    try:
        return float(raw_ra)
    except ValueError:
        pass
    try:
        dt = email.utils.parsedate_to_datetime(raw_ra)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())


def _safe_int(headers, key: str) -> Optional[int]:
    try:
        val = headers.get(key)
        return int(val) if val is not None else None
    except (TypeError, ValueError):
        return None


def _parse_rate_headers(resp):
    headers = getattr(resp, 'headers', None) or {}
    return (
        _parse_retry_after(headers.get('Retry-After')),
        _safe_int(headers, 'X-RateLimit-Remaining'),
        _safe_int(headers, 'X-RateLimit-Reset'),
    )


def _resolve_backoff_params(min_wait: float, backoff_base: Optional[float], backoff_jitter: Optional[float], max_backoff: Optional[float]):
    if backoff_base is not None:
        base = float(backoff_base)
    elif _runtime_backoff_base is not None:
        base = float(_runtime_backoff_base)
    elif min_wait:
        base = float(min_wait)
    else:
        base = float(DEFAULT_BACKOFF_BASE)

    if backoff_jitter is not None:
        jitter = float(backoff_jitter)
    elif _runtime_backoff_jitter is not None:
        jitter = float(_runtime_backoff_jitter)
    elif DEFAULT_BACKOFF_JITTER is not None:
        jitter = float(DEFAULT_BACKOFF_JITTER)
    else:
        jitter = base

    if max_backoff is not None:
        cap = float(max_backoff)
    elif _runtime_max_backoff is not None:
        cap = float(_runtime_max_backoff)
    else:
        cap = float(DEFAULT_MAX_BACKOFF)
    return base, jitter, cap


def _should_retry_response(status_code: int, retry_after: Optional[float], remaining: Optional[int]) -> bool:
    if status_code in (429, 503):
        return True
    # GitHub reports an exhausted primary limit as 403 with remaining 0
    if status_code == 403 and remaining is not None and remaining <= 0:
        return True
    if retry_after is not None:
        return True
    return False


def _compute_wait_seconds(retry_after: Optional[float], reset_at: Optional[float], backoff: float, jitter: float) -> float:
    if retry_after is not None:
        return min(float(retry_after) + random.uniform(0, jitter), MAX_SINGLE_WAIT)
    if reset_at:
        wait = max(0.0, float(reset_at) - time.time())
        return min(wait + random.uniform(0, jitter), MAX_SINGLE_WAIT)
    return min(backoff + random.uniform(0, jitter), MAX_SINGLE_WAIT)


def _body(resp):
    try:
        return resp.json()
    except ValueError:
        return getattr(resp, 'text', None)


def perform_request_with_retries(
    url: str,
    headers: Dict[str, str],
    params: Dict[str, Any],
    cache=None,
    cache_key: str = '',
    min_wait: float = 0.0,
    max_retries: Optional[int] = None,
    backoff_base: Optional[float] = None,
    backoff_jitter: Optional[float] = None,
    max_backoff: Optional[float] = None,
    rate_state: Optional[RateLimitState] = None,
) -> Dict[str, Any]:
    """
    GET url with retries. Returns {'response', 'status', 'timestamp'}; status 0 means every attempt
    failed at the transport level. Successful (200) bodies are stored in cache under cache_key.
    """
    base, jitter, cap = _resolve_backoff_params(min_wait, backoff_base, backoff_jitter, max_backoff)
    attempts = int(_runtime_max_retries) if _runtime_max_retries is not None else int(max_retries or DEFAULT_MAX_RETRIES)
    attempts = max(1, attempts)
    backoff = base
    last: Dict[str, Any] = {'response': None, 'status': 0, 'timestamp': time.time()}

    for attempt in range(attempts):
        final = attempt == attempts - 1
        try:
            resp = requests.get(url, headers=headers or {}, params=params or {}, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as ex:
            logger.warning("GET %s failed (attempt %d/%d): %s", url, attempt + 1, attempts, ex)
            last = {'response': str(ex), 'status': 0, 'timestamp': time.time()}
            if not final:
                time.sleep(min(backoff + random.uniform(0, jitter), cap))
            backoff = min(backoff * 2, cap)
            continue

        if rate_state is not None:
            rate_state.record(getattr(resp, 'headers', None) or {})
        status = getattr(resp, 'status_code', 0)
        retry_after, remaining, reset_at = _parse_rate_headers(resp)

        if status == 200:
            body = _body(resp)
            if cache is not None and cache_key:
                cache.set(cache_key, body, status)
            return {'response': body, 'status': status, 'timestamp': time.time()}

        if _should_retry_response(status, retry_after, remaining):
            last = {'response': getattr(resp, 'text', None), 'status': status, 'timestamp': time.time()}
            if final:
                continue
            wait = _compute_wait_seconds(retry_after, reset_at, backoff, jitter)
            logger.info("GET %s returned %s; waiting %.1fs before retry %d/%d", url, status, wait, attempt + 2, attempts)
            time.sleep(wait)
            backoff = min(backoff * 2, cap)
            continue

        return {'response': _body(resp), 'status': status, 'timestamp': time.time()}

    logger.warning("GET %s gave up after %d attempts (last status %s)", url, attempts, last.get('status'))
    return last


__all__ = ["RateLimitState", "configure_retry", "perform_request_with_retries", "reset_retry_config"]
