from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    endpoint: str
    limit: int
    window_seconds: int


class RateLimitStore(Protocol):
    """Key-value storage for hit timestamps. Swap for a shared store when running several workers."""

    def get(self, key: str) -> list[float]:
        ...

    def set(self, key: str, hits: list[float], ttl_seconds: int) -> None:
        ...


class InMemoryRateLimitStore:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._data: dict[str, tuple[float, list[float]]] = {}
        self._clock = clock

    def get(self, key: str) -> list[float]:
        entry = self._data.get(key)
        if entry is None:
            return []
        expires_at, hits = entry
        if expires_at <= self._clock():
            self._data.pop(key, None)
            return []
        return list(hits)

    def set(self, key: str, hits: list[float], ttl_seconds: int) -> None:
        now = self._clock()
        # Drop keys nobody has read since they expired.
        for stale in [k for k, (expires_at, _) in self._data.items() if expires_at <= now]:
            del self._data[stale]
        self._data[key] = (now + max(int(ttl_seconds), 1), list(hits))

    def __len__(self) -> int:
        return len(self._data)


class RateLimiter:
    def __init__(self, store: RateLimitStore, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock
        self._lock = threading.Lock()

    def check(self, *, key: str, limit: int, window_seconds: int) -> tuple[bool, int, int]:
        now = self._clock()
        window = max(int(window_seconds), 1)
        max_hits = max(int(limit), 1)
        with self._lock:
            cutoff = now - window
            bucket = [hit for hit in self._store.get(key) if hit > cutoff]
            if len(bucket) >= max_hits:
                retry_after = int(max(bucket[0] + window - now, 1))
                self._store.set(key, bucket, window)
                return False, retry_after, 0
            bucket.append(now)
            self._store.set(key, bucket, window)
            remaining = max(max_hits - len(bucket), 0)
            return True, 0, remaining


def _hash_scope(scope_key: str) -> str:
    raw = (scope_key or "").encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:24]


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def enforce_rate_limit(
    limiter: RateLimiter,
    *,
    rule: RateLimitRule,
    scope_key: str,
    detail: str = "Too many requests. Please try again later.",
) -> None:
    """Raise 429 with Retry-After when ``scope_key`` has used up the rule's limit."""
    allowed, retry_after, _remaining = limiter.check(
        key=f"{rule.endpoint}:{_hash_scope(scope_key)}",
        limit=rule.limit,
        window_seconds=rule.window_seconds,
    )
    if allowed:
        return
    logger.warning(
        "Rate limit hit on %s (limit=%s window=%ss retry_after=%ss)",
        rule.endpoint,
        rule.limit,
        rule.window_seconds,
        retry_after,
    )
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=detail,
        headers={"Retry-After": str(retry_after)},
    )
