"""Fixed-window rate limiting (Redis preferred, in-memory fallback)."""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from threading import Lock
from typing import Deque, Dict, Optional

import redis  # type: ignore

from core.config import REDIS_URL

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after_seconds: int


class RateLimiter:
    def __init__(self, redis_url: Optional[str] = REDIS_URL):
        self._lock = Lock()
        self._buckets: Dict[str, Deque[float]] = defaultdict(deque)
        self._redis_url = redis_url
        self._redis: Optional[redis.Redis] = None

    def _client(self) -> Optional[redis.Redis]:
        if not self._redis_url:
            return None
        if self._redis is None:
            self._redis = redis.Redis.from_url(self._redis_url, socket_timeout=0.5)
        return self._redis

    def allow(self, *, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        limit = int(limit)
        window_seconds = int(window_seconds)
        if limit <= 0 or window_seconds <= 0:
            return RateLimitResult(allowed=True, retry_after_seconds=0)

        client = self._client()
        if client is not None:
            try:
                pipe = client.pipeline()
                pipe.incr(key, 1)
                pipe.ttl(key)
                current, ttl = pipe.execute()
                if ttl == -1:
                    client.expire(key, window_seconds)
                    ttl = window_seconds
                if int(current) <= limit:
                    return RateLimitResult(allowed=True, retry_after_seconds=0)
                retry_after = int(ttl if ttl and ttl > 0 else window_seconds)
                return RateLimitResult(allowed=False, retry_after_seconds=max(1, retry_after))
            except redis.RedisError as exc:
                logger.debug(f"Rate limiter falling back to memory for {key}: {exc}")

        now = time.time()
        with self._lock:
            bucket = self._buckets[key]
            cutoff = now - window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            if len(bucket) < limit:
                bucket.append(now)
                return RateLimitResult(allowed=True, retry_after_seconds=0)
            retry_after = int((bucket[0] + window_seconds) - now)
            return RateLimitResult(allowed=False, retry_after_seconds=max(1, retry_after))

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


default_rate_limiter = RateLimiter()
