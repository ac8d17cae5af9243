# freshbite_cart/services/rate_limit_service.py
import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import DefaultDict, Deque

import redis
from redis.exceptions import RedisError
from fastapi import Request, Response

from freshbite_cart.utils.errors import RateLimitError
from freshbite_cart.utils.retry import redis_retry
from freshbite_cart.utils.settings import (
    RATE_LIMIT_CART_PER_MINUTE,
    RATE_LIMIT_READ_PER_MINUTE,
    REDIS_URL,
)
from freshbite_cart.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitStatus:
    limit: int
    remaining: int
    reset_at: int


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """
    Per-client request limit usable as a FastAPI dependency.

    With REDIS_URL: fixed window counter (INCR + EXPIRE), shared by all instances.
    Without redis, or when redis fails: sliding window in process memory.
    """

    def __init__(self, key: str, limit: int, window_seconds: int = 60, redis_url: str | None = None):
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds
        self.buckets: DefaultDict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

        url = REDIS_URL if redis_url is None else redis_url
        self.redis = redis.Redis.from_url(url, decode_responses=True) if url else None

    def __call__(self, request: Request, response: Response) -> None:
        status = self.hit(client_identifier(request))
        response.headers["X-RateLimit-Limit"] = str(status.limit)
        response.headers["X-RateLimit-Remaining"] = str(status.remaining)
        response.headers["X-RateLimit-Reset"] = str(status.reset_at)

    def hit(self, identifier: str) -> RateLimitStatus:
        now = time.time()
        if self.redis is not None:
            try:
                return self._hit_redis(identifier, now)
            except RedisError as e:
                logger.warning(f"Redis rate limit for {self.key} unavailable, using memory: {e}")
        return self._hit_memory(identifier, now)

    def reset(self) -> None:
        with self._lock:
            self.buckets.clear()

    def _hit_redis(self, identifier: str, now: float) -> RateLimitStatus:
        window = int(now) // self.window_seconds
        reset_at = (window + 1) * self.window_seconds
        count = self._incr(f"rate_limit:{self.key}:{identifier}:{window}")

        if count > self.limit:
            self._reject(identifier, max(1, reset_at - int(now)), reset_at)
        return RateLimitStatus(self.limit, max(0, self.limit - count), reset_at)

    @redis_retry()
    def _incr(self, redis_key: str) -> int:
        pipe = self.redis.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, self.window_seconds)
        count, _ = pipe.execute()
        return int(count)

    def _hit_memory(self, identifier: str, now: float) -> RateLimitStatus:
        with self._lock:
            bucket = self.buckets[identifier]
            while bucket and now - bucket[0] >= self.window_seconds:
                bucket.popleft()

            if len(bucket) >= self.limit:
                reset_at = bucket[0] + self.window_seconds
                self._reject(identifier, max(1, math.ceil(reset_at - now)), int(math.ceil(reset_at)))

            bucket.append(now)
            reset_at = int(math.ceil(bucket[0] + self.window_seconds))
            return RateLimitStatus(self.limit, self.limit - len(bucket), reset_at)

    def _reject(self, identifier: str, retry_after: int, reset_at: int) -> None:
        logger.warning(f"Rate limit {self.key} exceeded by {identifier}, retry in {retry_after}s")
        raise RateLimitError(retry_after=retry_after, limit=self.limit, reset_at=reset_at)


cart_rate_limit = RateLimiter("cart", RATE_LIMIT_CART_PER_MINUTE)
read_rate_limit = RateLimiter("cart-read", RATE_LIMIT_READ_PER_MINUTE)
