"""Per-key rate limiters injected into checkout entry points.

`InMemoryRateLimiter` suits a single instance; `RedisTokenBucketLimiter` keeps
its state in Redis so every replica shares one budget per key.
"""

import threading
from time import monotonic, time
from typing import Callable, Protocol

import redis

from vaultmarket.common.config import CommonSettings


class RateLimiter(Protocol):
    def check_and_consume(self, key: str) -> bool: ...


class InMemoryRateLimiter:
    """Fixed-window counter per key, held in process memory."""

    def __init__(self, limit: int, window_seconds: float = 60.0, clock: Callable[[], float] = monotonic) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()

    def check_and_consume(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            self._evict_expired(now)
            count, reset_at = self._windows.get(key, (0, now + self.window_seconds))
            if count >= self.limit:
                return False
            self._windows[key] = (count + 1, reset_at)
            return True

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]


class RedisTokenBucketLimiter:
    """Token bucket in a Redis hash (capacity = refill per window = limit)."""

    def __init__(
        self,
        client: redis.Redis,
        limit: int,
        window_seconds: float = 60.0,
        prefix: str = "tokenbucket",
        clock: Callable[[], float] = time,
    ) -> None:
        self.client = client
        self.capacity = float(limit)
        self.refill_per_sec = self.capacity / window_seconds
        self.ttl_seconds = int(window_seconds * 2)
        self.prefix = prefix
        self.clock = clock

    def check_and_consume(self, key: str) -> bool:
        bucket_key = f"{self.prefix}:{key}"
        # WATCH/MULTI so concurrent replicas cannot both spend the same token.
        with self.client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(bucket_key)
                    now = self.clock()
                    values = pipe.hmget(bucket_key, "tokens", "updated_at")
                    tokens = float(values[0]) if values[0] is not None else self.capacity
                    updated_at = float(values[1]) if values[1] is not None else now
                    elapsed = max(0.0, now - updated_at)
                    tokens = min(self.capacity, tokens + elapsed * self.refill_per_sec)

                    allowed = tokens >= 1.0
                    if allowed:
                        tokens -= 1.0
                    pipe.multi()
                    pipe.hset(bucket_key, mapping={"tokens": tokens, "updated_at": now})
                    pipe.expire(bucket_key, self.ttl_seconds)
                    pipe.execute()
                    return allowed
                except redis.WatchError:
                    continue


def build_rate_limiter(config: CommonSettings, limit: int) -> RateLimiter:
    """Pick the limiter backend named in configuration."""

    if config.rate_limiter_backend == "redis":
        client = redis.Redis.from_url(config.redis_url, decode_responses=True)
        return RedisTokenBucketLimiter(client, limit)
    return InMemoryRateLimiter(limit)
