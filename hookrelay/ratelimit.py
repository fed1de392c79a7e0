"""In-memory token bucket rate limiter keyed by client address."""

from __future__ import annotations

import time


class TokenBucket:
    __slots__ = ("tokens", "updated")

    def __init__(self, capacity: int) -> None:
        self.tokens = float(capacity)
        self.updated = time.monotonic()

    def take(self, rps: float, burst: int) -> bool:
        now = time.monotonic()
        elapsed = now - self.updated
        self.tokens = min(float(burst), self.tokens + elapsed * max(rps, 0.0))
        self.updated = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False


_buckets: dict[str, TokenBucket] = {}


def allow(key: str, rps: float, burst: int) -> bool:
    """Return True when ``key`` still has budget under the limit."""

    bucket = _buckets.get(key)
    if bucket is None:
        bucket = _buckets[key] = TokenBucket(burst)
    return bucket.take(rps, burst)


def reset() -> None:
    _buckets.clear()
