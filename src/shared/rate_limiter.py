"""
Sliding window rate limiting for receipt submissions.

Two interchangeable backends share the ``RateLimiter`` interface:

- ``LocalSlidingWindowRateLimiter`` keeps timestamps in process memory. It is
  only correct for a single worker and is meant for development and tests.
- ``RedisSlidingWindowRateLimiter`` keeps timestamps in a Redis sorted set per
  identifier so every Lambda instance sees the same window.

``build_rate_limiter`` selects one from settings; pipeline code never picks a
backend itself.
"""

import logging
import math
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Deque, Dict, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class RateLimitDecision(BaseModel):
    """Outcome of a rate limit check."""

    allowed: bool
    remaining: int
    reset_seconds: int


class RateLimiter(ABC):
    """Interface for submission rate limiters."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    @abstractmethod
    def check(self, identifier: str) -> RateLimitDecision:
        """Record an attempt for ``identifier`` and report whether it is allowed."""


class LocalSlidingWindowRateLimiter(RateLimiter):
    """In-memory sliding window limiter."""

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Optional[Callable[[], float]] = None
    ):
        super().__init__(max_requests, window_seconds)
        self._clock = clock or time.monotonic
        self._attempts: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = self._clock()

    def check(self, identifier: str) -> RateLimitDecision:
        now = self._clock()
        window_start = now - self.window_seconds

        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(window_start)
                self._last_sweep = now

            attempts = self._attempts.get(identifier, deque())
            while attempts and attempts[0] <= window_start:
                attempts.popleft()

            if len(attempts) >= self.max_requests:
                reset = math.ceil(attempts[0] + self.window_seconds - now)
                return RateLimitDecision(allowed=False, remaining=0, reset_seconds=max(reset, 1))

            attempts.append(now)
            self._attempts[identifier] = attempts
            remaining = self.max_requests - len(attempts)
            reset = math.ceil(attempts[0] + self.window_seconds - now)
            return RateLimitDecision(allowed=True, remaining=remaining, reset_seconds=max(reset, 0))

    def _sweep(self, window_start: float) -> None:
        """Forget identifiers with no attempt inside the window."""
        stale = [key for key, attempts in self._attempts.items() if not attempts or attempts[-1] <= window_start]
        for key in stale:
            del self._attempts[key]

    def tracked_identifiers(self) -> int:
        return len(self._attempts)


class RedisSlidingWindowRateLimiter(RateLimiter):
    """Redis sorted-set sliding window limiter.

    Algorithm per check:
    1. Remove attempts older than the window (ZREMRANGEBYSCORE)
    2. Count remaining attempts (ZCARD)
    3. Add the current attempt (ZADD)
    4. Refresh the key expiry (EXPIRE)

    Denied attempts are removed again so they do not extend the lockout.
    Redis failures fail open: a broken limiter must not block uploads.
    """

    def __init__(
        self,
        redis_client,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "rate_limit",
        clock: Optional[Callable[[], float]] = None
    ):
        super().__init__(max_requests, window_seconds)
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._clock = clock or time.time

    def check(self, identifier: str) -> RateLimitDecision:
        key = f"{self.key_prefix}:{identifier}"
        now = self._clock()
        window_start = now - self.window_seconds
        member = f"{now}:{uuid.uuid4().hex}"

        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {member: now})
            pipe.expire(key, self.window_seconds)
            results = pipe.execute()

            # results[1] is the count BEFORE adding the current attempt
            attempt_count = results[1]

            if attempt_count >= self.max_requests:
                self.redis.zrem(key, member)
                oldest = self.redis.zrange(key, 0, 0, withscores=True)
                reset = self.window_seconds
                if oldest:
                    reset = math.ceil(oldest[0][1] + self.window_seconds - now)
                return RateLimitDecision(allowed=False, remaining=0, reset_seconds=max(reset, 1))

            return RateLimitDecision(
                allowed=True,
                remaining=self.max_requests - attempt_count - 1,
                reset_seconds=self.window_seconds
            )

        except Exception as e:
            logger.warning(f"Rate limiter backend error, allowing request: {e}")
            return RateLimitDecision(
                allowed=True,
                remaining=self.max_requests,
                reset_seconds=self.window_seconds
            )


def build_rate_limiter(settings) -> RateLimiter:
    """Build the rate limiter selected by ``RATE_LIMIT_BACKEND``."""
    if settings.RATE_LIMIT_BACKEND == 'redis':
        from redis import Redis

        client = Redis.from_url(settings.REDIS_URL, decode_responses=False)
        return RedisSlidingWindowRateLimiter(
            client,
            max_requests=settings.UPLOAD_RATE_LIMIT,
            window_seconds=settings.UPLOAD_RATE_WINDOW_SECONDS,
            key_prefix="receipt_uploads"
        )

    return LocalSlidingWindowRateLimiter(
        max_requests=settings.UPLOAD_RATE_LIMIT,
        window_seconds=settings.UPLOAD_RATE_WINDOW_SECONDS
    )
