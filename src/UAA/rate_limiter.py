# src/UAA/rate_limiter.py
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict

import structlog
import redis.asyncio as aioredis

from .utils import Clock, utcnow

logger = structlog.get_logger(__name__)


class RateLimiter(ABC):
    """
    Failed-attempt counter per login identifier over a sliding window.

    Every failure moves the window anchor forward; once a full window has
    passed since the last failure the count starts again at one.
    """

    def __init__(self, max_attempts: int = 5, window_seconds: int = 900):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    @abstractmethod
    async def allow(self, identifier: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def record_failure(self, identifier: str) -> int:
        raise NotImplementedError

    @abstractmethod
    async def clear(self, identifier: str) -> None:
        raise NotImplementedError


@dataclass
class _Counter:
    failure_count: int
    last_failure_at: datetime


class InMemoryRateLimiter(RateLimiter):
    """Single-process limiter; the counter map is guarded by one asyncio lock."""

    def __init__(self, max_attempts: int = 5, window_seconds: int = 900, clock: Clock = utcnow):
        super().__init__(max_attempts, window_seconds)
        self.clock = clock
        self._counters: Dict[str, _Counter] = {}
        self._lock = asyncio.Lock()

    def _expired(self, counter: _Counter, now: datetime) -> bool:
        return now - counter.last_failure_at >= timedelta(seconds=self.window_seconds)

    async def allow(self, identifier: str) -> bool:
        async with self._lock:
            counter = self._counters.get(identifier)
            if counter is None:
                return True
            if self._expired(counter, self.clock()):
                del self._counters[identifier]
                return True
            return counter.failure_count < self.max_attempts

    async def record_failure(self, identifier: str) -> int:
        async with self._lock:
            now = self.clock()
            counter = self._counters.get(identifier)
            if counter is None or self._expired(counter, now):
                counter = _Counter(failure_count=1, last_failure_at=now)
                self._counters[identifier] = counter
            else:
                counter.failure_count += 1
                counter.last_failure_at = now
            if counter.failure_count >= self.max_attempts:
                logger.warning("login_identifier_rate_limited", identifier=identifier, attempts=counter.failure_count)
            return counter.failure_count

    async def clear(self, identifier: str) -> None:
        async with self._lock:
            self._counters.pop(identifier, None)


class RedisRateLimiter(RateLimiter):
    """
    Limiter shared by every process pointing at the same redis.

    INCR and EXPIRE run in one MULTI block; re-arming the expiry on each
    failure is what makes the window slide.
    """

    def __init__(self, redis_client: aioredis.Redis, max_attempts: int = 5, window_seconds: int = 900, prefix: str = "la:attempts"):
        super().__init__(max_attempts, window_seconds)
        self.redis = redis_client
        self.prefix = prefix

    def _key(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}"

    async def allow(self, identifier: str) -> bool:
        raw = await self.redis.get(self._key(identifier))
        return int(raw or 0) < self.max_attempts

    async def record_failure(self, identifier: str) -> int:
        key = self._key(identifier)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, self.window_seconds)
            attempts, _ = await pipe.execute()
        if attempts >= self.max_attempts:
            logger.warning("login_identifier_rate_limited", identifier=identifier, attempts=attempts)
        return int(attempts)

    async def clear(self, identifier: str) -> None:
        await self.redis.delete(self._key(identifier))
