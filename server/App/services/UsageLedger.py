"""
Usage Ledger - per-key search accounting

Injectable replacement for a process-wide usage map. Each key (typically a
chatbot id) keeps at most `retention` timestamps:
- InMemoryUsageLedger for single-process deployments and tests
- RedisUsageLedger for shared, restart-safe accounting
"""

import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, Dict, List, Optional

import redis.asyncio as redis

from App.exceptions import RateLimitExceededError


class UsageLedger(ABC):
    """Abstract interface for usage accounting backends"""

    def __init__(self, retention: int = 500):
        if retention < 1:
            raise ValueError("retention must be >= 1")
        self.retention = retention

    @abstractmethod
    async def record(self, key: str, at: Optional[float] = None) -> None:
        pass

    @abstractmethod
    async def count_recent(self, key: str, window_seconds: float, now: Optional[float] = None) -> int:
        pass

    @abstractmethod
    async def history(self, key: str) -> List[float]:
        """Retained timestamps for `key`, oldest first."""

    async def check_and_record(self, key: str, limit: int, window_seconds: int) -> None:
        """
        Record one use of `key`, or raise if `limit` uses already happened in the window.

        A limit of 0 disables the check but still records usage.
        """
        now = time.time()
        if limit > 0 and await self.count_recent(key, window_seconds, now) >= limit:
            raise RateLimitExceededError(key, limit, window_seconds)
        await self.record(key, now)

    async def close(self) -> None:
        pass


class InMemoryUsageLedger(UsageLedger):
    def __init__(self, retention: int = 500):
        super().__init__(retention)
        self._entries: Dict[str, Deque[float]] = {}

    async def record(self, key: str, at: Optional[float] = None) -> None:
        bucket = self._entries.setdefault(key, deque(maxlen=self.retention))
        bucket.append(at if at is not None else time.time())

    async def count_recent(self, key: str, window_seconds: float, now: Optional[float] = None) -> int:
        cutoff = (now if now is not None else time.time()) - window_seconds
        return sum(1 for t in self._entries.get(key, ()) if t > cutoff)

    async def history(self, key: str) -> List[float]:
        return list(self._entries.get(key, ()))


class RedisUsageLedger(UsageLedger):
    """One sorted set per key, scored by timestamp and trimmed to `retention`."""

    def __init__(self, client: "redis.Redis", retention: int = 500, prefix: str = "usage", ttl_seconds: int = 86400):
        super().__init__(retention)
        self.client = client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisUsageLedger":
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def record(self, key: str, at: Optional[float] = None) -> None:
        at = at if at is not None else time.time()
        name = self._key(key)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zadd(name, {f"{at}:{uuid.uuid4().hex}": at})
            pipe.zremrangebyrank(name, 0, -(self.retention + 1))
            pipe.expire(name, self.ttl_seconds)
            await pipe.execute()

    async def count_recent(self, key: str, window_seconds: float, now: Optional[float] = None) -> int:
        now = now if now is not None else time.time()
        return int(await self.client.zcount(self._key(key), f"({now - window_seconds}", "+inf"))

    async def history(self, key: str) -> List[float]:
        entries = await self.client.zrange(self._key(key), 0, -1, withscores=True)
        return [float(score) for _, score in entries]

    async def close(self) -> None:
        await self.client.aclose()
