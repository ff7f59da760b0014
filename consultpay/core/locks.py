"""Per-order mutual exclusion for refunds and idempotent order creation."""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import LockError

from consultpay.core.config import Settings
from consultpay.core.exceptions import ConflictError
from consultpay.core.logging import get_logger

log = get_logger(__name__)

KEY_PREFIX = "consultpay:lock"


class OrderLocks(ABC):
    @abstractmethod
    def hold(self, key: str) -> "AsyncIterator[None]":
        """Async context manager held while mutating state keyed by `key`."""
        ...

    async def close(self) -> None:
        pass


class LocalOrderLocks(OrderLocks):
    """asyncio locks keyed by order; entries dropped when no one waits."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]


class RedisOrderLocks(OrderLocks):
    """Redis locks so that API processes and workers serialize on the same key."""

    def __init__(self, settings: Settings, redis: aioredis.Redis | None = None) -> None:
        self._redis = redis or aioredis.from_url(settings.redis_url)
        self._timeout = settings.order_lock_timeout_seconds

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._redis.lock(
            f"{KEY_PREFIX}:{key}",
            timeout=self._timeout,
            blocking_timeout=self._timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise ConflictError("Order is busy, retry shortly", details={"key": key})
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                log.warning("order_lock_expired", key=key, timeout=self._timeout)

    async def close(self) -> None:
        await self._redis.aclose()


def get_order_locks(settings: Settings) -> OrderLocks:
    if settings.payment_store_backend == "memory":
        return LocalOrderLocks()
    return RedisOrderLocks(settings)
