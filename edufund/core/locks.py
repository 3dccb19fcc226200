"""
Per-agreement mutual exclusion.

HTTP handlers, the reconciliation loop and the repayment listener can all
touch the same agreement. Every mutation path holds the agreement's lock for
the whole read-validate-write sequence.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from redis import asyncio as aioredis
from redis.exceptions import LockError

from edufund.core.config import settings
from edufund.core.exceptions import ConflictDetected

logger = logging.getLogger(__name__)


class LockManager:
    """Interface: ``async with locks.hold(agreement_key(agreement_id)): ...``"""

    def hold(self, key: str, timeout: Optional[float] = None):
        raise NotImplementedError

    def _busy(self, key: str) -> ConflictDetected:
        return ConflictDetected(
            f"{key} is being modified by another operation",
            reason="resource_busy",
            retryable=True,
        )


class LocalLockManager(LockManager):
    """asyncio locks keyed by name, for a single process"""

    def __init__(self, default_timeout: float = None):
        self.default_timeout = default_timeout or settings.LOCK_TIMEOUT_SECONDS
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout or self.default_timeout)
            except asyncio.TimeoutError:
                raise self._busy(key)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)


class RedisLockManager(LockManager):
    """Redis locks, for deployments running several server processes"""

    def __init__(self, redis: aioredis.Redis, default_timeout: float = None, lease_seconds: float = 300.0):
        self.redis = redis
        self.default_timeout = default_timeout or settings.LOCK_TIMEOUT_SECONDS
        self.lease_seconds = lease_seconds

    @asynccontextmanager
    async def hold(self, key: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        lock = self.redis.lock(
            f"edufund:lock:{key}",
            timeout=self.lease_seconds,
            blocking_timeout=timeout or self.default_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise self._busy(key)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("Lock lease for %s expired before release", key)


def agreement_key(agreement_id: int) -> str:
    return f"agreement:{agreement_id}"


def request_key(request_id: int) -> str:
    return f"request:{request_id}"


def build_lock_manager(redis: Optional[aioredis.Redis] = None) -> LockManager:
    """Lock backend selected by LOCK_BACKEND"""
    if settings.LOCK_BACKEND == "redis":
        if redis is None:
            raise ValueError("LOCK_BACKEND=redis requires a Redis connection")
        return RedisLockManager(redis)
    return LocalLockManager()
