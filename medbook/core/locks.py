"""Per-provider critical sections for booking.

The local registry serializes bookings inside one process. When
``REDIS_URL`` is configured, a Redis lock extends the boundary across API
workers. The provider row's version column still guards the commit either
way.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from functools import lru_cache
from typing import Protocol

from redis.asyncio import Redis, from_url
from redis.exceptions import LockError

from .config import settings
from .exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


class ProviderLocks(Protocol):
    def hold(self, provider_id: str) -> AbstractAsyncContextManager[None]: ...  # pragma: no cover


class LocalProviderLocks:
    """One ``asyncio.Lock`` per provider, dropped once nobody holds a reference."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, provider_id: str) -> asyncio.Lock:
        lock = self._locks.get(provider_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[provider_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, provider_id: str) -> AsyncIterator[None]:
        lock = self._lock_for(provider_id)
        async with lock:
            yield


class RedisProviderLocks:
    def __init__(self, client: Redis, timeout: float):
        self.client = client
        self.timeout = timeout

    @asynccontextmanager
    async def hold(self, provider_id: str) -> AsyncIterator[None]:
        lock = self.client.lock(
            f"medbook:provider-lock:{provider_id}",
            timeout=self.timeout,
            blocking_timeout=self.timeout,
        )
        if not await lock.acquire():
            raise ConcurrencyConflict("Provider is busy, please retry")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lock expired while held; the version check still protects the write.
                logger.warning("Provider lock for %s expired before release", provider_id)


@lru_cache(1)
def get_provider_locks() -> ProviderLocks:
    if settings.redis_url:
        return RedisProviderLocks(from_url(settings.redis_url), settings.provider_lock_timeout_seconds)
    return LocalProviderLocks()
