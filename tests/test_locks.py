import asyncio
import logging

import pytest
from redis.exceptions import LockError

from medbook.core.exceptions import ConcurrencyConflict
from medbook.core.locks import LocalProviderLocks, RedisProviderLocks


class FakeLock:
    def __init__(self, acquired: bool = True, expired: bool = False):
        self.acquired = acquired
        self.expired = expired
        self.released = False

    async def acquire(self) -> bool:
        return self.acquired

    async def release(self) -> None:
        self.released = True
        if self.expired:
            raise LockError("Cannot release an unlocked lock")


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` to hand out one lock."""

    def __init__(self, lock: FakeLock):
        self._lock = lock
        self.requested = []

    def lock(self, name, timeout=None, blocking_timeout=None):
        self.requested.append((name, timeout, blocking_timeout))
        return self._lock


@pytest.mark.asyncio
async def test_redis_lock_is_named_per_provider_and_released():
    lock = FakeLock()
    client = FakeRedis(lock)
    locks = RedisProviderLocks(client, timeout=5.0)

    async with locks.hold("prov-1"):
        assert not lock.released

    assert lock.released
    assert client.requested == [("medbook:provider-lock:prov-1", 5.0, 5.0)]


@pytest.mark.asyncio
async def test_busy_redis_lock_is_a_concurrency_conflict():
    lock = FakeLock(acquired=False)
    entered = []

    with pytest.raises(ConcurrencyConflict):
        async with RedisProviderLocks(FakeRedis(lock), timeout=1.0).hold("prov-1"):
            entered.append(True)

    assert entered == []
    assert not lock.released


@pytest.mark.asyncio
async def test_expired_redis_lock_only_warns_on_release(caplog):
    lock = FakeLock(expired=True)

    with caplog.at_level(logging.WARNING, logger="medbook.core.locks"):
        async with RedisProviderLocks(FakeRedis(lock), timeout=1.0).hold("prov-1"):
            pass

    assert lock.released
    assert "expired before release" in caplog.text


@pytest.mark.asyncio
async def test_redis_lock_is_released_when_the_body_fails():
    lock = FakeLock()

    with pytest.raises(RuntimeError):
        async with RedisProviderLocks(FakeRedis(lock), timeout=1.0).hold("prov-1"):
            raise RuntimeError("booking failed")

    assert lock.released


@pytest.mark.asyncio
async def test_local_locks_serialize_one_provider_only():
    locks = LocalProviderLocks()
    order = []

    async def hold(provider_id, label):
        async with locks.hold(provider_id):
            order.append(f"{label}:in")
            await asyncio.sleep(0.01)
            order.append(f"{label}:out")

    await asyncio.gather(hold("prov-1", "a"), hold("prov-1", "b"))
    assert order == ["a:in", "a:out", "b:in", "b:out"]

    order.clear()
    await asyncio.gather(hold("prov-1", "a"), hold("prov-2", "b"))
    assert order[:2] == ["a:in", "b:in"]
