"""
Unit tests for keyed locks.
"""
import asyncio
from typing import Any, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import LockNotOwnedError

from parking_lot.core.exceptions import LockTimeoutError
from parking_lot.core.locking import KeyedLock, warn_if_process_local


class TestLocalLocks:
    """In-process locking when Redis is not configured."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_same_key_serializes(self, locks: KeyedLock) -> None:
        events: List[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("customer:a@example.com"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("first"), worker("second"))

        assert events == ["first-in", "first-out", "second-in", "second-out"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self, locks: KeyedLock) -> None:
        async with locks.hold("spot:1"):
            async with locks.hold("spot:2"):
                pass

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_released_on_error(self, locks: KeyedLock) -> None:
        with pytest.raises(RuntimeError):
            async with locks.hold("spot:1"):
                raise RuntimeError("boom")

        async with locks.hold("spot:1"):
            pass

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout(self, test_settings: Any) -> None:
        test_settings.redis_lock_timeout = 1
        locks = KeyedLock(settings=test_settings)

        async with locks.hold("spot:1"):
            with pytest.raises(LockTimeoutError):
                async with locks.hold("spot:1"):
                    pass

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_idle_keys_are_dropped(self, locks: KeyedLock) -> None:
        async def worker(key: str) -> None:
            async with locks.hold(key):
                await asyncio.sleep(0.01)

        await asyncio.gather(*(worker(f"customer:{i}@example.com") for i in range(5)))
        await asyncio.gather(worker("spot:1"), worker("spot:1"))

        assert locks._local_locks == {}
        assert locks._local_users == {}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_idle_keys_dropped_after_timeout(self, test_settings: Any) -> None:
        test_settings.redis_lock_timeout = 1
        locks = KeyedLock(settings=test_settings)

        async with locks.hold("spot:1"):
            with pytest.raises(LockTimeoutError):
                async with locks.hold("spot:1"):
                    pass
            assert locks._local_users == {"spot:1": 1}

        assert locks._local_locks == {}


class TestRedisLocks:
    """Locking through a Redis client."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_acquire_and_release(self, test_settings: Any) -> None:
        redis_lock = MagicMock()
        redis_lock.acquire = AsyncMock(return_value=True)
        redis_lock.release = AsyncMock()
        redis_client = MagicMock()
        redis_client.lock.return_value = redis_lock
        locks = KeyedLock(redis_client=redis_client, settings=test_settings)

        async with locks.hold("customer:a@example.com"):
            redis_lock.release.assert_not_awaited()

        redis_client.lock.assert_called_once_with(
            "parking:lock:customer:a@example.com",
            timeout=test_settings.redis_lock_timeout,
            blocking_timeout=test_settings.redis_lock_timeout,
        )
        redis_lock.release.assert_awaited_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_not_acquired(self, test_settings: Any) -> None:
        redis_lock = MagicMock()
        redis_lock.acquire = AsyncMock(return_value=False)
        redis_client = MagicMock()
        redis_client.lock.return_value = redis_lock
        locks = KeyedLock(redis_client=redis_client, settings=test_settings)

        with pytest.raises(LockTimeoutError):
            async with locks.hold("spot:1"):
                pass

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expired_lock_does_not_fail_the_block(self, test_settings: Any) -> None:
        redis_lock = MagicMock()
        redis_lock.acquire = AsyncMock(return_value=True)
        redis_lock.release = AsyncMock(side_effect=LockNotOwnedError("Lock expired"))
        redis_client = MagicMock()
        redis_client.lock.return_value = redis_lock
        locks = KeyedLock(redis_client=redis_client, settings=test_settings)
        completed = False

        async with locks.hold("customer:a@example.com"):
            completed = True

        assert completed
        redis_lock.release.assert_awaited_once()


class TestProcessLocalWarning:
    """Startup warning for in-process locks across several workers."""

    @pytest.mark.unit
    def test_warns_for_multiple_workers_without_redis(self, test_settings: Any) -> None:
        test_settings.api_workers = 4
        test_settings.debug = False

        assert warn_if_process_local(test_settings)

    @pytest.mark.unit
    def test_silent_with_redis(self, test_settings: Any) -> None:
        test_settings.api_workers = 4
        test_settings.debug = False
        test_settings.redis_url = "redis://localhost:6379/0"

        assert not warn_if_process_local(test_settings)

    @pytest.mark.unit
    def test_silent_for_single_worker(self, test_settings: Any) -> None:
        test_settings.api_workers = 1

        assert not warn_if_process_local(test_settings)
