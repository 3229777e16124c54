"""
Keyed mutual exclusion for read-then-write sequences.

Balance debits and reservation creation read state and then write based on
it. Holding ``customer:<email>`` or ``spot:<id>`` serializes those sequences:
across processes through Redis when ``REDIS_URL`` is set, within the process
otherwise.
"""
import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import LockNotOwnedError

from parking_lot.config import Settings, get_settings
from parking_lot.core.exceptions import LockTimeoutError
from parking_lot.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def warn_if_process_local(settings: Settings) -> bool:
    """
    Warn when several workers would each hold their own in-process locks.

    Returns:
        bool: Whether the warning was emitted
    """
    workers = 1 if settings.debug else settings.api_workers
    if workers > 1 and not settings.redis_url:
        logger.warning(
            "process_local_locking",
            api_workers=workers,
            message=(
                "REDIS_URL is not set; balance and reservation locks only "
                "serialize requests within one worker"
            ),
        )
        return True
    return False


class KeyedLock:
    """Lock registry addressed by string keys."""

    def __init__(
        self,
        redis_client: Optional[aioredis.Redis] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the lock registry.

        Args:
            redis_client: Optional Redis client (created from REDIS_URL when omitted)
            settings: Application settings
        """
        self.settings = settings or get_settings()
        self.redis_client = redis_client
        self._local_locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key; the lock is dropped when it reaches zero.
        self._local_users: Dict[str, int] = {}

    async def _ensure_redis(self) -> Optional[aioredis.Redis]:
        """Return a Redis client when one is configured."""
        if self.redis_client is None and self.settings.redis_url:
            self.redis_client = aioredis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self.redis_client

    def _checkout(self, key: str) -> asyncio.Lock:
        self._local_users[key] = self._local_users.get(key, 0) + 1
        return self._local_locks.setdefault(key, asyncio.Lock())

    def _checkin(self, key: str) -> None:
        self._local_users[key] -= 1
        if self._local_users[key] == 0:
            del self._local_users[key]
            del self._local_locks[key]

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockTimeoutError: If the lock is not acquired within the timeout
        """
        timeout = self.settings.redis_lock_timeout
        redis_client = await self._ensure_redis()

        if redis_client is None:
            lock = self._checkout(key)
            try:
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=timeout)
                except asyncio.TimeoutError:
                    metrics.record_lock("local", "timeout")
                    raise LockTimeoutError(f"Timed out waiting for lock {key}")
                metrics.record_lock("local", "acquired")
                started = time.time()
                try:
                    yield
                finally:
                    lock.release()
                    metrics.record_lock("local", "released", time.time() - started)
            finally:
                self._checkin(key)
            return

        redis_lock = redis_client.lock(
            f"parking:lock:{key}", timeout=timeout, blocking_timeout=timeout
        )
        if not await redis_lock.acquire():
            metrics.record_lock("redis", "timeout")
            logger.warning("lock_acquisition_failed", lock_key=key)
            raise LockTimeoutError(f"Timed out waiting for lock {key}")

        metrics.record_lock("redis", "acquired")
        started = time.time()
        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except LockNotOwnedError:
                # The work already finished; only the exclusivity window lapsed.
                metrics.record_lock("redis", "expired", time.time() - started)
                logger.warning(
                    "lock_expired_before_release",
                    lock_key=key,
                    held_seconds=time.time() - started,
                    lock_timeout=timeout,
                )
            else:
                metrics.record_lock("redis", "released", time.time() - started)
