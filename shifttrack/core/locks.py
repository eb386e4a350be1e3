"""
Process-wide write lock for the shift store.

Every shift mutation runs inside ``async with lock.hold(timeout):`` so that
two clock-ins for the same employee-day can never both create a row.  The
``local`` backend serialises one process; the ``redis`` backend uses a
redis-py ``Lock`` so several workers share it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache

import redis.asyncio as aioredis
from redis.exceptions import LockError

from shifttrack.core.config import settings
from shifttrack.core.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


class LocalShiftLock:
    """asyncio lock with a bounded wait."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, timeout: float | None = None) -> AsyncIterator[None]:
        timeout = settings.SHIFT_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Shift write lock not acquired within %.1fs", timeout)
            raise LockTimeoutError(timeout) from None
        try:
            yield
        finally:
            self._lock.release()


class RedisShiftLock:
    """Lock shared across workers through Redis."""

    def __init__(self, url: str, name: str, lease_seconds: float = 60.0) -> None:
        self._url = url
        self._name = name
        self._lease = lease_seconds

    @asynccontextmanager
    async def hold(self, timeout: float | None = None) -> AsyncIterator[None]:
        timeout = settings.SHIFT_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        client = aioredis.from_url(self._url)
        lock = client.lock(self._name, timeout=self._lease, blocking_timeout=timeout)
        try:
            if not await lock.acquire():
                logger.warning("Redis shift lock %s busy after %.1fs", self._name, timeout)
                raise LockTimeoutError(timeout)
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError:
                    # Lease expired while we held it; nothing left to release.
                    logger.warning("Redis shift lock %s expired before release", self._name)
        finally:
            await client.aclose()


ShiftLock = LocalShiftLock | RedisShiftLock


@lru_cache
def get_shift_lock() -> ShiftLock:
    """FastAPI dependency returning the configured lock (one per process)."""
    if settings.SHIFT_LOCK_BACKEND == "redis":
        logger.info("Using Redis shift lock at %s", settings.REDIS_URL)
        return RedisShiftLock(settings.REDIS_URL, settings.SHIFT_LOCK_NAME)
    return LocalShiftLock()
