"""Tests for the shift write lock."""

import asyncio

import pytest

from shifttrack.core.config import settings
from shifttrack.core.exceptions import LockTimeoutError
from shifttrack.core.locks import LocalShiftLock, RedisShiftLock, get_shift_lock


@pytest.mark.asyncio
async def test_lock_serialises_holders():
    lock = LocalShiftLock()
    order = []

    async def worker(name):
        async with lock.hold(timeout=1):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


@pytest.mark.asyncio
async def test_lock_times_out():
    lock = LocalShiftLock()
    async with lock.hold(timeout=1):
        with pytest.raises(LockTimeoutError) as exc:
            async with lock.hold(timeout=0.02):
                pass
    assert exc.value.status_code == 503
    assert exc.value.timeout == 0.02


@pytest.mark.asyncio
async def test_lock_released_on_error():
    lock = LocalShiftLock()
    with pytest.raises(RuntimeError):
        async with lock.hold(timeout=1):
            raise RuntimeError("boom")
    assert lock.locked is False
    async with lock.hold(timeout=0.02):
        assert lock.locked is True


def test_default_backend_is_local():
    assert isinstance(get_shift_lock(), LocalShiftLock)
    assert get_shift_lock() is get_shift_lock()


def test_redis_backend_is_configurable(monkeypatch):
    monkeypatch.setattr(settings, "SHIFT_LOCK_BACKEND", "redis")
    get_shift_lock.cache_clear()
    try:
        assert isinstance(get_shift_lock(), RedisShiftLock)
    finally:
        get_shift_lock.cache_clear()
