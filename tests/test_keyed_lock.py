"""
Tests for KeyedLock — per-key mutual exclusion with automatic cleanup.
"""

import asyncio

import pytest

from utils.keyed_lock import KeyedLock


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with locks.acquire("ws-1"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))
        assert peak == 1

    @pytest.mark.asyncio
    async def test_different_keys_run_in_parallel(self):
        locks = KeyedLock()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.acquire("a"):
                entered.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await entered.wait()
        async with locks.acquire("b"):
            assert locks.locked("a")
        release.set()
        await task

    @pytest.mark.asyncio
    async def test_lock_dropped_when_unused(self):
        locks = KeyedLock()
        async with locks.acquire(("task", "T1")):
            assert len(locks) == 1
        assert len(locks) == 0
        assert not locks.locked(("task", "T1"))

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.acquire("k"):
                raise RuntimeError("boom")
        assert len(locks) == 0
