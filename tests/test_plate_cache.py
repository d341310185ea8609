"""
Tests for the in-memory plate deduplication cache.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from app.adapters.cache.memory_plate_cache import HOUR, MemoryPlateCache
from app.domain.models import PLATE_NOT_FOUND, PROCESSING_ERROR


class TestDuplicateCheck:

    @pytest.mark.parametrize("plate", ["", "   ", PLATE_NOT_FOUND, PROCESSING_ERROR])
    def test_sentinels_never_duplicate(self, cache, plate):
        cache.insert(plate)
        cache.insert(plate)
        assert cache.is_duplicate(plate) is False
        assert cache.count() == 0

    def test_insert_then_duplicate(self, cache):
        assert cache.is_duplicate("ABC1234") is False
        cache.insert("ABC1234")
        assert cache.is_duplicate("ABC1234") is True

    def test_canonical_key(self, cache):
        """Formatting differences in the plate text map to the same entry."""
        cache.insert("abc-1234")
        assert cache.is_duplicate("ABC 1234")
        assert cache.count() == 1

    def test_insert_is_idempotent(self, cache, clock):
        """Re-inserting does not refresh the original timestamp."""
        cache.insert("ABC1234")
        clock.advance(23 * HOUR)
        cache.insert("ABC1234")
        clock.advance(2 * HOUR)
        assert cache.is_duplicate("ABC1234") is False


class TestExpiry:

    def test_entry_alive_inside_window(self, cache, clock):
        cache.insert("ABC1234")
        clock.advance(24 * HOUR - 1)
        assert cache.sweep() == 0
        assert cache.is_duplicate("ABC1234")

    def test_sweep_removes_expired(self, cache, clock):
        cache.insert("ABC1234")
        clock.advance(12 * HOUR)
        cache.insert("XYZ9876")
        clock.advance(12 * HOUR + 1)

        assert cache.sweep() == 1
        assert cache.is_duplicate("ABC1234") is False
        assert cache.is_duplicate("XYZ9876") is True
        assert cache.count() == 1

    def test_expired_entry_not_duplicate_before_sweep(self, cache, clock):
        cache.insert("ABC1234")
        clock.advance(25 * HOUR)
        assert cache.is_duplicate("ABC1234") is False


class TestConcurrency:

    def test_parallel_inserts_and_checks(self, cache):
        plates = [f"AAA{n:04d}" for n in range(500)]

        def work(plate):
            cache.insert(plate)
            cache.insert(plate)
            return cache.is_duplicate(plate)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(work, plates * 2))

        assert all(results)
        assert cache.count() == len(plates)

    def test_sweep_while_inserting(self, cache, clock):
        for n in range(200):
            cache.insert(f"OLD{n:04d}")
        clock.advance(25 * HOUR)

        with ThreadPoolExecutor(max_workers=4) as pool:
            sweeps = [pool.submit(cache.sweep) for _ in range(4)]
            inserts = [pool.submit(cache.insert, f"NEW{n:04d}") for n in range(200)]
            removed = sum(f.result() for f in sweeps)
            for f in inserts:
                f.result()

        assert removed == 200
        assert cache.count() == 200


class TestLifecycle:

    def test_background_sweep(self, clock):
        async def scenario():
            cache = MemoryPlateCache(retention_s=10, sweep_interval_s=0.01, clock=clock)
            cache.insert("ABC1234")
            clock.advance(11)

            cache.start()
            assert cache.running
            for _ in range(100):
                if cache.count() == 0:
                    break
                await asyncio.sleep(0.01)
            await cache.stop()
            return cache

        cache = asyncio.run(scenario())
        assert cache.count() == 0
        assert not cache.running

    def test_start_twice_keeps_one_task(self, clock):
        async def scenario():
            cache = MemoryPlateCache(clock=clock)
            cache.start()
            first = cache._task
            cache.start()
            same = cache._task is first
            await cache.stop()
            return same

        assert asyncio.run(scenario())

    def test_stop_without_start(self, cache):
        asyncio.run(cache.stop())
        assert not cache.running
