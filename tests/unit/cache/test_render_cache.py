"""
Tests for the render cache: LRU eviction, per-paste invalidation and
in-flight invalidation.
"""

import asyncio

import pytest

from pastevault.core.cache import RenderCache
from pastevault.core.metrics import MetricsCollector


class Counter:
    """Async compute function that counts its calls."""

    def __init__(self, value: str = "rendered") -> None:
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        return f"{self.value}-{self.calls}"


class TestGetOrCompute:

    @pytest.mark.asyncio
    async def test_second_call_is_cached(self) -> None:
        cache = RenderCache(capacity=4)
        compute = Counter()

        first = await cache.get_or_compute(1, "html", compute)
        second = await cache.get_or_compute(1, "html", compute)

        assert first == second == "rendered-1"
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_options_are_part_of_the_key(self) -> None:
        cache = RenderCache(capacity=4)
        compute = Counter()

        await cache.get_or_compute(1, "html", compute)
        await cache.get_or_compute(1, "terminal", compute)

        assert compute.calls == 2
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_zero_capacity_always_computes(self) -> None:
        cache = RenderCache(capacity=0)
        compute = Counter()

        await cache.get_or_compute(1, "html", compute)
        await cache.get_or_compute(1, "html", compute)

        assert compute.calls == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_failed_compute_is_not_stored(self) -> None:
        cache = RenderCache(capacity=4)

        async def failing() -> str:
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await cache.get_or_compute(1, "html", failing)

        assert len(cache) == 0
        assert await cache.get_or_compute(1, "html", Counter()) == "rendered-1"


class TestEviction:

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self) -> None:
        cache = RenderCache(capacity=2)

        await cache.get_or_compute(1, "html", Counter("a"))
        await cache.get_or_compute(2, "html", Counter("b"))
        # touch 1 so that 2 becomes least recently used
        await cache.get_or_compute(1, "html", Counter("unused"))
        await cache.get_or_compute(3, "html", Counter("c"))

        assert (1, "html") in cache
        assert (2, "html") not in cache
        assert (3, "html") in cache
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_evicted_key_leaves_index(self) -> None:
        cache = RenderCache(capacity=1)

        await cache.get_or_compute(1, "html", Counter())
        await cache.get_or_compute(2, "html", Counter())

        assert cache.invalidate(1) == 0
        assert cache.invalidate(2) == 1


class TestInvalidation:

    @pytest.mark.asyncio
    async def test_invalidate_drops_all_options_for_id(self) -> None:
        cache = RenderCache(capacity=8)
        for options in ("html", "terminal", "monokai"):
            await cache.get_or_compute(1, options, Counter())
        await cache.get_or_compute(2, "html", Counter())

        assert cache.invalidate(1) == 3
        assert len(cache) == 1
        assert (2, "html") in cache

    @pytest.mark.asyncio
    async def test_invalidate_many(self) -> None:
        cache = RenderCache(capacity=8)
        for pid in (1, 2, 3):
            await cache.get_or_compute(pid, "html", Counter())

        assert cache.invalidate_many([1, 3, 99]) == 2
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_invalidated_id_is_never_stored_again(self) -> None:
        cache = RenderCache(capacity=4)
        compute = Counter()

        await cache.get_or_compute(1, "html", compute)
        cache.invalidate(1)

        assert await cache.get_or_compute(1, "html", compute) == "rendered-2"
        assert (1, "html") not in cache
        assert await cache.get_or_compute(1, "html", compute) == "rendered-3"

    @pytest.mark.asyncio
    async def test_invalidation_before_compute_refuses_store(self) -> None:
        cache = RenderCache(capacity=4)
        cache.invalidate(5)

        assert await cache.get_or_compute(5, "html", Counter()) == "rendered-1"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_invalidation_from_another_thread(self) -> None:
        cache = RenderCache(capacity=4)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow() -> str:
            started.set()
            await release.wait()
            return "stale"

        task = asyncio.create_task(cache.get_or_compute(1, "html", slow))
        await started.wait()
        await asyncio.to_thread(cache.invalidate, 1)
        release.set()

        assert await task == "stale"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_invalidation_during_compute_discards_result(self) -> None:
        cache = RenderCache(capacity=4)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow() -> str:
            started.set()
            await release.wait()
            return "stale"

        task = asyncio.create_task(cache.get_or_compute(1, "html", slow))
        await started.wait()
        cache.invalidate(1)
        release.set()

        assert await task == "stale"
        assert (1, "html") not in cache
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_unrelated_invalidation_keeps_result(self) -> None:
        cache = RenderCache(capacity=4)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow() -> str:
            started.set()
            await release.wait()
            return "fresh"

        task = asyncio.create_task(cache.get_or_compute(1, "html", slow))
        await started.wait()
        cache.invalidate(2)
        release.set()

        await task
        assert (1, "html") in cache

    @pytest.mark.asyncio
    async def test_concurrent_misses_store_one_entry(self) -> None:
        cache = RenderCache(capacity=4)
        compute = Counter()

        results = await asyncio.gather(
            *[cache.get_or_compute(1, "html", compute) for _ in range(5)]
        )

        assert len(cache) == 1
        assert await cache.get_or_compute(1, "html", compute) in results


class TestCacheMetrics:

    @pytest.mark.asyncio
    async def test_hits_misses_and_size(self, metrics: MetricsCollector, sample) -> None:
        cache = RenderCache(capacity=4, metrics=metrics)

        await cache.get_or_compute(1, "html", Counter())
        await cache.get_or_compute(1, "html", Counter())

        assert sample("pastevault_render_cache_hits_total") == 1
        assert sample("pastevault_render_cache_misses_total") == 1
        assert sample("pastevault_render_cache_entries") == 1

        cache.invalidate(1)
        assert sample("pastevault_render_cache_entries") == 0


class TestInvalidatedIds:

    @pytest.mark.asyncio
    async def test_remembered_ids_are_bounded(self) -> None:
        cache = RenderCache(capacity=4, tombstone_limit=3)
        cache.invalidate_many([1, 2, 3, 4, 5])

        assert len(cache._tombstones) == 3
        # the oldest ones were forgotten
        await cache.get_or_compute(1, "html", Counter())
        await cache.get_or_compute(5, "html", Counter())
        assert (1, "html") in cache
        assert (5, "html") not in cache

    @pytest.mark.asyncio
    async def test_pending_id_is_not_forgotten(self) -> None:
        cache = RenderCache(capacity=4, tombstone_limit=1)
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow() -> str:
            started.set()
            await release.wait()
            return "stale"

        task = asyncio.create_task(cache.get_or_compute(1, "html", slow))
        await started.wait()
        cache.invalidate(1)
        cache.invalidate(2)
        release.set()

        assert await task == "stale"
        assert (1, "html") not in cache
        assert 2 not in cache._tombstones

    @pytest.mark.asyncio
    async def test_failed_compute_releases_pending(self) -> None:
        cache = RenderCache(capacity=4)

        async def failing() -> str:
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await cache.get_or_compute(1, "html", failing)

        assert cache._pending == {}
