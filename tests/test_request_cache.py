"""RequestCache: coalescing, fan-out, failure eviction and retention."""

from __future__ import annotations

import asyncio

import numpy as np
import pytest

from errors import ComputeFailure, InvalidCharacter
from request_cache import COMPLETE, PENDING, RequestCache


class CountingCompute:
    """compute_fn stand-in that blocks until released and counts invocations."""

    def __init__(self, result=None, error=None):
        self.calls = 0
        self.release = asyncio.Event()
        self.result = result if result is not None else np.full((64, 64), 7.0, dtype=np.float32)
        self.error = error

    def __call__(self):
        self.calls += 1
        return self._run()

    async def _run(self):
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_concurrent_submits_share_one_computation():
    cache = RequestCache()
    compute = CountingCompute()
    received = []

    futures = [cache.submit("key", compute, received.append) for _ in range(5)]
    await asyncio.sleep(0)
    assert cache.state_of("key") == PENDING

    compute.release.set()
    results = await asyncio.gather(*futures)

    assert compute.calls == 1
    assert len(received) == 5
    assert all(r is compute.result for r in results)
    assert all(r is compute.result for r in received)
    assert cache.stats["coalesced"] == 4
    # Default policy: evicted right after delivery
    assert "key" not in cache
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_waiters_notified_in_registration_order():
    cache = RequestCache()
    compute = CountingCompute()
    order = []

    futures = [cache.submit("k", compute, lambda grid, i=i: order.append(i)) for i in range(4)]
    compute.release.set()
    await asyncio.gather(*futures)

    assert order == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_distinct_keys_compute_separately():
    cache = RequestCache()
    a, b = CountingCompute(), CountingCompute()
    fa = cache.submit("a", a)
    fb = cache.submit("b", b)
    a.release.set()
    b.release.set()
    await asyncio.gather(fa, fb)
    assert a.calls == 1 and b.calls == 1


@pytest.mark.asyncio
async def test_failure_fans_out_and_is_not_cached():
    cache = RequestCache()
    failing = CountingCompute(error=RuntimeError("device lost"))
    sinks = []

    futures = [cache.submit("key", failing, sinks.append) for _ in range(3)]
    failing.release.set()
    outcomes = await asyncio.gather(*futures, return_exceptions=True)

    assert failing.calls == 1
    assert sinks == []
    assert all(isinstance(o, ComputeFailure) for o in outcomes)
    assert outcomes[0] is outcomes[1] is outcomes[2]
    assert isinstance(outcomes[0].__cause__, RuntimeError)
    assert "key" not in cache

    retry = CountingCompute()
    future = cache.submit("key", retry)
    retry.release.set()
    await future
    assert retry.calls == 1


@pytest.mark.asyncio
async def test_domain_errors_pass_through_unwrapped():
    cache = RequestCache()
    compute = CountingCompute(error=InvalidCharacter("$"))
    future = cache.submit("key", compute)
    compute.release.set()
    with pytest.raises(InvalidCharacter):
        await future


@pytest.mark.asyncio
async def test_synchronous_compute_error_is_delivered():
    cache = RequestCache()

    def explode():
        raise MemoryError("no room")

    with pytest.raises(ComputeFailure, match="no room"):
        await cache.submit("key", explode)
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_failing_sink_only_fails_its_own_waiter():
    cache = RequestCache()
    compute = CountingCompute()

    def bad_sink(grid):
        raise IOError("disk full")

    good = cache.submit("key", compute)
    bad = cache.submit("key", compute, bad_sink)
    compute.release.set()

    assert (await good) is compute.result
    with pytest.raises(IOError, match="disk full"):
        await bad


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_cancel_computation():
    cache = RequestCache()
    compute = CountingCompute()
    first = cache.submit("key", compute)
    second = cache.submit("key", compute)

    first.cancel()
    compute.release.set()

    assert (await second) is compute.result
    assert first.cancelled()


@pytest.mark.asyncio
async def test_results_are_read_only():
    cache = RequestCache()
    compute = CountingCompute()
    future = cache.submit("key", compute)
    compute.release.set()
    grid = await future
    with pytest.raises(ValueError):
        grid[0, 0] = 1.0


@pytest.mark.asyncio
async def test_retained_results_are_served_without_recomputation():
    cache = RequestCache(retention="retain", max_entries=2)
    compute = CountingCompute()
    compute.release.set()

    first = await cache.submit("a", compute)
    assert cache.state_of("a") == COMPLETE

    received = []
    again = await cache.submit("a", compute, received.append)
    assert compute.calls == 1
    assert again is first
    assert received == [first]
    assert cache.stats["hits"] == 1


@pytest.mark.asyncio
async def test_retained_entries_are_bounded_lru():
    cache = RequestCache(retention="retain", max_entries=2)
    computes = {k: CountingCompute() for k in "abc"}
    for c in computes.values():
        c.release.set()

    await cache.submit("a", computes["a"])
    await cache.submit("b", computes["b"])
    await cache.submit("a", computes["a"])  # refresh a
    await cache.submit("c", computes["c"])

    assert "a" in cache and "c" in cache
    assert "b" not in cache

    cache.clear()
    assert len(cache) == 0


def test_unknown_retention_policy():
    with pytest.raises(ValueError, match="retention"):
        RequestCache(retention="forever")
