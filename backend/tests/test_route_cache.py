from __future__ import annotations

import threading
import time

import pytest

from route_planner.models import OptimizationGoal, RoutingContext
from route_planner.path_finder import RouteResult
from route_planner.route_cache import CacheEntry, CacheKey, RouteCacheStore


def _key(start: int = 1, goal: int = 2, **ctx) -> CacheKey:
    return CacheKey(start=start, goal=goal, fingerprint=RoutingContext(**ctx).fingerprint())


def _entry(cost: float = 1.0, **overrides) -> CacheEntry:
    data = {
        "result": RouteResult(status="ok", start=1, goal=2, path=(1, 2), total_cost=cost),
        "computed_at": 0.0,
    }
    data.update(overrides)
    return CacheEntry(**data)


def test_lookup_miss_then_hit() -> None:
    cache = RouteCacheStore(max_entries=4)
    key = _key()
    assert cache.lookup(key) is None
    cache.insert(key, _entry())
    assert cache.lookup(key) == _entry()

    stats = cache.snapshot()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["size"] == 1


def test_keys_use_structural_equality() -> None:
    assert _key(avoid_cities=frozenset({3, 4})) == _key(avoid_cities=frozenset({4, 3}))
    assert _key(goal=OptimizationGoal.FASTEST_TIME) != _key()
    assert _key(avoid_tolls=True) != _key()
    assert _key(start=12, goal=3) != _key(start=1, goal=23)
    # Must-visit and display hints do not affect edge cost.
    assert _key(must_visit=frozenset({9})) == _key()
    assert _key(prefer_public_transport=True) == _key()


def test_lru_eviction_drops_least_recently_used() -> None:
    cache = RouteCacheStore(max_entries=2)
    a, b, c = _key(1, 2), _key(1, 3), _key(1, 4)
    cache.insert(a, _entry(1.0))
    cache.insert(b, _entry(2.0))
    assert cache.lookup(a) is not None
    cache.insert(c, _entry(3.0))

    assert a in cache
    assert b not in cache
    assert c in cache
    assert cache.snapshot()["evictions"] == 1


def test_capacity_one_evicts_previous_entry() -> None:
    cache = RouteCacheStore(max_entries=1)
    cache.insert(_key(1, 2), _entry())
    cache.insert(_key(3, 4), _entry())
    assert cache.lookup(_key(1, 2)) is None
    assert len(cache) == 1


def test_entry_past_valid_until_is_a_miss() -> None:
    cache = RouteCacheStore(max_entries=4)
    key = _key()
    cache.insert(key, _entry(valid_until=100.0))
    assert cache.lookup(key, now=99.0) is not None
    assert cache.lookup(key, now=100.0) is None
    assert key not in cache


def test_overlay_version_mismatch_is_a_miss() -> None:
    cache = RouteCacheStore(max_entries=4)
    key = _key()
    cache.insert(key, _entry(overlay_version=3))
    assert cache.lookup(key, overlay_version=3) is not None
    assert cache.lookup(key, overlay_version=4) is None


def test_invalidate_all() -> None:
    cache = RouteCacheStore(max_entries=4)
    cache.insert(_key(1, 2), _entry())
    cache.insert(_key(1, 3), _entry())
    assert cache.invalidate_all() == 2
    assert len(cache) == 0
    assert cache.snapshot()["invalidations"] == 1


def test_get_or_compute_skips_store_when_rejected() -> None:
    cache = RouteCacheStore(max_entries=4)
    key = _key()
    entry, hit = cache.get_or_compute(key, lambda: _entry(), should_store=lambda _e: False)
    assert hit is False
    assert entry == _entry()
    assert key not in cache


def test_get_or_compute_runs_single_flight_per_key() -> None:
    cache = RouteCacheStore(max_entries=4)
    key = _key()
    calls: list[int] = []
    gate = threading.Event()

    def _compute() -> CacheEntry:
        calls.append(1)
        gate.wait(timeout=5.0)
        return _entry(42.0)

    results: list[tuple[CacheEntry, bool]] = []

    def _worker() -> None:
        results.append(cache.get_or_compute(key, _compute))

    threads = [threading.Thread(target=_worker) for _ in range(5)]
    for thread in threads:
        thread.start()
    deadline = time.monotonic() + 5.0
    while cache.snapshot()["in_flight"] == 0 and time.monotonic() < deadline:
        time.sleep(0.001)
    time.sleep(0.05)
    gate.set()
    for thread in threads:
        thread.join(timeout=5.0)

    assert len(calls) == 1
    assert len(results) == 5
    assert all(entry.result.total_cost == 42.0 for entry, _hit in results)
    assert sum(1 for _entry_, hit in results if not hit) == 1


def test_get_or_compute_propagates_errors_to_waiters() -> None:
    cache = RouteCacheStore(max_entries=4)

    def _boom() -> CacheEntry:
        raise RuntimeError("search failed")

    with pytest.raises(RuntimeError):
        cache.get_or_compute(_key(), _boom)
    assert cache.snapshot()["in_flight"] == 0


def test_invalidation_after_store_check_keeps_entry_out() -> None:
    cache = RouteCacheStore(max_entries=4)
    key = _key()

    def _accept_then_invalidate(_entry: CacheEntry) -> bool:
        cache.invalidate_all()
        return True

    entry, hit = cache.get_or_compute(key, lambda: _entry(7.0), should_store=_accept_then_invalidate)
    assert hit is False
    assert entry.result.total_cost == 7.0
    assert key not in cache
    assert cache.snapshot()["generation"] == 1

    # The next computation starts in the new generation and is stored.
    cache.get_or_compute(key, lambda: _entry(8.0))
    assert cache.lookup(key).result.total_cost == 8.0


def test_invalidation_during_compute_keeps_entry_out() -> None:
    cache = RouteCacheStore(max_entries=4)
    key = _key()

    def _compute() -> CacheEntry:
        cache.invalidate_all()
        return _entry()

    cache.get_or_compute(key, _compute)
    assert key not in cache
