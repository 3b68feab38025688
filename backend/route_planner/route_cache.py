from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from threading import Event, Lock

from .models import CityId, CostFingerprint
from .path_finder import RouteResult


@dataclass(frozen=True)
class CacheKey:
    start: CityId
    goal: CityId
    fingerprint: CostFingerprint


@dataclass(frozen=True)
class CacheEntry:
    result: RouteResult
    computed_at: float
    overlay_version: int = 0
    # Wall time after which the overlay readings baked into ``result`` go stale.
    valid_until: float | None = None


class _InFlight:
    def __init__(self) -> None:
        self.done = Event()
        self.entry: CacheEntry | None = None
        self.error: BaseException | None = None


class RouteCacheStore:
    """LRU memoization of route results; never changes a result, only its latency."""

    def __init__(self, *, max_entries: int, clock: Callable[[], float] = time.time) -> None:
        self._max_entries = max(1, int(max_entries))
        self._clock = clock
        self._lock = Lock()
        self._items: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._in_flight: dict[CacheKey, _InFlight] = {}
        # Bumped by every invalidation; a computation that started in an older
        # generation is never inserted.
        self._generation = 0

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._invalidations = 0

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    @staticmethod
    def _is_usable(entry: CacheEntry, *, now: float, overlay_version: int | None) -> bool:
        if entry.valid_until is not None and now >= entry.valid_until:
            return False
        if overlay_version is not None and entry.overlay_version != overlay_version:
            return False
        return True

    def _lookup_locked(self, key: CacheKey, *, now: float, overlay_version: int | None) -> CacheEntry | None:
        entry = self._items.get(key)
        if entry is None:
            self._misses += 1
            return None

        if not self._is_usable(entry, now=now, overlay_version=overlay_version):
            self._items.pop(key, None)
            self._misses += 1
            return None

        self._items.move_to_end(key)
        self._hits += 1
        return entry

    def lookup(
        self,
        key: CacheKey,
        *,
        now: float | None = None,
        overlay_version: int | None = None,
    ) -> CacheEntry | None:
        stamp = self._clock() if now is None else float(now)
        with self._lock:
            return self._lookup_locked(key, now=stamp, overlay_version=overlay_version)

    def _insert_locked(self, key: CacheKey, entry: CacheEntry) -> None:
        if key in self._items:
            self._items.move_to_end(key)
        self._items[key] = entry

        while len(self._items) > self._max_entries:
            self._items.popitem(last=False)
            self._evictions += 1

    def insert(self, key: CacheKey, entry: CacheEntry) -> None:
        with self._lock:
            self._insert_locked(key, entry)

    def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], CacheEntry],
        *,
        should_store: Callable[[CacheEntry], bool] = lambda _entry: True,
        now: float | None = None,
        overlay_version: int | None = None,
    ) -> tuple[CacheEntry, bool]:
        """Singleflight lookup: at most one ``compute`` runs per key at a time.

        Returns ``(entry, hit)``. Waiters share the leader's entry only when it
        was stored; otherwise each waiter computes on its own. An
        ``invalidate_all`` that lands while the leader computes, even after
        ``should_store`` accepted the entry, keeps the entry out of the cache.
        """
        stamp = self._clock() if now is None else float(now)
        with self._lock:
            entry = self._lookup_locked(key, now=stamp, overlay_version=overlay_version)
            if entry is not None:
                return entry, True
            generation = self._generation
            flight = self._in_flight.get(key)
            leader = flight is None
            if flight is None:
                flight = _InFlight()
                self._in_flight[key] = flight

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            if flight.entry is not None:
                return flight.entry, True
            return compute(), False

        try:
            computed = compute()
        except BaseException as exc:
            flight.error = exc
            raise
        else:
            if should_store(computed):
                with self._lock:
                    if self._generation == generation:
                        self._insert_locked(key, computed)
                        flight.entry = computed
            return computed, False
        finally:
            with self._lock:
                self._in_flight.pop(key, None)
            flight.done.set()

    def invalidate_all(self) -> int:
        with self._lock:
            cleared = len(self._items)
            self._items.clear()
            self._generation += 1
            self._invalidations += 1
            return cleared

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._items),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "invalidations": self._invalidations,
                "generation": self._generation,
                "in_flight": len(self._in_flight),
                "max_entries": self._max_entries,
            }
