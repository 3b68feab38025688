from __future__ import annotations

import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from threading import Lock
from types import MappingProxyType

from .models import CityId
from .settings import settings

_EMPTY: Mapping[tuple[CityId, CityId], float] = MappingProxyType({})


@dataclass(frozen=True)
class TrafficSnapshot:
    """Immutable view of the overlay as seen by one search."""

    delays: Mapping[tuple[CityId, CityId], float]
    version: int
    last_update: float | None
    fresh: bool
    stale_at: float | None

    def delay(self, source: CityId, target: CityId) -> float:
        if not self.fresh:
            return 0.0
        return self.delays.get((source, target), 0.0)


class TrafficOverlay:
    """Directed-edge delays layered over the static graph.

    Writers publish a new immutable mapping under the lock (read-copy-update),
    so readers holding a snapshot never observe a partial update.
    """

    def __init__(
        self,
        *,
        freshness_window_s: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        window = settings.traffic_freshness_window_s if freshness_window_s is None else freshness_window_s
        self._freshness_window_s = max(0.0, float(window))
        self._clock = clock
        self._lock = Lock()
        self._delays: Mapping[tuple[CityId, CityId], float] = _EMPTY
        self._last_update: float | None = None
        self._version = 0

    @property
    def freshness_window_s(self) -> float:
        return self._freshness_window_s

    @property
    def version(self) -> int:
        return self._version

    def record_delay(
        self,
        source: CityId,
        target: CityId,
        delay_minutes: float,
        *,
        now: float | None = None,
    ) -> int:
        delay = float(delay_minutes)
        if not math.isfinite(delay) or delay < 0.0:
            raise ValueError(f"delay must be finite and non-negative, got {delay_minutes!r}")
        stamp = self._clock() if now is None else float(now)
        with self._lock:
            updated = dict(self._delays)
            updated[(source, target)] = delay
            self._delays = MappingProxyType(updated)
            self._last_update = stamp
            self._version += 1
            return self._version

    def _fresh_at(self, last_update: float | None, now: float) -> bool:
        if last_update is None:
            return False
        return (now - last_update) < self._freshness_window_s

    def is_fresh(self, now: float | None = None) -> bool:
        stamp = self._clock() if now is None else float(now)
        return self._fresh_at(self._last_update, stamp)

    def current_delay(self, source: CityId, target: CityId, now: float | None = None) -> float:
        return self.snapshot(now).delay(source, target)

    def snapshot(self, now: float | None = None) -> TrafficSnapshot:
        stamp = self._clock() if now is None else float(now)
        with self._lock:
            delays = self._delays
            last_update = self._last_update
            version = self._version
        fresh = self._fresh_at(last_update, stamp)
        return TrafficSnapshot(
            delays=delays,
            version=version,
            last_update=last_update,
            fresh=fresh,
            stale_at=(last_update + self._freshness_window_s) if fresh and last_update is not None else None,
        )

    def clear(self) -> int:
        with self._lock:
            cleared = len(self._delays)
            self._delays = _EMPTY
            self._version += 1
            return cleared

    def stats(self, now: float | None = None) -> dict[str, object]:
        snap = self.snapshot(now)
        return {
            "entries": len(snap.delays),
            "version": snap.version,
            "last_update": snap.last_update,
            "fresh": snap.fresh,
            "freshness_window_s": self._freshness_window_s,
        }
