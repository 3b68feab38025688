from __future__ import annotations

import math
import threading

import pytest

from route_planner.traffic_overlay import TrafficOverlay


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_empty_overlay_contributes_zero_and_is_stale() -> None:
    overlay = TrafficOverlay(freshness_window_s=900, clock=FakeClock())
    assert overlay.current_delay(1, 2) == 0.0
    assert overlay.is_fresh() is False
    snap = overlay.snapshot()
    assert snap.version == 0
    assert snap.stale_at is None


def test_record_delay_is_directional_and_upserts() -> None:
    clock = FakeClock()
    overlay = TrafficOverlay(freshness_window_s=900, clock=clock)
    assert overlay.record_delay(1, 2, 12.0) == 1
    assert overlay.record_delay(1, 2, 7.5) == 2

    assert overlay.current_delay(1, 2) == 7.5
    assert overlay.current_delay(2, 1) == 0.0
    assert overlay.version == 2


def test_delays_expire_after_freshness_window() -> None:
    clock = FakeClock()
    overlay = TrafficOverlay(freshness_window_s=900, clock=clock)
    overlay.record_delay(1, 2, 10.0)

    clock.advance(899.0)
    assert overlay.current_delay(1, 2) == 10.0
    assert overlay.snapshot().stale_at == pytest.approx(1_900.0)

    clock.advance(1.0)
    assert overlay.current_delay(1, 2) == 0.0
    assert overlay.is_fresh() is False


def test_any_update_refreshes_the_whole_overlay() -> None:
    clock = FakeClock()
    overlay = TrafficOverlay(freshness_window_s=60, clock=clock)
    overlay.record_delay(1, 2, 10.0)
    clock.advance(120.0)
    assert overlay.current_delay(1, 2) == 0.0

    overlay.record_delay(3, 4, 1.0)
    assert overlay.current_delay(1, 2) == 10.0


def test_snapshot_is_isolated_from_later_writes() -> None:
    clock = FakeClock()
    overlay = TrafficOverlay(freshness_window_s=900, clock=clock)
    overlay.record_delay(1, 2, 5.0)
    snap = overlay.snapshot()
    overlay.record_delay(1, 2, 50.0)

    assert snap.delay(1, 2) == 5.0
    assert overlay.snapshot().delay(1, 2) == 50.0


@pytest.mark.parametrize("bad", [-1.0, math.inf, math.nan])
def test_record_delay_rejects_invalid_values(bad: float) -> None:
    overlay = TrafficOverlay(freshness_window_s=900, clock=FakeClock())
    with pytest.raises(ValueError):
        overlay.record_delay(1, 2, bad)
    assert overlay.version == 0


def test_clear_drops_entries_and_bumps_version() -> None:
    overlay = TrafficOverlay(freshness_window_s=900, clock=FakeClock())
    overlay.record_delay(1, 2, 5.0)
    assert overlay.clear() == 1
    assert overlay.current_delay(1, 2) == 0.0
    assert overlay.version == 2


def test_concurrent_writers_keep_every_update() -> None:
    overlay = TrafficOverlay(freshness_window_s=900, clock=FakeClock())

    def _writer(offset: int) -> None:
        for idx in range(200):
            overlay.record_delay(offset, idx, float(idx))

    threads = [threading.Thread(target=_writer, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    stats = overlay.stats()
    assert stats["entries"] == 800
    assert stats["version"] == 800
