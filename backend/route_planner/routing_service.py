from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from threading import Event
from typing import Any

from .logging_utils import log_event
from .metrics_store import QueryMetricsStore
from .models import CityId, OptimizationGoal, RoutingContext, TimeOfDay
from .path_finder import PathFinder, RouteResult
from .route_cache import CacheEntry, CacheKey, RouteCacheStore
from .routing_graph import RouteGraph
from .settings import CacheInvalidationPolicy, settings
from .traffic_overlay import TrafficOverlay


@dataclass(frozen=True)
class TrafficUpdate:
    source: CityId
    target: CityId
    delay_minutes: float
    overlay_version: int
    invalidated_entries: int


@dataclass(frozen=True)
class TrafficClear:
    cleared_delays: int
    overlay_version: int
    invalidated_entries: int


class RoutingService:
    """Cache lookup, A* on miss, cache population. The only entry point callers use."""

    def __init__(
        self,
        graph: RouteGraph,
        *,
        overlay: TrafficOverlay | None = None,
        cache: RouteCacheStore | None = None,
        path_finder: PathFinder | None = None,
        use_cache: bool | None = None,
        invalidation_policy: CacheInvalidationPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._graph = graph.freeze()
        self._clock = clock
        self.overlay = overlay if overlay is not None else TrafficOverlay(clock=clock)
        self.cache = (
            cache
            if cache is not None
            else RouteCacheStore(max_entries=settings.route_cache_max_entries, clock=clock)
        )
        self.path_finder = (
            path_finder
            if path_finder is not None
            else PathFinder(self._graph, max_cached_scales=self.cache.max_entries)
        )
        self._use_cache = settings.route_cache_enabled if use_cache is None else bool(use_cache)
        self._policy: CacheInvalidationPolicy = (
            settings.cache_invalidation_policy if invalidation_policy is None else invalidation_policy
        )
        self.metrics = QueryMetricsStore()

    @property
    def graph(self) -> RouteGraph:
        return self._graph

    @property
    def invalidation_policy(self) -> CacheInvalidationPolicy:
        return self._policy

    def default_context(self, **overrides: Any) -> RoutingContext:
        data: dict[str, Any] = {"max_accident_risk_percent": settings.max_accident_risk_percent}
        data.update(overrides)
        return RoutingContext(**data)

    def query(
        self,
        start: CityId,
        goal: CityId,
        context: RoutingContext | None = None,
        *,
        cancel_event: Event | None = None,
    ) -> RouteResult:
        ctx = context if context is not None else self.default_context()
        self._graph.require_city(start, role="start")
        self._graph.require_city(goal, role="goal")

        t0 = time.perf_counter()
        now = self._clock()
        key = CacheKey(start=start, goal=goal, fingerprint=ctx.fingerprint())

        def compute() -> CacheEntry:
            traffic = self.overlay.snapshot(now)
            result = self.path_finder.search(start, goal, ctx, traffic=traffic, cancel_event=cancel_event)
            return CacheEntry(
                result=result,
                computed_at=now,
                overlay_version=traffic.version,
                valid_until=traffic.stale_at,
            )

        def should_store(entry: CacheEntry) -> bool:
            # An overlay write that landed mid-search makes this result outdated.
            return entry.result.cacheable and entry.overlay_version == self.overlay.version

        if self._use_cache:
            entry, hit = self.cache.get_or_compute(
                key,
                compute,
                should_store=should_store,
                now=now,
                overlay_version=self.overlay.version if self._policy == "versioned" else None,
            )
        else:
            entry, hit = compute(), False

        result = entry.result
        duration_ms = (time.perf_counter() - t0) * 1000.0
        self.metrics.record(
            ctx.goal.value,
            status=result.status,
            duration_ms=duration_ms,
            explored=result.explored,
            cache_hit=hit,
        )
        log_event(
            "route_query",
            start=start,
            goal=goal,
            optimization_goal=ctx.goal.value,
            time_of_day=ctx.time_of_day.value,
            is_weekend=ctx.is_weekend,
            status=result.status,
            cache_hit=hit,
            total_cost=result.total_cost,
            hops=max(0, len(result.path) - 1),
            explored=result.explored,
            duration_ms=round(duration_ms, 2),
        )
        return result

    def compare_goals(
        self,
        start: CityId,
        goal: CityId,
        time_of_day: TimeOfDay,
        is_weekend: bool,
        goals: Iterable[OptimizationGoal],
        *,
        base_context: RoutingContext | None = None,
        cancel_events: Mapping[OptimizationGoal, Event] | None = None,
    ) -> dict[OptimizationGoal, RouteResult]:
        """Run one independent query per goal; each goal is its own cache key."""
        self._graph.require_city(start, role="start")
        self._graph.require_city(goal, role="goal")
        ordered = list(dict.fromkeys(OptimizationGoal(g) for g in goals))
        if not ordered:
            return {}
        base = base_context if base_context is not None else self.default_context()
        events = cancel_events or {}
        t0 = time.perf_counter()

        workers = max(1, min(settings.compare_concurrency, len(ordered)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                optimization_goal: pool.submit(
                    self.query,
                    start,
                    goal,
                    base.model_copy(
                        update={
                            "time_of_day": TimeOfDay(time_of_day),
                            "is_weekend": bool(is_weekend),
                            "goal": optimization_goal,
                        }
                    ),
                    cancel_event=events.get(optimization_goal),
                )
                for optimization_goal in ordered
            }
            results = {optimization_goal: future.result() for optimization_goal, future in futures.items()}

        log_event(
            "route_compare",
            start=start,
            goal=goal,
            goals=[g.value for g in ordered],
            statuses={g.value: r.status for g, r in results.items()},
            duration_ms=round((time.perf_counter() - t0) * 1000.0, 2),
        )
        return results

    def record_delay(self, source: CityId, target: CityId, delay_minutes: float) -> TrafficUpdate:
        self._graph.require_city(source, role="traffic source")
        self._graph.require_city(target, role="traffic target")
        version = self.overlay.record_delay(source, target, delay_minutes)
        invalidated = self.cache.invalidate_all() if self._policy == "invalidate_all" else 0
        log_event(
            "traffic_delay_recorded",
            source=source,
            target=target,
            delay_minutes=float(delay_minutes),
            overlay_version=version,
            invalidated_entries=invalidated,
            policy=self._policy,
        )
        return TrafficUpdate(
            source=source,
            target=target,
            delay_minutes=float(delay_minutes),
            overlay_version=version,
            invalidated_entries=invalidated,
        )

    def clear_traffic(self) -> TrafficClear:
        """Drop every overlay delay; cached routes that baked them in go too."""
        cleared = self.overlay.clear()
        invalidated = self.cache.invalidate_all() if self._policy == "invalidate_all" else 0
        version = self.overlay.version
        log_event(
            "traffic_cleared",
            cleared_delays=cleared,
            overlay_version=version,
            invalidated_entries=invalidated,
            policy=self._policy,
        )
        return TrafficClear(cleared_delays=cleared, overlay_version=version, invalidated_entries=invalidated)

    def invalidate_cache(self) -> int:
        cleared = self.cache.invalidate_all()
        log_event("route_cache_invalidated", cleared=cleared)
        return cleared

    def stats(self) -> dict[str, object]:
        return {
            "graph": {"cities": self._graph.city_count, "edges": self._graph.edge_count},
            "cache": {**self.cache.snapshot(), "enabled": self._use_cache, "policy": self._policy},
            "traffic": self.overlay.stats(),
            "queries": self.metrics.snapshot(),
            "search_invocations": self.path_finder.invocations,
            "heuristic_scales": self.path_finder.cached_scale_count,
        }
