from __future__ import annotations

import heapq
import itertools
import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Event, Lock

from .cost_model import SegmentCost, admissible_heuristic_scale, edge_cost_breakdown
from .logging_utils import log_event
from .models import CityId, CostFingerprint, RouteStatus, RoutingContext
from .routing_graph import RouteGraph, euclidean_distance
from .settings import settings
from .traffic_overlay import TrafficSnapshot


@dataclass(frozen=True)
class SearchNode:
    city_id: CityId
    g: float
    h: float
    predecessor: CityId | None

    @property
    def f(self) -> float:
        return self.g + self.h


@dataclass(frozen=True)
class RouteResult:
    status: RouteStatus
    start: CityId
    goal: CityId
    path: tuple[CityId, ...] = ()
    total_cost: float | None = None
    segments: tuple[SegmentCost, ...] = ()
    explored: int = 0
    reason_code: str | None = None
    detail: str | None = None

    @property
    def found(self) -> bool:
        return self.status == "ok"

    @property
    def cacheable(self) -> bool:
        return self.status in ("ok", "no_path")


FrontierEntry = tuple[float, float, CityId, int, SearchNode]


class PathFinder:
    """A* over a frozen graph with context-dependent edge costs."""

    def __init__(
        self,
        graph: RouteGraph,
        *,
        max_expansions: int | None = None,
        deadline_ms: float | None = None,
        heuristic_enabled: bool | None = None,
        max_cached_scales: int | None = None,
    ) -> None:
        self._graph = graph
        self._max_expansions = settings.search_max_expansions if max_expansions is None else max_expansions
        self._deadline_ms = settings.search_deadline_ms if deadline_ms is None else deadline_ms
        self._heuristic_enabled = settings.heuristic_enabled if heuristic_enabled is None else heuristic_enabled
        self._lock = Lock()
        # One heuristic scale per cost fingerprint, LRU-bounded like the route cache.
        self._scales: OrderedDict[CostFingerprint, float] = OrderedDict()
        self._max_cached_scales = max(
            1, int(settings.route_cache_max_entries if max_cached_scales is None else max_cached_scales)
        )
        self.invocations = 0

    @property
    def graph(self) -> RouteGraph:
        return self._graph

    def heuristic_scale(self, context: RoutingContext) -> float:
        if not self._heuristic_enabled:
            return 0.0
        key = context.fingerprint()
        with self._lock:
            cached = self._scales.get(key)
            if cached is not None:
                self._scales.move_to_end(key)
                return cached
        scale = admissible_heuristic_scale(self._graph, context)
        with self._lock:
            self._scales[key] = scale
            self._scales.move_to_end(key)
            while len(self._scales) > self._max_cached_scales:
                self._scales.popitem(last=False)
        return scale

    @property
    def cached_scale_count(self) -> int:
        with self._lock:
            return len(self._scales)

    def search(
        self,
        start: CityId,
        goal: CityId,
        context: RoutingContext,
        *,
        traffic: TrafficSnapshot | None = None,
        cancel_event: Event | None = None,
    ) -> RouteResult:
        graph = self._graph
        graph.require_city(start, role="start")
        goal_city = graph.require_city(goal, role="goal")
        with self._lock:
            self.invocations += 1

        if start == goal:
            return RouteResult(status="ok", start=start, goal=goal, path=(start,), total_cost=0.0)

        scale = self.heuristic_scale(context)

        def heuristic(city_id: CityId) -> float:
            if scale <= 0.0:
                return 0.0
            return scale * euclidean_distance(graph.city(city_id), goal_city)

        frontier: list[FrontierEntry] = []
        sequence = itertools.count()

        def push(node: SearchNode) -> None:
            # Ascending f, then deeper g, then lower city id, then push order.
            heapq.heappush(frontier, (node.f, -node.g, node.city_id, next(sequence), node))

        best: dict[CityId, float] = {start: 0.0}
        came_by: dict[CityId, SegmentCost] = {}
        settled: set[CityId] = set()
        explored = 0
        deadline = (
            time.monotonic() + (float(self._deadline_ms) / 1000.0)
            if self._deadline_ms and self._deadline_ms > 0
            else None
        )

        push(SearchNode(city_id=start, g=0.0, h=heuristic(start), predecessor=None))

        while frontier:
            if cancel_event is not None and cancel_event.is_set():
                return self._finish(
                    RouteResult(
                        status="cancelled",
                        start=start,
                        goal=goal,
                        explored=explored,
                        reason_code="search_cancelled",
                        detail="search cancelled",
                    ),
                    context,
                )
            if self._max_expansions and explored >= self._max_expansions:
                return self._finish(
                    self._budget_exceeded(start, goal, explored, f"expansion budget {self._max_expansions} reached"),
                    context,
                )
            if deadline is not None and time.monotonic() >= deadline:
                return self._finish(
                    self._budget_exceeded(start, goal, explored, f"deadline {self._deadline_ms}ms reached"),
                    context,
                )

            node = heapq.heappop(frontier)[-1]
            if node.city_id in settled or node.g > best.get(node.city_id, math.inf):
                continue
            explored += 1

            if node.city_id == goal:
                segments = self._reconstruct(start, goal, came_by)
                return self._finish(
                    RouteResult(
                        status="ok",
                        start=start,
                        goal=goal,
                        path=(start, *(segment.target for segment in segments)),
                        total_cost=node.g,
                        segments=segments,
                        explored=explored,
                    ),
                    context,
                )

            settled.add(node.city_id)
            for edge in graph.neighbors(node.city_id):
                if edge.target in settled:
                    continue
                delay = traffic.delay(edge.source, edge.target) if traffic is not None else 0.0
                segment = edge_cost_breakdown(edge, context, delay)
                if segment is None:
                    continue
                tentative = node.g + segment.cost
                if tentative < best.get(edge.target, math.inf):
                    best[edge.target] = tentative
                    came_by[edge.target] = segment
                    push(
                        SearchNode(
                            city_id=edge.target,
                            g=tentative,
                            h=heuristic(edge.target),
                            predecessor=node.city_id,
                        )
                    )

        return self._finish(
            RouteResult(
                status="no_path",
                start=start,
                goal=goal,
                explored=explored,
                reason_code="no_path",
                detail="frontier exhausted before reaching goal",
            ),
            context,
        )

    @staticmethod
    def _reconstruct(
        start: CityId,
        goal: CityId,
        came_by: dict[CityId, SegmentCost],
    ) -> tuple[SegmentCost, ...]:
        segments: list[SegmentCost] = []
        current = goal
        while current != start:
            segment = came_by[current]
            segments.append(segment)
            current = segment.source
        segments.reverse()
        return tuple(segments)

    @staticmethod
    def _budget_exceeded(start: CityId, goal: CityId, explored: int, detail: str) -> RouteResult:
        return RouteResult(
            status="search_budget_exceeded",
            start=start,
            goal=goal,
            explored=explored,
            reason_code="search_budget_exceeded",
            detail=detail,
        )

    @staticmethod
    def _finish(result: RouteResult, context: RoutingContext) -> RouteResult:
        log_event(
            "route_search",
            level=logging.DEBUG,
            start=result.start,
            goal=result.goal,
            optimization_goal=context.goal.value,
            status=result.status,
            explored=result.explored,
            total_cost=result.total_cost,
        )
        return result
