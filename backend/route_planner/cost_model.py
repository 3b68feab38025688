from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from .models import CityId, OptimizationGoal, RoadType, RoutingContext
from .routing_graph import Edge, RouteGraph, euclidean_distance


class _Unreachable:
    """Sentinel for an edge pruned by a hard constraint."""

    _instance: "_Unreachable | None" = None

    def __new__(cls) -> "_Unreachable":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNREACHABLE"

    def __bool__(self) -> bool:
        return False


UNREACHABLE: Final = _Unreachable()

# Edge costs must stay strictly positive for A*; every goal adjustment is
# clamped to this floor.
MIN_EDGE_COST: Final[float] = 1e-3

SPEED_BONUS_DIVISOR: Final[float] = 10.0
RISK_PENALTY_SCALE: Final[float] = 100.0
ECO_TRANSIT_BONUS: Final[float] = 20.0
ECO_HIGHWAY_PENALTY: Final[float] = 10.0


@dataclass(frozen=True)
class SegmentCost:
    source: CityId
    target: CityId
    base: float
    delay: float
    adjustment: float
    cost: float


def time_context_weight(edge: Edge, context: RoutingContext) -> float:
    weight = edge.base_weight * edge.time_multipliers.get(context.time_of_day, 1.0)
    if context.is_weekend:
        weight *= edge.weekend_multiplier
    return weight


def violates_hard_constraints(edge: Edge, context: RoutingContext) -> bool:
    if edge.closed:
        return True
    if context.avoid_tolls and edge.toll > 0.0:
        return True
    if context.avoid_highways and edge.road_type == RoadType.HIGHWAY:
        return True
    if edge.accident_risk_percent > context.max_accident_risk_percent:
        return True
    return edge.target in context.avoid_cities


def _unchanged(edge: Edge) -> float:
    return 0.0


def _speed_bonus(edge: Edge) -> float:
    return -(edge.speed_limit / SPEED_BONUS_DIVISOR)


def _toll_charge(edge: Edge) -> float:
    return edge.toll


def _risk_penalty(edge: Edge) -> float:
    return edge.accident_risk * RISK_PENALTY_SCALE


def _eco_adjustment(edge: Edge) -> float:
    if edge.public_transport:
        return -ECO_TRANSIT_BONUS
    if edge.road_type == RoadType.HIGHWAY:
        return ECO_HIGHWAY_PENALTY
    return 0.0


GOAL_ADJUSTMENTS: Final[dict[OptimizationGoal, Callable[[Edge], float]]] = {
    OptimizationGoal.SHORTEST_DISTANCE: _unchanged,
    OptimizationGoal.FASTEST_TIME: _speed_bonus,
    OptimizationGoal.LOWEST_COST: _toll_charge,
    OptimizationGoal.SAFEST_ROUTE: _risk_penalty,
    OptimizationGoal.ECO_FRIENDLY: _eco_adjustment,
}


def edge_cost_breakdown(
    edge: Edge,
    context: RoutingContext,
    overlay_delay: float = 0.0,
) -> SegmentCost | None:
    """Cost of traversing ``edge`` under ``context``, or None when pruned."""
    if violates_hard_constraints(edge, context):
        return None
    base = time_context_weight(edge, context)
    delay = max(0.0, float(overlay_delay)) if math.isfinite(overlay_delay) else 0.0
    adjustment = GOAL_ADJUSTMENTS[context.goal](edge)
    cost = max(MIN_EDGE_COST, base + delay + adjustment)
    return SegmentCost(
        source=edge.source,
        target=edge.target,
        base=base,
        delay=delay,
        adjustment=adjustment,
        cost=cost,
    )


def edge_cost(edge: Edge, context: RoutingContext, overlay_delay: float = 0.0) -> float | _Unreachable:
    breakdown = edge_cost_breakdown(edge, context, overlay_delay)
    if breakdown is None:
        return UNREACHABLE
    return breakdown.cost


def admissible_heuristic_scale(graph: RouteGraph, context: RoutingContext) -> float:
    """Largest cost-per-unit-distance factor that never overestimates.

    Delay only ever raises an edge's cost, so the zero-delay cost is a lower
    bound and the scale stays admissible (and consistent) for any overlay.
    Returns 0.0, which turns A* into Dijkstra, when no positive bound exists.
    """
    scale = math.inf
    for edge in graph.edges():
        cost = edge_cost(edge, context, 0.0)
        if cost is UNREACHABLE:
            continue
        length = euclidean_distance(graph.city(edge.source), graph.city(edge.target))
        if length <= 0.0:
            return 0.0
        scale = min(scale, float(cost) / length)
    if not math.isfinite(scale):
        return 0.0
    # Relative margin so float rounding in h(u) - h(v) never exceeds an edge cost.
    return max(0.0, scale * (1.0 - 1e-9))
