from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .settings import settings

CityId = int | str


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


class OptimizationGoal(str, Enum):
    SHORTEST_DISTANCE = "shortest_distance"
    FASTEST_TIME = "fastest_time"
    LOWEST_COST = "lowest_cost"
    SAFEST_ROUTE = "safest_route"
    ECO_FRIENDLY = "eco_friendly"


class RoadType(str, Enum):
    LOCAL = "local"
    ARTERIAL = "arterial"
    HIGHWAY = "highway"
    RURAL = "rural"
    TRANSIT = "transit"


RouteStatus = Literal["ok", "no_path", "search_budget_exceeded", "cancelled"]


@dataclass(frozen=True)
class CostFingerprint:
    """Subset of a routing context that changes edge cost."""

    time_of_day: TimeOfDay
    is_weekend: bool
    goal: OptimizationGoal
    avoid_tolls: bool
    avoid_highways: bool
    max_accident_risk_percent: float
    avoid_cities: frozenset[CityId]


def _default_risk_percent() -> float:
    return settings.max_accident_risk_percent


class RoutingContext(BaseModel):
    """Time, calendar and preference context for a single route query."""

    model_config = ConfigDict(frozen=True)

    time_of_day: TimeOfDay = TimeOfDay.MORNING
    is_weekend: bool = False
    goal: OptimizationGoal = OptimizationGoal.SHORTEST_DISTANCE
    avoid_tolls: bool = False
    avoid_highways: bool = False
    # Display/preference hint only; edge cost is driven by the goal.
    prefer_public_transport: bool = False
    max_accident_risk_percent: float = Field(default_factory=_default_risk_percent, ge=0.0, le=100.0)
    avoid_cities: frozenset[CityId] = frozenset()
    # Consumed by multi-stop planners; single-leg search ignores it.
    must_visit: frozenset[CityId] = frozenset()

    def fingerprint(self) -> CostFingerprint:
        return CostFingerprint(
            time_of_day=self.time_of_day,
            is_weekend=bool(self.is_weekend),
            goal=self.goal,
            avoid_tolls=bool(self.avoid_tolls),
            avoid_highways=bool(self.avoid_highways),
            max_accident_risk_percent=float(self.max_accident_risk_percent),
            avoid_cities=frozenset(self.avoid_cities),
        )


class RouteRequest(BaseModel):
    start: CityId
    goal: CityId
    time_of_day: TimeOfDay = TimeOfDay.MORNING
    is_weekend: bool = False
    # When set, overrides time_of_day and is_weekend.
    departure_time: datetime | None = None
    optimization_goal: OptimizationGoal = OptimizationGoal.SHORTEST_DISTANCE
    avoid_tolls: bool = False
    avoid_highways: bool = False
    prefer_public_transport: bool = False
    max_accident_risk_percent: float | None = Field(default=None, ge=0.0, le=100.0)
    avoid_cities: list[CityId] = Field(default_factory=list)

    def to_context(self) -> RoutingContext:
        data = {
            "time_of_day": self.time_of_day,
            "is_weekend": self.is_weekend,
            "goal": self.optimization_goal,
            "avoid_tolls": self.avoid_tolls,
            "avoid_highways": self.avoid_highways,
            "prefer_public_transport": self.prefer_public_transport,
            "avoid_cities": frozenset(self.avoid_cities),
        }
        if self.max_accident_risk_percent is not None:
            data["max_accident_risk_percent"] = self.max_accident_risk_percent
        return RoutingContext(**data)


class CompareRequest(BaseModel):
    start: CityId
    goal: CityId
    time_of_day: TimeOfDay = TimeOfDay.MORNING
    is_weekend: bool = False
    departure_time: datetime | None = None
    goals: list[OptimizationGoal] = Field(
        default_factory=lambda: [
            OptimizationGoal.SHORTEST_DISTANCE,
            OptimizationGoal.FASTEST_TIME,
            OptimizationGoal.LOWEST_COST,
            OptimizationGoal.SAFEST_ROUTE,
        ]
    )

    @field_validator("goals")
    @classmethod
    def non_empty(cls, v: list[OptimizationGoal]) -> list[OptimizationGoal]:
        if not v:
            raise ValueError("at least one optimization goal is required")
        return v


class TrafficUpdateRequest(BaseModel):
    source: CityId
    target: CityId
    delay_minutes: float = Field(..., ge=0.0)

    @field_validator("delay_minutes")
    @classmethod
    def finite(cls, v: float) -> float:
        if v != v or v in (float("inf"), float("-inf")):
            raise ValueError("delay must be finite")
        return v


class SegmentCostModel(BaseModel):
    source: CityId
    target: CityId
    base: float
    delay: float
    adjustment: float
    cost: float


class RouteResponse(BaseModel):
    status: RouteStatus
    start: CityId
    goal: CityId
    path: list[CityId]
    total_cost: float | None
    segments: list[SegmentCostModel]
    explored: int
    reason_code: str | None = None
    detail: str | None = None


class CompareResponse(BaseModel):
    results: dict[OptimizationGoal, RouteResponse]


class TrafficUpdateResponse(BaseModel):
    source: CityId
    target: CityId
    delay_minutes: float
    overlay_version: int
    invalidated_entries: int


class TrafficClearResponse(BaseModel):
    cleared_delays: int
    overlay_version: int
    invalidated_entries: int
