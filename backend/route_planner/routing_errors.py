from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "unknown_city",
        "duplicate_city",
        "graph_frozen",
        "no_path",
        "search_budget_exceeded",
        "search_cancelled",
        "route_graph_unavailable",
        "route_graph_invalid",
    }
)


@dataclass
class RoutingError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.reason_code not in FROZEN_REASON_CODES:
            raise ValueError(f"unknown routing reason code: {self.reason_code!r}")
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class UnknownCityError(RoutingError):
    def __init__(self, city_id: Any, *, role: str = "city") -> None:
        super().__init__(
            reason_code="unknown_city",
            message=f"unknown {role}: {city_id!r}",
            details={"city_id": city_id, "role": role},
        )
        self.city_id = city_id


class DuplicateCityError(RoutingError):
    def __init__(self, city_id: Any) -> None:
        super().__init__(
            reason_code="duplicate_city",
            message=f"city already present: {city_id!r}",
            details={"city_id": city_id},
        )
        self.city_id = city_id


class GraphFrozenError(RoutingError):
    def __init__(self, operation: str) -> None:
        super().__init__(
            reason_code="graph_frozen",
            message=f"graph is frozen; {operation} is not allowed after build",
            details={"operation": operation},
        )

