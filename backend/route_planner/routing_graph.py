from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any

from .logging_utils import log_event
from .models import CityId, RoadType, TimeOfDay
from .routing_errors import (
    DuplicateCityError,
    GraphFrozenError,
    RoutingError,
    UnknownCityError,
)
from .settings import settings
from .time_of_day import parse_time_of_day


@dataclass(frozen=True)
class City:
    city_id: CityId
    x: float
    y: float


@dataclass(frozen=True)
class Edge:
    source: CityId
    target: CityId
    base_weight: float
    speed_limit: float = 0.0
    toll: float = 0.0
    accident_risk: float = 0.0
    road_type: RoadType = RoadType.LOCAL
    public_transport: bool = False
    time_multipliers: Mapping[TimeOfDay, float] = field(default_factory=dict)
    weekend_multiplier: float = 1.0
    closed: bool = False

    def __post_init__(self) -> None:
        for name in ("base_weight", "speed_limit", "toll", "weekend_multiplier"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0.0:
                raise ValueError(f"edge {name} must be finite and non-negative, got {value!r}")
            object.__setattr__(self, name, value)
        risk = float(self.accident_risk)
        if not math.isfinite(risk) or not 0.0 <= risk <= 1.0:
            raise ValueError(f"edge accident_risk must be within [0, 1], got {risk!r}")
        object.__setattr__(self, "accident_risk", risk)
        object.__setattr__(self, "road_type", RoadType(self.road_type))
        multipliers: dict[TimeOfDay, float] = {}
        for key, value in dict(self.time_multipliers).items():
            factor = float(value)
            if not math.isfinite(factor) or factor < 0.0:
                raise ValueError(f"time multiplier for {key!r} must be finite and non-negative")
            multipliers[parse_time_of_day(key)] = factor
        object.__setattr__(self, "time_multipliers", MappingProxyType(multipliers))

    @property
    def accident_risk_percent(self) -> float:
        return self.accident_risk * 100.0


def euclidean_distance(a: City, b: City) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


class RouteGraph:
    """Directed road network; write-once, then frozen for concurrent reads."""

    def __init__(self) -> None:
        self._cities: dict[CityId, City] = {}
        self._adjacency: dict[CityId, list[Edge]] = {}
        self._frozen_adjacency: dict[CityId, tuple[Edge, ...]] | None = None
        self._edge_count = 0
        # Ids share one type so frontier tie-breaks on city id stay comparable.
        self._id_type: type | None = None

    @property
    def frozen(self) -> bool:
        return self._frozen_adjacency is not None

    @property
    def city_count(self) -> int:
        return len(self._cities)

    @property
    def edge_count(self) -> int:
        return self._edge_count

    def add_city(self, city_id: CityId, x: float, y: float) -> City:
        if self.frozen:
            raise GraphFrozenError("add_city")
        id_type = self._check_id_type(city_id)
        if city_id in self._cities:
            raise DuplicateCityError(city_id)
        cx, cy = float(x), float(y)
        if not (math.isfinite(cx) and math.isfinite(cy)):
            raise ValueError(f"city {city_id!r} coordinates must be finite")
        city = City(city_id=city_id, x=cx, y=cy)
        self._cities[city_id] = city
        self._adjacency[city_id] = []
        self._id_type = id_type
        return city

    def _check_id_type(self, city_id: CityId) -> type:
        if isinstance(city_id, bool) or not isinstance(city_id, (int, str)):
            raise _invalid("city id must be an integer or string", city_id=city_id)
        id_type = int if isinstance(city_id, int) else str
        if self._id_type is not None and id_type is not self._id_type:
            raise _invalid(
                f"city id {city_id!r} is a {id_type.__name__}; this graph uses {self._id_type.__name__} ids",
                city_id=city_id,
            )
        return id_type

    def add_edge(self, source: CityId, target: CityId, **attrs: Any) -> Edge:
        if self.frozen:
            raise GraphFrozenError("add_edge")
        if source not in self._cities:
            raise UnknownCityError(source, role="edge source")
        if target not in self._cities:
            raise UnknownCityError(target, role="edge target")
        return self.insert_edge(Edge(source=source, target=target, **attrs))

    def insert_edge(self, edge: Edge) -> Edge:
        if self.frozen:
            raise GraphFrozenError("insert_edge")
        if edge.source not in self._cities:
            raise UnknownCityError(edge.source, role="edge source")
        if edge.target not in self._cities:
            raise UnknownCityError(edge.target, role="edge target")
        self._adjacency[edge.source].append(edge)
        self._edge_count += 1
        return edge

    def freeze(self) -> RouteGraph:
        if self._frozen_adjacency is None:
            self._frozen_adjacency = {city_id: tuple(edges) for city_id, edges in self._adjacency.items()}
        return self

    def has_city(self, city_id: CityId) -> bool:
        return city_id in self._cities

    def require_city(self, city_id: CityId, *, role: str = "city") -> City:
        city = self._cities.get(city_id)
        if city is None:
            raise UnknownCityError(city_id, role=role)
        return city

    def city(self, city_id: CityId) -> City:
        return self.require_city(city_id)

    def cities(self) -> tuple[City, ...]:
        return tuple(self._cities.values())

    def neighbors(self, city_id: CityId) -> tuple[Edge, ...]:
        if city_id not in self._cities:
            raise UnknownCityError(city_id)
        if self._frozen_adjacency is not None:
            return self._frozen_adjacency[city_id]
        return tuple(self._adjacency[city_id])

    def edges(self) -> Iterable[Edge]:
        for city_id in self._cities:
            yield from self.neighbors(city_id)

    def distance(self, a: CityId, b: CityId) -> float:
        return euclidean_distance(self.require_city(a), self.require_city(b))


def build_route_graph(
    cities: Iterable[City | tuple[CityId, float, float]],
    edges: Iterable[Edge],
) -> RouteGraph:
    """Build and freeze a graph; any error aborts the build and nothing is returned."""
    graph = RouteGraph()
    for item in cities:
        if isinstance(item, City):
            graph.add_city(item.city_id, item.x, item.y)
        else:
            city_id, x, y = item
            graph.add_city(city_id, x, y)
    for edge in edges:
        graph.insert_edge(edge)
    return graph.freeze()


def _invalid(message: str, **details: Any) -> RoutingError:
    return RoutingError(reason_code="route_graph_invalid", message=message, details=details or None)


def _parse_city(raw: object) -> tuple[CityId, float, float]:
    if not isinstance(raw, dict):
        raise _invalid("city entry must be an object")
    city_id = raw.get("id")
    if not isinstance(city_id, (int, str)) or isinstance(city_id, bool):
        raise _invalid("city id must be an integer or string", city=raw)
    try:
        return city_id, float(raw["x"]), float(raw["y"])
    except (KeyError, TypeError, ValueError) as exc:
        raise _invalid(f"city {city_id!r} has invalid coordinates", city_id=city_id) from exc


def _parse_edge(raw: object) -> tuple[CityId, CityId, dict[str, Any], bool]:
    if not isinstance(raw, dict):
        raise _invalid("edge entry must be an object")
    source = raw.get("from")
    target = raw.get("to")
    if source is None or target is None:
        raise _invalid("edge requires 'from' and 'to'", edge=raw)
    attrs: dict[str, Any] = {}
    try:
        attrs["base_weight"] = float(raw["weight"])
        if "speed_limit" in raw:
            attrs["speed_limit"] = float(raw["speed_limit"])
        if "toll" in raw:
            attrs["toll"] = float(raw["toll"])
        if "accident_risk" in raw:
            attrs["accident_risk"] = float(raw["accident_risk"])
        if "road_type" in raw:
            attrs["road_type"] = RoadType(str(raw["road_type"]).strip().lower())
        if "public_transport" in raw:
            attrs["public_transport"] = bool(raw["public_transport"])
        if "weekend_multiplier" in raw:
            attrs["weekend_multiplier"] = float(raw["weekend_multiplier"])
        if "closed" in raw:
            attrs["closed"] = bool(raw["closed"])
        multipliers = raw.get("time_multipliers") or {}
        if not isinstance(multipliers, dict):
            raise ValueError("time_multipliers must be an object")
        attrs["time_multipliers"] = {parse_time_of_day(k): float(v) for k, v in multipliers.items()}
    except (KeyError, TypeError, ValueError) as exc:
        raise _invalid(f"edge {source!r}->{target!r} is invalid: {exc}", source=source, target=target) from exc
    return source, target, attrs, bool(raw.get("bidirectional", False))


def graph_from_payload(payload: dict[str, Any]) -> RouteGraph:
    if not isinstance(payload, dict):
        raise _invalid("graph payload must be an object")
    raw_cities = payload.get("cities")
    raw_edges = payload.get("edges", [])
    if not isinstance(raw_cities, list) or not isinstance(raw_edges, list):
        raise _invalid("graph payload requires 'cities' and 'edges' lists")

    graph = RouteGraph()
    for raw in raw_cities:
        graph.add_city(*_parse_city(raw))
    for raw in raw_edges:
        source, target, attrs, bidirectional = _parse_edge(raw)
        try:
            graph.add_edge(source, target, **attrs)
            if bidirectional:
                graph.add_edge(target, source, **attrs)
        except ValueError as exc:
            if isinstance(exc, RoutingError):
                raise
            raise _invalid(f"edge {source!r}->{target!r} is invalid: {exc}", source=source, target=target) from exc
    return graph.freeze()


def load_route_graph(path: str | Path) -> RouteGraph:
    asset = Path(path)
    try:
        payload = json.loads(asset.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise RoutingError(
            reason_code="route_graph_unavailable",
            message=f"route graph asset not found: {asset}",
            details={"path": str(asset)},
        ) from exc
    except json.JSONDecodeError as exc:
        raise _invalid(f"route graph asset is not valid JSON: {exc}", path=str(asset)) from exc
    graph = graph_from_payload(payload)
    log_event(
        "route_graph_loaded",
        path=str(asset),
        cities=graph.city_count,
        edges=graph.edge_count,
    )
    return graph


@lru_cache(maxsize=1)
def default_route_graph() -> RouteGraph | None:
    asset = Path(settings.route_graph_asset_path)
    if not asset.exists():
        log_event("route_graph_missing", path=str(asset))
        return None
    return load_route_graph(asset)
