from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request

from .logging_utils import log_event
from .models import (
    CompareRequest,
    CompareResponse,
    RouteRequest,
    RouteResponse,
    SegmentCostModel,
    TimeOfDay,
    TrafficClearResponse,
    TrafficUpdateRequest,
    TrafficUpdateResponse,
)
from .path_finder import RouteResult
from .routing_errors import RoutingError, UnknownCityError
from .routing_graph import default_route_graph
from .routing_service import RoutingService
from .time_of_day import is_weekend, time_of_day_for


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "routing_service", None) is None:
        try:
            graph = default_route_graph()
        except RoutingError as exc:
            log_event("route_graph_load_failed", reason_code=exc.reason_code, message=exc.message)
            graph = None
        app.state.routing_service = RoutingService(graph) if graph is not None else None
    yield


app = FastAPI(title="Time-aware Route Planner", version="0.1.0", lifespan=lifespan)


def routing_service(request: Request) -> RoutingService:
    service: RoutingService | None = getattr(request.app.state, "routing_service", None)
    if service is None:
        raise HTTPException(
            status_code=503,
            detail={"reason_code": "route_graph_unavailable", "message": "route graph not loaded"},
        )
    return service


ServiceDep = Annotated[RoutingService, Depends(routing_service)]


def _unknown_city(exc: UnknownCityError) -> HTTPException:
    return HTTPException(status_code=404, detail={"reason_code": exc.reason_code, "message": exc.message})


def request_calendar(req: RouteRequest | CompareRequest) -> tuple[TimeOfDay, bool]:
    if req.departure_time is None:
        return req.time_of_day, req.is_weekend
    return time_of_day_for(req.departure_time), is_weekend(req.departure_time)


def route_response(result: RouteResult) -> RouteResponse:
    return RouteResponse(
        status=result.status,
        start=result.start,
        goal=result.goal,
        path=list(result.path),
        total_cost=result.total_cost,
        segments=[
            SegmentCostModel(
                source=s.source,
                target=s.target,
                base=s.base,
                delay=s.delay,
                adjustment=s.adjustment,
                cost=s.cost,
            )
            for s in result.segments
        ],
        explored=result.explored,
        reason_code=result.reason_code,
        detail=result.detail,
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/route", response_model=RouteResponse)
def compute_route(req: RouteRequest, service: ServiceDep) -> RouteResponse:
    try:
        time_of_day, weekend = request_calendar(req)
        context = req.to_context().model_copy(update={"time_of_day": time_of_day, "is_weekend": weekend})
        result = service.query(req.start, req.goal, context)
    except UnknownCityError as exc:
        raise _unknown_city(exc) from exc
    return route_response(result)


@app.post("/route/compare", response_model=CompareResponse)
def compare_routes(req: CompareRequest, service: ServiceDep) -> CompareResponse:
    try:
        time_of_day, weekend = request_calendar(req)
        results = service.compare_goals(req.start, req.goal, time_of_day, weekend, req.goals)
    except UnknownCityError as exc:
        raise _unknown_city(exc) from exc
    return CompareResponse(results={goal: route_response(result) for goal, result in results.items()})


@app.post("/traffic", response_model=TrafficUpdateResponse)
def update_traffic(req: TrafficUpdateRequest, service: ServiceDep) -> TrafficUpdateResponse:
    try:
        update = service.record_delay(req.source, req.target, req.delay_minutes)
    except UnknownCityError as exc:
        raise _unknown_city(exc) from exc
    return TrafficUpdateResponse(
        source=update.source,
        target=update.target,
        delay_minutes=update.delay_minutes,
        overlay_version=update.overlay_version,
        invalidated_entries=update.invalidated_entries,
    )


@app.delete("/traffic", response_model=TrafficClearResponse)
def clear_traffic(service: ServiceDep) -> TrafficClearResponse:
    cleared = service.clear_traffic()
    return TrafficClearResponse(
        cleared_delays=cleared.cleared_delays,
        overlay_version=cleared.overlay_version,
        invalidated_entries=cleared.invalidated_entries,
    )


@app.delete("/cache")
def clear_cache(service: ServiceDep) -> dict[str, int]:
    return {"cleared": service.invalidate_cache()}


@app.get("/cache/stats")
def cache_stats(service: ServiceDep) -> dict[str, object]:
    return service.cache.snapshot()


@app.get("/metrics")
def metrics(service: ServiceDep) -> dict[str, object]:
    return service.stats()
