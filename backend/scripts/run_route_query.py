from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from route_planner.models import CityId, OptimizationGoal
from route_planner.path_finder import RouteResult
from route_planner.routing_graph import load_route_graph
from route_planner.routing_service import RoutingService
from route_planner.time_of_day import is_weekend, parse_time_of_day, time_of_day_for


def _city_id(raw: str) -> CityId:
    text = str(raw).strip()
    try:
        return int(text)
    except ValueError:
        return text


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a single route query (or goal comparison) headlessly.")
    parser.add_argument("--graph", required=True, help="Route graph JSON asset.")
    parser.add_argument("--start", required=True, type=_city_id)
    parser.add_argument("--goal", required=True, type=_city_id)
    parser.add_argument("--time-of-day", default="morning")
    parser.add_argument("--weekend", action="store_true")
    parser.add_argument(
        "--departure",
        type=datetime.fromisoformat,
        default=None,
        help="ISO departure time; overrides --time-of-day and --weekend.",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--goal-type",
        default=OptimizationGoal.SHORTEST_DISTANCE.value,
        choices=[g.value for g in OptimizationGoal],
    )
    group.add_argument("--compare", action="store_true", help="Compare every optimization goal.")
    parser.add_argument("--avoid-tolls", action="store_true")
    parser.add_argument("--avoid-highways", action="store_true")
    parser.add_argument("--max-risk", type=float, default=None, help="Max accident risk percent (0-100).")
    parser.add_argument("--avoid-city", action="append", default=[], type=_city_id)
    parser.add_argument("--output", default=None)
    return parser


def result_payload(result: RouteResult) -> dict[str, Any]:
    payload = asdict(result)
    payload["path"] = list(result.path)
    payload["segments"] = [asdict(segment) for segment in result.segments]
    return payload


def run_query(args: argparse.Namespace) -> dict[str, Any]:
    service = RoutingService(load_route_graph(args.graph))
    overrides: dict[str, Any] = {
        "time_of_day": parse_time_of_day(args.time_of_day),
        "is_weekend": bool(args.weekend),
        "avoid_tolls": bool(args.avoid_tolls),
        "avoid_highways": bool(args.avoid_highways),
        "avoid_cities": frozenset(args.avoid_city),
    }
    if args.departure is not None:
        overrides["time_of_day"] = time_of_day_for(args.departure)
        overrides["is_weekend"] = is_weekend(args.departure)
    if args.max_risk is not None:
        overrides["max_accident_risk_percent"] = float(args.max_risk)

    if args.compare:
        context = service.default_context(**overrides)
        results = service.compare_goals(
            args.start,
            args.goal,
            context.time_of_day,
            context.is_weekend,
            list(OptimizationGoal),
            base_context=context,
        )
        out: dict[str, Any] = {
            "mode": "compare",
            "results": {goal.value: result_payload(result) for goal, result in results.items()},
        }
    else:
        context = service.default_context(goal=OptimizationGoal(args.goal_type), **overrides)
        out = {"mode": "single", "result": result_payload(service.query(args.start, args.goal, context))}

    if args.output:
        path = Path(args.output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(out, indent=2), encoding="utf-8")
    return out


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    out = run_query(args)
    print(json.dumps(out, indent=2))
    results = out["results"].values() if out["mode"] == "compare" else [out["result"]]
    return 0 if any(r["status"] == "ok" for r in results) else 2


if __name__ == "__main__":
    raise SystemExit(main())
