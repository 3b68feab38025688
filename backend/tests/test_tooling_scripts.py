from __future__ import annotations

import json
from pathlib import Path

import pytest

from route_planner.routing_errors import RoutingError
from scripts.run_route_query import build_parser, main, run_query


def _write_graph(tmp_path: Path) -> Path:
    payload = {
        "cities": [
            {"id": 1, "x": 0.0, "y": 0.0},
            {"id": 2, "x": 10.0, "y": 0.0},
            {"id": 3, "x": 5.0, "y": 5.0},
            {"id": 4, "x": 50.0, "y": 50.0},
        ],
        "edges": [
            {"from": 1, "to": 2, "weight": 30.0, "toll": 2.0, "road_type": "highway", "speed_limit": 110},
            {"from": 1, "to": 3, "weight": 8.0, "bidirectional": True},
            {"from": 3, "to": 2, "weight": 8.0, "time_multipliers": {"morning": 3.0}},
        ],
    }
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_route_query_parser_defaults() -> None:
    args = build_parser().parse_args(["--graph", "g.json", "--start", "1", "--goal", "berlin"])
    assert args.start == 1
    assert args.goal == "berlin"
    assert args.time_of_day == "morning"
    assert args.goal_type == "shortest_distance"
    assert args.compare is False
    assert args.avoid_city == []
    assert args.max_risk is None


def test_route_query_parser_rejects_compare_with_goal_type() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(
            ["--graph", "g.json", "--start", "1", "--goal", "2", "--compare", "--goal-type", "lowest_cost"]
        )


def test_run_query_single_respects_time_of_day(tmp_path: Path) -> None:
    graph = _write_graph(tmp_path)
    morning = run_query(build_parser().parse_args(["--graph", str(graph), "--start", "1", "--goal", "2"]))
    assert morning["mode"] == "single"
    assert morning["result"]["status"] == "ok"
    assert morning["result"]["path"] == [1, 2]

    night = run_query(
        build_parser().parse_args(
            ["--graph", str(graph), "--start", "1", "--goal", "2", "--time-of-day", "overnight"]
        )
    )
    assert night["result"]["path"] == [1, 3, 2]
    assert night["result"]["total_cost"] == pytest.approx(16.0)
    assert [seg["target"] for seg in night["result"]["segments"]] == [3, 2]


def test_run_query_avoid_highways_and_cities(tmp_path: Path) -> None:
    graph = _write_graph(tmp_path)
    out = run_query(
        build_parser().parse_args(
            ["--graph", str(graph), "--start", "1", "--goal", "2", "--avoid-highways", "--avoid-city", "3"]
        )
    )
    assert out["result"]["status"] == "no_path"
    assert out["result"]["path"] == []


def test_run_query_compare_writes_output(tmp_path: Path) -> None:
    graph = _write_graph(tmp_path)
    output = tmp_path / "reports" / "compare.json"
    out = run_query(
        build_parser().parse_args(
            ["--graph", str(graph), "--start", "1", "--goal", "2", "--compare", "--output", str(output)]
        )
    )
    assert out["mode"] == "compare"
    assert set(out["results"]) == {
        "shortest_distance",
        "fastest_time",
        "lowest_cost",
        "safest_route",
        "eco_friendly",
    }
    assert json.loads(output.read_text(encoding="utf-8")) == out


def test_main_exit_codes(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    graph = _write_graph(tmp_path)
    assert main(["--graph", str(graph), "--start", "1", "--goal", "3"]) == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["result"]["path"] == [1, 3]

    assert main(["--graph", str(graph), "--start", "2", "--goal", "4"]) == 2


def test_run_query_missing_graph_raises(tmp_path: Path) -> None:
    args = build_parser().parse_args(["--graph", str(tmp_path / "nope.json"), "--start", "1", "--goal", "2"])
    with pytest.raises(RoutingError) as exc:
        run_query(args)
    assert exc.value.reason_code == "route_graph_unavailable"


def test_departure_overrides_time_of_day(tmp_path: Path) -> None:
    graph = _write_graph(tmp_path)
    args = build_parser().parse_args(
        ["--graph", str(graph), "--start", "1", "--goal", "2", "--departure", "2024-03-06T23:00:00"]
    )
    assert args.departure.hour == 23
    out = run_query(args)
    assert out["result"]["path"] == [1, 3, 2]
