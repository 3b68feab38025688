from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from threading import Lock


@dataclass
class GoalQueryStats:
    query_count: int = 0
    cache_hits: int = 0
    no_path_count: int = 0
    budget_exceeded_count: int = 0
    cancelled_count: int = 0
    total_explored: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0


class QueryMetricsStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._created_at = datetime.now(UTC).isoformat()
        self._goals: dict[str, GoalQueryStats] = {}

    def record(
        self,
        goal: str,
        *,
        status: str,
        duration_ms: float,
        explored: int = 0,
        cache_hit: bool = False,
    ) -> None:
        name = goal.strip() or "unknown"
        d_ms = max(float(duration_ms), 0.0)

        with self._lock:
            stats = self._goals.setdefault(name, GoalQueryStats())
            stats.query_count += 1
            if cache_hit:
                stats.cache_hits += 1
            else:
                stats.total_explored += max(0, int(explored))
            if status == "no_path":
                stats.no_path_count += 1
            elif status == "search_budget_exceeded":
                stats.budget_exceeded_count += 1
            elif status == "cancelled":
                stats.cancelled_count += 1
            stats.total_duration_ms += d_ms
            if d_ms > stats.max_duration_ms:
                stats.max_duration_ms = d_ms

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            goals: dict[str, dict[str, float | int]] = {}
            total_queries = 0
            total_hits = 0

            for name in sorted(self._goals):
                stats = self._goals[name]
                total_queries += stats.query_count
                total_hits += stats.cache_hits
                avg_duration_ms = (
                    stats.total_duration_ms / stats.query_count if stats.query_count else 0.0
                )
                goals[name] = {
                    "query_count": stats.query_count,
                    "cache_hits": stats.cache_hits,
                    "no_path_count": stats.no_path_count,
                    "budget_exceeded_count": stats.budget_exceeded_count,
                    "cancelled_count": stats.cancelled_count,
                    "total_explored": stats.total_explored,
                    "avg_duration_ms": round(avg_duration_ms, 3),
                    "max_duration_ms": round(stats.max_duration_ms, 3),
                }

            return {
                "created_at": self._created_at,
                "total_queries": total_queries,
                "total_cache_hits": total_hits,
                "goal_count": len(goals),
                "goals": goals,
            }

    def reset(self) -> None:
        with self._lock:
            self._created_at = datetime.now(UTC).isoformat()
            self._goals.clear()
