from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_graph_asset_path() -> str:
    return str(Path(__file__).resolve().parents[1] / "out" / "route_graph.json")


CacheInvalidationPolicy = Literal["invalidate_all", "versioned"]


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping config out of code for easy extension."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default="out", alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    route_graph_asset_path: str = Field(
        default_factory=_default_graph_asset_path,
        alias="ROUTE_GRAPH_ASSET_PATH",
    )

    route_cache_enabled: bool = Field(default=True, alias="ROUTE_CACHE_ENABLED")
    route_cache_max_entries: int = Field(default=1000, ge=1, alias="ROUTE_CACHE_MAX_ENTRIES")
    cache_invalidation_policy: CacheInvalidationPolicy = Field(
        default="invalidate_all",
        alias="CACHE_INVALIDATION_POLICY",
    )

    # Fraction in [0, 1]; routing contexts use it as a percentage ceiling.
    max_acceptable_risk: float = Field(default=0.8, ge=0.0, le=1.0, alias="MAX_ACCEPTABLE_RISK")

    traffic_freshness_window_s: float = Field(default=900.0, gt=0.0, alias="TRAFFIC_FRESHNESS_WINDOW_S")

    search_max_expansions: int = Field(default=200_000, ge=0, alias="SEARCH_MAX_EXPANSIONS")
    search_deadline_ms: float = Field(default=0.0, ge=0.0, alias="SEARCH_DEADLINE_MS")
    heuristic_enabled: bool = Field(default=True, alias="HEURISTIC_ENABLED")
    compare_concurrency: int = Field(default=4, ge=1, le=32, alias="COMPARE_CONCURRENCY")

    @model_validator(mode="after")
    def _normalize(self) -> "Settings":
        self.log_level = str(self.log_level or "INFO").strip().upper() or "INFO"
        self.out_dir = str(self.out_dir or "out").strip() or "out"
        return self

    @property
    def max_accident_risk_percent(self) -> float:
        return round(float(self.max_acceptable_risk) * 100.0, 6)


settings = Settings()
