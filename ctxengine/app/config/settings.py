"""
Typed workspace settings and policy records.

The store hands back loosely typed settings maps; everything below validates
and clamps them once so selection, inference and ranking code only ever sees
these records.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

from ctxengine.app.config.runtime import get_runtime_config
from ctxengine.app.utils.cache import Cache
from ctxengine.app.utils.numbers import as_finite_float, clamp_float, clamp_int


SelectionMode = Literal["score", "recent", "priority_only"]
RoutingMode = Literal["semantic", "keyword", "hybrid"]
SearchMode = Literal["hybrid", "keyword", "semantic"]

SELECTION_MODES: tuple[str, ...] = ("score", "recent", "priority_only")
ROUTING_MODES: tuple[str, ...] = ("semantic", "keyword", "hybrid")

DEFAULT_SEARCH_TYPE_WEIGHTS: dict[str, float] = {
    "decision": 1.5,
    "constraint": 1.35,
    "goal": 1.2,
    "activity": 1.05,
    "active_work": 1.1,
    "summary": 1.2,
    "note": 1.0,
    "problem": 1.0,
    "caveat": 0.95,
}


class ActiveWorkPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    stale_days: int = 14
    auto_close_enabled: bool = False
    auto_close_days: int = 45

    @field_validator("stale_days", mode="before")
    @classmethod
    def _clamp_stale(cls, value):
        return clamp_int(value, 14, 1, 3650)

    @field_validator("auto_close_days", mode="before")
    @classmethod
    def _clamp_close(cls, value):
        return clamp_int(value, 45, 1, 3650)

    @field_validator("auto_close_enabled", mode="before")
    @classmethod
    def _strict_bool(cls, value):
        return value is True

    def to_dict(self) -> dict[str, Any]:
        return {
            "stale_days": self.stale_days,
            "auto_close_enabled": self.auto_close_enabled,
            "auto_close_days": self.auto_close_days,
        }


class RoutingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    mode: RoutingMode = "hybrid"
    query: str = ""
    top_k: int = 5
    min_score: float = 0.2

    @field_validator("mode", mode="before")
    @classmethod
    def _mode(cls, value):
        return value if value in ROUTING_MODES else "hybrid"

    @field_validator("query", mode="before")
    @classmethod
    def _query(cls, value):
        return str(value or "").strip()

    @field_validator("top_k", mode="before")
    @classmethod
    def _top_k(cls, value):
        return clamp_int(value, 5, 1, 100)

    @field_validator("min_score", mode="before")
    @classmethod
    def _min_score(cls, value):
        number = as_finite_float(value)
        return 0.2 if number is None else number


class RuleSelectionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    selection_mode: SelectionMode = "score"
    recommend_max: int = 5
    warn_threshold: int = 10
    summary_enabled: bool = True
    summary_min_count: int = 8

    @field_validator("selection_mode", mode="before")
    @classmethod
    def _selection_mode(cls, value):
        return value if value in SELECTION_MODES else "score"

    @field_validator("recommend_max", "warn_threshold", "summary_min_count", mode="before")
    @classmethod
    def _counts(cls, value, info: ValidationInfo):
        return clamp_int(value, cls.model_fields[info.field_name].default, 1, 1000)


class WorkspaceSettings(BaseModel):
    """Effective per-workspace settings after defaults and clamping."""

    enable_activity_auto_log: bool = True
    bundle_token_budget_total: int = 3000
    bundle_budget_global_workspace_pct: float = 0.15
    bundle_budget_global_user_pct: float = 0.10
    bundle_budget_project_pct: float = 0.45
    bundle_budget_retrieval_pct: float = 0.30
    rules_selection_mode: SelectionMode = "score"
    rules_routing_enabled: bool = True
    rules_routing_mode: RoutingMode = "hybrid"
    rules_routing_top_k: int = 5
    rules_routing_min_score: float = 0.2
    rules_recommend_max: int = 5
    rules_warn_threshold: int = 10
    rules_summary_enabled: bool = True
    rules_summary_min_count: int = 8
    persona_weights: dict[str, dict[str, float]] = {}
    search_default_mode: SearchMode = "hybrid"
    search_type_weights: dict[str, float] = dict(DEFAULT_SEARCH_TYPE_WEIGHTS)
    search_recency_half_life_days: float = 14.0
    search_subpath_boost_weight: float = 1.5
    monorepo_context_mode: str = "shared_repo"
    monorepo_subpath_boost_enabled: bool = True
    active_work_stale_days: int = 14
    active_work_auto_close_enabled: bool = False
    active_work_auto_close_days: int = 45

    @field_validator("bundle_token_budget_total", mode="before")
    @classmethod
    def _budget(cls, value):
        return clamp_int(value, 3000, 300, 50000)

    @field_validator(
        "bundle_budget_global_workspace_pct",
        "bundle_budget_global_user_pct",
        "bundle_budget_project_pct",
        "bundle_budget_retrieval_pct",
        mode="before",
    )
    @classmethod
    def _pct(cls, value):
        return clamp_float(value, 0.0, 1.0, fallback=0.0)

    @field_validator("rules_selection_mode", mode="before")
    @classmethod
    def _selection_mode(cls, value):
        return value if value in SELECTION_MODES else "score"

    @field_validator("rules_routing_mode", mode="before")
    @classmethod
    def _routing_mode(cls, value):
        return value if value in ROUTING_MODES else "hybrid"

    @field_validator("search_default_mode", mode="before")
    @classmethod
    def _search_mode(cls, value):
        return value if value in ("hybrid", "keyword", "semantic") else "hybrid"

    @field_validator("rules_routing_top_k", mode="before")
    @classmethod
    def _top_k(cls, value):
        return clamp_int(value, 5, 1, 100)

    @field_validator("rules_routing_min_score", mode="before")
    @classmethod
    def _min_score(cls, value):
        return clamp_float(value, 0.0, 1.0, fallback=0.2)

    @field_validator("rules_recommend_max", "rules_warn_threshold", "rules_summary_min_count", mode="before")
    @classmethod
    def _rule_counts(cls, value, info: ValidationInfo):
        return clamp_int(value, cls.model_fields[info.field_name].default, 1, 1000)

    @field_validator("active_work_stale_days", mode="before")
    @classmethod
    def _stale_days(cls, value):
        return clamp_int(value, 14, 1, 3650)

    @field_validator("active_work_auto_close_days", mode="before")
    @classmethod
    def _close_days(cls, value):
        return clamp_int(value, 45, 1, 3650)

    @field_validator("persona_weights", mode="before")
    @classmethod
    def _persona_weights(cls, value):
        if not isinstance(value, dict):
            return {}
        out: dict[str, dict[str, float]] = {}
        for persona, weights in value.items():
            if not isinstance(weights, dict):
                continue
            cleaned: dict[str, float] = {}
            for key, raw in weights.items():
                number = as_finite_float(raw)
                name = str(key or "").strip().lower()
                if name and number is not None and number > 0:
                    cleaned[name] = min(number, 100.0)
            out[str(persona).strip().lower()] = cleaned
        return out

    @field_validator("search_type_weights", mode="before")
    @classmethod
    def _type_weights(cls, value):
        if not isinstance(value, dict):
            return dict(DEFAULT_SEARCH_TYPE_WEIGHTS)
        cleaned = dict(DEFAULT_SEARCH_TYPE_WEIGHTS)
        for key, raw in value.items():
            number = as_finite_float(raw)
            if number is not None and number > 0:
                cleaned[str(key).strip().lower()] = number
        return cleaned

    @classmethod
    def from_raw(cls, raw: dict[str, Any] | None) -> "WorkspaceSettings":
        """Merge process defaults with a stored settings map (unknown keys ignored)."""
        merged = runtime_defaults()
        for key, value in (raw or {}).items():
            if key in cls.model_fields and value is not None:
                merged[key] = value
        return cls.model_validate(merged)

    def active_work_policy(self) -> ActiveWorkPolicy:
        return ActiveWorkPolicy(
            stale_days=self.active_work_stale_days,
            auto_close_enabled=self.active_work_auto_close_enabled,
            auto_close_days=self.active_work_auto_close_days,
        )

    def rule_selection(self) -> RuleSelectionConfig:
        return RuleSelectionConfig(
            selection_mode=self.rules_selection_mode,
            recommend_max=self.rules_recommend_max,
            warn_threshold=self.rules_warn_threshold,
            summary_enabled=self.rules_summary_enabled,
            summary_min_count=self.rules_summary_min_count,
        )

    def routing(self, query: str) -> RoutingConfig:
        return RoutingConfig(
            enabled=self.rules_routing_enabled,
            mode=self.rules_routing_mode,
            query=query,
            top_k=self.rules_routing_top_k,
            min_score=self.rules_routing_min_score,
        )


def runtime_defaults() -> dict[str, Any]:
    cfg = get_runtime_config()
    return {
        "bundle_token_budget_total": cfg.bundle_token_budget_total,
        "bundle_budget_global_workspace_pct": cfg.budget_shares.workspace_rules,
        "bundle_budget_global_user_pct": cfg.budget_shares.user_rules,
        "bundle_budget_project_pct": cfg.budget_shares.project_snapshot,
        "bundle_budget_retrieval_pct": cfg.budget_shares.retrieval,
        "rules_selection_mode": cfg.rules_selection_mode,
        "rules_routing_enabled": cfg.rules_routing_enabled,
        "rules_routing_mode": cfg.rules_routing_mode,
        "rules_routing_top_k": cfg.rules_routing_top_k,
        "rules_routing_min_score": cfg.rules_routing_min_score,
        "rules_recommend_max": cfg.rules_recommend_max,
        "rules_warn_threshold": cfg.rules_warn_threshold,
        "rules_summary_enabled": cfg.rules_summary_enabled,
        "rules_summary_min_count": cfg.rules_summary_min_count,
        "active_work_stale_days": cfg.active_work_stale_days,
        "active_work_auto_close_enabled": cfg.active_work_auto_close_enabled,
        "active_work_auto_close_days": cfg.active_work_auto_close_days,
    }


def load_workspace_settings(store: Any, workspace_id: str, cache: Cache | None = None) -> WorkspaceSettings:
    """Resolve a workspace's settings, reusing a cached record when one is live."""
    key = f"workspace_settings:{workspace_id}"
    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            return cached
    settings = WorkspaceSettings.from_raw(store.get_workspace_settings(workspace_id))
    if cache is not None:
        cache.set(key, settings)
    return settings
