"""
Runtime configuration for bundle budgeting, rule routing and active-work policy.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


_PROJECT_ROOT = Path(__file__).resolve().parents[3]


def load_environment(env_file: Path | None = None) -> bool:
    """Load `.env` from the project root (or an explicit path) without overriding the process env."""
    path = env_file or (_PROJECT_ROOT / ".env")
    if path.exists():
        return load_dotenv(dotenv_path=path, override=False)
    return load_dotenv(override=False)


load_environment()


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except Exception:
        return default


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except Exception:
        return default


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass(frozen=True)
class BudgetShares:
    workspace_rules: float
    user_rules: float
    project_snapshot: float
    retrieval: float


@dataclass(frozen=True)
class EngineRuntimeConfig:
    bundle_token_budget_total: int
    budget_shares: BudgetShares
    rules_selection_mode: str
    rules_routing_enabled: bool
    rules_routing_mode: str
    rules_routing_top_k: int
    rules_routing_min_score: float
    rules_recommend_max: int
    rules_warn_threshold: int
    rules_summary_enabled: bool
    rules_summary_min_count: int
    active_work_stale_days: int
    active_work_auto_close_enabled: bool
    active_work_auto_close_days: int
    settings_cache_ttl_seconds: int
    heuristics_path: str
    redis_url: str


def get_runtime_config() -> EngineRuntimeConfig:
    return EngineRuntimeConfig(
        bundle_token_budget_total=_int("CTX_BUNDLE_TOKEN_BUDGET", 3000),
        budget_shares=BudgetShares(
            workspace_rules=_float("CTX_BUDGET_WORKSPACE_PCT", 0.15),
            user_rules=_float("CTX_BUDGET_USER_PCT", 0.10),
            project_snapshot=_float("CTX_BUDGET_PROJECT_PCT", 0.45),
            retrieval=_float("CTX_BUDGET_RETRIEVAL_PCT", 0.30),
        ),
        rules_selection_mode=_str("CTX_RULES_SELECTION_MODE", "score"),
        rules_routing_enabled=_bool("CTX_RULES_ROUTING_ENABLED", True),
        rules_routing_mode=_str("CTX_RULES_ROUTING_MODE", "hybrid"),
        rules_routing_top_k=_int("CTX_RULES_ROUTING_TOP_K", 5),
        rules_routing_min_score=_float("CTX_RULES_ROUTING_MIN_SCORE", 0.2),
        rules_recommend_max=_int("CTX_RULES_RECOMMEND_MAX", 5),
        rules_warn_threshold=_int("CTX_RULES_WARN_THRESHOLD", 10),
        rules_summary_enabled=_bool("CTX_RULES_SUMMARY_ENABLED", True),
        rules_summary_min_count=_int("CTX_RULES_SUMMARY_MIN_COUNT", 8),
        active_work_stale_days=_int("CTX_ACTIVE_WORK_STALE_DAYS", 14),
        active_work_auto_close_enabled=_bool("CTX_ACTIVE_WORK_AUTO_CLOSE_ENABLED", False),
        active_work_auto_close_days=_int("CTX_ACTIVE_WORK_AUTO_CLOSE_DAYS", 45),
        settings_cache_ttl_seconds=_int("CTX_SETTINGS_CACHE_TTL_SECONDS", 60),
        heuristics_path=_str("CTX_HEURISTICS_PATH", ""),
        redis_url=_str("REDIS_URL", "redis://localhost:6379/0"),
    )
