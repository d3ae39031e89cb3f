"""
Token budget partitioning for a context bundle.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from ctxengine.app.config.settings import WorkspaceSettings
from ctxengine.app.utils.numbers import as_finite_float


MIN_TOTAL_BUDGET = 300
MAX_TOTAL_BUDGET = 50000
PER_ITEM_CHARS = 280
RETRIEVAL_TOKENS_PER_ITEM = 220


@dataclass(frozen=True)
class BudgetPlan:
    total: int
    workspace_rules: int
    user_rules: int
    project_snapshot: int
    retrieval: int
    retrieval_limit: int
    per_item_chars: int = PER_ITEM_CHARS

    def to_debug(self) -> dict:
        return {
            "total": self.total,
            "allocations": {
                "workspace_global": self.workspace_rules,
                "user_global": self.user_rules,
                "project_snapshot": self.project_snapshot,
                "retrieval": self.retrieval,
            },
            "retrieval_limit": self.retrieval_limit,
            "per_item_chars": self.per_item_chars,
        }


def plan_budget(settings: WorkspaceSettings, budget: int | float | None = None) -> BudgetPlan:
    requested = as_finite_float(budget)
    if requested is None or requested == 0:
        requested = settings.bundle_token_budget_total or 3000
    total = min(max(math.floor(requested), MIN_TOTAL_BUDGET), MAX_TOTAL_BUDGET)

    # Zero shares use the default split.
    retrieval = max(200, math.floor(total * (settings.bundle_budget_retrieval_pct or 0.30)))
    return BudgetPlan(
        total=total,
        workspace_rules=max(100, math.floor(total * (settings.bundle_budget_global_workspace_pct or 0.15))),
        user_rules=max(80, math.floor(total * (settings.bundle_budget_global_user_pct or 0.10))),
        project_snapshot=max(180, math.floor(total * (settings.bundle_budget_project_pct or 0.45))),
        retrieval=retrieval,
        retrieval_limit=min(max(math.floor(retrieval / RETRIEVAL_TOKENS_PER_ITEM), 5), 40),
    )
