"""
Global rules bundle: workspace and user rule selection under separate budget slices.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ctxengine.app.config.settings import WorkspaceSettings
from ctxengine.app.memory.models import Rule, RuleSummary, SelectedRule
from ctxengine.app.observability.logging import log_event
from ctxengine.app.observability.metrics import metrics
from ctxengine.app.rules.selector import RuleSelector
from ctxengine.app.services.token_usage import summarize_inline
from ctxengine.app.utils.interfaces import ContextStore
from ctxengine.app.utils.numbers import clamp_int


SUMMARY_HEADERS = {
    "workspace": "Workspace Global Rules Summary",
    "user": "User Global Rules Summary",
}
_SEVERITY_RANK = {"high": 2, "medium": 1, "low": 0}


def order_rules_default(rules: list[Rule]) -> list[Rule]:
    return sorted(
        rules,
        key=lambda r: (
            not r.pinned,
            -_SEVERITY_RANK.get(r.severity, 1),
            r.priority,
            -r.updated_at.timestamp(),
        ),
    )


def build_rules_summary_text(scope: str, rules: list[Rule]) -> str:
    lines = []
    for rule in rules[:20]:
        tags = [rule.category, rule.severity, f"p{rule.priority}"]
        if rule.pinned:
            tags.append("pinned")
        lines.append(f"- [{'|'.join(tags)}] {rule.title}: {summarize_inline(rule.content, 180)}")
    header = SUMMARY_HEADERS.get(scope, SUMMARY_HEADERS["workspace"])
    return f"{header}\n" + ("\n".join(lines) or "- No active rules.")


@dataclass
class GlobalRulesBundle:
    workspace_rules: list[SelectedRule]
    user_rules: list[SelectedRule]
    routing: dict[str, Any]
    warnings: list[dict[str, str]] = field(default_factory=list)
    debug: dict[str, Any] = field(default_factory=dict)
    workspace_summary: str | None = None
    user_summary: str | None = None


class RuleBundleAssembler:
    def __init__(self, store: ContextStore, selector: RuleSelector | None = None, now: datetime | None = None):
        self.store = store
        self.now = now
        self.selector = selector or RuleSelector(now=now)

    def _enabled_rules(self, workspace_id: str, scope: str, user_id: str | None) -> list[Rule]:
        if scope == "user" and not user_id:
            return []
        rules = self.store.list_rules(workspace_id, scope, user_id=user_id)
        return order_rules_default([r for r in rules if r.enabled])

    def _summary_for(self, workspace_id: str, scope: str, user_id: str | None, rules: list[Rule]) -> str:
        persisted = self.store.get_rule_summary(workspace_id, scope, user_id=user_id)
        if persisted is not None and persisted.summary:
            return persisted.summary
        return build_rules_summary_text(scope, rules)

    def build(
        self,
        workspace_id: str,
        settings: WorkspaceSettings,
        user_id: str | None = None,
        total_budget: int | None = None,
        query: str | None = None,
        context_hint: str | None = None,
        include_routing_debug: bool = False,
    ) -> GlobalRulesBundle:
        total = clamp_int(
            total_budget if total_budget is not None else settings.bundle_token_budget_total,
            settings.bundle_token_budget_total,
            100,
            50000,
        )
        workspace_budget = max(50, math.floor(total * settings.bundle_budget_global_workspace_pct))
        user_budget = max(30, math.floor(total * settings.bundle_budget_global_user_pct))
        q_used = (query or "").strip() or (context_hint or "").strip()

        selection = settings.rule_selection()
        routing = settings.routing(q_used)

        workspace_rules = self._enabled_rules(workspace_id, "workspace", None)
        user_rules = self._enabled_rules(workspace_id, "user", user_id)

        workspace_sel = self.selector.select(workspace_rules, workspace_budget, selection, "workspace", routing)
        user_sel = self.selector.select(user_rules, user_budget, selection, "user", routing)

        workspace_summary = None
        if workspace_sel.used_summary and selection.summary_enabled:
            workspace_summary = self._summary_for(workspace_id, "workspace", None, workspace_rules)
        user_summary = None
        if user_sel.used_summary and selection.summary_enabled:
            user_summary = self._summary_for(workspace_id, "user", user_id, user_rules)

        selected_ids = [r.id for r in workspace_sel.selected] + [r.id for r in user_sel.selected]
        selected_set = set(selected_ids)
        dropped_ids = [r.id for r in workspace_rules + user_rules if r.id not in selected_set]
        breakdown = []
        for sel in (workspace_sel, user_sel):
            if sel.routing is not None:
                breakdown.extend(b.to_dict() for b in sel.routing.score_breakdown)

        if routing.enabled and q_used and selected_ids:
            self._mark_routed(selected_ids)

        metrics.inc("rules_selected_total", len(selected_ids))
        metrics.inc("rules_dropped_total", len(dropped_ids))

        routing_out: dict[str, Any] = {
            "mode": routing.mode,
            "selected_rule_ids": selected_ids,
            "dropped_rule_ids": dropped_ids,
        }
        if q_used:
            routing_out["q_used"] = q_used
        if include_routing_debug:
            routing_out["score_breakdown"] = breakdown

        debug: dict[str, Any] = {
            "workspace_budget_tokens": workspace_budget,
            "user_budget_tokens": user_budget,
            "workspace_selected_count": len(workspace_sel.selected),
            "user_selected_count": len(user_sel.selected),
            "workspace_omitted_count": workspace_sel.omitted_count,
            "user_omitted_count": user_sel.omitted_count,
            "selection_mode": selection.selection_mode,
            "routing_enabled": routing.enabled,
            "routing_mode": routing.mode,
            "routing_top_k": routing.top_k,
            "routing_min_score": routing.min_score,
        }
        if q_used:
            debug["q_used"] = q_used

        return GlobalRulesBundle(
            workspace_rules=workspace_sel.selected,
            user_rules=user_sel.selected,
            workspace_summary=workspace_summary,
            user_summary=user_summary,
            routing=routing_out,
            warnings=workspace_sel.warnings + user_sel.warnings,
            debug=debug,
        )

    def _mark_routed(self, rule_ids: list[str]):
        routed_at = self.now or datetime.now(timezone.utc)
        try:
            self.store.mark_rules_routed(rule_ids, routed_at)
        except Exception as exc:
            log_event("rule_usage_update_failed", rule_count=len(rule_ids), error=str(exc))

    def summarize_rules(
        self,
        workspace_id: str,
        scope: str,
        user_id: str | None = None,
        mode: str = "preview",
    ) -> dict[str, Any]:
        rules = self._enabled_rules(workspace_id, scope, user_id)
        text = build_rules_summary_text(scope, rules)
        if mode == "replace":
            self.store.upsert_rule_summary(
                RuleSummary(
                    scope=scope,
                    workspace_id=workspace_id,
                    user_id=user_id if scope == "user" else None,
                    summary=text,
                    source_rule_ids=[r.id for r in rules],
                    updated_at=self.now or datetime.now(timezone.utc),
                )
            )
            log_event("rule_summary_replaced", workspace_id=workspace_id, scope=scope, rule_count=len(rules))
        return {"scope": scope, "mode": mode, "summary": text, "rule_count": len(rules)}
