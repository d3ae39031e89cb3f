"""
Budget-constrained rule selection.

Tiers run in a fixed order: pinned rules (always), non-pinned high severity
rules, then everything else ordered by routing relevance and the configured
selection mode. Only the last tier is strictly gated by the budget.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from ctxengine.app.config.settings import RoutingConfig, RuleSelectionConfig
from ctxengine.app.memory.models import Rule, RoutingScoreBreakdown, SelectedRule
from ctxengine.app.rules.router import RuleRouter, age_days, tokenize
from ctxengine.app.services.token_usage import estimate_tokens
from ctxengine.app.utils.numbers import clamp_int


SUMMARY_REASON = "rule_count_or_budget"
_MODE_REASONS = {"score": "score", "recent": "recent", "priority_only": "priority"}


@dataclass
class RoutingResult:
    mode: str
    q_used: str
    selected_rule_ids: list[str]
    dropped_rule_ids: list[str]
    score_breakdown: list[RoutingScoreBreakdown]


@dataclass
class RuleSelectionResult:
    selected: list[SelectedRule]
    omitted_count: int
    warnings: list[dict[str, str]] = field(default_factory=list)
    used_summary: bool = False
    summary_reason: str | None = None
    routing: RoutingResult | None = None


def rule_cost(rule: Rule) -> int:
    return estimate_tokens(f"{rule.title}\n{rule.content}")


def score_rule(rule: Rule, now: datetime) -> float:
    priority_weight = (6 - clamp_int(rule.priority, 3, 1, 5)) * 2
    recency_weight = max(0.0, 10 - age_days(rule.updated_at, now) / 3)
    usage_weight = min(max(rule.usage_count or 0, 0), 100) * 0.05
    length_penalty = estimate_tokens(rule.content) / 250
    return priority_weight + recency_weight + usage_weight - length_penalty


class RuleSelector:
    def __init__(self, now: datetime | None = None):
        self.now = now

    def _sort_remaining(self, rules: list[Rule], mode: str, now: datetime) -> list[Rule]:
        if mode == "recent":
            return sorted(rules, key=lambda r: -r.updated_at.timestamp())
        if mode == "priority_only":
            return sorted(rules, key=lambda r: (r.priority, -r.updated_at.timestamp()))
        return sorted(rules, key=lambda r: (-score_rule(r, now), -r.updated_at.timestamp()))

    def select(
        self,
        rules: list[Rule],
        budget_tokens: int,
        config: RuleSelectionConfig,
        scope: str = "workspace",
        routing: RoutingConfig | None = None,
    ) -> RuleSelectionResult:
        now = self.now or datetime.now(timezone.utc)
        budget = clamp_int(budget_tokens, 300, 100, 50000)
        enabled = [r for r in rules if r.enabled]
        warnings: list[dict[str, str]] = []

        if len(enabled) > config.recommend_max:
            warnings.append({
                "level": "info",
                "message": f"Recommended: keep ≤ {config.recommend_max} core rules for better context focus.",
            })
        if len(enabled) >= config.warn_threshold:
            warnings.append({
                "level": "warn",
                "message": f"{len(enabled)} active rules may reduce context clarity. Consider summarize/compression.",
            })

        selected: list[SelectedRule] = []
        selected_ids: set[str] = set()
        spent = 0

        pinned = [r for r in enabled if r.pinned]
        high = [r for r in enabled if not r.pinned and r.severity == "high"]

        for rule in pinned:
            cost = rule_cost(rule)
            selected.append(SelectedRule.from_rule(rule, cost, "pinned", score_rule(rule, now)))
            selected_ids.add(rule.id)
            spent += cost

        high_dropped = 0
        for rule in high:
            cost = rule_cost(rule)
            if spent + cost > budget and pinned:
                high_dropped += 1
                continue
            selected.append(SelectedRule.from_rule(rule, cost, "high_severity", score_rule(rule, now)))
            selected_ids.add(rule.id)
            spent += cost

        if spent > budget:
            warnings.append({
                "level": "warn",
                "message": (
                    f"Pinned rules exceed the global budget ({spent}/{budget} tokens). "
                    "Consider consolidating pinned rules."
                ),
            })
        if high_dropped:
            warnings.append({
                "level": "warn",
                "message": (
                    f"{high_dropped} high-severity rules could not fit budget after pinned rules "
                    "and were compressed into summary."
                ),
            })

        remaining = [r for r in enabled if r.id not in selected_ids]
        routing_enabled = bool(routing and routing.enabled)
        q_used = routing.query if routing else ""
        mode = routing.mode if routing else "hybrid"
        breakdowns: dict[str, RoutingScoreBreakdown] = {}
        routed_ids: set[str] = set()

        if routing_enabled and q_used:
            query_tokens = tokenize(q_used)
            if query_tokens:
                router = RuleRouter(now=now)
                for rule in remaining:
                    breakdowns[rule.id] = router.score(scope, rule, query_tokens, mode)
                ranked = sorted(
                    (b for b in breakdowns.values() if b.final >= routing.min_score),
                    key=lambda b: -b.final,
                )
                routed_ids = {b.rule_id for b in ranked[: max(1, routing.top_k)]}

        ordered = self._sort_remaining(remaining, config.selection_mode, now)
        routed = sorted(
            (r for r in ordered if r.id in routed_ids),
            key=lambda r: -breakdowns[r.id].final,
        )
        fallback = [r for r in ordered if r.id not in routed_ids]
        routed_reason = f"routing_{mode}"

        for rule in routed + fallback:
            cost = rule_cost(rule)
            if spent + cost > budget:
                continue
            breakdown = breakdowns.get(rule.id)
            is_routed = rule.id in routed_ids
            if breakdown is not None:
                breakdown.selected = True
                breakdown.reason = routed_reason if is_routed else "budget_fallback"
            reason = routed_reason if is_routed else _MODE_REASONS.get(config.selection_mode, "score")
            score = breakdown.final if breakdown is not None else score_rule(rule, now)
            selected.append(SelectedRule.from_rule(rule, cost, reason, score))
            selected_ids.add(rule.id)
            spent += cost

        omitted = len(enabled) - len(selected)
        used_summary = config.summary_enabled and len(enabled) >= config.summary_min_count and omitted > 0

        routing_result = None
        if routing_enabled and q_used:
            routing_result = RoutingResult(
                mode=mode,
                q_used=q_used,
                selected_rule_ids=[s.id for s in selected],
                dropped_rule_ids=[r.id for r in enabled if r.id not in selected_ids],
                score_breakdown=list(breakdowns.values()),
            )

        return RuleSelectionResult(
            selected=selected,
            omitted_count=omitted,
            warnings=warnings,
            used_summary=used_summary,
            summary_reason=SUMMARY_REASON if used_summary else None,
            routing=routing_result,
        )
