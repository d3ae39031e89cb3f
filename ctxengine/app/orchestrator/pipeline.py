"""
Bundle orchestrator: budget partitioning, snapshot, persona ranking, retrieval and global rules.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from ctxengine.app.active_work.reconciler import ActiveWorkReconciler
from ctxengine.app.config.settings import WorkspaceSettings, load_workspace_settings
from ctxengine.app.memory.models import Project, Workspace, iso
from ctxengine.app.observability.logging import log_event
from ctxengine.app.observability.metrics import metrics
from ctxengine.app.observability.tracing import trace_span
from ctxengine.app.orchestrator.budget import BudgetPlan, plan_budget
from ctxengine.app.orchestrator.context_builder import ContextBuilder, build_routing_hint, normalize_subpath
from ctxengine.app.orchestrator.persona import (
    PERSONAS,
    PersonaRanker,
    PersonaRecommendation,
    PersonaRecommender,
    applied_type_summary,
    neutral_recommendation,
    resolve_persona_weights,
)
from ctxengine.app.retrieval.providers import ProviderChain
from ctxengine.app.rules.bundle import GlobalRulesBundle, RuleBundleAssembler
from ctxengine.app.schemas.bundle import (
    BundleRuleSchema,
    ContextBundleResponse,
    GlobalRulesSchema,
    ProjectRefSchema,
    RetrievalResultSchema,
    RetrievalSchema,
)
from ctxengine.app.services.token_usage import trim_snippet
from ctxengine.app.utils.cache import Cache, NullCache
from ctxengine.app.utils.interfaces import ContextStore
from ctxengine.app.utils.numbers import as_finite_float


DECISION_EXTRACTION_EVENT_TYPES = ["post_commit", "post_merge"]


class BundleTargetNotFound(LookupError):
    pass


class BundleOrchestrator:
    def __init__(
        self,
        store: ContextStore,
        retrieval: ProviderChain | None = None,
        settings_cache: Cache | None = None,
        recommender: PersonaRecommender | None = None,
        ranker: PersonaRanker | None = None,
        reconciler: ActiveWorkReconciler | None = None,
        now: datetime | None = None,
    ):
        self.store = store
        self.retrieval = retrieval or ProviderChain([])
        self.settings_cache = settings_cache or NullCache()
        self.recommender = recommender or PersonaRecommender()
        self.ranker = ranker or PersonaRanker()
        self.reconciler = reconciler or ActiveWorkReconciler(store)
        self.context_builder = ContextBuilder(store)
        self.rules = RuleBundleAssembler(store, now=now)
        self.now = now

    def workspace_settings(self, workspace_id: str) -> WorkspaceSettings:
        return load_workspace_settings(self.store, workspace_id, self.settings_cache)

    def _resolve(self, workspace_key: str, project_key: str) -> tuple[Workspace, Project]:
        workspace = self.store.get_workspace_by_key(workspace_key)
        if workspace is None:
            raise BundleTargetNotFound(f"workspace not found: {workspace_key}")
        project = self.store.get_project_by_keys(workspace.id, project_key)
        if project is None:
            raise BundleTargetNotFound(f"project not found: {workspace_key}/{project_key}")
        return workspace, project

    def _recommend(self, query: str, hint: str, workspace_id: str) -> PersonaRecommendation:
        try:
            return self.recommender.recommend(query=query or None, context_hint=None if query else hint)
        except Exception as exc:
            metrics.inc("persona_fallbacks_total")
            log_event("persona_recommendation_failed", workspace_id=workspace_id, error=str(exc))
            return neutral_recommendation()

    def build(
        self,
        workspace_key: str,
        project_key: str,
        user_id: str | None = None,
        query: str | None = None,
        current_subpath: str | None = None,
        mode: str = "default",
        budget: int | None = None,
    ) -> ContextBundleResponse:
        started = time.perf_counter()
        debug = mode == "debug"
        query = (query or "").strip()

        with trace_span("context_bundle", workspace=workspace_key, project=project_key, mode=mode):
            workspace, project = self._resolve(workspace_key, project_key)
            settings = self.workspace_settings(workspace.id)
            plan = plan_budget(settings, budget)

            inputs = self.context_builder.load(workspace.id, project.id, user_id=user_id, debug=debug)
            hint = build_routing_hint(inputs, project, current_subpath)
            recommendation = self._recommend(query, hint, workspace.id)
            setting = str(inputs.persona_setting or "").strip().lower()
            persona = setting if setting in PERSONAS else recommendation.recommended
            weights = resolve_persona_weights(settings.persona_weights, persona)

            rows: list[dict[str, Any]] = []
            if query:
                rows = self.retrieval.search(
                    workspace.id,
                    project.id,
                    query,
                    plan.retrieval_limit,
                    mode=settings.search_default_mode,
                    debug=debug,
                    current_subpath=current_subpath,
                )
            ranked = self.ranker.rank(rows, weights, include_debug=debug)

            global_rules = self.rules.build(
                workspace.id,
                settings,
                user_id=user_id,
                total_budget=plan.total,
                query=query or None,
                context_hint=None if query else hint,
                include_routing_debug=debug,
            )

            response = ContextBundleResponse(
                project=ProjectRefSchema(key=project.key, name=project.name),
                global_rules=self._global_section(global_rules),
                snapshot=self.context_builder.build_snapshot(inputs, project, plan.per_item_chars, debug=debug),
                retrieval=RetrievalSchema(
                    query=query or None,
                    results=[self._retrieval_item(row, plan.per_item_chars, debug) for row in ranked],
                ),
            )
            if debug:
                response.debug = self._debug_block(
                    workspace, project, settings, plan, current_subpath, persona, recommendation,
                    weights, ranked, global_rules,
                )

        elapsed = time.perf_counter() - started
        metrics.inc("bundles_built_total")
        metrics.observe("bundle_build_seconds", elapsed)
        log_event(
            "context_bundle_built",
            workspace=workspace.key,
            project=project.key,
            mode=mode,
            budget=plan.total,
            persona=persona,
            retrieval_results=len(ranked),
            workspace_rules=len(global_rules.workspace_rules),
            user_rules=len(global_rules.user_rules),
            latency_ms=round(elapsed * 1000, 2),
        )
        return response

    @staticmethod
    def _global_section(bundle: GlobalRulesBundle) -> GlobalRulesSchema:
        def rule_item(rule, max_chars: int) -> BundleRuleSchema:
            return BundleRuleSchema(
                id=rule.id,
                title=rule.title,
                content=trim_snippet(rule.content, max_chars),
                category=rule.category,
                priority=rule.priority,
                severity=rule.severity,
                pinned=rule.pinned,
                selected_reason=rule.selected_reason,
                score=rule.score,
            )

        return GlobalRulesSchema(
            workspace_rules=[rule_item(r, 400) for r in bundle.workspace_rules],
            user_rules=[rule_item(r, 300) for r in bundle.user_rules],
            workspace_summary=bundle.workspace_summary,
            user_summary=bundle.user_summary,
            routing=bundle.routing,
            warnings=bundle.warnings,
        )

    @staticmethod
    def _retrieval_item(row: dict[str, Any], per_item_chars: int, debug: bool) -> RetrievalResultSchema:
        adjustment = row.get("persona_adjustment") if isinstance(row.get("persona_adjustment"), dict) else {}
        breakdown = row.get("score_breakdown") if isinstance(row.get("score_breakdown"), dict) else {}
        evidence = row.get("evidence")
        return RetrievalResultSchema(
            id=str(row.get("id") or ""),
            type=str(row.get("type") or ""),
            snippet=trim_snippet(str(row.get("content") or ""), per_item_chars),
            score_breakdown={**breakdown, **adjustment} if debug else None,
            persona_weight=as_finite_float(adjustment.get("persona_weight")) if debug else None,
            evidence_ref=evidence if isinstance(evidence, dict) else None,
        )

    def _decision_extractor_recent(self, workspace_id: str, project_id: str) -> list[dict[str, Any]]:
        events = self.store.list_raw_events(
            workspace_id, project_id, event_types=DECISION_EXTRACTION_EVENT_TYPES, limit=20
        )
        out = []
        for event in events:
            if not event.metadata:
                continue
            meta = event.metadata
            item: dict[str, Any] = {"raw_event_id": event.id, "created_at": iso(event.created_at)}
            for field_name, key in (
                ("result", "decision_extraction_result"),
                ("memory_id", "decision_extraction_memory_id"),
                ("error", "decision_extraction_last_error"),
            ):
                value = meta.get(key)
                if isinstance(value, str) and value.strip():
                    item[field_name] = value.strip()
            confidence = as_finite_float(meta.get("decision_extraction_confidence"))
            if confidence is not None:
                item["confidence"] = confidence
            out.append(item)
        return out[:10]

    def _debug_block(
        self,
        workspace: Workspace,
        project: Project,
        settings: WorkspaceSettings,
        plan: BudgetPlan,
        current_subpath: str | None,
        persona: str,
        recommendation: PersonaRecommendation,
        weights: dict[str, float],
        ranked: list[dict[str, Any]],
        global_rules: GlobalRulesBundle,
    ) -> dict[str, Any]:
        now = self.now or datetime.now(timezone.utc)
        candidates = self.reconciler.preview_candidates(workspace.id, project.id, now=now, max_items=8)
        return {
            "resolved_workspace": workspace.key,
            "resolved_project": project.key,
            "monorepo_mode": settings.monorepo_context_mode,
            "current_subpath": normalize_subpath(current_subpath),
            "boosts_applied": {
                "type_weights": dict(settings.search_type_weights),
                "recency_half_life_days": settings.search_recency_half_life_days,
                "subpath_boost_weight": settings.search_subpath_boost_weight,
                "subpath_boost_enabled": (
                    settings.monorepo_context_mode == "shared_repo" and settings.monorepo_subpath_boost_enabled
                ),
            },
            "persona_applied": persona,
            "persona_recommended": recommendation.to_dict(),
            "weight_adjustments": {
                "persona_weights": dict(weights),
                "applied_to_types": applied_type_summary(ranked, weights),
            },
            "token_budget": plan.to_debug(),
            "global_rules": dict(global_rules.debug),
            "active_work_candidates": [c.to_debug() for c in candidates],
            "active_work_policy": {
                **settings.active_work_policy().to_dict(),
                "confirmed_auto_close_exempt": True,
            },
            "decision_extractor_recent": self._decision_extractor_recent(workspace.id, project.id),
        }
