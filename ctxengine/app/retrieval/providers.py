"""
Ordered retrieval providers for bundle search results.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

from ctxengine.app.config.settings import load_workspace_settings
from ctxengine.app.observability.logging import log_event
from ctxengine.app.observability.metrics import metrics
from ctxengine.app.rules.router import MODE_WEIGHTS, cosine_similarity, keyword_overlap, tokenize
from ctxengine.app.utils.cache import Cache
from ctxengine.app.utils.interfaces import ContextStore, RetrievalProvider


CANDIDATE_POOL = 500


def _normalize_subpath(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().replace("\\", "/").strip("/").lower()


class TermOverlapRetrievalProvider:
    name = "term_overlap"

    def __init__(self, store: ContextStore, now: datetime | None = None, settings_cache: Cache | None = None):
        self.store = store
        self.now = now
        self.settings_cache = settings_cache

    def search(
        self,
        workspace_id: str,
        project_id: str,
        query: str,
        limit: int,
        mode: str = "hybrid",
        debug: bool = False,
        current_subpath: str | None = None,
    ) -> list[dict[str, Any]]:
        query_tokens = tokenize(query)
        if not query_tokens:
            return []
        settings = load_workspace_settings(self.store, workspace_id, self.settings_cache)
        now = self.now or datetime.now(timezone.utc)
        semantic_weight, keyword_weight = MODE_WEIGHTS.get(mode, MODE_WEIGHTS["hybrid"])
        subpath = _normalize_subpath(current_subpath)
        boost_subpath = (
            bool(subpath)
            and settings.monorepo_context_mode == "shared_repo"
            and settings.monorepo_subpath_boost_enabled
        )
        half_life = max(settings.search_recency_half_life_days, 0.1)

        rows: list[dict[str, Any]] = []
        for memory in self.store.list_memories(workspace_id, project_id, limit=CANDIDATE_POOL):
            doc_tokens = tokenize(memory.content)
            semantic = cosine_similarity(query_tokens, doc_tokens)
            keyword = keyword_overlap(query_tokens, doc_tokens)
            relevance = semantic * semantic_weight + keyword * keyword_weight
            if relevance <= 0:
                continue
            type_weight = settings.search_type_weights.get(memory.type, 1.0)
            age = max(0.0, (now - memory.updated_at).total_seconds() / 86400.0)
            recency = math.pow(0.5, age / half_life)
            subpath_boost = 1.0
            if boost_subpath and _normalize_subpath(memory.metadata.get("subpath")) == subpath:
                subpath_boost = settings.search_subpath_boost_weight
            final = relevance * type_weight * (0.5 + 0.5 * recency) * subpath_boost
            rows.append({
                "id": memory.id,
                "type": memory.type,
                "content": memory.content,
                "score": round(final, 6),
                "score_breakdown": {
                    "semantic": round(semantic, 6),
                    "keyword": round(keyword, 6),
                    "type_weight": round(type_weight, 6),
                    "recency": round(recency, 6),
                    "subpath_boost": round(subpath_boost, 6),
                    "final": round(final, 6),
                },
                "evidence": memory.evidence,
                "_updated_at": memory.updated_at,
            })

        rows.sort(key=lambda r: (-r["score"], -r["_updated_at"].timestamp()))
        for row in rows:
            row.pop("_updated_at", None)
            if not debug:
                row.pop("score_breakdown", None)
        return rows[: max(1, limit)]


class ProviderChain:
    """Try providers in order; the first one that returns without raising wins."""

    def __init__(self, providers: list[RetrievalProvider]):
        self.providers = list(providers)

    def search(
        self,
        workspace_id: str,
        project_id: str,
        query: str,
        limit: int,
        mode: str = "hybrid",
        debug: bool = False,
        current_subpath: str | None = None,
    ) -> list[dict[str, Any]]:
        failures: list[dict[str, str]] = []
        for provider in self.providers:
            try:
                return provider.search(
                    workspace_id,
                    project_id,
                    query,
                    limit,
                    mode=mode,
                    debug=debug,
                    current_subpath=current_subpath,
                )
            except Exception as exc:
                name = getattr(provider, "name", type(provider).__name__)
                failures.append({"provider": name, "error": str(exc)})
                metrics.inc("retrieval_provider_failures_total")
                log_event("retrieval_provider_failed", provider=name, workspace_id=workspace_id, error=str(exc))
        if failures:
            log_event("retrieval_chain_exhausted", workspace_id=workspace_id, failures=failures)
        return []
