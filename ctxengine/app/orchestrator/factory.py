"""
Factory for orchestrator dependency wiring.
"""

from __future__ import annotations

from ctxengine.app.active_work.reconciler import ActiveWorkReconciler
from ctxengine.app.config.runtime import get_runtime_config
from ctxengine.app.orchestrator.pipeline import BundleOrchestrator
from ctxengine.app.retrieval.providers import ProviderChain, TermOverlapRetrievalProvider
from ctxengine.app.store.memory_store import InMemoryContextStore
from ctxengine.app.utils.cache import TTLCache
from ctxengine.app.utils.interfaces import ContextStore, RetrievalProvider


_store: ContextStore | None = None


def get_context_store() -> ContextStore:
    global _store
    if _store is None:
        _store = InMemoryContextStore()
    return _store


def set_context_store(store: ContextStore | None):
    global _store
    _store = store


def build_bundle_orchestrator(
    store: ContextStore | None = None,
    providers: list[RetrievalProvider] | None = None,
) -> BundleOrchestrator:
    cfg = get_runtime_config()
    store = store or get_context_store()
    settings_cache = TTLCache(ttl_seconds=cfg.settings_cache_ttl_seconds)
    if providers is None:
        providers = [TermOverlapRetrievalProvider(store, settings_cache=settings_cache)]
    return BundleOrchestrator(
        store=store,
        retrieval=ProviderChain(providers),
        settings_cache=settings_cache,
        reconciler=ActiveWorkReconciler(store),
    )


def build_reconciler(store: ContextStore | None = None) -> ActiveWorkReconciler:
    return ActiveWorkReconciler(store or get_context_store())
