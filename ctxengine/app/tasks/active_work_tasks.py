"""
Background task entrypoints for active-work maintenance.
"""

from __future__ import annotations

from ctxengine.app.active_work.sweep import run_nightly_sweep
from ctxengine.app.observability.logging import log_event
from ctxengine.app.orchestrator.factory import build_reconciler, get_context_store


def run_active_work_sweep():
    store = get_context_store()
    try:
        report = run_nightly_sweep(store).model_dump()
        log_event("task_active_work_sweep_done", **report)
        return report
    except Exception as exc:
        log_event("task_active_work_sweep_failed", error=str(exc))
        return {"workspaces_processed": 0, "projects_processed": 0, "changed_projects": 0, "error": str(exc)}


def run_project_recompute(workspace_id: str, project_id: str):
    reconciler = build_reconciler()
    try:
        result = reconciler.recompute(workspace_id, project_id)
        counts = result.counts()
        log_event(
            "task_active_work_recompute_done",
            workspace_id=workspace_id,
            project_id=project_id,
            correlation_id=result.correlation_id,
            **counts,
        )
        return {**counts, "correlation_id": result.correlation_id}
    except Exception as exc:
        log_event("task_active_work_recompute_failed", workspace_id=workspace_id, project_id=project_id, error=str(exc))
        return {"created": 0, "updated": 0, "stale_marked": 0, "stale_cleared": 0, "closed": 0, "error": str(exc)}
