"""
Nightly active-work sweep across every workspace and project.
"""

from __future__ import annotations

from datetime import datetime, timezone

from ctxengine.app.active_work.reconciler import ActiveWorkReconciler
from ctxengine.app.config.settings import WorkspaceSettings
from ctxengine.app.observability.logging import log_event
from ctxengine.app.schemas.active_work import SweepReport
from ctxengine.app.utils.interfaces import ContextStore


PROJECTS_PER_WORKSPACE = 1000


def run_nightly_sweep(
    store: ContextStore,
    now: datetime | None = None,
    reconciler: ActiveWorkReconciler | None = None,
) -> SweepReport:
    now = now or datetime.now(timezone.utc)
    reconciler = reconciler or ActiveWorkReconciler(store)
    report = SweepReport()

    workspaces = store.list_workspaces()
    report.workspaces_processed = len(workspaces)
    for workspace in workspaces:
        settings = WorkspaceSettings.from_raw(store.get_workspace_settings(workspace.id))
        if not settings.enable_activity_auto_log:
            log_event("active_work_sweep_skipped", workspace_id=workspace.id, reason="activity_auto_log_disabled")
            continue
        policy = settings.active_work_policy()

        for project in store.list_projects(workspace.id, limit=PROJECTS_PER_WORKSPACE):
            report.projects_processed += 1
            result = reconciler.recompute(workspace.id, project.id, now=now, policy=policy)
            for name, value in result.counts().items():
                setattr(report, name, getattr(report, name) + value)
            if result.changed:
                report.changed_projects += 1

    log_event("active_work_sweep_done", **report.model_dump())
    return report
