"""
Celery worker wiring for scheduled active-work maintenance.
"""

from __future__ import annotations

from celery import Celery

from ctxengine.app.config.runtime import get_runtime_config
from ctxengine.app.tasks.active_work_tasks import run_active_work_sweep, run_project_recompute
from ctxengine.app.tasks.schedules import build_beat_schedule


def _create_celery() -> Celery:
    redis_url = get_runtime_config().redis_url
    app = Celery("ctxengine", broker=redis_url, backend=redis_url)
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        beat_schedule=build_beat_schedule(),
    )
    return app


celery_app = _create_celery()


@celery_app.task(name="active_work.nightly_sweep")
def nightly_sweep_task():
    return run_active_work_sweep()


@celery_app.task(name="active_work.recompute_project")
def recompute_project_task(workspace_id: str, project_id: str):
    return run_project_recompute(workspace_id=workspace_id, project_id=project_id)
