"""
tests/test_tasks.py
Unit tests for background task entrypoints and worker wiring.
"""

from datetime import datetime, timezone

import pytest


@pytest.fixture
def installed_store(store):
    from ctxengine.app.orchestrator.factory import set_context_store

    set_context_store(store)
    yield store
    set_context_store(None)


def test_sweep_task_returns_report(installed_store, make_event):
    from ctxengine.app.tasks.active_work_tasks import run_active_work_sweep

    installed_store.add_raw_event(make_event(["apps/foo/index.ts"]))
    report = run_active_work_sweep()

    assert report["workspaces_processed"] == 1
    assert report["projects_processed"] == 1


def test_sweep_task_reports_failure(installed_store, monkeypatch):
    from ctxengine.app.tasks import active_work_tasks

    def _boom(store):
        raise RuntimeError("store offline")

    monkeypatch.setattr(active_work_tasks, "run_nightly_sweep", _boom)
    report = active_work_tasks.run_active_work_sweep()

    assert report["error"] == "store offline"
    assert report["projects_processed"] == 0


def test_project_recompute_task(installed_store, make_event):
    from ctxengine.app.tasks.active_work_tasks import run_project_recompute

    # The task recomputes against the wall clock.
    installed_store.add_raw_event(make_event(["apps/foo/index.ts"], created_at=datetime.now(timezone.utc)))
    out = run_project_recompute("ws-1", "proj-1")

    assert out["created"] == 1
    assert out["correlation_id"].startswith("active-work-recompute:")


def test_worker_registers_tasks_and_installs_nightly_schedule():
    from ctxengine.app.tasks.worker import celery_app

    assert "active_work.nightly_sweep" in celery_app.tasks
    assert "active_work.recompute_project" in celery_app.tasks
    assert celery_app.conf.beat_schedule["active-work-sweep-nightly"] == {
        "task": "active_work.nightly_sweep",
        "schedule": 24 * 60 * 60,
    }
