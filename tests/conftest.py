"""Shared pytest fixtures for the ctxengine test suite."""

import os
from datetime import datetime, timedelta, timezone

import pytest


@pytest.fixture(autouse=True)
def _isolate_runtime(monkeypatch):
    """Run every test against built-in defaults and fresh local metrics."""
    for name in list(os.environ):
        if name.startswith("CTX_"):
            monkeypatch.delenv(name, raising=False)

    from ctxengine.app.observability.metrics import metrics

    metrics.local.reset()
    yield
    metrics.local.reset()


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    from ctxengine.app.memory.models import Project, Workspace
    from ctxengine.app.store.memory_store import InMemoryContextStore

    store = InMemoryContextStore()
    store.add_workspace(Workspace(id="ws-1", key="acme", name="Acme"))
    store.add_project(Project(id="proj-1", workspace_id="ws-1", key="web", name="Web App"))
    return store


@pytest.fixture
def make_rule(now):
    from ctxengine.app.memory.models import Rule

    def _make(rule_id, title="Rule", content="Keep it short.", **overrides):
        fields = {
            "id": rule_id,
            "title": title,
            "content": content,
            "workspace_id": "ws-1",
            "created_at": now - timedelta(days=1),
            "updated_at": now - timedelta(days=1),
        }
        fields.update(overrides)
        return Rule(**fields)

    return _make


@pytest.fixture
def make_event(now):
    from ctxengine.app.memory.models import RawEvent

    counter = {"n": 0}

    def _make(changed_files=None, commit_message=None, age_days=0.0, **overrides):
        counter["n"] += 1
        fields = {
            "id": f"evt-{counter['n']}",
            "created_at": now - timedelta(days=age_days),
            "workspace_id": "ws-1",
            "project_id": "proj-1",
            "event_type": "post_commit",
            "commit_message": commit_message,
            "changed_files": list(changed_files or []),
        }
        fields.update(overrides)
        return RawEvent(**fields)

    return _make


@pytest.fixture
def make_memory(now):
    from ctxengine.app.memory.models import Memory

    counter = {"n": 0}

    def _make(memory_type, content, age_days=0.0, **overrides):
        counter["n"] += 1
        at = now - timedelta(days=age_days)
        fields = {
            "id": f"mem-{counter['n']}",
            "type": memory_type,
            "content": content,
            "created_at": at,
            "updated_at": at,
            "workspace_id": "ws-1",
            "project_id": "proj-1",
        }
        fields.update(overrides)
        return Memory(**fields)

    return _make
