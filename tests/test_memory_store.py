"""
tests/test_memory_store.py
Unit tests for the in-process store and the domain model coercions it relies on.
"""

from datetime import timedelta

import pytest


def test_rule_from_dict_coerces_fields():
    from ctxengine.app.memory.models import Rule

    rule = Rule.from_dict({
        "id": "r1",
        "title": "  Secrets  ",
        "content": "Never commit secrets",
        "scope": "USER",
        "category": "unknown",
        "priority": 9,
        "severity": "HIGH",
        "pinned": "yes",
        "tags": "Security, secret handling,security",
        "updated_at": "2026-01-02T03:04:05Z",
    })

    assert rule.title == "Secrets"
    assert rule.scope == "user"
    assert rule.category == "policy"
    assert rule.priority == 5
    assert rule.severity == "high"
    assert rule.pinned is False
    assert rule.tags == ["security", "secret-handling"]
    assert rule.updated_at.tzinfo is not None


def test_loose_rows_are_coerced():
    from ctxengine.app.memory.models import Memory, RawEvent

    event = RawEvent.from_dict({
        "id": "e1",
        "created_at": "2026-01-02T03:04:05",
        "changed_files": "not-a-list",
        "metadata": ["bad"],
    })
    assert event.created_at.tzinfo is not None
    assert event.changed_files == []
    assert event.metadata == {}
    assert event.event_type == "post_commit"

    memory = Memory.from_dict({"type": " Decision ", "content": "Use postgres", "evidence": "nope"})
    assert memory.type == "decision"
    assert memory.updated_at == memory.created_at
    assert memory.evidence is None


def test_active_work_bounds_are_enforced(now):
    from ctxengine.app.memory.models import MAX_EVIDENCE_IDS, ActiveWork

    row = ActiveWork(
        id="aw",
        workspace_id="ws-1",
        project_id="proj-1",
        title="x",
        confidence=1.7,
        last_updated_at=now,
        status="archived",
        evidence_ids=[f"e{i}" for i in range(40)],
    )

    assert row.confidence == 1.0
    assert row.status == "inferred"
    assert len(row.evidence_ids) == MAX_EVIDENCE_IDS
    assert row.to_api()["last_updated_at"] == now.isoformat()


def test_store_returns_copies(store, make_rule):
    store.add_rule(make_rule("r1"))

    fetched = store.list_rules("ws-1", "workspace")[0]
    fetched.title = "mutated"

    assert store.list_rules("ws-1", "workspace")[0].title == "Rule"


def test_raw_events_filter_and_order(store, make_event, now):
    store.add_raw_event(make_event(["a/b"], age_days=3))
    store.add_raw_event(make_event(["a/b"], age_days=1))
    store.add_raw_event(make_event(["a/b"], age_days=0, event_type="post_checkout"))

    rows = store.list_raw_events("ws-1", "proj-1", since=now - timedelta(days=2), event_types=["post_commit"])

    assert [e.id for e in rows] == ["evt-2"]


def test_active_work_create_and_update_guards(store, now):
    from ctxengine.app.memory.models import ActiveWork

    row = ActiveWork(id="aw", workspace_id="ws-1", project_id="proj-1", title="x", confidence=0.5, last_updated_at=now)
    store.create_active_work(row)

    with pytest.raises(ValueError):
        store.create_active_work(row)
    with pytest.raises(KeyError):
        store.update_active_work(ActiveWork(
            id="ghost", workspace_id="ws-1", project_id="proj-1", title="y", confidence=0.1, last_updated_at=now
        ))
    assert store.get_active_work("ws-1", "other", "aw") is None


def test_rule_summary_scoped_by_user(store):
    from ctxengine.app.memory.models import RuleSummary

    store.upsert_rule_summary(RuleSummary(scope="user", workspace_id="ws-1", user_id="u1", summary="mine"))
    store.upsert_rule_summary(RuleSummary(scope="user", workspace_id="ws-1", user_id="u2", summary="theirs"))
    store.upsert_rule_summary(RuleSummary(scope="user", workspace_id="ws-1", user_id="u1", summary="mine v2"))

    assert store.get_rule_summary("ws-1", "user", user_id="u1").summary == "mine v2"
    assert store.get_rule_summary("ws-1", "user", user_id="u2").summary == "theirs"
    assert store.get_rule_summary("ws-1", "workspace") is None
