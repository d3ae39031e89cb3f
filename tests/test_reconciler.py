"""
tests/test_reconciler.py
Unit tests for active-work recompute, policy and manual transitions.
"""

from datetime import timedelta

import pytest


def _row(now, row_id="aw-1", **overrides):
    from ctxengine.app.memory.models import ActiveWork

    fields = {
        "id": row_id,
        "workspace_id": "ws-1",
        "project_id": "proj-1",
        "title": "Focus on apps / foo",
        "confidence": 0.5,
        "last_updated_at": now - timedelta(days=1),
        "last_evidence_at": now - timedelta(days=1),
    }
    fields.update(overrides)
    return ActiveWork(**fields)


def _seed_foo_events(store, make_event, count=5):
    for _ in range(count):
        store.add_raw_event(make_event(["apps/foo/index.ts"]))


def test_recompute_creates_then_is_idempotent(store, make_event, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    _seed_foo_events(store, make_event)
    reconciler = ActiveWorkReconciler(store)

    first = reconciler.recompute("ws-1", "proj-1", now=now)
    assert first.counts() == {"created": 1, "updated": 0, "stale_marked": 0, "stale_cleared": 0, "closed": 0}
    row = first.rows[0]
    assert row.title == "Focus on apps / foo"
    assert row.inference_key == "cluster:apps/foo"
    assert row.confidence == pytest.approx(0.333)
    assert row.status == "inferred"

    second = reconciler.recompute("ws-1", "proj-1", now=now)
    assert second.changed is False
    assert len(store.active_work) == 1
    assert [e.event_type for e in store.active_work_events] == ["created"]


def test_candidates_sharing_a_title_merge_into_one_stable_row(store, make_memory, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.add_memory(make_memory("decision", "Adopt event sourcing for billing", status="draft"))
    store.add_memory(make_memory("goal", "Adopt event sourcing for billing"))
    reconciler = ActiveWorkReconciler(store)

    first = reconciler.recompute("ws-1", "proj-1", now=now)
    assert first.created == 1
    assert first.updated == 0
    assert len(store.active_work) == 1
    row = next(iter(store.active_work.values()))
    assert sorted(row.evidence_ids) == ["mem-1", "mem-2"]
    assert row.inference_key == "decision:adopt event sourcing for billing"

    for _ in range(2):
        again = reconciler.recompute("ws-1", "proj-1", now=now)
        assert again.changed is False

    row = next(iter(store.active_work.values()))
    assert sorted(row.evidence_ids) == ["mem-1", "mem-2"]
    assert row.inference_key == "decision:adopt event sourcing for billing"


def test_candidate_merges_into_existing_row_matched_by_title(store, make_memory, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.create_active_work(_row(now, title="adopt event sourcing  for billing", confidence=0.2))
    store.add_memory(make_memory("decision", "Adopt event sourcing for billing", status="draft"))
    store.add_memory(make_memory("goal", "Adopt event sourcing for billing"))
    reconciler = ActiveWorkReconciler(store)

    first = reconciler.recompute("ws-1", "proj-1", now=now)
    assert first.created == 0
    assert first.updated == 1
    assert sorted(store.active_work["aw-1"].evidence_ids) == ["mem-1", "mem-2"]

    assert reconciler.recompute("ws-1", "proj-1", now=now).changed is False


def test_events_share_the_recompute_correlation_id(store, make_event, make_memory, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    _seed_foo_events(store, make_event)
    store.add_memory(make_memory("goal", "Ship the billing dashboard"))
    result = ActiveWorkReconciler(store).recompute("ws-1", "proj-1", now=now)

    assert result.created == 2
    assert result.correlation_id.startswith("active-work-recompute:")
    assert {e.correlation_id for e in store.active_work_events} == {result.correlation_id}


def test_title_match_survives_case_and_whitespace(store, make_event, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.create_active_work(_row(now, title="FOCUS on   apps / foo", confidence=0.2))
    _seed_foo_events(store, make_event)

    result = ActiveWorkReconciler(store).recompute("ws-1", "proj-1", now=now)

    assert result.created == 0
    assert result.updated == 1
    row = store.active_work["aw-1"]
    assert row.inference_key == "cluster:apps/foo"
    assert len(row.evidence_ids) == 5


def test_row_goes_stale_after_threshold(store, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.create_active_work(
        _row(now, inference_key="cluster:old", last_evidence_at=now - timedelta(days=20))
    )
    reconciler = ActiveWorkReconciler(store)

    result = reconciler.recompute("ws-1", "proj-1", now=now)
    assert result.stale_marked == 1
    row = store.active_work["aw-1"]
    assert row.stale is True
    assert row.stale_reason == "No evidence for 14+ days."
    assert row.status == "inferred"

    again = reconciler.recompute("ws-1", "proj-1", now=now)
    assert again.changed is False


def test_workspace_policy_is_read_from_settings(store, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.set_workspace_settings("ws-1", {"active_work_stale_days": 30})
    store.create_active_work(_row(now, last_evidence_at=now - timedelta(days=20)))

    result = ActiveWorkReconciler(store).recompute("ws-1", "proj-1", now=now)

    assert result.stale_marked == 0
    assert store.active_work["aw-1"].stale is False


def test_new_evidence_clears_stale(store, make_event, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.create_active_work(
        _row(
            now,
            inference_key="cluster:apps/foo",
            stale=True,
            stale_reason="No evidence for 14+ days.",
            last_evidence_at=now - timedelta(days=20),
        )
    )
    _seed_foo_events(store, make_event)

    result = ActiveWorkReconciler(store).recompute("ws-1", "proj-1", now=now)

    assert result.stale_cleared == 1
    assert result.updated == 1
    row = store.active_work["aw-1"]
    assert row.stale is False
    assert row.stale_reason is None
    assert row.last_evidence_at == now
    assert {e.event_type for e in store.active_work_events} == {"stale_cleared", "updated"}


def test_fresh_row_marked_stale_is_cleared_by_policy(store, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.create_active_work(_row(now, stale=True, stale_reason="stale", last_evidence_at=now - timedelta(days=2)))

    result = ActiveWorkReconciler(store).recompute("ws-1", "proj-1", now=now)

    assert result.stale_cleared == 1
    assert store.active_work["aw-1"].stale is False


def test_auto_close_skips_confirmed_rows(store, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler
    from ctxengine.app.config.settings import ActiveWorkPolicy

    old = now - timedelta(days=40)
    store.create_active_work(_row(now, "aw-inferred", title="Old inferred", last_evidence_at=old))
    store.create_active_work(_row(now, "aw-confirmed", title="Old confirmed", status="confirmed", last_evidence_at=old))
    policy = ActiveWorkPolicy(stale_days=14, auto_close_enabled=True, auto_close_days=30)

    result = ActiveWorkReconciler(store).recompute("ws-1", "proj-1", now=now, policy=policy)

    assert result.closed == 1
    assert result.stale_marked == 1
    closed = store.active_work["aw-inferred"]
    assert closed.status == "closed"
    assert closed.closed_at == now
    assert closed.stale_reason == "No evidence for 30+ days."
    confirmed = store.active_work["aw-confirmed"]
    assert confirmed.status == "confirmed"
    assert confirmed.stale is True
    assert [r.status for r in result.rows] == ["closed", "confirmed"]


def test_confirmed_row_stays_confirmed_on_refresh(store, make_event, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.create_active_work(_row(now, status="confirmed", inference_key="cluster:apps/foo"))
    _seed_foo_events(store, make_event)

    result = ActiveWorkReconciler(store).recompute("ws-1", "proj-1", now=now)

    assert result.updated == 1
    assert store.active_work["aw-1"].status == "confirmed"


def test_closed_row_with_new_evidence_is_revived(store, make_event, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.create_active_work(
        _row(now, status="closed", stale=True, closed_at=now - timedelta(days=2), inference_key="cluster:apps/foo")
    )
    _seed_foo_events(store, make_event)

    result = ActiveWorkReconciler(store).recompute("ws-1", "proj-1", now=now)

    assert result.created == 0
    row = store.active_work["aw-1"]
    assert row.status == "inferred"
    assert row.closed_at is None
    assert row.stale is False


def test_manual_transitions_round_trip(store, now):
    from ctxengine.app.active_work.reconciler import MANUAL_CLOSE_REASON, ActiveWorkReconciler, events_response

    store.create_active_work(_row(now))
    reconciler = ActiveWorkReconciler(store)

    confirmed = reconciler.transition("ws-1", "proj-1", "aw-1", "confirm", now=now)
    assert confirmed.status == "confirmed"

    closed = reconciler.transition("ws-1", "proj-1", "aw-1", "close", now=now + timedelta(minutes=1))
    assert closed.status == "closed"
    assert closed.stale is True
    assert closed.stale_reason == MANUAL_CLOSE_REASON
    assert closed.closed_at == now + timedelta(minutes=1)

    reopened = reconciler.transition("ws-1", "proj-1", "aw-1", "reopen", now=now + timedelta(minutes=2))
    assert reopened.status == "inferred"
    assert reopened.stale is False
    assert reopened.closed_at is None

    events = reconciler.list_events("ws-1", "proj-1", active_work_id="aw-1")
    assert [e.event_type for e in events] == ["reopened", "closed", "confirmed"]
    assert events[1].details["previous_status"] == "confirmed"
    assert {e.details["source"] for e in events} == {"manual"}

    payload = events_response(events)
    assert payload[0]["event_type"] == "reopened"
    assert payload[0]["correlation_id"].startswith("active-work-manual:")
    assert payload[2]["created_at"].startswith("2026-03-02T12:00:00")


def test_manual_close_keeps_existing_stale_reason(store, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.create_active_work(_row(now, stale=True, stale_reason="No evidence for 14+ days."))
    closed = ActiveWorkReconciler(store).transition("ws-1", "proj-1", "aw-1", "close", now=now)

    assert closed.stale_reason == "No evidence for 14+ days."


def test_transition_errors(store, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkNotFound, ActiveWorkReconciler

    store.create_active_work(_row(now))
    reconciler = ActiveWorkReconciler(store)

    with pytest.raises(ActiveWorkNotFound):
        reconciler.transition("ws-1", "proj-1", "missing", "confirm")
    with pytest.raises(ActiveWorkNotFound):
        reconciler.transition("ws-1", "other-project", "aw-1", "confirm")
    with pytest.raises(ValueError):
        reconciler.transition("ws-1", "proj-1", "aw-1", "archive")


def test_list_rows_hides_closed_by_default(store, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler

    store.create_active_work(_row(now, "open", confidence=0.4))
    store.create_active_work(_row(now, "done", status="closed", confidence=0.9))
    reconciler = ActiveWorkReconciler(store)

    assert [r.id for r in reconciler.list_rows("ws-1", "proj-1")] == ["open"]
    assert [r.id for r in reconciler.list_rows("ws-1", "proj-1", include_closed=True)] == ["done", "open"]


def test_recompute_response_payload(store, make_event, now):
    from ctxengine.app.active_work.reconciler import ActiveWorkReconciler, recompute_response
    from ctxengine.app.observability.metrics import metrics

    _seed_foo_events(store, make_event)
    result = ActiveWorkReconciler(store).recompute("ws-1", "proj-1", now=now)
    payload = recompute_response(store.workspaces["ws-1"], store.projects["proj-1"], result)

    assert payload["workspace_key"] == "acme"
    assert payload["project_key"] == "web"
    assert payload["created"] == 1
    item = payload["active_work"][0]
    assert item["status"] == "inferred"
    assert item["stale_reason"] is None
    assert len(item["evidence_ids"]) == 5
    assert metrics.local.counters["active_work_recomputes_total"] == 1
    assert metrics.local.counters["active_work_events_total"] == 1
