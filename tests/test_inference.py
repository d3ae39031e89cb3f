"""
tests/test_inference.py
Unit tests for active-work candidate inference.
"""

import pytest


def test_recurring_directory_becomes_candidate(make_event, now):
    from ctxengine.app.active_work.inference import ActiveWorkInferencer

    events = [make_event(["apps/foo/index.ts"]) for _ in range(5)]
    candidates = ActiveWorkInferencer().infer(now, events, [])

    assert len(candidates) == 1
    candidate = candidates[0]
    assert candidate.key == "cluster:apps/foo"
    assert candidate.title == "Focus on apps / foo"
    assert candidate.breakdown.recency_weight == 2.0
    assert candidate.breakdown.frequency_weight == 0.5
    assert candidate.score == pytest.approx(2.5)
    assert candidate.confidence == pytest.approx(0.333)
    assert candidate.evidence_ids == [e.id for e in events]


def test_draft_decision_weighs_more_than_confirmed(make_memory, now):
    from ctxengine.app.active_work.inference import ActiveWorkInferencer

    memories = [
        make_memory("decision", "Adopt event sourcing for billing", status="draft"),
        make_memory("decision", "Keep the monolith deploy", status="confirmed"),
    ]
    candidates = {c.title: c for c in ActiveWorkInferencer().infer(now, [], memories)}

    draft = candidates["Adopt event sourcing for billing"]
    assert draft.key == "decision:adopt event sourcing for billing"
    assert draft.breakdown.decision_status_weight == 2.0
    assert draft.breakdown.commit_keyword_weight == pytest.approx(0.8)
    assert candidates["Keep the monolith deploy"].breakdown.decision_status_weight == 1.0


def test_ignored_paths_fall_back_to_commit_message(make_event, now):
    from ctxengine.app.active_work.inference import ActiveWorkInferencer

    events = [make_event(["node_modules/pkg/index.js"], commit_message="Tune cache eviction")]
    candidates = ActiveWorkInferencer().infer(now, events, [])

    assert candidates[0].key == "cluster:tune cache eviction"
    assert candidates[0].title == "Focus on Tune cache eviction"


def test_branch_name_used_when_nothing_else():
    from ctxengine.app.active_work.inference import ActiveWorkInferencer

    assert ActiveWorkInferencer.keyword_title(None, "feature/login") == "branch:feature/login"
    assert ActiveWorkInferencer.keyword_title("  ", None) is None


def test_dict_entries_and_non_root_paths_cluster():
    from ctxengine.app.active_work.inference import ActiveWorkInferencer

    inferencer = ActiveWorkInferencer()
    assert inferencer.cluster_key([{"path": "packages/ui/button.tsx"}]) == "packages/ui"
    assert inferencer.cluster_key(["src\\App\\main.py"]) == "src/app"
    assert inferencer.cluster_key(["README.md"]) == "readme.md"
    assert inferencer.cluster_key([42, {"size": 3}]) is None


def test_weak_old_candidates_are_dropped(make_event, now):
    from ctxengine.app.active_work.inference import ActiveWorkInferencer

    events = [make_event(["src/app/x.py"], age_days=20)]
    assert ActiveWorkInferencer().infer(now, events, []) == []


def test_activity_memories_cluster_by_subpath(make_memory, now):
    from ctxengine.app.active_work.inference import ActiveWorkInferencer

    memories = [
        make_memory("activity", "Edited login form", metadata={"subpath": "apps/web"}),
        make_memory("activity", "Edited signup form", metadata={"subpath": "apps/web"}),
        make_memory("note", "Unrelated note"),
    ]
    candidates = ActiveWorkInferencer().infer(now, [], memories)

    assert [c.key for c in candidates] == ["activity:apps/web"]
    assert candidates[0].title == "Activity around apps/web"
    assert candidates[0].evidence_ids == ["mem-1", "mem-2"]


def test_extract_keywords_drops_stopwords():
    from ctxengine.app.active_work.inference import ActiveWorkInferencer

    assert ActiveWorkInferencer().extract_keywords("Fix the flaky payment retry") == ["flaky", "payment", "retry"]


def test_results_sorted_and_capped(make_event, now):
    from ctxengine.app.active_work.inference import ActiveWorkInferencer

    events = []
    for i in range(12):
        events.extend(make_event([f"apps/svc{i}/main.py"]) for _ in range(i + 1))
    candidates = ActiveWorkInferencer().infer(now, events, [], max_items=50)

    assert len(candidates) == 10
    assert candidates[0].key == "cluster:apps/svc11"
    assert [c.score for c in candidates] == sorted((c.score for c in candidates), reverse=True)
