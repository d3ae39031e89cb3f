"""
tests/test_persona.py
Unit tests for persona recommendation and persona-weighted ranking.
"""

import pytest


def test_ranker_reorders_by_type_weight():
    from ctxengine.app.orchestrator.persona import PersonaRanker

    rows = [
        {"id": "n1", "type": "note", "score": 0.9},
        {"id": "d1", "type": "decision", "score": 0.6},
    ]
    ranked = PersonaRanker().rank(rows, {"decision": 2.0, "note": 1.0})

    assert [r["id"] for r in ranked] == ["d1", "n1"]
    assert "persona_adjustment" not in ranked[0]
    assert rows[0]["id"] == "n1"


def test_ranker_debug_adjustment_and_breakdown_final():
    from ctxengine.app.orchestrator.persona import PersonaRanker

    rows = [
        {"id": "a", "type": "constraint", "score": 0.1, "score_breakdown": {"final": 0.5}},
        {"id": "b", "type": "activity", "score": 0.55},
    ]
    ranked = PersonaRanker().rank(rows, {"default": 1.0, "constraint": 1.5}, include_debug=True)

    assert ranked[0]["id"] == "a"
    assert ranked[0]["persona_adjustment"] == {"base_score": 0.5, "persona_weight": 1.5, "adjusted_score": 0.75}


def test_ranker_leaves_single_row_untouched():
    from ctxengine.app.orchestrator.persona import PersonaRanker

    rows = [{"id": "only", "type": "note"}]
    assert PersonaRanker().rank(rows, {"note": 5.0}, include_debug=True) == rows


def test_ranker_uses_position_when_unscored():
    from ctxengine.app.orchestrator.persona import PersonaRanker

    rows = [{"id": "first", "type": "note"}, {"id": "second", "type": "note"}]
    assert [r["id"] for r in PersonaRanker().rank(rows, {"default": 1.0})] == ["first", "second"]


def test_recommender_detects_reviewer_language():
    from ctxengine.app.orchestrator.persona import REASONS, PersonaRecommender

    rec = PersonaRecommender().recommend(query="please review the security permission model")

    assert rec.recommended == "reviewer"
    assert rec.confidence == 0.98
    assert rec.reasons == [REASONS["reviewer"]]
    assert rec.alternatives[0] == {"persona": "reviewer", "score": 1.7}


def test_recommender_neutral_without_signal():
    from ctxengine.app.orchestrator.persona import NO_SIGNAL_REASON, PersonaRecommender

    rec = PersonaRecommender().recommend(query="hello there")

    assert rec.recommended == "neutral"
    assert rec.confidence == pytest.approx(0.675)
    assert rec.reasons == [NO_SIGNAL_REASON]


def test_recommender_empty_text_and_context_fallback():
    from ctxengine.app.orchestrator.persona import EMPTY_TEXT_REASON, PersonaRecommender

    recommender = PersonaRecommender()
    empty = recommender.recommend()
    assert empty.recommended == "neutral"
    assert empty.confidence == 0.45
    assert empty.reasons == [EMPTY_TEXT_REASON]

    hinted = recommender.recommend(context_hint="system design review of the platform architecture")
    assert hinted.recommended == "architect"
    assert recommender.recommend(context_hint="architecture", allow_context_fallback=False).recommended == "neutral"


def test_resolve_persona_and_weights():
    from ctxengine.app.orchestrator.persona import resolve_persona, resolve_persona_weights

    assert resolve_persona(" ARCHITECT ") == "architect"
    assert resolve_persona("ceo") == "neutral"

    weights = resolve_persona_weights(None, "reviewer")
    assert weights["default"] == 1.0
    assert weights["constraint"] == 1.5

    overridden = resolve_persona_weights({"reviewer": {"constraint": 3, "bad": -1, "Huge": 500}}, "reviewer")
    assert overridden["constraint"] == 3.0
    assert "bad" not in overridden
    assert overridden["huge"] == 100.0


def test_applied_type_summary():
    from ctxengine.app.orchestrator.persona import applied_type_summary

    weights = {"default": 1.0, "decision": 1.5}
    rows = [{"type": "decision"}, {"type": "note"}]
    assert applied_type_summary(rows, weights) == {"decision": 1.5, "note": 1.0}
    assert applied_type_summary([{"type": "decision"}], weights) == {"decision": 1.0}
