"""
Persona lens: keyword-based persona recommendation and per-type re-ranking.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ctxengine.app.config.heuristics import Heuristics, get_heuristics
from ctxengine.app.utils.numbers import as_finite_float, clamp_float


PERSONAS: tuple[str, ...] = ("neutral", "author", "reviewer", "architect")

DEFAULT_PERSONA_WEIGHTS: dict[str, dict[str, float]] = {
    "neutral": {"default": 1.0},
    "author": {"active_work": 1.4, "activity": 1.3, "decision": 1.1, "note": 1.1, "problem": 1.2},
    "reviewer": {"constraint": 1.5, "decision": 1.3, "caveat": 1.4, "problem": 1.2, "activity": 0.9},
    "architect": {"decision": 1.5, "constraint": 1.3, "goal": 1.3, "summary": 1.2, "activity": 0.8},
}

BASE_SCORES: dict[str, float] = {"neutral": 0.45, "author": 0.2, "reviewer": 0.2, "architect": 0.2}

REASONS = {
    "reviewer": "Mentions security/permission/audit concerns.",
    "architect": "Mentions architecture/design/scaling concerns.",
    "author": "Mentions implementation/fix/add execution work.",
}
NO_SIGNAL_REASON = "No strong persona keyword match; using balanced neutral mode."
EMPTY_TEXT_REASON = "No explicit query signal; neutral is the safest default."


@dataclass
class PersonaRecommendation:
    recommended: str
    confidence: float
    reasons: list[str] = field(default_factory=list)
    alternatives: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recommended": self.recommended,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "alternatives": [dict(a) for a in self.alternatives],
        }


def neutral_recommendation(reason: str = EMPTY_TEXT_REASON) -> PersonaRecommendation:
    return PersonaRecommendation(
        recommended="neutral",
        confidence=0.45,
        reasons=[reason],
        alternatives=[{"persona": p, "score": BASE_SCORES[p]} for p in PERSONAS],
    )


def resolve_persona(value: Any) -> str:
    text = str(value or "").strip().lower()
    return text if text in PERSONAS else "neutral"


def resolve_persona_weights(overrides: dict[str, dict[str, float]] | None, persona: str) -> dict[str, float]:
    merged = {**DEFAULT_PERSONA_WEIGHTS["neutral"], **DEFAULT_PERSONA_WEIGHTS.get(persona, {})}
    persona_overrides = (overrides or {}).get(persona)
    if not isinstance(persona_overrides, dict):
        return merged
    for key, raw in persona_overrides.items():
        name = str(key or "").strip().lower()
        number = as_finite_float(raw)
        if not name or number is None or number <= 0:
            continue
        merged[name] = min(number, 100.0)
    return merged


class PersonaRecommender:
    def __init__(self, heuristics: Heuristics | None = None):
        self.heuristics = heuristics or get_heuristics()

    def _hits(self, text: str, persona: str) -> int:
        return sum(1 for signal in self.heuristics.persona_signals.get(persona, ()) if signal in text)

    def recommend(
        self,
        query: str | None = None,
        context_hint: str | None = None,
        allow_context_fallback: bool = True,
    ) -> PersonaRecommendation:
        text = (query or "").strip() or ((context_hint or "").strip() if allow_context_fallback else "")
        if not text:
            return neutral_recommendation()

        normalized = text.lower()
        scores = dict(BASE_SCORES)
        reasons: list[str] = []
        hits = {p: self._hits(normalized, p) for p in ("author", "reviewer", "architect")}
        for persona, count in hits.items():
            scores[persona] += count * self.heuristics.persona_signal_weights.get(persona, 0.5)

        for persona in ("reviewer", "architect", "author"):
            if hits[persona] > 0:
                reasons.append(REASONS[persona])
        if not any(hits.values()):
            scores["neutral"] += 0.25
            reasons.append(NO_SIGNAL_REASON)

        alternatives = sorted(
            ({"persona": p, "score": round(scores[p], 3)} for p in PERSONAS),
            key=lambda a: -a["score"],
        )
        top, second = alternatives[0], alternatives[1]
        confidence = round(clamp_float(0.45 + max(0.0, top["score"] - second["score"]) * 0.45, 0.45, 0.98), 3)
        return PersonaRecommendation(
            recommended=top["persona"],
            confidence=confidence,
            reasons=reasons[:3],
            alternatives=alternatives,
        )


def _weight_for(row_type: str, weights: dict[str, float]) -> float:
    if row_type in weights:
        return weights[row_type]
    return weights.get("default", 1.0)


class PersonaRanker:
    def _base_score(self, row: dict[str, Any], index: int, total: int) -> float:
        breakdown = row.get("score_breakdown")
        if isinstance(breakdown, dict):
            final = as_finite_float(breakdown.get("final"))
            if final is not None:
                return final
        score = as_finite_float(row.get("score"))
        if score is not None:
            return score
        return max(0.0001, (total - index) / total)

    def rank(self, rows: list[dict[str, Any]], weights: dict[str, float], include_debug: bool = False) -> list[dict[str, Any]]:
        if len(rows) <= 1:
            return list(rows)
        total = len(rows)
        scored = []
        for index, row in enumerate(rows):
            base = self._base_score(row, index, total)
            weight = _weight_for(str(row.get("type") or "").lower(), weights)
            adjusted = base * weight
            out = dict(row)
            if include_debug:
                out["persona_adjustment"] = {
                    "base_score": round(base, 6),
                    "persona_weight": round(weight, 6),
                    "adjusted_score": round(adjusted, 6),
                }
            scored.append((adjusted, out))
        scored.sort(key=lambda item: -item[0])
        return [row for _, row in scored]


def applied_type_summary(rows: list[dict[str, Any]], weights: dict[str, float]) -> dict[str, float]:
    # A single row is never re-weighted, so it reports the identity weight.
    summary: dict[str, float] = {}
    for row in rows:
        row_type = str(row.get("type") or "").lower()
        if not row_type:
            continue
        weight = _weight_for(row_type, weights) if len(rows) > 1 else 1.0
        summary[row_type] = round(weight, 3)
    return summary
