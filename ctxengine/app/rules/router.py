"""
Relevance scoring of a single rule against a query (bag-of-terms, no embeddings).
"""

from __future__ import annotations

import math
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable

from ctxengine.app.memory.models import Rule, RoutingScoreBreakdown
from ctxengine.app.services.token_usage import estimate_tokens
from ctxengine.app.utils.numbers import clamp_int


MAX_QUERY_TOKENS = 512
_NON_TOKEN = re.compile(r"[^a-z0-9_\-\s]+")

MODE_WEIGHTS: dict[str, tuple[float, float]] = {
    "semantic": (1.0, 0.0),
    "keyword": (0.0, 1.0),
    "hybrid": (0.65, 0.35),
}


def tokenize(text: str | None, limit: int = MAX_QUERY_TOKENS) -> list[str]:
    cleaned = _NON_TOKEN.sub(" ", (text or "").lower())
    return [t for t in cleaned.split() if len(t) >= 2][:limit]


def cosine_similarity(left_tokens: Iterable[str], right_tokens: Iterable[str]) -> float:
    left = Counter(left_tokens)
    right = Counter(right_tokens)
    if not left or not right:
        return 0.0
    dot = sum(count * right.get(token, 0) for token, count in left.items())
    left_norm = sum(v * v for v in left.values())
    right_norm = sum(v * v for v in right.values())
    if left_norm == 0 or right_norm == 0:
        return 0.0
    return dot / math.sqrt(left_norm * right_norm)


def keyword_overlap(query_tokens: Iterable[str], doc_tokens: Iterable[str]) -> float:
    query_set = set(query_tokens)
    doc_set = set(doc_tokens)
    if not query_set or not doc_set:
        return 0.0
    return len(query_set & doc_set) / max(len(query_set), 1)


def age_days(updated_at: datetime, now: datetime) -> float:
    return max((now - updated_at).total_seconds() / 86400.0, 0.0)


class RuleRouter:
    def __init__(self, now: datetime | None = None):
        self.now = now

    def score(self, scope: str, rule: Rule, query_tokens: list[str], mode: str = "hybrid") -> RoutingScoreBreakdown:
        now = self.now or datetime.now(timezone.utc)
        rule_tokens = tokenize(f"{rule.title} {rule.content} {' '.join(rule.tags)}")
        semantic = cosine_similarity(query_tokens, rule_tokens)
        keyword = keyword_overlap(query_tokens, rule_tokens)
        priority = (6 - clamp_int(rule.priority, 3, 1, 5)) / 5
        recency = math.exp(-age_days(rule.updated_at, now) / 21)
        length_penalty = min(estimate_tokens(rule.content) / 800, 0.6)

        semantic_weight, keyword_weight = MODE_WEIGHTS.get(mode, MODE_WEIGHTS["hybrid"])
        final = (
            semantic * semantic_weight
            + keyword * keyword_weight
            + priority * 0.2
            + recency * 0.12
            - length_penalty * 0.08
        )
        return RoutingScoreBreakdown(
            rule_id=rule.id,
            scope=scope,
            semantic=round(semantic, 6),
            keyword=round(keyword, 6),
            priority=round(priority, 6),
            recency=round(recency, 6),
            length_penalty=round(length_penalty, 6),
            final=round(final, 6),
        )
