"""
Active-work inference from raw repository events and typed memories.

Events cluster by the directory they touch (or their commit message / branch
when no usable path exists); decision, goal and activity memories form their
own candidates. Each candidate is scored on recency, frequency, decision
status and keyword richness, and the score maps onto a bounded confidence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from ctxengine.app.config.heuristics import Heuristics, get_heuristics
from ctxengine.app.memory.models import (
    MAX_EVIDENCE_IDS,
    ActiveWorkCandidate,
    CandidateBreakdown,
    Memory,
    RawEvent,
)
from ctxengine.app.services.token_usage import normalize_text, trim_snippet
from ctxengine.app.utils.numbers import clamp_float


MIN_CANDIDATE_SCORE = 0.25
CONFIDENCE_SCALE = 7.5
_KEYWORD_SPLIT = re.compile(r"[^a-z0-9]+")


def summarize_text(text: str | None, max_chars: int) -> str:
    # Unlike summarize_inline, empty input stays empty so callers can skip it.
    return trim_snippet(text, max_chars)


def normalize_path(path: str) -> str:
    return path.replace("\\", "/").strip("/").lower()


def changed_file_paths(changed_files: Any) -> list[str]:
    if not isinstance(changed_files, (list, tuple)):
        return []
    paths: list[str] = []
    for entry in changed_files:
        if isinstance(entry, str):
            paths.append(entry)
        elif isinstance(entry, dict):
            candidate = entry.get("path") or entry.get("file") or entry.get("name")
            if isinstance(candidate, str):
                paths.append(candidate)
    return paths


def humanize_cluster(cluster: str) -> str:
    text = re.sub(r"[-_]", " ", cluster).replace("/", " / ").strip()
    return f"Focus on {text}"


@dataclass
class _Accumulator:
    title: str
    last_seen: datetime
    frequency: int = 0
    decision_weight: float = 0.0
    keyword_weight: float = 0.0
    evidence_ids: list[str] = field(default_factory=list)
    keywords: set[str] = field(default_factory=set)

    def add_evidence(self, evidence_id: str):
        if evidence_id not in self.evidence_ids:
            self.evidence_ids.append(evidence_id)

    def seen(self, at: datetime):
        if at > self.last_seen:
            self.last_seen = at


class ActiveWorkInferencer:
    def __init__(self, heuristics: Heuristics | None = None):
        self.heuristics = heuristics or get_heuristics()

    def extract_keywords(self, text: str | None) -> list[str]:
        if not (text or "").strip():
            return []
        stopwords = self.heuristics.commit_stopwords
        tokens = [t for t in _KEYWORD_SPLIT.split(text.lower()) if len(t) >= 3 and t not in stopwords]
        return tokens[:20]

    def _is_ignored(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.heuristics.ignored_path_prefixes)

    def cluster_key(self, changed_files: Any) -> str | None:
        for raw in changed_file_paths(changed_files):
            path = normalize_path(raw)
            if not path or self._is_ignored(path):
                continue
            parts = [p for p in path.split("/") if p]
            if len(parts) >= 2 and parts[0] in self.heuristics.cluster_roots:
                return f"{parts[0]}/{parts[1]}"
            return "/".join(parts[:2])
        return None

    @staticmethod
    def keyword_title(commit_message: str | None, branch: str | None) -> str | None:
        from_message = summarize_text(commit_message, 80)
        if from_message:
            return from_message
        from_branch = summarize_text(branch, 60)
        if from_branch:
            return f"branch:{from_branch}"
        return None

    def _ensure(self, candidates: dict[str, _Accumulator], key: str, title: str, at: datetime) -> _Accumulator:
        existing = candidates.get(key)
        if existing is not None:
            return existing
        acc = _Accumulator(title=summarize_text(title, 140), last_seen=at)
        candidates[key] = acc
        return acc

    def _collect_events(self, candidates: dict[str, _Accumulator], raw_events: Iterable[RawEvent]):
        for event in raw_events:
            cluster = self.cluster_key(event.changed_files) or self.keyword_title(event.commit_message, event.branch)
            if not cluster:
                continue
            acc = self._ensure(candidates, f"cluster:{cluster.lower()}", humanize_cluster(cluster), event.created_at)
            acc.frequency += 1
            acc.seen(event.created_at)
            acc.add_evidence(event.id)
            acc.keywords.update(self.extract_keywords(event.commit_message))

    def _collect_memories(self, candidates: dict[str, _Accumulator], memories: Iterable[Memory]):
        for memory in memories:
            summary = summarize_text(memory.content, 120)
            if not summary:
                continue
            at = memory.updated_at or memory.created_at

            if memory.type in ("decision", "goal"):
                key = f"{memory.type}:{normalize_text(summary)[:120]}"
                acc = self._ensure(candidates, key, summary, at)
                acc.decision_weight += 2.0 if memory.status == "draft" else 1.0
            elif memory.type == "activity":
                subpath = memory.metadata.get("subpath")
                subpath = subpath if isinstance(subpath, str) else ""
                if subpath:
                    acc = self._ensure(candidates, f"activity:{subpath.lower()}", f"Activity around {subpath}", at)
                else:
                    acc = self._ensure(candidates, f"activity:{normalize_text(summary)[:80]}", summary, at)
                acc.keyword_weight += 0.2
            else:
                continue

            acc.seen(at)
            acc.add_evidence(memory.id)
            acc.keywords.update(self.extract_keywords(summary))

    def infer(
        self,
        now: datetime,
        raw_events: Iterable[RawEvent],
        memories: Iterable[Memory],
        max_items: int | None = 5,
    ) -> list[ActiveWorkCandidate]:
        candidates: dict[str, _Accumulator] = {}
        self._collect_events(candidates, raw_events)
        self._collect_memories(candidates, memories)

        results: list[ActiveWorkCandidate] = []
        for key, acc in candidates.items():
            age_days = max(0.0, (now - acc.last_seen).total_seconds() / 86400.0)
            recency = round(max(0.0, 1 - age_days / 14) * 2, 3)
            frequency = round(min(acc.frequency, 20) / 20 * 2, 3)
            decision = round(min(acc.decision_weight, 3.5), 3)
            keyword = round(min(len(acc.keywords), 6) * 0.2 + acc.keyword_weight, 3)
            total = round(recency + frequency + decision + keyword, 3)
            if total <= MIN_CANDIDATE_SCORE:
                continue
            results.append(
                ActiveWorkCandidate(
                    key=key,
                    title=acc.title,
                    confidence=round(clamp_float(total / CONFIDENCE_SCALE, 0.15, 0.99), 3),
                    score=total,
                    evidence_ids=acc.evidence_ids[:MAX_EVIDENCE_IDS],
                    last_evidence_at=acc.last_seen,
                    breakdown=CandidateBreakdown(
                        recency_weight=recency,
                        frequency_weight=frequency,
                        decision_status_weight=decision,
                        commit_keyword_weight=keyword,
                        total=total,
                    ),
                )
            )

        limit = min(max(max_items or 5, 1), 10)
        results.sort(key=lambda c: (-c.score, -c.confidence, c.title))
        return results[:limit]
