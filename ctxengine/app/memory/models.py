"""
Domain models for rules, memories, raw activity and active work.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ctxengine.app.utils.numbers import as_finite_float, clamp_float, clamp_int


RULE_SCOPES = ("workspace", "user")
RULE_CATEGORIES = ("policy", "security", "style", "process", "other")
RULE_SEVERITIES = ("low", "medium", "high")
ACTIVE_WORK_STATUSES = ("inferred", "confirmed", "closed")
MAX_EVIDENCE_IDS = 32


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_dt(raw: Any, fallback: datetime | None = None) -> datetime | None:
    if raw is None or raw == "":
        return fallback
    if isinstance(raw, datetime):
        value = raw
    else:
        try:
            value = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            return fallback
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def as_record(raw: Any) -> dict[str, Any]:
    return dict(raw) if isinstance(raw, dict) else {}


def to_string_list(raw: Any) -> list[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    out: list[str] = []
    for item in raw:
        text = str(item if item is not None else "").strip()
        if text:
            out.append(text)
    return out


def normalize_tags(raw: Any) -> list[str]:
    if isinstance(raw, (list, tuple, set, frozenset)):
        source = list(raw)
    elif isinstance(raw, str):
        source = re.split(r"[,\n]", raw)
    else:
        source = []
    tags: list[str] = []
    for item in source:
        tag = re.sub(r"\s+", "-", str(item or "").strip().lower())
        if 0 < len(tag) <= 64 and tag not in tags:
            tags.append(tag)
    return tags[:100]


def _choice(raw: Any, allowed: tuple[str, ...], fallback: str) -> str:
    value = str(raw or "").strip().lower()
    return value if value in allowed else fallback


@dataclass
class Rule:
    id: str
    title: str
    content: str
    scope: str = "workspace"
    workspace_id: str = ""
    user_id: str | None = None
    category: str = "policy"
    priority: int = 3
    severity: str = "medium"
    pinned: bool = False
    enabled: bool = True
    tags: list[str] = field(default_factory=list)
    usage_count: int = 0
    last_routed_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: dict) -> "Rule":
        created = parse_dt(data.get("created_at"), utcnow()) or utcnow()
        return cls(
            id=str(data.get("id") or new_id()),
            scope=_choice(data.get("scope"), RULE_SCOPES, "workspace"),
            workspace_id=str(data.get("workspace_id") or ""),
            user_id=str(data["user_id"]) if data.get("user_id") else None,
            title=str(data.get("title") or "").strip()[:200],
            content=str(data.get("content") or "").strip()[:10000],
            category=_choice(data.get("category"), RULE_CATEGORIES, "policy"),
            priority=clamp_int(data.get("priority", 3), 3, 1, 5),
            severity=_choice(data.get("severity"), RULE_SEVERITIES, "medium"),
            pinned=data.get("pinned") is True,
            enabled=data.get("enabled") is not False,
            tags=normalize_tags(data.get("tags")),
            usage_count=max(0, int(as_finite_float(data.get("usage_count")) or 0)),
            last_routed_at=parse_dt(data.get("last_routed_at")),
            created_at=created,
            updated_at=parse_dt(data.get("updated_at"), created) or created,
        )


@dataclass
class RuleSummary:
    scope: str
    workspace_id: str
    summary: str
    user_id: str | None = None
    source_rule_ids: list[str] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class SelectedRule:
    id: str
    title: str
    content: str
    category: str
    priority: int
    severity: str
    pinned: bool
    token_estimate: int
    selected_reason: str
    score: float | None = None

    @classmethod
    def from_rule(cls, rule: Rule, token_estimate: int, reason: str, score: float | None) -> "SelectedRule":
        return cls(
            id=rule.id,
            title=rule.title,
            content=rule.content,
            category=rule.category,
            priority=rule.priority,
            severity=rule.severity,
            pinned=rule.pinned,
            token_estimate=token_estimate,
            selected_reason=reason,
            score=score,
        )


@dataclass
class RoutingScoreBreakdown:
    rule_id: str
    scope: str
    semantic: float
    keyword: float
    priority: float
    recency: float
    length_penalty: float
    final: float
    selected: bool = False
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule_id,
            "scope": self.scope,
            "semantic": self.semantic,
            "keyword": self.keyword,
            "priority": self.priority,
            "recency": self.recency,
            "length_penalty": self.length_penalty,
            "final": self.final,
            "selected": self.selected,
            "reason": self.reason,
        }


@dataclass
class RawEvent:
    id: str
    created_at: datetime
    workspace_id: str = ""
    project_id: str = ""
    event_type: str = "post_commit"
    branch: str | None = None
    commit_message: str | None = None
    changed_files: list[Any] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "RawEvent":
        files = data.get("changed_files")
        return cls(
            id=str(data.get("id") or new_id()),
            created_at=parse_dt(data.get("created_at"), utcnow()) or utcnow(),
            workspace_id=str(data.get("workspace_id") or ""),
            project_id=str(data.get("project_id") or ""),
            event_type=str(data.get("event_type") or "post_commit"),
            branch=data.get("branch") or None,
            commit_message=data.get("commit_message") or None,
            changed_files=list(files) if isinstance(files, (list, tuple)) else [],
            metadata=as_record(data.get("metadata")),
        )


@dataclass
class Memory:
    id: str
    type: str
    content: str
    created_at: datetime
    updated_at: datetime
    workspace_id: str = ""
    project_id: str = ""
    status: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    evidence: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Memory":
        created = parse_dt(data.get("created_at"), utcnow()) or utcnow()
        evidence = data.get("evidence")
        return cls(
            id=str(data.get("id") or new_id()),
            type=str(data.get("type") or "note").strip().lower(),
            content=str(data.get("content") or ""),
            created_at=created,
            updated_at=parse_dt(data.get("updated_at"), created) or created,
            workspace_id=str(data.get("workspace_id") or ""),
            project_id=str(data.get("project_id") or ""),
            status=data.get("status") or None,
            metadata=as_record(data.get("metadata")),
            evidence=dict(evidence) if isinstance(evidence, dict) else None,
        )


@dataclass
class ActiveWork:
    id: str
    workspace_id: str
    project_id: str
    title: str
    confidence: float
    last_updated_at: datetime
    status: str = "inferred"
    stale: bool = False
    stale_reason: str | None = None
    evidence_ids: list[str] = field(default_factory=list)
    last_evidence_at: datetime | None = None
    closed_at: datetime | None = None
    inference_key: str | None = None

    def __post_init__(self):
        self.confidence = clamp_float(self.confidence, 0.0, 1.0)
        self.status = _choice(self.status, ACTIVE_WORK_STATUSES, "inferred")
        self.evidence_ids = to_string_list(self.evidence_ids)[:MAX_EVIDENCE_IDS]

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "confidence": round(self.confidence, 3),
            "status": self.status,
            "stale": self.stale,
            "stale_reason": self.stale_reason,
            "last_evidence_at": iso(self.last_evidence_at),
            "last_updated_at": iso(self.last_updated_at),
            "closed_at": iso(self.closed_at),
            "evidence_ids": list(self.evidence_ids),
        }


@dataclass
class ActiveWorkEvent:
    active_work_id: str
    event_type: str
    workspace_id: str = ""
    project_id: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    correlation_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "active_work_id": self.active_work_id,
            "event_type": self.event_type,
            "details": dict(self.details),
            "correlation_id": self.correlation_id,
            "created_at": iso(self.created_at),
        }


@dataclass
class CandidateBreakdown:
    recency_weight: float
    frequency_weight: float
    decision_status_weight: float
    commit_keyword_weight: float
    total: float

    def to_dict(self) -> dict:
        return {
            "recency_weight": self.recency_weight,
            "frequency_weight": self.frequency_weight,
            "decision_status_weight": self.decision_status_weight,
            "commit_keyword_weight": self.commit_keyword_weight,
            "total": self.total,
        }


@dataclass
class ActiveWorkCandidate:
    key: str
    title: str
    confidence: float
    score: float
    evidence_ids: list[str]
    last_evidence_at: datetime
    breakdown: CandidateBreakdown

    def to_debug(self) -> dict:
        return {
            "key": self.key,
            "title": self.title,
            "confidence": self.confidence,
            "score": self.score,
            "evidence_ids": list(self.evidence_ids),
            "breakdown": self.breakdown.to_dict(),
        }


@dataclass
class Workspace:
    id: str
    key: str
    name: str = ""


@dataclass
class Project:
    id: str
    workspace_id: str
    key: str
    name: str = ""
