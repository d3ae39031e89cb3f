"""
Reconciles inferred active-work candidates against persisted rows.

A recompute refreshes matching rows, creates rows for new candidates, then
applies the stale / auto-close policy to every open row. Every transition
appends one ActiveWorkEvent sharing the recompute's correlation id.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from ctxengine.app.active_work.inference import ActiveWorkInferencer
from ctxengine.app.config.settings import ActiveWorkPolicy, WorkspaceSettings
from ctxengine.app.memory.models import (
    ActiveWork,
    ActiveWorkCandidate,
    ActiveWorkEvent,
    MAX_EVIDENCE_IDS,
    Project,
    Workspace,
    new_id,
)
from ctxengine.app.observability.logging import log_event
from ctxengine.app.observability.metrics import metrics
from ctxengine.app.observability.tracing import trace_span
from ctxengine.app.schemas.active_work import ActiveWorkEventSchema, ActiveWorkItemSchema, RecomputeResponse
from ctxengine.app.services.token_usage import normalize_text
from ctxengine.app.utils.interfaces import ContextStore


INFERENCE_WINDOW_DAYS = 14
RAW_EVENT_TYPES = ["post_commit", "post_merge", "post_checkout"]
MEMORY_TYPES = ["decision", "goal", "activity"]
RAW_EVENT_LIMIT = 800
MEMORY_LIMIT = 400
RESULT_ROW_LIMIT = 20
CONFIDENCE_EPSILON = 0.01
MANUAL_CLOSE_REASON = "Manually closed by maintainer."
_STATUS_ORDER = {"closed": 0, "confirmed": 1, "inferred": 2}
_MANUAL_EVENTS = {"confirm": "confirmed", "close": "closed", "reopen": "reopened"}


class ActiveWorkNotFound(LookupError):
    pass


@dataclass
class RecomputeResult:
    created: int = 0
    updated: int = 0
    stale_marked: int = 0
    stale_cleared: int = 0
    closed: int = 0
    rows: list[ActiveWork] = field(default_factory=list)
    candidates: list[ActiveWorkCandidate] = field(default_factory=list)
    correlation_id: str = ""

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.stale_marked or self.stale_cleared or self.closed)

    def counts(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "stale_marked": self.stale_marked,
            "stale_cleared": self.stale_cleared,
            "closed": self.closed,
        }


def _days_between(start: datetime, end: datetime) -> float:
    return max(0.0, (end - start).total_seconds() / 86400.0)


def _same_evidence(left: list[str], right: list[str]) -> bool:
    return sorted(left) == sorted(right)


def _status_sort_key(row: ActiveWork):
    # Mirrors an alphabetical status ordering: closed < confirmed < inferred.
    return (_STATUS_ORDER.get(row.status, 3), -row.confidence, -row.last_updated_at.timestamp())


def _merge_candidates(group: list[ActiveWorkCandidate], row: ActiveWork | None) -> ActiveWorkCandidate:
    lead = group[0]
    if len(group) == 1:
        return lead
    evidence_ids: list[str] = []
    for candidate in group:
        for evidence_id in candidate.evidence_ids:
            if evidence_id not in evidence_ids:
                evidence_ids.append(evidence_id)
    keys = [c.key for c in group]
    key = row.inference_key if row is not None and row.inference_key in keys else lead.key
    strongest = max(group, key=lambda c: (c.confidence, c.score))
    return replace(
        lead,
        key=key,
        confidence=strongest.confidence,
        score=max(c.score for c in group),
        evidence_ids=evidence_ids[:MAX_EVIDENCE_IDS],
        last_evidence_at=max(c.last_evidence_at for c in group),
        breakdown=strongest.breakdown,
    )


def _group_candidates(
    existing: list[ActiveWork], candidates: list[ActiveWorkCandidate]
) -> list[tuple[ActiveWork | None, ActiveWorkCandidate]]:
    """Resolve candidates to rows by key then title; candidates sharing a target are merged."""
    by_key: dict[str, int] = {}
    by_title: dict[str, int] = {}
    targets: list[ActiveWork | None] = []
    groups: list[list[ActiveWorkCandidate]] = []

    def claim(index: int, key: str | None, title: str):
        if key:
            by_key.setdefault(key, index)
        by_title.setdefault(normalize_text(title), index)

    for row in existing:
        targets.append(row)
        groups.append([])
        claim(len(targets) - 1, row.inference_key, row.title)

    for candidate in candidates:
        index = by_key.get(candidate.key)
        if index is None:
            index = by_title.get(normalize_text(candidate.title))
        if index is None:
            targets.append(None)
            groups.append([])
            index = len(targets) - 1
        groups[index].append(candidate)
        claim(index, candidate.key, candidate.title)

    return [
        (target, _merge_candidates(group, target))
        for target, group in zip(targets, groups)
        if group
    ]


class ActiveWorkReconciler:
    def __init__(self, store: ContextStore, inferencer: ActiveWorkInferencer | None = None):
        self.store = store
        self.inferencer = inferencer or ActiveWorkInferencer()

    def resolve_policy(self, workspace_id: str) -> ActiveWorkPolicy:
        raw = self.store.get_workspace_settings(workspace_id)
        return WorkspaceSettings.from_raw(raw).active_work_policy()

    def _record(
        self,
        workspace_id: str,
        project_id: str,
        active_work_id: str,
        event_type: str,
        details: dict[str, Any],
        correlation_id: str,
        now: datetime,
    ):
        self.store.append_active_work_event(
            ActiveWorkEvent(
                workspace_id=workspace_id,
                project_id=project_id,
                active_work_id=active_work_id,
                event_type=event_type,
                details=details,
                correlation_id=correlation_id,
                created_at=now,
            )
        )
        metrics.inc("active_work_events_total")

    def _load_inputs(self, workspace_id: str, project_id: str, now: datetime):
        since = now - timedelta(days=INFERENCE_WINDOW_DAYS)
        raw_events = self.store.list_raw_events(
            workspace_id, project_id, since=since, event_types=RAW_EVENT_TYPES, limit=RAW_EVENT_LIMIT
        )
        memories = self.store.list_memories(
            workspace_id, project_id, types=MEMORY_TYPES, since=since, limit=MEMORY_LIMIT
        )
        return raw_events, memories

    def recompute(
        self,
        workspace_id: str,
        project_id: str,
        now: datetime | None = None,
        policy: ActiveWorkPolicy | None = None,
        correlation_id: str | None = None,
    ) -> RecomputeResult:
        now = now or datetime.now(timezone.utc)
        policy = policy or self.resolve_policy(workspace_id)
        correlation_id = correlation_id or f"active-work-recompute:{uuid.uuid4()}"
        started = time.perf_counter()
        result = RecomputeResult(correlation_id=correlation_id)

        with trace_span("active_work_recompute", workspace_id=workspace_id, project_id=project_id):
            raw_events, memories = self._load_inputs(workspace_id, project_id, now)
            existing = self.store.list_active_work(workspace_id, project_id, include_closed=True)
            candidates = self.inferencer.infer(now, raw_events, memories, max_items=10)
            result.candidates = candidates

            for match, candidate in _group_candidates(existing, candidates):
                if match is None:
                    self._create(workspace_id, project_id, candidate, now, correlation_id)
                    result.created += 1
                else:
                    self._refresh(match, candidate, now, correlation_id, result)

            open_rows = self.store.list_active_work(workspace_id, project_id, include_closed=False)
            for row in open_rows:
                self._apply_policy(row, policy, now, correlation_id, result)

            rows = self.store.list_active_work(workspace_id, project_id, include_closed=True)
            result.rows = sorted(rows, key=_status_sort_key)[:RESULT_ROW_LIMIT]

        metrics.inc("active_work_recomputes_total")
        metrics.observe("active_work_recompute_seconds", time.perf_counter() - started)
        log_event(
            "active_work_recomputed",
            workspace_id=workspace_id,
            project_id=project_id,
            correlation_id=correlation_id,
            candidates=len(candidates),
            **result.counts(),
        )
        return result

    def _create(
        self,
        workspace_id: str,
        project_id: str,
        candidate: ActiveWorkCandidate,
        now: datetime,
        correlation_id: str,
    ) -> ActiveWork:
        row = self.store.create_active_work(
            ActiveWork(
                id=new_id(),
                workspace_id=workspace_id,
                project_id=project_id,
                title=candidate.title,
                confidence=candidate.confidence,
                status="inferred",
                stale=False,
                stale_reason=None,
                evidence_ids=list(candidate.evidence_ids),
                last_evidence_at=candidate.last_evidence_at,
                last_updated_at=now,
                inference_key=candidate.key,
            )
        )
        self._record(
            workspace_id,
            project_id,
            row.id,
            "created",
            {
                "source": "auto_recompute",
                "title": candidate.title,
                "confidence": candidate.confidence,
                "score_breakdown": candidate.breakdown.to_dict(),
                "evidence_ids": list(candidate.evidence_ids),
            },
            correlation_id,
            now,
        )
        return row

    def _refresh(
        self,
        existing: ActiveWork,
        candidate: ActiveWorkCandidate,
        now: datetime,
        correlation_id: str,
        result: RecomputeResult,
    ) -> ActiveWork:
        # Confirmation is sticky; a closed row with fresh evidence comes back as inferred.
        next_status = "confirmed" if existing.status == "confirmed" else "inferred"
        evidence_changed = not _same_evidence(existing.evidence_ids, candidate.evidence_ids)
        confidence_changed = abs(existing.confidence - candidate.confidence) >= CONFIDENCE_EPSILON
        status_changed = next_status != existing.status
        was_stale = existing.stale

        unchanged = not (
            was_stale
            or evidence_changed
            or confidence_changed
            or status_changed
            or existing.closed_at is not None
            or existing.last_evidence_at != candidate.last_evidence_at
            or existing.inference_key != candidate.key
        )
        if unchanged:
            return existing

        updated = self.store.update_active_work(
            replace(
                existing,
                confidence=candidate.confidence,
                evidence_ids=list(candidate.evidence_ids),
                status=next_status,
                stale=False,
                stale_reason=None,
                last_evidence_at=candidate.last_evidence_at,
                closed_at=None,
                last_updated_at=now,
                inference_key=candidate.key,
            )
        )

        if was_stale:
            result.stale_cleared += 1
            self._record(
                existing.workspace_id,
                existing.project_id,
                existing.id,
                "stale_cleared",
                {
                    "source": "auto_recompute",
                    "reason": "New evidence detected.",
                    "candidate_score": candidate.score,
                },
                correlation_id,
                now,
            )

        if confidence_changed or evidence_changed or status_changed:
            result.updated += 1
            self._record(
                existing.workspace_id,
                existing.project_id,
                existing.id,
                "updated",
                {
                    "source": "auto_recompute",
                    "previous": {
                        "confidence": existing.confidence,
                        "status": existing.status,
                        "stale": existing.stale,
                    },
                    "next": {
                        "confidence": candidate.confidence,
                        "status": next_status,
                        "stale": False,
                    },
                    "score_breakdown": candidate.breakdown.to_dict(),
                    "evidence_ids": list(candidate.evidence_ids),
                },
                correlation_id,
                now,
            )
        return updated

    def _apply_policy(
        self,
        row: ActiveWork,
        policy: ActiveWorkPolicy,
        now: datetime,
        correlation_id: str,
        result: RecomputeResult,
    ):
        age = _days_between(row.last_evidence_at or row.last_updated_at, now)

        if policy.auto_close_enabled and row.status == "inferred" and age >= policy.auto_close_days:
            self.store.update_active_work(
                replace(
                    row,
                    status="closed",
                    stale=True,
                    stale_reason=f"No evidence for {policy.auto_close_days}+ days.",
                    closed_at=now,
                    last_updated_at=now,
                )
            )
            result.closed += 1
            self._record(
                row.workspace_id,
                row.project_id,
                row.id,
                "closed",
                {
                    "source": "auto_recompute",
                    "reason": "auto_close",
                    "age_days": round(age, 3),
                    "auto_close_days": policy.auto_close_days,
                },
                correlation_id,
                now,
            )
            return

        should_stale = age >= policy.stale_days
        if should_stale and not row.stale:
            self.store.update_active_work(
                replace(
                    row,
                    stale=True,
                    stale_reason=f"No evidence for {policy.stale_days}+ days.",
                    last_updated_at=now,
                )
            )
            result.stale_marked += 1
            self._record(
                row.workspace_id,
                row.project_id,
                row.id,
                "stale_marked",
                {"source": "auto_recompute", "age_days": round(age, 3), "stale_days": policy.stale_days},
                correlation_id,
                now,
            )
        elif not should_stale and row.stale:
            self.store.update_active_work(replace(row, stale=False, stale_reason=None, last_updated_at=now))
            result.stale_cleared += 1
            self._record(
                row.workspace_id,
                row.project_id,
                row.id,
                "stale_cleared",
                {"source": "auto_recompute", "age_days": round(age, 3), "stale_days": policy.stale_days},
                correlation_id,
                now,
            )

    def transition(
        self,
        workspace_id: str,
        project_id: str,
        active_work_id: str,
        action: str,
        now: datetime | None = None,
    ) -> ActiveWork:
        if action not in _MANUAL_EVENTS:
            raise ValueError(f"unsupported active work action: {action}")
        existing = self.store.get_active_work(workspace_id, project_id, active_work_id)
        if existing is None or existing.workspace_id != workspace_id or existing.project_id != project_id:
            raise ActiveWorkNotFound("Active work item not found for this project.")

        now = now or datetime.now(timezone.utc)
        correlation_id = f"active-work-manual:{uuid.uuid4()}"
        if action == "confirm":
            nxt = replace(existing, status="confirmed", stale=False, stale_reason=None, closed_at=None, last_updated_at=now)
        elif action == "close":
            nxt = replace(
                existing,
                status="closed",
                stale=True,
                stale_reason=existing.stale_reason or MANUAL_CLOSE_REASON,
                closed_at=now,
                last_updated_at=now,
            )
        else:
            nxt = replace(existing, status="inferred", stale=False, stale_reason=None, closed_at=None, last_updated_at=now)

        updated = self.store.update_active_work(nxt)
        self._record(
            workspace_id,
            project_id,
            existing.id,
            _MANUAL_EVENTS[action],
            {
                "source": "manual",
                "previous_status": existing.status,
                "next_status": updated.status,
                "stale": updated.stale,
                "stale_reason": updated.stale_reason,
            },
            correlation_id,
            now,
        )
        log_event(
            "active_work_manual_transition",
            workspace_id=workspace_id,
            project_id=project_id,
            active_work_id=existing.id,
            action=action,
            previous_status=existing.status,
            next_status=updated.status,
        )
        return updated

    def list_rows(self, workspace_id: str, project_id: str, include_closed: bool = False, limit: int = 50) -> list[ActiveWork]:
        limit = min(max(limit or 50, 1), 200)
        rows = self.store.list_active_work(workspace_id, project_id, include_closed=include_closed)
        rows = sorted(rows, key=lambda r: (-r.confidence, -r.last_updated_at.timestamp()))
        return rows[:limit]

    def list_events(
        self,
        workspace_id: str,
        project_id: str,
        active_work_id: str | None = None,
        limit: int = 100,
    ) -> list[ActiveWorkEvent]:
        limit = min(max(limit or 100, 1), 500)
        return self.store.list_active_work_events(workspace_id, project_id, active_work_id=active_work_id, limit=limit)

    def preview_candidates(
        self,
        workspace_id: str,
        project_id: str,
        now: datetime | None = None,
        max_items: int = 8,
    ) -> list[ActiveWorkCandidate]:
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=INFERENCE_WINDOW_DAYS)
        raw_events = self.store.list_raw_events(workspace_id, project_id, since=since, event_types=RAW_EVENT_TYPES, limit=300)
        memories = self.store.list_memories(workspace_id, project_id, types=MEMORY_TYPES, since=since, limit=200)
        return self.inferencer.infer(now, raw_events, memories, max_items=max_items)


def recompute_response(workspace: Workspace, project: Project, result: RecomputeResult) -> dict[str, Any]:
    response = RecomputeResponse(
        workspace_key=workspace.key,
        project_key=project.key,
        active_work=[ActiveWorkItemSchema.model_validate(row.to_api()) for row in result.rows],
        **result.counts(),
    )
    return response.model_dump(mode="json")


def events_response(events: list[ActiveWorkEvent]) -> list[dict[str, Any]]:
    return [ActiveWorkEventSchema.model_validate(e.to_api()).model_dump(mode="json") for e in events]
