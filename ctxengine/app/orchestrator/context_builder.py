"""
Context builder layer: project snapshot inputs, routing hint and snapshot section.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from ctxengine.app.memory.models import ActiveWork, Memory, Project
from ctxengine.app.observability.metrics import metrics
from ctxengine.app.observability.tracing import trace_span
from ctxengine.app.schemas.active_work import ActiveWorkItemSchema
from ctxengine.app.schemas.bundle import (
    ActivityItemSchema,
    ConstraintItemSchema,
    DecisionItemSchema,
    SnapshotSchema,
)
from ctxengine.app.services.token_usage import trim_snippet
from ctxengine.app.utils.interfaces import ContextStore


VISIBLE_ACTIVE_WORK_MIN_CONFIDENCE = 0.35


@dataclass
class SnapshotInputs:
    summaries: list[Memory] = field(default_factory=list)
    decisions: list[Memory] = field(default_factory=list)
    constraints: list[Memory] = field(default_factory=list)
    activity: list[Memory] = field(default_factory=list)
    active_work: list[ActiveWork] = field(default_factory=list)
    persona_setting: str | None = None


def normalize_subpath(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().replace("\\", "/").strip("/").lower() or None


def extract_decision_summary(content: str) -> str:
    lines = [line.strip() for line in (content or "").split("\n")]
    for index, line in enumerate(lines):
        if not line.startswith("Summary:"):
            continue
        inline = line[len("Summary:"):].strip()
        if inline:
            return inline
        following = next((l for l in lines[index + 1:] if l and not l.endswith(":")), None)
        if following:
            return trim_snippet(following, 200)
        break
    return trim_snippet(content, 200)


def build_routing_hint(inputs: SnapshotInputs, project: Project, current_subpath: str | None = None) -> str:
    hints = [f"{project.name} {project.key}"]
    if current_subpath:
        hints.append(current_subpath)
    hints.extend(trim_snippet(m.content, 120) for m in inputs.summaries[:2])
    hints.extend(trim_snippet(row.title, 80) for row in inputs.active_work[:2])
    hints.extend(trim_snippet(m.content, 80) for m in inputs.activity[:2])
    return " ".join(h.strip() for h in hints if h and h.strip())


class ContextBuilder:
    def __init__(self, store: ContextStore, max_workers: int = 6):
        self.store = store
        self.max_workers = max_workers

    def load(
        self,
        workspace_id: str,
        project_id: str,
        user_id: str | None = None,
        debug: bool = False,
    ) -> SnapshotInputs:
        started = time.perf_counter()
        with trace_span("snapshot_inputs", workspace_id=workspace_id, project_id=project_id):
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                summaries = executor.submit(
                    self.store.list_memories, workspace_id, project_id, types=["summary"], status="confirmed", limit=3
                )
                decisions = executor.submit(
                    self.store.list_memories, workspace_id, project_id, types=["decision"], status="confirmed", limit=6
                )
                constraints = executor.submit(
                    self.store.list_memories, workspace_id, project_id, types=["constraint"], limit=6
                )
                activity = executor.submit(
                    self.store.list_memories, workspace_id, project_id, types=["activity"], limit=10
                )
                active_work = executor.submit(
                    self.store.list_active_work, workspace_id, project_id, include_closed=False
                )
                persona = executor.submit(self.store.get_user_persona, workspace_id, user_id) if user_id else None

                rows = sorted(
                    active_work.result(),
                    key=lambda r: (-r.confidence, -r.last_updated_at.timestamp()),
                )
                inputs = SnapshotInputs(
                    summaries=summaries.result(),
                    decisions=decisions.result(),
                    constraints=constraints.result(),
                    activity=activity.result(),
                    active_work=rows[: 12 if debug else 8],
                    persona_setting=persona.result() if persona is not None else None,
                )
        metrics.observe("snapshot_load_seconds", time.perf_counter() - started)
        return inputs

    def build_snapshot(self, inputs: SnapshotInputs, project: Project, per_item_chars: int, debug: bool = False) -> SnapshotSchema:
        summary = "\n\n".join(s for s in (trim_snippet(m.content, 400) for m in inputs.summaries) if s)
        visible = [
            row
            for row in inputs.active_work
            if row.status != "closed" and (debug or row.confidence >= VISIBLE_ACTIVE_WORK_MIN_CONFIDENCE)
        ][:5]
        active_items = []
        for row in visible:
            item = row.to_api()
            item["title"] = trim_snippet(row.title, 200)
            active_items.append(ActiveWorkItemSchema.model_validate(item))

        return SnapshotSchema(
            summary=summary or f"Project {project.name} ({project.key})",
            top_decisions=[
                DecisionItemSchema(
                    id=m.id,
                    summary=extract_decision_summary(m.content),
                    status=m.status or "draft",
                    created_at=m.created_at,
                    evidence_ref=m.evidence,
                )
                for m in inputs.decisions[:5]
            ],
            top_constraints=[
                ConstraintItemSchema(
                    id=m.id,
                    snippet=trim_snippet(m.content, per_item_chars),
                    created_at=m.created_at,
                    evidence_ref=m.evidence,
                )
                for m in inputs.constraints[:5]
            ],
            active_work=active_items,
            recent_activity=[
                ActivityItemSchema(
                    id=m.id,
                    title=trim_snippet(m.content, 160),
                    created_at=m.created_at,
                    subpath=normalize_subpath(m.metadata.get("subpath")),
                )
                for m in inputs.activity[:8]
            ],
        )
