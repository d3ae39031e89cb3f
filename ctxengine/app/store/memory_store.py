"""
In-process ContextStore used for local runs, the worker's default wiring and tests.
"""

from __future__ import annotations

import copy
from datetime import datetime
from threading import Lock
from typing import Any

from ctxengine.app.memory.models import (
    ActiveWork,
    ActiveWorkEvent,
    Memory,
    Project,
    RawEvent,
    Rule,
    RuleSummary,
    Workspace,
)


class InMemoryContextStore:
    def __init__(self):
        self._lock = Lock()
        self.workspaces: dict[str, Workspace] = {}
        self.projects: dict[str, Project] = {}
        self.settings: dict[str, dict[str, Any]] = {}
        self.personas: dict[tuple[str, str], str] = {}
        self.rules: dict[str, Rule] = {}
        self.rule_summaries: list[RuleSummary] = []
        self.raw_events: list[RawEvent] = []
        self.memories: list[Memory] = []
        self.active_work: dict[str, ActiveWork] = {}
        self.active_work_events: list[ActiveWorkEvent] = []

    # Seeding helpers.

    def add_workspace(self, workspace: Workspace, settings: dict[str, Any] | None = None) -> Workspace:
        with self._lock:
            self.workspaces[workspace.id] = workspace
            if settings is not None:
                self.settings[workspace.id] = dict(settings)
        return workspace

    def add_project(self, project: Project) -> Project:
        with self._lock:
            self.projects[project.id] = project
        return project

    def set_workspace_settings(self, workspace_id: str, settings: dict[str, Any]):
        with self._lock:
            self.settings[workspace_id] = dict(settings)

    def set_user_persona(self, workspace_id: str, user_id: str, persona: str):
        with self._lock:
            self.personas[(workspace_id, user_id)] = persona

    def add_rule(self, rule: Rule) -> Rule:
        with self._lock:
            self.rules[rule.id] = copy.deepcopy(rule)
        return rule

    def add_raw_event(self, event: RawEvent) -> RawEvent:
        with self._lock:
            self.raw_events.append(copy.deepcopy(event))
        return event

    def add_memory(self, memory: Memory) -> Memory:
        with self._lock:
            self.memories.append(copy.deepcopy(memory))
        return memory

    # Workspaces and projects.

    def get_workspace_by_key(self, key: str) -> Workspace | None:
        return next((w for w in self.workspaces.values() if w.key == key), None)

    def get_project_by_keys(self, workspace_id: str, project_key: str) -> Project | None:
        return next(
            (p for p in self.projects.values() if p.workspace_id == workspace_id and p.key == project_key),
            None,
        )

    def list_workspaces(self) -> list[Workspace]:
        return list(self.workspaces.values())

    def list_projects(self, workspace_id: str, limit: int = 1000) -> list[Project]:
        return [p for p in self.projects.values() if p.workspace_id == workspace_id][:limit]

    def get_workspace_settings(self, workspace_id: str) -> dict[str, Any] | None:
        settings = self.settings.get(workspace_id)
        return dict(settings) if settings is not None else None

    def get_user_persona(self, workspace_id: str, user_id: str) -> str | None:
        return self.personas.get((workspace_id, user_id))

    # Rules.

    def list_rules(self, workspace_id: str, scope: str, user_id: str | None = None) -> list[Rule]:
        out = []
        for rule in self.rules.values():
            if rule.workspace_id != workspace_id or rule.scope != scope:
                continue
            if scope == "user" and rule.user_id != user_id:
                continue
            out.append(copy.deepcopy(rule))
        return out

    def mark_rules_routed(self, rule_ids: list[str], routed_at: datetime):
        with self._lock:
            for rule_id in rule_ids:
                rule = self.rules.get(rule_id)
                if rule is None:
                    continue
                rule.usage_count += 1
                rule.last_routed_at = routed_at

    def get_rule_summary(self, workspace_id: str, scope: str, user_id: str | None = None) -> RuleSummary | None:
        matches = [
            s
            for s in self.rule_summaries
            if s.workspace_id == workspace_id and s.scope == scope and (scope != "user" or s.user_id == user_id)
        ]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda s: s.updated_at))

    def upsert_rule_summary(self, summary: RuleSummary) -> RuleSummary:
        with self._lock:
            self.rule_summaries = [
                s
                for s in self.rule_summaries
                if not (s.workspace_id == summary.workspace_id and s.scope == summary.scope and s.user_id == summary.user_id)
            ]
            self.rule_summaries.append(copy.deepcopy(summary))
        return summary

    # Activity inputs.

    def list_raw_events(
        self,
        workspace_id: str,
        project_id: str,
        since: datetime | None = None,
        event_types: list[str] | None = None,
        limit: int = 800,
    ) -> list[RawEvent]:
        rows = [
            e
            for e in self.raw_events
            if e.workspace_id == workspace_id
            and e.project_id == project_id
            and (since is None or e.created_at >= since)
            and (not event_types or e.event_type in event_types)
        ]
        rows.sort(key=lambda e: e.created_at, reverse=True)
        return copy.deepcopy(rows[:limit])

    def list_memories(
        self,
        workspace_id: str,
        project_id: str,
        types: list[str] | None = None,
        status: str | None = None,
        since: datetime | None = None,
        limit: int = 400,
    ) -> list[Memory]:
        rows = [
            m
            for m in self.memories
            if m.workspace_id == workspace_id
            and m.project_id == project_id
            and (not types or m.type in types)
            and (status is None or m.status == status)
            and (since is None or m.created_at >= since)
        ]
        rows.sort(key=lambda m: m.updated_at, reverse=True)
        return copy.deepcopy(rows[:limit])

    # Active work.

    def list_active_work(
        self,
        workspace_id: str,
        project_id: str,
        include_closed: bool = True,
        limit: int | None = None,
    ) -> list[ActiveWork]:
        rows = [
            r
            for r in self.active_work.values()
            if r.workspace_id == workspace_id
            and r.project_id == project_id
            and (include_closed or r.status != "closed")
        ]
        rows = copy.deepcopy(rows)
        return rows if limit is None else rows[:limit]

    def get_active_work(self, workspace_id: str, project_id: str, active_work_id: str) -> ActiveWork | None:
        row = self.active_work.get(active_work_id)
        if row is None or row.workspace_id != workspace_id or row.project_id != project_id:
            return None
        return copy.deepcopy(row)

    def create_active_work(self, row: ActiveWork) -> ActiveWork:
        with self._lock:
            if row.id in self.active_work:
                raise ValueError(f"active work {row.id} already exists")
            self.active_work[row.id] = copy.deepcopy(row)
        return copy.deepcopy(row)

    def update_active_work(self, row: ActiveWork) -> ActiveWork:
        with self._lock:
            if row.id not in self.active_work:
                raise KeyError(row.id)
            self.active_work[row.id] = copy.deepcopy(row)
        return copy.deepcopy(row)

    def append_active_work_event(self, event: ActiveWorkEvent) -> ActiveWorkEvent:
        with self._lock:
            self.active_work_events.append(copy.deepcopy(event))
        return event

    def list_active_work_events(
        self,
        workspace_id: str,
        project_id: str,
        active_work_id: str | None = None,
        limit: int = 100,
    ) -> list[ActiveWorkEvent]:
        rows = [
            e
            for e in self.active_work_events
            if e.workspace_id == workspace_id
            and e.project_id == project_id
            and (active_work_id is None or e.active_work_id == active_work_id)
        ]
        # Stable sort keeps append order among events sharing a timestamp.
        rows = sorted(reversed(rows), key=lambda e: e.created_at, reverse=True)
        return copy.deepcopy(rows[:limit])
