"""
Shared interface contracts for dependency injection.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

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


class ContextStore(Protocol):
    def get_workspace_by_key(self, key: str) -> Workspace | None:
        ...

    def get_project_by_keys(self, workspace_id: str, project_key: str) -> Project | None:
        ...

    def list_workspaces(self) -> list[Workspace]:
        ...

    def list_projects(self, workspace_id: str, limit: int = 1000) -> list[Project]:
        ...

    def get_workspace_settings(self, workspace_id: str) -> dict[str, Any] | None:
        ...

    def get_user_persona(self, workspace_id: str, user_id: str) -> str | None:
        ...

    def list_rules(self, workspace_id: str, scope: str, user_id: str | None = None) -> list[Rule]:
        ...

    def mark_rules_routed(self, rule_ids: list[str], routed_at: datetime):
        ...

    def get_rule_summary(self, workspace_id: str, scope: str, user_id: str | None = None) -> RuleSummary | None:
        ...

    def upsert_rule_summary(self, summary: RuleSummary) -> RuleSummary:
        ...

    def list_raw_events(
        self,
        workspace_id: str,
        project_id: str,
        since: datetime | None = None,
        event_types: list[str] | None = None,
        limit: int = 800,
    ) -> list[RawEvent]:
        ...

    def list_memories(
        self,
        workspace_id: str,
        project_id: str,
        types: list[str] | None = None,
        status: str | None = None,
        since: datetime | None = None,
        limit: int = 400,
    ) -> list[Memory]:
        ...

    def list_active_work(
        self,
        workspace_id: str,
        project_id: str,
        include_closed: bool = True,
        limit: int | None = None,
    ) -> list[ActiveWork]:
        ...

    def get_active_work(self, workspace_id: str, project_id: str, active_work_id: str) -> ActiveWork | None:
        ...

    def create_active_work(self, row: ActiveWork) -> ActiveWork:
        ...

    def update_active_work(self, row: ActiveWork) -> ActiveWork:
        ...

    def append_active_work_event(self, event: ActiveWorkEvent) -> ActiveWorkEvent:
        ...

    def list_active_work_events(
        self,
        workspace_id: str,
        project_id: str,
        active_work_id: str | None = None,
        limit: int = 100,
    ) -> list[ActiveWorkEvent]:
        ...


class RetrievalProvider(Protocol):
    name: str

    def search(
        self,
        workspace_id: str,
        project_id: str,
        query: str,
        limit: int,
        mode: str = "hybrid",
        debug: bool = False,
        current_subpath: str | None = None,
    ) -> list[dict[str, Any]]:
        ...
