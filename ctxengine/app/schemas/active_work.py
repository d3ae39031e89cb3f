"""
Pydantic schemas for active-work responses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


ActiveWorkStatus = Literal["inferred", "confirmed", "closed"]
ActiveWorkEventType = Literal["created", "updated", "stale_marked", "stale_cleared", "confirmed", "closed", "reopened"]


class ActiveWorkItemSchema(BaseModel):
    id: str
    title: str
    confidence: float
    status: ActiveWorkStatus
    stale: bool
    stale_reason: Optional[str] = None
    last_evidence_at: Optional[datetime] = None
    last_updated_at: datetime
    closed_at: Optional[datetime] = None
    evidence_ids: list[str] = Field(default_factory=list)


class ActiveWorkEventSchema(BaseModel):
    id: str
    active_work_id: str
    event_type: ActiveWorkEventType
    details: dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = None
    created_at: datetime


class RecomputeResponse(BaseModel):
    workspace_key: str
    project_key: str
    created: int = 0
    updated: int = 0
    stale_marked: int = 0
    stale_cleared: int = 0
    closed: int = 0
    active_work: list[ActiveWorkItemSchema] = Field(default_factory=list)


class SweepReport(BaseModel):
    workspaces_processed: int = 0
    projects_processed: int = 0
    changed_projects: int = 0
    created: int = 0
    updated: int = 0
    stale_marked: int = 0
    stale_cleared: int = 0
    closed: int = 0
