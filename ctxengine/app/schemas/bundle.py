"""
Pydantic schemas for the context bundle response.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ctxengine.app.schemas.active_work import ActiveWorkItemSchema


class ProjectRefSchema(BaseModel):
    key: str
    name: str


class BundleRuleSchema(BaseModel):
    id: str
    title: str
    content: str
    category: str
    priority: int
    severity: str
    pinned: bool
    selected_reason: str
    score: Optional[float] = None


class RuleWarningSchema(BaseModel):
    level: Literal["info", "warn"]
    message: str


class RuleRoutingSchema(BaseModel):
    mode: Literal["semantic", "keyword", "hybrid"]
    q_used: Optional[str] = None
    selected_rule_ids: list[str] = Field(default_factory=list)
    dropped_rule_ids: list[str] = Field(default_factory=list)
    score_breakdown: Optional[list[dict[str, Any]]] = None


class GlobalRulesSchema(BaseModel):
    workspace_rules: list[BundleRuleSchema] = Field(default_factory=list)
    user_rules: list[BundleRuleSchema] = Field(default_factory=list)
    workspace_summary: Optional[str] = None
    user_summary: Optional[str] = None
    routing: RuleRoutingSchema
    warnings: list[RuleWarningSchema] = Field(default_factory=list)


class DecisionItemSchema(BaseModel):
    id: str
    summary: str
    status: str
    created_at: datetime
    evidence_ref: Optional[dict[str, Any]] = None


class ConstraintItemSchema(BaseModel):
    id: str
    snippet: str
    created_at: datetime
    evidence_ref: Optional[dict[str, Any]] = None


class ActivityItemSchema(BaseModel):
    id: str
    title: str
    created_at: datetime
    subpath: Optional[str] = None


class SnapshotSchema(BaseModel):
    summary: str
    top_decisions: list[DecisionItemSchema] = Field(default_factory=list)
    top_constraints: list[ConstraintItemSchema] = Field(default_factory=list)
    active_work: list[ActiveWorkItemSchema] = Field(default_factory=list)
    recent_activity: list[ActivityItemSchema] = Field(default_factory=list)


class RetrievalResultSchema(BaseModel):
    id: str
    type: str
    snippet: str
    score_breakdown: Optional[dict[str, Any]] = None
    persona_weight: Optional[float] = None
    evidence_ref: Optional[dict[str, Any]] = None


class RetrievalSchema(BaseModel):
    query: Optional[str] = None
    results: list[RetrievalResultSchema] = Field(default_factory=list)


class ContextBundleResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project: ProjectRefSchema
    global_rules: GlobalRulesSchema = Field(alias="global")
    snapshot: SnapshotSchema
    retrieval: RetrievalSchema
    debug: Optional[dict[str, Any]] = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
