from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ReviewStateName = Literal["pending", "accepted", "rejected", "deferred"]


class DocumentCreateRequest(BaseModel):
    title: str
    content: dict[str, Any]


class DocumentView(BaseModel):
    id: str
    title: str
    baseline_ref: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None


class SnapshotCreateRequest(BaseModel):
    content: dict[str, Any]
    parent_ref: str | None = None
    ref: str | None = None
    message: str | None = None


class SnapshotView(BaseModel):
    document_id: str
    ref: str
    parent_ref: str | None = None
    author: str | None = None
    message: str | None = None
    created_at: datetime | None = None
    content: dict[str, Any] | None = None


class DocumentCreateResponse(BaseModel):
    document: DocumentView
    snapshot: SnapshotView


class ProposalCreateRequest(BaseModel):
    title: str
    head_ref: str
    base_ref: str | None = None


class ProposalHeadRequest(BaseModel):
    head_ref: str


class ProposalView(BaseModel):
    id: str
    document_id: str
    title: str
    status: str
    base_ref: str
    head_ref: str
    state_version: int
    created_by: str | None = None
    merged_by: str | None = None
    merged_at: datetime | None = None
    created_at: datetime | None = None


class ReviewStateRequest(BaseModel):
    state: ReviewStateName
    from_ref: str
    to_ref: str
    rejected_rationale: str | None = None


class ThreadCreateRequest(BaseModel):
    title: str
    anchor_node_id: str | None = None


class ThreadView(BaseModel):
    id: str
    proposal_id: str
    title: str
    status: str
    anchor_node_id: str | None = None
    created_by: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    orphaned_reason: str | None = None
    orphaned_at: datetime | None = None
    created_at: datetime | None = None


class MergePolicyRequest(BaseModel):
    allow_merge_with_deferred_changes: bool | None = None
    ignore_format_only_changes_for_gate: bool | None = None


class ChangeStateDeclaration(BaseModel):
    id: str
    review_state: ReviewStateName = "pending"


class MergeRequest(MergePolicyRequest):
    change_states: list[ChangeStateDeclaration] | None = None


class MergeResponse(BaseModel):
    proposal: ProposalView
    merged_ref: str
    gate: dict[str, Any] = Field(default_factory=dict)
