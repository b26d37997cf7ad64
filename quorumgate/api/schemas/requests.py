"""Schemas for approval request endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RequestCreate(BaseModel):
    action_class: str = Field(..., min_length=1, max_length=120)
    target_ref: Dict[str, Any] = Field(default_factory=dict)
    notes: Optional[str] = None


class ApproveBody(BaseModel):
    acting_role: Optional[str] = None
    notes: Optional[str] = None


class RejectBody(BaseModel):
    reason: Optional[str] = None


class ExecuteBody(BaseModel):
    executed_tx_hash: Optional[str] = Field(None, max_length=128)


class QuorumResponse(BaseModel):
    met: bool
    current: int
    required: int
    remaining: int


class PendingRequestResponse(BaseModel):
    id: UUID
    action_class: str
    target_ref: Dict[str, Any]
    status: str
    created_by: str
    notes: Optional[str]
    expires_at: Optional[datetime]
    completed_at: Optional[datetime]
    completed_by: Optional[str]
    rejected_at: Optional[datetime]
    rejected_by: Optional[str]
    rejection_reason: Optional[str]
    executed_at: Optional[datetime]
    executed_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class RequestDetailResponse(PendingRequestResponse):
    policy_snapshot: Dict[str, Any]
    quorum: QuorumResponse


class ApprovalRecordResponse(BaseModel):
    id: UUID
    approver_id: str
    approver_role: str
    weight: int
    sequence: int
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ApprovalResultResponse(BaseModel):
    request: PendingRequestResponse
    record: ApprovalRecordResponse
    quorum: QuorumResponse
    dispatched: bool


class RequestListResponse(BaseModel):
    items: List[PendingRequestResponse]
    page: int
    per_page: int


class PolicyResponse(BaseModel):
    action_class: str
    description: Optional[str]
    quorum_mode: str
    quorum_threshold: int
    authorized_roles: List[str]
    override_roles: List[str]
    signers: Dict[str, int]
    expiry_seconds: Optional[int]
    auto_apply_on_quorum: bool
    initiator_roles: List[str]
    reject_roles: List[str]
    executor_roles: List[str]
    notify_roles: List[str]
    notify_all: bool
    notify_assignee: bool


class PolicyListResponse(BaseModel):
    items: List[PolicyResponse]
    total: int
