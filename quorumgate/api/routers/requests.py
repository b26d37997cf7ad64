"""Approval request API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from quorumgate.api.deps import get_current_user_id, get_manager
from quorumgate.api.schemas.requests import (
    ApprovalRecordResponse,
    ApprovalResultResponse,
    ApproveBody,
    ExecuteBody,
    PendingRequestResponse,
    QuorumResponse,
    RejectBody,
    RequestCreate,
    RequestDetailResponse,
    RequestListResponse,
)
from quorumgate.core.approval import QuorumResult, RequestLifecycleManager

router = APIRouter(prefix="/requests", tags=["requests"])


def _quorum(result: QuorumResult) -> QuorumResponse:
    return QuorumResponse(**result.to_dict())


@router.post("", response_model=PendingRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    body: RequestCreate,
    user_id: str = Depends(get_current_user_id),
    manager: RequestLifecycleManager = Depends(get_manager),
):
    """Open a pending request for an action class."""
    request = manager.create(body.action_class, body.target_ref, user_id, notes=body.notes)
    return PendingRequestResponse.model_validate(request)


@router.get("", response_model=RequestListResponse)
async def list_requests(
    user_id: str = Depends(get_current_user_id),
    manager: RequestLifecycleManager = Depends(get_manager),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    action_class: Optional[str] = None,
    created_by: Optional[str] = None,
):
    """List approval requests, newest first."""
    requests = manager.list_requests(
        status=status_filter,
        action_class=action_class,
        created_by=created_by,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return RequestListResponse(
        items=[PendingRequestResponse.model_validate(r) for r in requests],
        page=page,
        per_page=per_page,
    )


@router.get("/pending", response_model=RequestListResponse)
async def list_pending_for_review(
    user_id: str = Depends(get_current_user_id),
    manager: RequestLifecycleManager = Depends(get_manager),
):
    """List pending requests the current user can approve."""
    requests = manager.pending_for_review(user_id)
    return RequestListResponse(
        items=[PendingRequestResponse.model_validate(r) for r in requests],
        page=1,
        per_page=len(requests),
    )


@router.get("/{request_id}", response_model=RequestDetailResponse)
async def get_request(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    manager: RequestLifecycleManager = Depends(get_manager),
):
    """Get a request with its quorum progress."""
    request = manager.get(request_id)
    quorum = manager.quorum_status(request.id)
    base = PendingRequestResponse.model_validate(request)
    return RequestDetailResponse(
        **base.model_dump(),
        policy_snapshot=request.policy_snapshot,
        quorum=_quorum(quorum),
    )


@router.get("/{request_id}/approvals", response_model=list[ApprovalRecordResponse])
async def list_approvals(
    request_id: str,
    user_id: str = Depends(get_current_user_id),
    manager: RequestLifecycleManager = Depends(get_manager),
):
    """List a request's approval records in append order."""
    return [ApprovalRecordResponse.model_validate(r) for r in manager.list_records(request_id)]


@router.post("/{request_id}/approve", response_model=ApprovalResultResponse)
async def approve_request(
    request_id: str,
    body: Optional[ApproveBody] = None,
    user_id: str = Depends(get_current_user_id),
    manager: RequestLifecycleManager = Depends(get_manager),
):
    """Approve a request as the current user."""
    body = body or ApproveBody()
    outcome = manager.approve(request_id, user_id, acting_role=body.acting_role, notes=body.notes)
    return ApprovalResultResponse(
        request=PendingRequestResponse.model_validate(outcome.request),
        record=ApprovalRecordResponse.model_validate(outcome.record),
        quorum=_quorum(outcome.quorum),
        dispatched=outcome.dispatched,
    )


@router.post("/{request_id}/reject", response_model=PendingRequestResponse)
async def reject_request(
    request_id: str,
    body: Optional[RejectBody] = None,
    user_id: str = Depends(get_current_user_id),
    manager: RequestLifecycleManager = Depends(get_manager),
):
    """Reject a pending transaction request."""
    body = body or RejectBody()
    request = manager.reject(request_id, user_id, reason=body.reason)
    return PendingRequestResponse.model_validate(request)


@router.post("/{request_id}/execute", response_model=PendingRequestResponse)
async def execute_request(
    request_id: str,
    body: Optional[ExecuteBody] = None,
    user_id: str = Depends(get_current_user_id),
    manager: RequestLifecycleManager = Depends(get_manager),
):
    """Execute a ready transaction request."""
    body = body or ExecuteBody()
    request = manager.execute(request_id, actor_id=user_id, executed_tx_hash=body.executed_tx_hash)
    return PendingRequestResponse.model_validate(request)
