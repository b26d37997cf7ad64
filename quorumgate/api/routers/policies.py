"""Approval policy API endpoints."""

from fastapi import APIRouter, Depends

from quorumgate.api.deps import get_current_user_id, get_policy_resolver
from quorumgate.api.schemas.requests import PolicyListResponse, PolicyResponse

router = APIRouter(prefix="/policies", tags=["policies"])


@router.get("", response_model=PolicyListResponse)
async def list_policies(
    user_id: str = Depends(get_current_user_id),
    policies=Depends(get_policy_resolver),
):
    """List the approval policies in force."""
    items = [PolicyResponse(**policy.to_dict()) for policy in policies.policies()]
    return PolicyListResponse(items=items, total=len(items))
