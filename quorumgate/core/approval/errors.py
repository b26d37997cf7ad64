"""Error taxonomy for the approval engine.

Callers tell these apart: "you cannot approve" (Unauthorized), "nothing
happened because you already did" (DuplicateApproval) and "too late"
(Expired) each carry their own class and ``code``.
"""

from typing import Optional
from uuid import UUID


class ApprovalError(Exception):
    """Base class for approval engine errors."""

    code = "approval_error"

    def __init__(self, message: str, *, request_id: Optional[UUID] = None):
        super().__init__(message)
        self.message = message
        self.request_id = request_id


class PolicyNotFound(ApprovalError):
    """No policy is registered for the action class. Never proceed."""

    code = "policy_not_found"

    def __init__(self, action_class: str):
        super().__init__(f"No approval policy registered for action class {action_class!r}")
        self.action_class = action_class


class NotFound(ApprovalError):
    """The pending request does not exist."""

    code = "not_found"

    def __init__(self, request_id: UUID):
        super().__init__(f"Approval request {request_id} not found", request_id=request_id)


class Unauthorized(ApprovalError):
    """The actor may not perform the operation. No state was changed."""

    code = "unauthorized"

    def __init__(self, message: str, *, actor_id: Optional[str] = None, request_id: Optional[UUID] = None):
        super().__init__(message, request_id=request_id)
        self.actor_id = actor_id


class DuplicateApproval(ApprovalError):
    """The approver already has a record on this request. Informational."""

    code = "duplicate_approval"

    def __init__(self, request_id: UUID, approver_id: str):
        super().__init__(
            f"Approver {approver_id} has already approved request {request_id}",
            request_id=request_id,
        )
        self.approver_id = approver_id


class AlreadyTerminal(ApprovalError):
    """The request no longer accepts approvals; the caller should refresh."""

    code = "already_terminal"

    def __init__(self, request_id: UUID, status: str):
        super().__init__(
            f"Approval request {request_id} is {status} and no longer accepts approvals",
            request_id=request_id,
        )
        self.status = status


class NotReady(ApprovalError):
    """The request cannot be executed from its current status."""

    code = "not_ready"

    def __init__(self, request_id: UUID, status: str):
        super().__init__(
            f"Approval request {request_id} is {status}, not ready for execution",
            request_id=request_id,
        )
        self.status = status


class Expired(ApprovalError):
    """The request expired. The expired status was persisted before raising."""

    code = "expired"

    def __init__(self, request_id: UUID):
        super().__init__(f"Approval request {request_id} has expired", request_id=request_id)


class OperationNotSupported(ApprovalError):
    """The operation does not apply to the request's policy mode."""

    code = "operation_not_supported"
