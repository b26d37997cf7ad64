"""Threshold approval engine for QuorumGate.

Implements policy resolution, the approval ledger, quorum evaluation and
the request lifecycle with exactly-once completion dispatch.
"""

from .errors import (
    ApprovalError,
    PolicyNotFound,
    NotFound,
    Unauthorized,
    DuplicateApproval,
    AlreadyTerminal,
    NotReady,
    Expired,
    OperationNotSupported,
)
from .states import RequestStatus, RequestAction, VALID_TRANSITIONS, TERMINAL_STATUSES
from .machine import RequestStateMachine, TransitionError
from .policy import ApprovalPolicy, QuorumMode, PolicyRegistry, DatabasePolicyResolver, load_policies
from .quorum import QuorumResult, evaluate, tipping_record
from .ledger import ApprovalLedger
from .interfaces import Recipients, ApprovalEvent
from .dispatcher import CompletionDispatcher
from .service import RequestLifecycleManager, ApprovalOutcome, ApprovalCheck

__all__ = [
    "ApprovalError",
    "PolicyNotFound",
    "NotFound",
    "Unauthorized",
    "DuplicateApproval",
    "AlreadyTerminal",
    "NotReady",
    "Expired",
    "OperationNotSupported",
    "RequestStatus",
    "RequestAction",
    "VALID_TRANSITIONS",
    "TERMINAL_STATUSES",
    "RequestStateMachine",
    "TransitionError",
    "ApprovalPolicy",
    "QuorumMode",
    "PolicyRegistry",
    "DatabasePolicyResolver",
    "load_policies",
    "QuorumResult",
    "evaluate",
    "tipping_record",
    "ApprovalLedger",
    "Recipients",
    "ApprovalEvent",
    "CompletionDispatcher",
    "RequestLifecycleManager",
    "ApprovalOutcome",
    "ApprovalCheck",
]
