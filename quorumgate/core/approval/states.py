"""Pending request states and transitions.

State Machine Diagram:

                 create
    [start] ───────────────► PENDING ──────── reject ───────► REJECTED
                               │  │
                               │  └─────── expire (lazy) ───► EXPIRED
                               │
                 quorum met    │
            ┌──────────────────┴───────────────────┐
            │ auto-apply policy                    │ execute-step policy
       ┌────▼──────┐                          ┌────▼────┐
       │ COMPLETED │                          │  READY  │── expire ──► EXPIRED
       └───────────┘                          └────┬────┘
                                                   │ execute
                                              ┌────▼─────┐
                                              │ EXECUTED │
                                              └──────────┘

COMPLETED, EXECUTED, REJECTED and EXPIRED are terminal.
"""

from enum import Enum
from typing import Set, Dict, Optional, NamedTuple


class RequestStatus(str, Enum):
    """Statuses of a pending request."""

    PENDING = "pending"        # Collecting approvals
    READY = "ready"            # Quorum met, awaiting execution (transaction mode)

    # Terminal states
    COMPLETED = "completed"    # Quorum met, effect applied (state-transition mode)
    EXECUTED = "executed"      # Executed after quorum (transaction mode)
    REJECTED = "rejected"      # Rejected by an authorized actor
    EXPIRED = "expired"        # expires_at passed before completion


class RequestAction(str, Enum):
    """Actions that trigger status transitions."""

    COMPLETE = "complete"      # PENDING → COMPLETED
    MARK_READY = "mark_ready"  # PENDING → READY
    EXECUTE = "execute"        # READY → EXECUTED
    REJECT = "reject"          # PENDING → REJECTED
    EXPIRE = "expire"          # PENDING/READY → EXPIRED


class TransitionRule(NamedTuple):
    """Defines a valid status transition."""
    from_status: RequestStatus
    to_status: RequestStatus
    action: RequestAction
    requires_auto_apply: Optional[bool] = None  # None = either policy mode


TRANSITION_RULES: list[TransitionRule] = [
    # Quorum crossing
    TransitionRule(RequestStatus.PENDING, RequestStatus.COMPLETED, RequestAction.COMPLETE, True),
    TransitionRule(RequestStatus.PENDING, RequestStatus.READY, RequestAction.MARK_READY, False),

    # Transaction execution
    TransitionRule(RequestStatus.READY, RequestStatus.EXECUTED, RequestAction.EXECUTE, False),

    # Rejection (transaction mode)
    TransitionRule(RequestStatus.PENDING, RequestStatus.REJECTED, RequestAction.REJECT, False),

    # Lazy expiry
    TransitionRule(RequestStatus.PENDING, RequestStatus.EXPIRED, RequestAction.EXPIRE),
    TransitionRule(RequestStatus.READY, RequestStatus.EXPIRED, RequestAction.EXPIRE),
]

# Build lookup tables for efficient access
VALID_TRANSITIONS: Dict[RequestStatus, Set[RequestAction]] = {}
TRANSITION_TARGETS: Dict[tuple[RequestStatus, RequestAction], TransitionRule] = {}

for rule in TRANSITION_RULES:
    VALID_TRANSITIONS.setdefault(rule.from_status, set()).add(rule.action)
    TRANSITION_TARGETS[(rule.from_status, rule.action)] = rule


TERMINAL_STATUSES: Set[RequestStatus] = {
    RequestStatus.COMPLETED,
    RequestStatus.EXECUTED,
    RequestStatus.REJECTED,
    RequestStatus.EXPIRED,
}

# Statuses a lazy expiry check applies to
EXPIRABLE_STATUSES: Set[RequestStatus] = {
    RequestStatus.PENDING,
    RequestStatus.READY,
}

# Statuses that mean the quorum was reached
APPROVED_STATUSES: Set[RequestStatus] = {
    RequestStatus.READY,
    RequestStatus.COMPLETED,
    RequestStatus.EXECUTED,
}


def quorum_action(auto_apply_on_quorum: bool) -> RequestAction:
    """Action taken when quorum is met under the given policy mode."""
    return RequestAction.COMPLETE if auto_apply_on_quorum else RequestAction.MARK_READY


def can_transition(from_status: RequestStatus, action: RequestAction) -> bool:
    """Check if an action is valid from the given status."""
    return action in VALID_TRANSITIONS.get(from_status, set())


def get_transition_rule(from_status: RequestStatus, action: RequestAction) -> Optional[TransitionRule]:
    """Get the transition rule for a status/action combination."""
    return TRANSITION_TARGETS.get((from_status, action))


def get_target_status(from_status: RequestStatus, action: RequestAction) -> Optional[RequestStatus]:
    """Get the target status for an action."""
    rule = get_transition_rule(from_status, action)
    return rule.to_status if rule else None
