"""Request state machine implementation.

Validates status transitions for a single pending request against the
transition table and the request's policy mode.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Callable
from uuid import UUID

from .errors import ApprovalError
from .states import (
    RequestStatus,
    RequestAction,
    can_transition,
    get_transition_rule,
    TERMINAL_STATUSES,
)

logger = logging.getLogger(__name__)


class TransitionError(ApprovalError):
    """Raised when a status transition is invalid."""

    code = "invalid_transition"

    def __init__(self, message: str, from_status: RequestStatus, action: RequestAction):
        super().__init__(message)
        self.from_status = from_status
        self.action = action


class RequestStateMachine:
    """
    State machine for one pending request.

    Manages transitions between request statuses with:
    - Validation of valid transitions
    - Policy-mode checks (auto-apply vs. execute step)
    - An in-memory transition history
    - Callback hooks for side effects
    """

    def __init__(
        self,
        request_id: UUID,
        current_status: RequestStatus,
        *,
        auto_apply_on_quorum: bool = True,
    ):
        """
        Initialize the state machine.

        Args:
            request_id: ID of the pending request
            current_status: Current status
            auto_apply_on_quorum: Policy mode of the request
        """
        self.request_id = request_id
        self._status = RequestStatus(current_status)
        self.auto_apply_on_quorum = auto_apply_on_quorum
        self._transition_history: list[Dict[str, Any]] = []
        self._callbacks: Dict[RequestAction, list[Callable]] = {}

    @property
    def status(self) -> RequestStatus:
        """Current status of the request."""
        return self._status

    @property
    def is_terminal(self) -> bool:
        """Check if current status is terminal (no further transitions)."""
        return self._status in TERMINAL_STATUSES

    def can_perform(self, action: RequestAction) -> bool:
        """Check if an action can be performed from the current status."""
        if not can_transition(self._status, action):
            return False

        rule = get_transition_rule(self._status, action)
        if rule.requires_auto_apply is not None and rule.requires_auto_apply != self.auto_apply_on_quorum:
            return False

        return True

    def get_available_actions(self) -> list[RequestAction]:
        """Get list of actions available from the current status."""
        return [action for action in RequestAction if self.can_perform(action)]

    def transition(
        self,
        action: RequestAction,
        *,
        actor_id: Optional[str] = None,
        comment: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RequestStatus:
        """
        Perform a status transition.

        Args:
            action: The action to perform
            actor_id: ID of the actor performing the transition
            comment: Optional comment
            metadata: Additional metadata to record

        Returns:
            The new status after transition

        Raises:
            TransitionError: If the transition is invalid
        """
        if not can_transition(self._status, action):
            raise TransitionError(
                f"Cannot perform {action.value} from status {self._status.value}",
                self._status,
                action,
            )

        rule = get_transition_rule(self._status, action)
        if rule.requires_auto_apply is not None and rule.requires_auto_apply != self.auto_apply_on_quorum:
            mode = "auto-apply" if self.auto_apply_on_quorum else "execute-step"
            raise TransitionError(
                f"Cannot perform {action.value} on a {mode} request",
                self._status,
                action,
            )

        from_status = self._status
        to_status = rule.to_status

        transition_record = {
            "request_id": self.request_id,
            "from_status": from_status.value,
            "to_status": to_status.value,
            "action": action.value,
            "actor_id": actor_id,
            "comment": comment,
            "metadata": metadata or {},
            "timestamp": datetime.utcnow(),
        }
        self._transition_history.append(transition_record)

        self._status = to_status

        self._execute_callbacks(action, transition_record)

        return self._status

    def register_callback(
        self,
        action: RequestAction,
        callback: Callable[[Dict[str, Any]], None],
    ) -> None:
        """
        Register a callback to be executed after a transition.

        Args:
            action: The action to hook
            callback: Function to call with the transition record
        """
        self._callbacks.setdefault(action, []).append(callback)

    def get_history(self) -> list[Dict[str, Any]]:
        """Get the transition history recorded by this machine."""
        return self._transition_history.copy()

    def _execute_callbacks(self, action: RequestAction, record: Dict[str, Any]) -> None:
        """Execute registered callbacks for an action."""
        for callback in self._callbacks.get(action, []):
            try:
                callback(record)
            except Exception:
                # A failing hook never undoes the transition
                logger.exception("Callback error for %s on request %s", action.value, self.request_id)
