"""Completion dispatcher.

Runs the side effects of a request outcome. The domain effect is applied
inside the caller's transaction; audit entries and notifications go out
after commit and never undo a committed outcome.
"""

import logging
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from quorumgate.db.models import NotificationEventType, PendingRequest

from .interfaces import ApprovalEvent, AuditSink, NotificationSink, Recipients, TargetApplier
from .policy import ApprovalPolicy
from .quorum import evaluate, tipping_record
from .states import RequestStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

REQUEST_ENTITY = "approval_request"


def transition_states(action_class: str) -> Tuple[Optional[str], Optional[str]]:
    """Source and target state encoded in ``<kind>:<FROM>-><TO>``, if any."""
    _, _, spec = action_class.partition(":")
    source, sep, target = spec.partition("->")
    if not sep:
        return None, None
    return source, target


def snapshot(request: PendingRequest) -> Dict[str, Any]:
    """Audit view of a request."""
    return {
        "status": request.status,
        "action_class": request.action_class,
        "target_ref": request.target_ref,
        "version": request.version,
    }


class CompletionDispatcher:
    """
    Applies and announces request outcomes.

    Args:
        applier: Applies the approved effect to the target
        audit: Audit sink, optional
        notifier: Notification sink, optional
    """

    def __init__(
        self,
        applier: TargetApplier,
        audit: Optional[AuditSink] = None,
        notifier: Optional[NotificationSink] = None,
    ):
        self.applier = applier
        self.audit = audit
        self.notifier = notifier

    def apply(self, request: PendingRequest, policy: ApprovalPolicy) -> None:
        """Apply the quorum effect. Runs inside the caller's transaction."""
        if policy.auto_apply_on_quorum:
            from_state, to_state = transition_states(request.action_class)
            self.applier.apply_transition(request.target_ref, from_state, to_state)
        else:
            self.applier.mark_executable(request.target_ref)

    def dispatch(
        self,
        request: PendingRequest,
        policy: ApprovalPolicy,
        records: Sequence,
        *,
        commit: Callable[[], None],
        actor_id: Optional[str] = None,
    ) -> None:
        """
        Apply the effect of a met quorum, commit, then announce it.

        Args:
            request: Request whose quorum was just met (already moved)
            policy: Policy snapshot of the request
            records: Records that met the quorum
            commit: Commits the caller's transaction
            actor_id: Approver whose approval met the quorum
        """
        self.apply(request, policy)
        commit()
        self.announce(request, policy, records, actor_id=actor_id)

    def announce(
        self,
        request: PendingRequest,
        policy: ApprovalPolicy,
        records: Sequence,
        *,
        actor_id: Optional[str] = None,
    ) -> None:
        """Emit the audit entry and the notification fan-out for a met quorum."""
        result = evaluate(policy, records)
        tipping = tipping_record(policy, records)
        approvers = [
            {"approver_id": r.approver_id, "role": r.approver_role, "weight": r.weight}
            for r in sorted(records, key=lambda r: r.sequence)
        ]
        from_state, to_state = transition_states(request.action_class)

        self._audit(
            request,
            action=request.status,
            actor_id=actor_id,
            before={"status": RequestStatus.PENDING.value},
            after=snapshot(request),
            details={
                "quorum": result.to_dict(),
                "approvers": approvers,
                "tipped_by": tipping.approver_id if tipping is not None else None,
            },
        )

        recipients = Recipients(
            roles=policy.notify_roles,
            all_users=policy.notify_all,
            assignee=policy.notify_assignee,
        )
        if recipients.is_empty or self.notifier is None:
            return

        if request.status == RequestStatus.READY.value:
            event_type = NotificationEventType.REQUEST_READY.value
        else:
            event_type = NotificationEventType.REQUEST_COMPLETED.value

        event = ApprovalEvent(
            event_type=event_type,
            request_id=str(request.id),
            action_class=request.action_class,
            status=request.status,
            target_ref=request.target_ref or {},
            actor_id=actor_id,
            data={
                "from_state": from_state,
                "to_state": to_state,
                "approvers": approvers,
                "quorum": result.to_dict(),
            },
        )
        try:
            self.notifier.notify(recipients, event)
        except Exception:
            logger.exception("Notification failed for request %s", request.id)

    def apply_execution(self, request: PendingRequest, tx_hash: Optional[str] = None) -> None:
        """Mark the target executed. Runs inside the caller's transaction."""
        self.applier.mark_executed(request.target_ref, tx_hash)

    def record_terminal(
        self,
        request: PendingRequest,
        action: str,
        actor_id: Optional[str] = None,
        *,
        previous_status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Emit the audit entry for a rejected, expired or executed request."""
        if RequestStatus(request.status) not in TERMINAL_STATUSES:
            raise ValueError(f"Request {request.id} is {request.status}, not terminal")
        self.record_event(request, action, actor_id, previous_status=previous_status, details=details)

    def record_event(
        self,
        request: PendingRequest,
        action: str,
        actor_id: Optional[str] = None,
        *,
        previous_status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Emit an audit entry for a request lifecycle event."""
        self._audit(
            request,
            action=action,
            actor_id=actor_id,
            before={"status": previous_status} if previous_status else None,
            after=snapshot(request),
            details=details,
        )

    def _audit(
        self,
        request: PendingRequest,
        *,
        action: str,
        actor_id: Optional[str],
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        details: Optional[Dict[str, Any]],
    ) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record(
                REQUEST_ENTITY,
                str(request.id),
                actor_id,
                action,
                before=before,
                after=after,
                details=details,
            )
        except Exception:
            logger.exception("Audit write failed for request %s (%s)", request.id, action)
