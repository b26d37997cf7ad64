"""Request lifecycle manager.

Provides the high-level API of the approval engine: opening requests,
recording approvals, rejecting and executing, and querying status. Every
mutating operation is one database transaction committed here.
"""

import functools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from quorumgate.db.models import ApprovalRecord, PendingRequest

from .dispatcher import CompletionDispatcher
from .errors import (
    AlreadyTerminal,
    Expired,
    NotFound,
    NotReady,
    OperationNotSupported,
    Unauthorized,
)
from .interfaces import PolicyResolver, RoleProvider
from .ledger import ApprovalLedger
from .machine import RequestStateMachine
from .policy import ApprovalPolicy
from .quorum import QuorumResult, evaluate
from .states import (
    EXPIRABLE_STATUSES,
    RequestAction,
    RequestStatus,
    quorum_action,
)

logger = logging.getLogger(__name__)

RequestId = Union[UUID, str]


@dataclass
class ApprovalOutcome:
    """Result of a successful approval."""
    request: PendingRequest
    record: ApprovalRecord
    quorum: QuorumResult
    dispatched: bool


@dataclass(frozen=True)
class ApprovalCheck:
    """Whether a user could approve a request right now."""
    allowed: bool
    reason: Optional[str] = None
    role: Optional[str] = None
    current: int = 0
    required: int = 0


def transactional(method):
    """Roll the session back when an operation fails."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except Exception:
            self.db.rollback()
            raise

    return wrapper


class RequestLifecycleManager:
    """
    Owns pending requests and drives them through their lifecycle.

    Handles:
    - Opening requests under a snapshot of their policy
    - Recording approvals and detecting the quorum exactly once
    - Rejection and execution of transaction-mode requests
    - Lazy expiry on every access, plus a batch sweep
    """

    def __init__(
        self,
        db: Session,
        policies: PolicyResolver,
        roles: RoleProvider,
        dispatcher: CompletionDispatcher,
        *,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize the manager.

        Args:
            db: Database session; the manager commits it
            policies: Resolves action classes to policies
            roles: Answers which roles a user holds
            dispatcher: Applies and announces outcomes
            clock: Returns the current naive UTC time
        """
        self.db = db
        self.policies = policies
        self.roles = roles
        self.dispatcher = dispatcher
        self.ledger = ApprovalLedger(db)
        self._now = clock

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    @transactional
    def create(
        self,
        action_class: str,
        target_ref: Dict[str, Any],
        initiator: str,
        *,
        notes: Optional[str] = None,
    ) -> PendingRequest:
        """
        Open a pending request.

        Args:
            action_class: Kind of action awaiting approval
            target_ref: Reference to the entity acted on
            initiator: User opening the request
            notes: Optional description

        Returns:
            The new pending request

        Raises:
            PolicyNotFound: If the action class has no policy
            Unauthorized: If the initiator may not open this action class
        """
        policy = self.policies.resolve(action_class)

        if not policy.may_initiate(initiator, self.roles.roles_of(initiator)):
            raise Unauthorized(
                f"User {initiator} may not open {action_class} requests",
                actor_id=initiator,
            )

        now = self._now()
        request = PendingRequest(
            id=uuid.uuid4(),
            action_class=action_class,
            target_ref=dict(target_ref or {}),
            policy_snapshot=policy.to_dict(),
            status=RequestStatus.PENDING.value,
            version=1,
            created_by=initiator,
            notes=notes,
            expires_at=policy.expires_at(now),
            created_at=now,
            updated_at=now,
        )
        self.db.add(request)
        self.db.commit()

        logger.info("Opened %s request %s by %s", action_class, request.id, initiator)
        self.dispatcher.record_event(request, "create", initiator, details={"notes": notes})
        return request

    @transactional
    def approve(
        self,
        request_id: RequestId,
        approver_id: str,
        *,
        acting_role: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ApprovalOutcome:
        """
        Record an approval and dispatch the request if it met its quorum.

        Only the approval whose compare-and-set moves the request out of
        ``pending`` dispatches; a concurrent approval that loses keeps its
        record but does nothing else.

        Args:
            request_id: Request to approve
            approver_id: Approving user
            acting_role: Role the approver explicitly acts as
            notes: Optional comment

        Returns:
            ApprovalOutcome with the new record and quorum state

        Raises:
            NotFound: If the request does not exist
            Expired: If the request expired (expiry is persisted first)
            AlreadyTerminal: If the request is no longer pending
            Unauthorized: If the approver does not qualify
            DuplicateApproval: If the approver already approved
        """
        request = self._load(request_id, for_update=True)
        policy = self._policy_of(request)

        self._expire_if_overdue(request, raise_expired=True)
        if request.status != RequestStatus.PENDING.value:
            raise AlreadyTerminal(request.id, request.status)

        records = self.ledger.list_for(request.id)
        role = policy.qualify(
            approver_id,
            self.roles.roles_of(approver_id),
            acting_role=acting_role,
            represented_roles={r.approver_role for r in records},
        )
        if role is None:
            raise Unauthorized(
                f"User {approver_id} may not approve {request.action_class} requests",
                actor_id=approver_id,
                request_id=request.id,
            )

        record = self.ledger.append(
            request.id,
            approver_id,
            role,
            weight=policy.weight_of(approver_id),
            notes=notes,
        )
        records = self.ledger.list_for(request.id)
        result = evaluate(policy, records)

        logger.info(
            "Approval on %s by %s as %s: %s",
            request.id, approver_id, role, result.progress,
        )

        if not result.met:
            self.db.commit()
            return ApprovalOutcome(request, record, result, dispatched=False)

        action = quorum_action(policy.auto_apply_on_quorum)
        machine = RequestStateMachine(
            request.id,
            RequestStatus(request.status),
            auto_apply_on_quorum=policy.auto_apply_on_quorum,
        )
        new_status = machine.transition(action, actor_id=approver_id)

        now = self._now()
        won = self._compare_and_set(
            request,
            RequestStatus.PENDING,
            new_status,
            completed_at=now,
            completed_by=approver_id,
        )
        if not won:
            # Another approval met the quorum first; ours stands as a record
            self.db.refresh(request)
            self.db.commit()
            logger.info("Quorum on %s already dispatched, approval by %s recorded", request.id, approver_id)
            return ApprovalOutcome(request, record, result, dispatched=False)

        self.dispatcher.dispatch(request, policy, records, commit=self.db.commit, actor_id=approver_id)
        logger.info("Request %s %s after approval by %s", request.id, request.status, approver_id)
        return ApprovalOutcome(request, record, result, dispatched=True)

    @transactional
    def reject(
        self,
        request_id: RequestId,
        actor_id: str,
        *,
        reason: Optional[str] = None,
    ) -> PendingRequest:
        """
        Reject a pending transaction-mode request.

        Rejection wins over any number of accumulated approvals.

        Raises:
            NotFound: If the request does not exist
            OperationNotSupported: If the request applies on quorum
            Expired: If the request expired (expiry is persisted first)
            AlreadyTerminal: If the request is no longer pending
            Unauthorized: If the actor may not reject
        """
        request = self._load(request_id, for_update=True)
        policy = self._policy_of(request)

        if policy.auto_apply_on_quorum:
            raise OperationNotSupported(
                f"{request.action_class} requests cannot be rejected",
                request_id=request.id,
            )
        self._expire_if_overdue(request, raise_expired=True)
        if request.status != RequestStatus.PENDING.value:
            raise AlreadyTerminal(request.id, request.status)

        if not policy.may_reject(actor_id, self.roles.roles_of(actor_id)):
            raise Unauthorized(
                f"User {actor_id} may not reject {request.action_class} requests",
                actor_id=actor_id,
                request_id=request.id,
            )

        machine = RequestStateMachine(request.id, RequestStatus(request.status), auto_apply_on_quorum=False)
        new_status = machine.transition(RequestAction.REJECT, actor_id=actor_id, comment=reason)

        won = self._compare_and_set(
            request,
            RequestStatus.PENDING,
            new_status,
            rejected_at=self._now(),
            rejected_by=actor_id,
            rejection_reason=reason,
        )
        if not won:
            self.db.refresh(request)
            raise AlreadyTerminal(request.id, request.status)
        self.db.commit()

        logger.info("Request %s rejected by %s", request.id, actor_id)
        self.dispatcher.record_terminal(
            request, "rejected", actor_id,
            previous_status=RequestStatus.PENDING.value,
            details={"reason": reason},
        )
        return request

    @transactional
    def execute(
        self,
        request_id: RequestId,
        *,
        actor_id: Optional[str] = None,
        executed_tx_hash: Optional[str] = None,
    ) -> PendingRequest:
        """
        Execute a ready transaction-mode request.

        Args:
            request_id: Request to execute
            actor_id: Executing user; None for system execution
            executed_tx_hash: Ledger hash of the submitted transaction

        Raises:
            NotFound: If the request does not exist
            Expired: If the request expired (expiry is persisted first)
            NotReady: If the request is not ready
            Unauthorized: If the actor may not execute
        """
        request = self._load(request_id, for_update=True)
        policy = self._policy_of(request)

        self._expire_if_overdue(request, raise_expired=True)
        if request.status != RequestStatus.READY.value:
            raise NotReady(request.id, request.status)

        if actor_id is not None and not policy.may_execute(actor_id, self.roles.roles_of(actor_id)):
            raise Unauthorized(
                f"User {actor_id} may not execute {request.action_class} requests",
                actor_id=actor_id,
                request_id=request.id,
            )

        machine = RequestStateMachine(request.id, RequestStatus(request.status), auto_apply_on_quorum=False)
        new_status = machine.transition(RequestAction.EXECUTE, actor_id=actor_id)

        won = self._compare_and_set(
            request,
            RequestStatus.READY,
            new_status,
            executed_at=self._now(),
            executed_by=actor_id,
        )
        if not won:
            self.db.refresh(request)
            raise NotReady(request.id, request.status)

        self.dispatcher.apply_execution(request, executed_tx_hash)
        self.db.commit()

        logger.info("Request %s executed by %s", request.id, actor_id or "system")
        self.dispatcher.record_terminal(
            request, "executed", actor_id,
            previous_status=RequestStatus.READY.value,
            details={"executed_tx_hash": executed_tx_hash},
        )
        return request

    @transactional
    def expire_stale(self) -> List[UUID]:
        """
        Expire every pending or ready request past its expiry.

        Each request goes through the same path as lazy expiry.

        Returns:
            IDs of the requests this sweep expired
        """
        now = self._now()
        candidates = self.db.query(PendingRequest.id).filter(
            PendingRequest.status.in_([s.value for s in EXPIRABLE_STATUSES]),
            PendingRequest.expires_at.isnot(None),
            PendingRequest.expires_at <= now,
        ).all()
        self.db.commit()

        expired = []
        for row in candidates:
            request = self._load(row.id, for_update=True)
            if self._expire_if_overdue(request):
                expired.append(request.id)
            else:
                self.db.commit()

        if expired:
            logger.info("Expired %d stale requests", len(expired))
        return expired

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @transactional
    def get(self, request_id: RequestId) -> PendingRequest:
        """
        Get a request, expiring it first if it is overdue.

        Raises:
            NotFound: If the request does not exist
        """
        request = self._load(request_id)
        if not self._expire_if_overdue(request):
            self.db.commit()
        return request

    @transactional
    def list_records(self, request_id: RequestId) -> List[ApprovalRecord]:
        """Get a request's approval records in append order."""
        request = self._load(request_id)
        records = self.ledger.list_for(request.id)
        self.db.commit()
        return records

    @transactional
    def quorum_status(self, request_id: RequestId) -> QuorumResult:
        """Evaluate a request's records against its policy snapshot."""
        request = self._load(request_id)
        result = evaluate(self._policy_of(request), self.ledger.list_for(request.id))
        self.db.commit()
        return result

    @transactional
    def list_requests(
        self,
        *,
        status: Optional[str] = None,
        action_class: Optional[str] = None,
        created_by: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PendingRequest]:
        """
        List requests, newest first.

        Overdue requests in the page are expired before they are returned,
        so a ``pending`` filter never yields an expired request.
        """
        query = self.db.query(PendingRequest)
        if status:
            query = query.filter(PendingRequest.status == RequestStatus(status).value)
        if action_class:
            query = query.filter(PendingRequest.action_class == action_class)
        if created_by:
            query = query.filter(PendingRequest.created_by == created_by)

        requests = query.order_by(PendingRequest.created_at.desc()).offset(offset).limit(limit).all()
        self.db.commit()

        for request in requests:
            if self._is_overdue(request):
                self._load(request.id, for_update=True)
                if not self._expire_if_overdue(request):
                    self.db.commit()

        if status:
            requests = [r for r in requests if r.status == RequestStatus(status).value]
        return requests

    @transactional
    def pending_for_review(self, user_id: str) -> List[PendingRequest]:
        """
        Get pending requests a user could approve now.

        Excludes requests the user opened, requests the user already
        approved, overdue requests and requests the user does not qualify
        for.
        """
        roles = self.roles.roles_of(user_id)
        approved = self.ledger.approved_request_ids(user_id)
        requests = self.db.query(PendingRequest).filter(
            PendingRequest.status == RequestStatus.PENDING.value,
            PendingRequest.created_by != user_id,
        ).order_by(PendingRequest.created_at).all()
        self.db.commit()

        reviewable = []
        for request in requests:
            if request.id in approved or self._is_overdue(request):
                continue
            if self._policy_of(request).qualify(user_id, roles) is not None:
                reviewable.append(request)
        return reviewable

    @transactional
    def can_approve(self, request_id: RequestId, user_id: str) -> ApprovalCheck:
        """
        Check whether a user could approve a request, without changing it.

        Raises:
            NotFound: If the request does not exist
        """
        request = self._load(request_id)
        policy = self._policy_of(request)
        records = self.ledger.list_for(request.id)
        held = self.roles.roles_of(user_id)
        self.db.commit()

        result = evaluate(policy, records)
        check = functools.partial(
            ApprovalCheck,
            current=result.current_measure,
            required=result.required_measure,
        )

        if request.status != RequestStatus.PENDING.value:
            return check(allowed=False, reason=f"Request is {request.status}")
        if self._is_overdue(request):
            return check(allowed=False, reason="Request has expired")
        if any(r.approver_id == user_id for r in records):
            return check(allowed=False, reason="Already approved")

        role = policy.qualify(
            user_id,
            held,
            represented_roles={r.approver_role for r in records},
        )
        if role is None:
            required = sorted(policy.authorized_roles) or ["an assigned signer"]
            return check(allowed=False, reason=f"Requires one of: {', '.join(required)}")
        return check(allowed=True, role=role)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, request_id: RequestId, *, for_update: bool = False) -> PendingRequest:
        try:
            request_uuid = request_id if isinstance(request_id, UUID) else UUID(str(request_id))
        except ValueError:
            raise NotFound(request_id)

        # Another session may have moved the request since it was last loaded
        query = self.db.query(PendingRequest).filter(PendingRequest.id == request_uuid).populate_existing()
        if for_update:
            query = query.with_for_update()
        request = query.first()
        if request is None:
            raise NotFound(request_uuid)
        return request

    @staticmethod
    def _policy_of(request: PendingRequest) -> ApprovalPolicy:
        return ApprovalPolicy.from_dict(request.policy_snapshot)

    def _is_overdue(self, request: PendingRequest) -> bool:
        return (
            request.status in {s.value for s in EXPIRABLE_STATUSES}
            and request.expires_at is not None
            and request.expires_at <= self._now()
        )

    def _compare_and_set(
        self,
        request: PendingRequest,
        from_status: RequestStatus,
        to_status: RequestStatus,
        **values: Any,
    ) -> bool:
        """Move the request out of ``from_status`` unless someone else did."""
        changes = {
            PendingRequest.status: to_status.value,
            PendingRequest.version: request.version + 1,
            PendingRequest.updated_at: self._now(),
        }
        changes.update({getattr(PendingRequest, key): value for key, value in values.items()})

        updated = self.db.query(PendingRequest).filter(
            PendingRequest.id == request.id,
            PendingRequest.status == from_status.value,
            PendingRequest.version == request.version,
        ).update(changes, synchronize_session=False)

        if updated == 1:
            self.db.refresh(request)
            return True
        return False

    def _expire_if_overdue(self, request: PendingRequest, *, raise_expired: bool = False) -> bool:
        """
        Persist EXPIRED for an overdue request.

        Commits the expiry before returning or raising.

        Returns:
            True if this call expired the request

        Raises:
            Expired: If ``raise_expired`` and the request is overdue
        """
        if not self._is_overdue(request):
            return False

        previous = request.status
        machine = RequestStateMachine(request.id, RequestStatus(previous))
        new_status = machine.transition(RequestAction.EXPIRE)
        won = self._compare_and_set(request, RequestStatus(previous), new_status)
        if not won:
            self.db.refresh(request)
        self.db.commit()

        if won:
            logger.info("Request %s expired (was %s)", request.id, previous)
            self.dispatcher.record_terminal(request, "expired", None, previous_status=previous)

        if raise_expired:
            if request.status != RequestStatus.EXPIRED.value:
                raise AlreadyTerminal(request.id, request.status)
            raise Expired(request.id)
        return won
