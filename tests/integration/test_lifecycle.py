"""Integration tests for the request lifecycle.

Tests end-to-end flows through the lifecycle manager:
1. Opening requests under a policy snapshot
2. Role-based quorum for project phase advancement
3. Weighted multi-sign transactions through ready → executed
4. Rejection, expiry and the batch sweep
5. Side effects: target appliers, audit and notifications
"""

import uuid

import pytest

from quorumgate.core.approval import (
    AlreadyTerminal,
    ApprovalPolicy,
    CompletionDispatcher,
    DuplicateApproval,
    Expired,
    NotFound,
    NotReady,
    OperationNotSupported,
    PolicyNotFound,
    RequestLifecycleManager,
    Unauthorized,
)
from quorumgate.core.phases import PhaseConflict, phase_action_class, project_target
from quorumgate.core.transactions import CompositeApplier, transaction_target
from quorumgate.db.models import NotificationEventType, TokenizationProject
from tests.factories import (
    METADATA_APPROVAL,
    PAYMENT,
    TOKEN_MINT,
    create_project,
    create_transaction,
)

pytestmark = pytest.mark.integration


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def open_metadata_request(manager, initiator="alice"):
    return manager.create(METADATA_APPROVAL, project_target(uuid.uuid4()), initiator)


def open_payment(manager):
    return manager.create(PAYMENT, transaction_target(uuid.uuid4()), "fin", notes="Custodian fee")


def open_mint(manager):
    return manager.create(TOKEN_MINT, transaction_target(uuid.uuid4()), "custody")


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


class TestCreate:
    """Test opening requests."""

    def test_snapshot_and_expiry(self, manager, clock, audit):
        request = open_metadata_request(manager)

        assert request.status == "pending"
        assert request.version == 1
        assert request.created_by == "alice"
        assert request.policy_snapshot["quorum_threshold"] == 2
        assert request.created_at == clock.now
        assert (request.expires_at - request.created_at).total_seconds() == 3600
        assert audit.actions() == ["create"]
        assert audit.entries[0]["actor_id"] == "alice"

    def test_no_expiry(self, manager):
        assert open_mint(manager).expires_at is None

    def test_unknown_action_class(self, manager, audit):
        with pytest.raises(PolicyNotFound):
            manager.create("phase:MINTED->INTAKE_PENDING", {}, "alice")
        assert manager.list_requests() == []
        assert audit.entries == []

    def test_initiator_roles(self, manager):
        with pytest.raises(Unauthorized):
            manager.create(PAYMENT, transaction_target(uuid.uuid4()), "alice")

    def test_initiator_defaults_to_authorized_roles(self, manager):
        with pytest.raises(Unauthorized):
            open_metadata_request(manager, initiator="outsider")
        assert open_metadata_request(manager, initiator="val").status == "pending"

    def test_override_role_may_initiate(self, manager):
        assert open_payment(manager).status == "pending"
        assert manager.create(PAYMENT, transaction_target(uuid.uuid4()), "root").status == "pending"


# ---------------------------------------------------------------------------
# Role-based quorum
# ---------------------------------------------------------------------------


class TestRoleQuorum:
    """Test count-mode quorums over distinct roles."""

    def test_two_distinct_roles_complete(self, manager, applier, clock):
        request = open_metadata_request(manager)

        first = manager.approve(request.id, "alice")
        assert not first.dispatched
        assert first.quorum.progress == "1/2"
        assert first.record.approver_role == "TOKENIZATION_MANAGER"

        second = manager.approve(request.id, "val")
        assert second.dispatched
        assert second.quorum.met
        assert second.request.status == "completed"
        assert second.request.completed_by == "val"
        assert second.request.completed_at == clock.now
        assert applier.calls == [
            ("apply_transition", request.target_ref, "METADATA_DRAFT", "METADATA_APPROVED"),
        ]

    def test_same_role_counts_once(self, manager, applier):
        request = open_metadata_request(manager)

        manager.approve(request.id, "alice")
        outcome = manager.approve(request.id, "bob")

        assert not outcome.dispatched
        assert outcome.quorum.current_measure == 1
        assert manager.get(request.id).status == "pending"
        assert applier.calls == []

    def test_multi_role_member_fills_gap(self, manager):
        request = open_metadata_request(manager)
        manager.approve(request.id, "alice")

        outcome = manager.approve(request.id, "multi")

        assert outcome.record.approver_role == "VALUATION_OFFICER"
        assert outcome.dispatched

    def test_acting_role(self, manager):
        request = open_metadata_request(manager)
        outcome = manager.approve(request.id, "multi", acting_role="TOKENIZATION_MANAGER")
        assert outcome.record.approver_role == "TOKENIZATION_MANAGER"

    def test_acting_role_not_held(self, manager):
        request = open_metadata_request(manager)
        with pytest.raises(Unauthorized):
            manager.approve(request.id, "alice", acting_role="VALUATION_OFFICER")
        assert manager.list_records(request.id) == []

    def test_override_role_counts(self, manager, registry, applier):
        """A super admin alone satisfies a single-role policy."""
        action_class = phase_action_class("COMPLIANCE_APPROVED", "CUSTODY_READY")
        registry.register(ApprovalPolicy(
            action_class=action_class,
            authorized_roles={"CUSTODY_OFFICER"},
            quorum_threshold=1,
        ))
        request = manager.create(action_class, project_target(uuid.uuid4()), "root")

        outcome = manager.approve(request.id, "root")

        assert outcome.record.approver_role == "SUPER_ADMIN"
        assert outcome.request.status == "completed"
        assert applier.calls[0][2:] == ("COMPLIANCE_APPROVED", "CUSTODY_READY")

    def test_override_counts_alongside_represented_role(self, manager, roles, applier):
        """A super admin who also holds an already represented role still counts."""
        roles.assign("boss", "COMPLIANCE_OFFICER", "SUPER_ADMIN")
        request = open_mint(manager)
        manager.approve(request.id, "compliance")

        outcome = manager.approve(request.id, "boss")

        assert outcome.record.approver_role == "SUPER_ADMIN"
        assert outcome.quorum.progress == "2/2"
        assert outcome.request.status == "ready"
        assert applier.count("mark_executable") == 1

    def test_same_role_never_reaches_two_role_quorum(self, manager, applier):
        request = open_mint(manager)

        manager.approve(request.id, "compliance")
        outcome = manager.approve(request.id, "compliance2")

        assert outcome.quorum.progress == "1/2"
        assert manager.get(request.id).status == "pending"
        assert applier.count("mark_executable") == 0

    def test_unauthorized_approver(self, manager, audit):
        request = open_metadata_request(manager)
        with pytest.raises(Unauthorized):
            manager.approve(request.id, "outsider")
        assert manager.list_records(request.id) == []
        assert audit.actions() == ["create"]

    def test_duplicate_approval(self, manager):
        request = open_metadata_request(manager)
        manager.approve(request.id, "alice")

        with pytest.raises(DuplicateApproval) as exc_info:
            manager.approve(request.id, "alice")

        assert exc_info.value.approver_id == "alice"
        assert len(manager.list_records(request.id)) == 1
        assert manager.get(request.id).status == "pending"

    def test_missing_request(self, manager):
        with pytest.raises(NotFound):
            manager.approve(uuid.uuid4(), "alice")
        with pytest.raises(NotFound):
            manager.get("not-a-request-id")

    def test_approve_completed_request(self, manager):
        request = open_metadata_request(manager)
        manager.approve(request.id, "alice")
        manager.approve(request.id, "val")

        with pytest.raises(AlreadyTerminal) as exc_info:
            manager.approve(request.id, "multi")
        assert exc_info.value.status == "completed"

    def test_snapshot_survives_policy_change(self, manager, registry):
        request = open_metadata_request(manager)
        registry.register(ApprovalPolicy(
            action_class=METADATA_APPROVAL,
            authorized_roles={"TOKENIZATION_MANAGER"},
            quorum_threshold=1,
        ))

        outcome = manager.approve(request.id, "alice")

        assert not outcome.dispatched
        assert outcome.quorum.required_measure == 2

        fresh = open_metadata_request(manager)
        assert manager.approve(fresh.id, "alice").dispatched


# ---------------------------------------------------------------------------
# Weighted multi-sign transactions
# ---------------------------------------------------------------------------


class TestWeightedTransactions:
    """Test weight-mode quorums and the execute step."""

    def test_ready_then_executed(self, manager, applier, audit):
        request = open_payment(manager)

        first = manager.approve(request.id, "s1")
        assert first.record.weight == 2
        assert first.record.approver_role == "SIGNER"
        assert first.quorum.progress == "2/3"

        second = manager.approve(request.id, "s2")
        assert second.dispatched
        assert second.request.status == "ready"
        assert applier.count("mark_executable") == 1

        with pytest.raises(AlreadyTerminal):
            manager.approve(request.id, "s3")

        executed = manager.execute(request.id, actor_id="s1", executed_tx_hash="E3FE6EA3D48F0C2B")
        assert executed.status == "executed"
        assert executed.executed_by == "s1"
        assert applier.calls[-1] == ("mark_executed", request.target_ref, "E3FE6EA3D48F0C2B")
        assert audit.actions() == ["create", "ready", "executed"]

    def test_execute_twice(self, manager):
        request = open_payment(manager)
        manager.approve(request.id, "s1")
        manager.approve(request.id, "s2")
        manager.execute(request.id)

        with pytest.raises(NotReady) as exc_info:
            manager.execute(request.id)
        assert exc_info.value.status == "executed"

    def test_execute_pending(self, manager, applier):
        request = open_payment(manager)
        with pytest.raises(NotReady):
            manager.execute(request.id)
        assert applier.count("mark_executed") == 0

    def test_execute_needs_executor_role(self, manager):
        request = open_mint(manager)
        manager.approve(request.id, "custody")
        manager.approve(request.id, "compliance")

        with pytest.raises(Unauthorized):
            manager.execute(request.id, actor_id="compliance")
        assert manager.get(request.id).status == "ready"
        assert manager.execute(request.id, actor_id="custody").status == "executed"

    def test_non_signer_cannot_approve(self, manager):
        request = open_payment(manager)
        with pytest.raises(Unauthorized):
            manager.approve(request.id, "fin")

    def test_notifies_ready(self, manager, notifier):
        request = open_payment(manager)
        manager.approve(request.id, "s1")
        manager.approve(request.id, "s2")

        assert len(notifier.sent) == 1
        recipients, event = notifier.sent[0]
        assert recipients.roles == {"FINANCE_OFFICER"}
        assert event.event_type == NotificationEventType.REQUEST_READY.value
        assert event.request_id == str(request.id)


# ---------------------------------------------------------------------------
# Rejection
# ---------------------------------------------------------------------------


class TestReject:
    """Test rejection of transaction-mode requests."""

    def test_reject_wins_over_approvals(self, manager, audit):
        request = open_payment(manager)
        manager.approve(request.id, "s1")

        rejected = manager.reject(request.id, "fin", reason="Destination not whitelisted")

        assert rejected.status == "rejected"
        assert rejected.rejected_by == "fin"
        assert rejected.rejection_reason == "Destination not whitelisted"
        assert audit.actions()[-1] == "rejected"

        with pytest.raises(AlreadyTerminal):
            manager.approve(request.id, "s2")

    def test_reject_needs_reject_role(self, manager):
        request = open_payment(manager)
        with pytest.raises(Unauthorized):
            manager.reject(request.id, "s1")
        assert manager.get(request.id).status == "pending"

    def test_override_may_reject(self, manager):
        request = open_payment(manager)
        assert manager.reject(request.id, "root").status == "rejected"

    def test_phase_requests_cannot_be_rejected(self, manager):
        request = open_metadata_request(manager)
        with pytest.raises(OperationNotSupported):
            manager.reject(request.id, "alice")

    def test_reject_ready_request(self, manager):
        request = open_payment(manager)
        manager.approve(request.id, "s1")
        manager.approve(request.id, "s2")

        with pytest.raises(AlreadyTerminal):
            manager.reject(request.id, "fin")


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestExpiry:
    """Test lazy expiry and the batch sweep."""

    def test_expired_at_exact_instant(self, manager, clock, audit):
        request = open_metadata_request(manager)
        clock.advance(seconds=3600)

        with pytest.raises(Expired):
            manager.approve(request.id, "val")

        expired = manager.get(request.id)
        assert expired.status == "expired"
        assert manager.list_records(request.id) == []
        assert audit.actions() == ["create", "expired"]

    def test_just_before_expiry(self, manager, clock):
        request = open_metadata_request(manager)
        clock.advance(seconds=3599)
        assert manager.approve(request.id, "val").record is not None

    def test_get_expires_lazily(self, manager, clock):
        request = open_metadata_request(manager)
        clock.advance(hours=2)
        assert manager.get(request.id).status == "expired"

    def test_expired_approve_again(self, manager, clock):
        request = open_metadata_request(manager)
        clock.advance(hours=2)
        with pytest.raises(Expired):
            manager.approve(request.id, "val")
        with pytest.raises(AlreadyTerminal):
            manager.approve(request.id, "val")

    def test_ready_request_expires(self, manager, clock, applier):
        request = open_payment(manager)
        manager.approve(request.id, "s1")
        manager.approve(request.id, "s2")
        clock.advance(seconds=3600)

        with pytest.raises(Expired):
            manager.execute(request.id, actor_id="s1")

        assert manager.get(request.id).status == "expired"
        assert applier.count("mark_executed") == 0

    def test_overdue_ready_request_on_approve(self, manager, clock):
        request = open_payment(manager)
        manager.approve(request.id, "s1")
        manager.approve(request.id, "s2")
        clock.advance(hours=1)

        with pytest.raises(Expired):
            manager.approve(request.id, "s3")
        assert manager.get(request.id).status == "expired"

    def test_reject_expired(self, manager, clock):
        request = open_payment(manager)
        clock.advance(hours=1)
        with pytest.raises(Expired):
            manager.reject(request.id, "fin")

    def test_expire_stale(self, manager, clock, audit):
        first = open_metadata_request(manager)
        second = open_metadata_request(manager, initiator="bob")
        mint = open_mint(manager)
        clock.advance(hours=1, seconds=1)

        expired = manager.expire_stale()

        assert set(expired) == {first.id, second.id}
        assert manager.get(mint.id).status == "pending"
        assert audit.actions().count("expired") == 2
        assert manager.expire_stale() == []

    def test_pending_listing_excludes_expired(self, manager, clock):
        stale = open_metadata_request(manager)
        mint = open_mint(manager)
        clock.advance(hours=3)

        pending = manager.list_requests(status="pending")

        assert [r.id for r in pending] == [mint.id]
        assert manager.get(stale.id).status == "expired"
        assert [r.id for r in manager.list_requests(status="expired")] == [stale.id]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:

    def test_can_approve(self, manager):
        request = open_metadata_request(manager)

        check = manager.can_approve(request.id, "val")
        assert check.allowed
        assert check.role == "VALUATION_OFFICER"
        assert (check.current, check.required) == (0, 2)

        refused = manager.can_approve(request.id, "outsider")
        assert not refused.allowed
        assert refused.reason == "Requires one of: TOKENIZATION_MANAGER, VALUATION_OFFICER"

        manager.approve(request.id, "val")
        assert manager.can_approve(request.id, "val").reason == "Already approved"

        manager.approve(request.id, "alice")
        assert manager.can_approve(request.id, "bob").reason == "Request is completed"

    def test_can_approve_expired(self, manager, clock):
        request = open_metadata_request(manager)
        clock.advance(hours=1)
        assert manager.can_approve(request.id, "val").reason == "Request has expired"

    def test_can_approve_signer_policy(self, manager):
        request = open_payment(manager)
        assert manager.can_approve(request.id, "s3").allowed
        assert manager.can_approve(request.id, "fin").reason == "Requires one of: an assigned signer"

    def test_pending_for_review(self, manager):
        request = open_metadata_request(manager)
        mint = open_mint(manager)

        assert [r.id for r in manager.pending_for_review("bob")] == [request.id]
        assert manager.pending_for_review("alice") == []
        assert [r.id for r in manager.pending_for_review("compliance")] == [mint.id]
        assert manager.pending_for_review("outsider") == []

        manager.approve(request.id, "bob")
        assert manager.pending_for_review("bob") == []

    def test_quorum_status(self, manager):
        request = open_payment(manager)
        manager.approve(request.id, "s3")

        result = manager.quorum_status(request.id)

        assert not result.met
        assert result.progress == "1/3"
        assert result.remaining == 2

    def test_list_records_in_order(self, manager):
        request = open_payment(manager)
        manager.approve(request.id, "s3")
        manager.approve(request.id, "s1", notes="Checked amount")

        records = manager.list_records(request.id)

        assert [r.approver_id for r in records] == ["s3", "s1"]
        assert [r.sequence for r in records] == [1, 2]
        assert records[1].notes == "Checked amount"

    def test_list_requests_filters(self, manager, clock):
        metadata = open_metadata_request(manager)
        clock.advance(seconds=1)
        payment = open_payment(manager)

        assert [r.id for r in manager.list_requests()] == [payment.id, metadata.id]
        assert [r.id for r in manager.list_requests(action_class=PAYMENT)] == [payment.id]
        assert [r.id for r in manager.list_requests(created_by="alice")] == [metadata.id]
        assert [r.id for r in manager.list_requests(limit=1, offset=1)] == [metadata.id]


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------


class TestSideEffects:
    """Test audit, notification and applier failures."""

    def test_audit_on_completion(self, manager, audit):
        request = open_metadata_request(manager)
        manager.approve(request.id, "alice")
        manager.approve(request.id, "val")

        entry = audit.entries[-1]
        assert entry["action"] == "completed"
        assert entry["actor_id"] == "val"
        assert entry["before"] == {"status": "pending"}
        assert entry["after"]["status"] == "completed"
        assert entry["details"]["tipped_by"] == "val"
        assert [a["approver_id"] for a in entry["details"]["approvers"]] == ["alice", "val"]

    def test_notification_on_completion(self, manager, notifier):
        request = open_metadata_request(manager)
        manager.approve(request.id, "alice")
        manager.approve(request.id, "val")

        recipients, event = notifier.sent[0]
        assert recipients.roles == {"TOKENIZATION_MANAGER"}
        assert event.event_type == NotificationEventType.REQUEST_COMPLETED.value
        assert event.data["to_state"] == "METADATA_APPROVED"

    def test_sink_failures_keep_outcome(self, manager, audit, notifier):
        audit.fail = True
        notifier.fail = True
        request = open_metadata_request(manager)
        manager.approve(request.id, "alice")

        outcome = manager.approve(request.id, "val")

        assert outcome.dispatched
        assert manager.get(request.id).status == "completed"

    def test_applier_failure_rolls_back(self, manager, applier):
        request = open_metadata_request(manager)
        manager.approve(request.id, "alice")
        applier.fail_with = RuntimeError("target store offline")

        with pytest.raises(RuntimeError):
            manager.approve(request.id, "val")

        assert manager.get(request.id).status == "pending"
        assert [r.approver_id for r in manager.list_records(request.id)] == ["alice"]

        applier.fail_with = None
        assert manager.approve(request.id, "val").dispatched
        assert manager.get(request.id).status == "completed"

    def test_lost_status_race_keeps_record_without_dispatch(self, manager, applier, audit, notifier, monkeypatch):
        """When another approval moves the request first, ours is recorded but nothing fires twice."""
        request = open_metadata_request(manager)
        manager.approve(request.id, "alice")
        move_status = manager._compare_and_set

        def moved_by_someone_else(*args, **kwargs):
            move_status(*args, **kwargs)
            return False

        monkeypatch.setattr(manager, "_compare_and_set", moved_by_someone_else)

        outcome = manager.approve(request.id, "val")

        assert outcome.dispatched is False
        assert outcome.quorum.met
        assert outcome.record.approver_id == "val"
        assert [r.approver_id for r in manager.list_records(request.id)] == ["alice", "val"]
        assert manager.get(request.id).status == "completed"
        assert applier.calls == []
        assert "completed" not in audit.actions()
        assert notifier.sent == []


# ---------------------------------------------------------------------------
# Real target appliers
# ---------------------------------------------------------------------------


@pytest.fixture
def entity_manager(db_session, registry, roles, audit, notifier, clock):
    """Lifecycle manager that applies outcomes to projects and transactions."""
    dispatcher = CompletionDispatcher(CompositeApplier.for_session(db_session), audit=audit, notifier=notifier)
    return RequestLifecycleManager(db_session, registry, roles, dispatcher, clock=clock)


class TestEntityAppliers:
    """Test outcomes applied to stored projects and transactions."""

    def test_project_advances_on_quorum(self, entity_manager, db_session):
        project = create_project(db_session, status="METADATA_DRAFT")
        db_session.commit()

        request = entity_manager.create(METADATA_APPROVAL, project_target(project.id), "alice")
        entity_manager.approve(request.id, "alice")
        entity_manager.approve(request.id, "val")

        stored = db_session.query(TokenizationProject).filter(TokenizationProject.id == project.id).one()
        assert stored.status == "METADATA_APPROVED"
        db_session.commit()

    def test_project_moved_on(self, entity_manager, db_session):
        project = create_project(db_session, status="METADATA_DRAFT")
        db_session.commit()
        request = entity_manager.create(METADATA_APPROVAL, project_target(project.id), "alice")
        entity_manager.approve(request.id, "alice")

        project.status = "COMPLIANCE_APPROVED"
        db_session.commit()

        with pytest.raises(PhaseConflict):
            entity_manager.approve(request.id, "val")
        assert entity_manager.get(request.id).status == "pending"

    def test_transaction_flow(self, entity_manager, db_session):
        tx = create_transaction(db_session, tx_type="PAYMENT")
        db_session.commit()

        request = entity_manager.create(PAYMENT, transaction_target(tx.id), "fin")
        entity_manager.approve(request.id, "s1")
        entity_manager.approve(request.id, "s2")
        db_session.refresh(tx)
        assert tx.status == "executable"
        db_session.commit()

        entity_manager.execute(request.id, actor_id="s2", executed_tx_hash="9A1B")
        db_session.refresh(tx)
        assert tx.status == "executed"
        assert tx.executed_tx_hash == "9A1B"
        db_session.commit()
