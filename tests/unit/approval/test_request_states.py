"""Tests for the pending request state machine."""

import pytest
from uuid import uuid4

from quorumgate.core.approval.states import (
    RequestStatus, RequestAction,
    VALID_TRANSITIONS, TERMINAL_STATUSES, EXPIRABLE_STATUSES, APPROVED_STATUSES,
    can_transition, get_target_status, get_transition_rule, quorum_action,
)
from quorumgate.core.approval.machine import RequestStateMachine, TransitionError


class TestRequestStatuses:
    """Test request status definitions."""

    def test_all_statuses_defined(self):
        """Test that all expected statuses exist."""
        expected = ["pending", "ready", "completed", "executed", "rejected", "expired"]
        assert sorted(s.value for s in RequestStatus) == sorted(expected)

    def test_terminal_statuses(self):
        """Test terminal status definitions."""
        assert RequestStatus.COMPLETED in TERMINAL_STATUSES
        assert RequestStatus.EXECUTED in TERMINAL_STATUSES
        assert RequestStatus.REJECTED in TERMINAL_STATUSES
        assert RequestStatus.EXPIRED in TERMINAL_STATUSES

        assert RequestStatus.PENDING not in TERMINAL_STATUSES
        assert RequestStatus.READY not in TERMINAL_STATUSES

    def test_expirable_statuses(self):
        """Only pending and ready requests can expire."""
        assert EXPIRABLE_STATUSES == {RequestStatus.PENDING, RequestStatus.READY}

    def test_approved_statuses(self):
        """Test statuses that mean the quorum was reached."""
        assert RequestStatus.READY in APPROVED_STATUSES
        assert RequestStatus.COMPLETED in APPROVED_STATUSES
        assert RequestStatus.EXECUTED in APPROVED_STATUSES
        assert RequestStatus.REJECTED not in APPROVED_STATUSES

    def test_terminal_statuses_have_no_outgoing_transitions(self):
        """Terminal statuses never appear as a transition source."""
        for status in TERMINAL_STATUSES:
            assert status not in VALID_TRANSITIONS


class TestRequestTransitions:
    """Test the transition table."""

    def test_pending_transitions(self):
        """Test valid transitions from PENDING."""
        assert can_transition(RequestStatus.PENDING, RequestAction.COMPLETE)
        assert can_transition(RequestStatus.PENDING, RequestAction.MARK_READY)
        assert can_transition(RequestStatus.PENDING, RequestAction.REJECT)
        assert can_transition(RequestStatus.PENDING, RequestAction.EXPIRE)
        assert not can_transition(RequestStatus.PENDING, RequestAction.EXECUTE)

    def test_ready_transitions(self):
        """Test valid transitions from READY."""
        assert can_transition(RequestStatus.READY, RequestAction.EXECUTE)
        assert can_transition(RequestStatus.READY, RequestAction.EXPIRE)
        assert not can_transition(RequestStatus.READY, RequestAction.REJECT)
        assert not can_transition(RequestStatus.READY, RequestAction.COMPLETE)

    def test_get_target_status(self):
        """Test getting the target status of an action."""
        assert get_target_status(RequestStatus.PENDING, RequestAction.COMPLETE) == RequestStatus.COMPLETED
        assert get_target_status(RequestStatus.PENDING, RequestAction.MARK_READY) == RequestStatus.READY
        assert get_target_status(RequestStatus.READY, RequestAction.EXECUTE) == RequestStatus.EXECUTED
        assert get_target_status(RequestStatus.COMPLETED, RequestAction.EXPIRE) is None

    def test_transition_rule_modes(self):
        """Test which rules are bound to a policy mode."""
        assert get_transition_rule(RequestStatus.PENDING, RequestAction.COMPLETE).requires_auto_apply is True
        assert get_transition_rule(RequestStatus.PENDING, RequestAction.MARK_READY).requires_auto_apply is False
        assert get_transition_rule(RequestStatus.PENDING, RequestAction.REJECT).requires_auto_apply is False
        assert get_transition_rule(RequestStatus.PENDING, RequestAction.EXPIRE).requires_auto_apply is None

    def test_quorum_action(self):
        """The quorum action follows the policy mode."""
        assert quorum_action(True) == RequestAction.COMPLETE
        assert quorum_action(False) == RequestAction.MARK_READY


class TestRequestStateMachine:
    """Test RequestStateMachine class."""

    def test_initial_status(self):
        """Test initial status is correct."""
        machine = RequestStateMachine(uuid4(), RequestStatus.PENDING)
        assert machine.status == RequestStatus.PENDING
        assert not machine.is_terminal

    def test_accepts_status_strings(self):
        """Stored status values are accepted as-is."""
        machine = RequestStateMachine(uuid4(), "ready", auto_apply_on_quorum=False)
        assert machine.status == RequestStatus.READY

    def test_available_actions_auto_apply(self):
        """An auto-apply request completes on quorum and cannot be rejected."""
        machine = RequestStateMachine(uuid4(), RequestStatus.PENDING, auto_apply_on_quorum=True)
        available = machine.get_available_actions()
        assert RequestAction.COMPLETE in available
        assert RequestAction.EXPIRE in available
        assert RequestAction.MARK_READY not in available
        assert RequestAction.REJECT not in available

    def test_available_actions_execute_step(self):
        """An execute-step request goes to ready and can be rejected."""
        machine = RequestStateMachine(uuid4(), RequestStatus.PENDING, auto_apply_on_quorum=False)
        available = machine.get_available_actions()
        assert RequestAction.MARK_READY in available
        assert RequestAction.REJECT in available
        assert RequestAction.COMPLETE not in available

    def test_simple_transition(self):
        """Test performing a simple transition."""
        machine = RequestStateMachine(uuid4(), RequestStatus.PENDING)

        new_status = machine.transition(RequestAction.COMPLETE, actor_id="alice")
        assert new_status == RequestStatus.COMPLETED
        assert machine.status == RequestStatus.COMPLETED
        assert machine.is_terminal

    def test_invalid_transition_raises(self):
        """Test that an invalid transition raises."""
        machine = RequestStateMachine(uuid4(), RequestStatus.PENDING)

        with pytest.raises(TransitionError) as exc_info:
            machine.transition(RequestAction.EXECUTE)
        assert exc_info.value.from_status == RequestStatus.PENDING
        assert exc_info.value.code == "invalid_transition"

    def test_mode_mismatch_raises(self):
        """Rejecting an auto-apply request is not a valid transition."""
        machine = RequestStateMachine(uuid4(), RequestStatus.PENDING, auto_apply_on_quorum=True)

        with pytest.raises(TransitionError, match="auto-apply"):
            machine.transition(RequestAction.REJECT)
        assert machine.status == RequestStatus.PENDING

    def test_no_transition_out_of_terminal(self):
        """Nothing leaves a terminal status."""
        machine = RequestStateMachine(uuid4(), RequestStatus.EXPIRED)
        assert machine.get_available_actions() == []
        with pytest.raises(TransitionError):
            machine.transition(RequestAction.EXPIRE)

    def test_transition_history(self):
        """Test that transition history is recorded."""
        machine = RequestStateMachine(uuid4(), RequestStatus.PENDING, auto_apply_on_quorum=False)

        machine.transition(RequestAction.MARK_READY, actor_id="s1")
        machine.transition(RequestAction.EXECUTE, actor_id="custody", comment="submitted")

        history = machine.get_history()
        assert len(history) == 2
        assert history[0]["from_status"] == "pending"
        assert history[0]["to_status"] == "ready"
        assert history[1]["actor_id"] == "custody"
        assert history[1]["comment"] == "submitted"

    def test_callbacks_run_after_transition(self):
        """Registered callbacks receive the transition record."""
        seen = []
        machine = RequestStateMachine(uuid4(), RequestStatus.PENDING)
        machine.register_callback(RequestAction.COMPLETE, seen.append)

        machine.transition(RequestAction.COMPLETE)

        assert len(seen) == 1
        assert seen[0]["to_status"] == "completed"

    def test_failing_callback_keeps_transition(self):
        """A failing callback is logged; the transition stands."""
        def boom(record):
            raise RuntimeError("hook failed")

        machine = RequestStateMachine(uuid4(), RequestStatus.PENDING)
        machine.register_callback(RequestAction.EXPIRE, boom)

        assert machine.transition(RequestAction.EXPIRE) == RequestStatus.EXPIRED
        assert machine.status == RequestStatus.EXPIRED
