"""
Verification State Machine Tests.

============================================================
PURPOSE
============================================================
Tests for verification state classification and transitions.

TEST CATEGORIES:
- Classification: record -> state
- Stall detection
- Guard: allowed and denied transitions
- State machine: apply, history, listeners

============================================================
"""

from datetime import datetime, timedelta, timezone

import pytest

from donation_verification.state_machine import (
    VALID_TRANSITIONS,
    TransitionGuard,
    VerificationStateMachine,
    classify,
    is_stalled,
)
from donation_verification.types import (
    InvalidStateError,
    VerificationRecord,
    VerificationState,
)


NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def pending(donation_id="1", submitted_at=None):
    return VerificationRecord(
        donation_id=donation_id,
        verified=False,
        transaction_hash="pending_abc",
        submitted_at=submitted_at,
    )


def verified(donation_id="1"):
    return VerificationRecord(
        donation_id=donation_id,
        verified=True,
        transaction_hash="0xdead",
        block_number=5,
        timestamp=NOW,
    )


def failed(donation_id="1"):
    return VerificationRecord(donation_id=donation_id, verified=False, transaction_hash="0xdead")


# ============================================================
# CLASSIFICATION
# ============================================================

class TestClassify:
    """Tests for classify()."""

    def test_no_record_is_unsubmitted(self):
        """Test missing record."""
        assert classify(None) == VerificationState.UNSUBMITTED

    def test_pending_placeholder(self):
        """Test unverified record with pending_ hash."""
        assert classify(pending()) == VerificationState.PENDING

    def test_verified_with_real_hash(self):
        """Test verified record with a chain hash."""
        assert classify(verified()) == VerificationState.VERIFIED

    def test_unverified_real_hash_is_failed(self):
        """Test unverified record with a chain hash."""
        assert classify(failed()) == VerificationState.FAILED

    @pytest.mark.parametrize("record", [
        VerificationRecord(donation_id="1", verified=True, transaction_hash=None),
        VerificationRecord(donation_id="1", verified=True, transaction_hash=""),
        VerificationRecord(donation_id="1", verified=True, transaction_hash="pending_abc"),
        VerificationRecord(donation_id="1", verified=False, transaction_hash=None),
        VerificationRecord(donation_id="1", verified=False, transaction_hash="failed_abc"),
    ])
    def test_inconsistent_records_are_failed(self, record):
        """Anything neither pending nor verified is failed."""
        assert classify(record) == VerificationState.FAILED

    def test_labels(self):
        """Test display labels."""
        assert VerificationState.UNSUBMITTED.label == "Not Verified"
        assert VerificationState.PENDING.label == "Pending"
        assert VerificationState.VERIFIED.label == "Verified"
        assert VerificationState.FAILED.label == "Failed"


# ============================================================
# STALL DETECTION
# ============================================================

class TestIsStalled:
    """Tests for is_stalled()."""

    def test_recent_pending_is_not_stalled(self):
        """Test pending record within threshold."""
        record = pending(submitted_at=NOW - timedelta(minutes=5))

        assert not is_stalled(record, now=NOW, stall_after=900)

    def test_old_pending_is_stalled(self):
        """Test pending record past threshold."""
        record = pending(submitted_at=NOW - timedelta(minutes=20))

        assert is_stalled(record, now=NOW, stall_after=timedelta(minutes=15))

    def test_pending_without_submission_time(self):
        """A pending record of unknown age is never stalled."""
        assert not is_stalled(pending(), now=NOW)

    def test_naive_submission_time_is_utc(self):
        """Test naive submitted_at values."""
        record = pending(submitted_at=(NOW - timedelta(hours=1)).replace(tzinfo=None))

        assert is_stalled(record, now=NOW, stall_after=900)

    def test_non_pending_records(self):
        """Only pending records can stall."""
        assert not is_stalled(None, now=NOW)
        assert not is_stalled(verified(), now=NOW)
        assert not is_stalled(failed(), now=NOW)


# ============================================================
# GUARD
# ============================================================

class TestTransitionGuard:
    """Tests for TransitionGuard."""

    def test_same_state_allowed(self):
        """Test idempotent transitions."""
        for state in VerificationState:
            allowed, _ = TransitionGuard.can_transition(state, state)
            assert allowed

    def test_verified_is_final(self):
        """Test nothing leaves VERIFIED."""
        assert VALID_TRANSITIONS[VerificationState.VERIFIED] == set()
        for state in (VerificationState.PENDING, VerificationState.FAILED):
            allowed, reason = TransitionGuard.can_transition(VerificationState.VERIFIED, state)
            assert not allowed
            assert "terminal" in reason

    def test_failed_can_be_retried(self):
        """Test explicit retry out of FAILED."""
        allowed, _ = TransitionGuard.can_transition(
            VerificationState.FAILED, VerificationState.PENDING
        )
        assert allowed

    def test_pending_cannot_return_to_unsubmitted(self):
        """Test backwards transition."""
        allowed, _ = TransitionGuard.can_transition(
            VerificationState.PENDING, VerificationState.UNSUBMITTED
        )
        assert not allowed

    def test_record_for_other_donation(self):
        """Test record ownership check."""
        valid, reason = TransitionGuard.validate_record("1", verified("2"))

        assert not valid
        assert "donation 2" in reason

    def test_negative_block_number(self):
        """Test block number check."""
        record = VerificationRecord(donation_id="1", verified=True, transaction_hash="0x1", block_number=-1)

        valid, _ = TransitionGuard.validate_record("1", record)

        assert not valid


# ============================================================
# STATE MACHINE
# ============================================================

class TestVerificationStateMachine:
    """Tests for VerificationStateMachine."""

    def test_initial_state(self):
        """Test state derived from initial record."""
        assert VerificationStateMachine("1").current_state == VerificationState.UNSUBMITTED
        assert VerificationStateMachine("1", pending()).current_state == VerificationState.PENDING

    def test_apply_records_history(self):
        """Test applying a record."""
        machine = VerificationStateMachine("1", pending())

        event = machine.apply(verified(), reason="Confirmed")

        assert event.from_state == VerificationState.PENDING
        assert event.to_state == VerificationState.VERIFIED
        assert machine.record == verified()
        assert machine.is_terminal()
        assert not machine.allows_submission()
        assert len(machine.history) == 1

    def test_invalid_transition_raises(self):
        """Test applying over a verified record."""
        machine = VerificationStateMachine("1", verified())

        with pytest.raises(InvalidStateError) as exc_info:
            machine.apply(pending())

        assert exc_info.value.code == "VAL_INVALID_TRANSITION"
        assert machine.current_state == VerificationState.VERIFIED
        assert machine.history == []

    def test_operator_override_bypasses_table(self):
        """Test operator override of a verified record."""
        machine = VerificationStateMachine("1", verified())

        event = machine.apply(failed(), reason="Chain reorg", operator_override=True)

        assert event.operator_override
        assert machine.current_state == VerificationState.FAILED

    def test_operator_override_still_checks_ownership(self):
        """Test override cannot write another donation's record."""
        machine = VerificationStateMachine("1", verified())

        with pytest.raises(InvalidStateError):
            machine.apply(failed("2"), operator_override=True)

    def test_listeners_notified(self):
        """Test listener notification."""
        events = []
        machine = VerificationStateMachine("1")
        machine.add_listener(events.append)

        machine.apply(pending())

        assert len(events) == 1
        assert events[0].to_dict()["to_state"] == "PENDING"

    def test_listener_error_not_propagated(self):
        """Test failing listener does not break apply."""
        def broken(event):
            raise RuntimeError("listener down")

        machine = VerificationStateMachine("1")
        machine.add_listener(broken)

        machine.apply(pending())

        assert machine.current_state == VerificationState.PENDING

    def test_is_stalled(self):
        """Test stall check on the managed record."""
        machine = VerificationStateMachine("1", pending(submitted_at=NOW - timedelta(hours=1)))

        assert machine.is_stalled(now=NOW)
