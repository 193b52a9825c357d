"""
Donation Verification - Verification State Machine.

============================================================
PURPOSE
============================================================
Derives a donation's verification state from its record and
guards every change the orchestrator makes to that record.

STATE MACHINE:

    UNSUBMITTED ──────────────┐
         │                    │
         ▼                    ▼
      PENDING ──────────► FAILED
         │                    │
         ▼                    │ (explicit retry)
      VERIFIED ◄──────────────┘

CLASSIFICATION (pure):
- No record                              -> UNSUBMITTED
- verified=False, hash "pending_..."     -> PENDING
- verified=True, real hash               -> VERIFIED
- Anything else                          -> FAILED

INVARIANTS:
- State is derived, never stored
- VERIFIED is final
- Each transition has a guard
- All transitions are logged

============================================================
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Set, Dict, Callable, List, Any, Tuple, Union
from dataclasses import dataclass, field

from .types import (
    VerificationState,
    VerificationRecord,
    InvalidStateError,
    PENDING_HASH_PREFIX,
)


logger = logging.getLogger(__name__)


# ============================================================
# CLASSIFICATION
# ============================================================

def classify(record: Optional[VerificationRecord]) -> VerificationState:
    """
    Derive the verification state of a record.

    Args:
        record: Verification record, or None when none exists

    Returns:
        VerificationState
    """
    if record is None:
        return VerificationState.UNSUBMITTED

    tx_hash = record.transaction_hash or ""
    is_pending_hash = tx_hash.startswith(PENDING_HASH_PREFIX)

    if record.verified is False and is_pending_hash:
        return VerificationState.PENDING

    if record.verified is True and tx_hash and not is_pending_hash:
        return VerificationState.VERIFIED

    return VerificationState.FAILED


def is_stalled(
    record: Optional[VerificationRecord],
    now: Optional[datetime] = None,
    stall_after: Union[timedelta, float] = 15 * 60,
) -> bool:
    """
    Check if a pending record has waited longer than the stall threshold.

    A pending record without a submission time is never stalled:
    its age is unknown and resubmitting could double-submit.

    Args:
        record: Verification record
        now: Reference instant (UTC now by default)
        stall_after: Threshold as timedelta or seconds

    Returns:
        True if the record is pending and stalled
    """
    if classify(record) != VerificationState.PENDING:
        return False
    if record.submitted_at is None:
        return False

    if not isinstance(stall_after, timedelta):
        stall_after = timedelta(seconds=stall_after)

    now = now or datetime.now(timezone.utc)
    submitted_at = record.submitted_at
    if submitted_at.tzinfo is None:
        submitted_at = submitted_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    return now - submitted_at >= stall_after


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[VerificationState, Set[VerificationState]] = {
    VerificationState.UNSUBMITTED: {
        VerificationState.PENDING,
        VerificationState.VERIFIED,
        VerificationState.FAILED,
    },
    VerificationState.PENDING: {
        VerificationState.VERIFIED,
        VerificationState.FAILED,
    },
    # Explicit user/operator retry only
    VerificationState.FAILED: {
        VerificationState.PENDING,
        VerificationState.VERIFIED,
    },
    VerificationState.VERIFIED: set(),
}


# ============================================================
# STATE TRANSITION EVENT
# ============================================================

@dataclass
class VerificationTransitionEvent:
    """Event representing a verification state change."""

    donation_id: str
    """Donation ID."""

    from_state: VerificationState
    """Previous state."""

    to_state: VerificationState
    """New state."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    """When the transition was applied."""

    reason: str = ""
    """Reason for transition."""

    operator_override: bool = False
    """Whether the guard was bypassed by an operator."""

    details: Dict[str, Any] = field(default_factory=dict)
    """Additional details."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "donation_id": self.donation_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "operator_override": self.operator_override,
            "details": self.details,
        }


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for verification state transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(
        from_state: VerificationState,
        to_state: VerificationState,
    ) -> Tuple[bool, str]:
        """
        Check if transition is allowed.

        Args:
            from_state: Current state
            to_state: Target state

        Returns:
            Tuple of (allowed, reason)
        """
        # Same state is always valid (idempotent)
        if from_state == to_state:
            return True, "Same state"

        if to_state in VALID_TRANSITIONS.get(from_state, set()):
            return True, "Valid transition"

        if from_state.is_terminal():
            return False, f"Cannot transition from terminal state {from_state.value}"

        return False, f"Invalid transition: {from_state.value} -> {to_state.value}"

    @staticmethod
    def validate_record(
        donation_id: str,
        record: VerificationRecord,
    ) -> Tuple[bool, str]:
        """
        Validate that a new record belongs to the managed donation.

        Returns:
            Tuple of (valid, reason)
        """
        if record.donation_id != donation_id:
            return False, (
                f"Record belongs to donation {record.donation_id}, not {donation_id}"
            )
        if record.block_number is not None and record.block_number < 0:
            return False, "block_number must not be negative"
        return True, "Record valid"


# ============================================================
# VERIFICATION STATE MACHINE
# ============================================================

class VerificationStateMachine:
    """
    State machine for one donation's verification record.

    Manages record changes with:
    - Guard checks
    - Event emission
    - History tracking
    """

    def __init__(
        self,
        donation_id: str,
        record: Optional[VerificationRecord] = None,
    ):
        """
        Initialize state machine.

        Args:
            donation_id: Donation whose record is managed
            record: Current record, None when unsubmitted
        """
        self._donation_id = donation_id
        self._record = record
        self._history: List[VerificationTransitionEvent] = []
        self._listeners: List[Callable[[VerificationTransitionEvent], None]] = []

    @property
    def donation_id(self) -> str:
        return self._donation_id

    @property
    def current_state(self) -> VerificationState:
        """Get current (derived) state."""
        return classify(self._record)

    @property
    def record(self) -> Optional[VerificationRecord]:
        """Get the managed record."""
        return self._record

    @property
    def history(self) -> List[VerificationTransitionEvent]:
        """Get transition history."""
        return list(self._history)

    def add_listener(
        self,
        listener: Callable[[VerificationTransitionEvent], None],
    ) -> None:
        """Add a transition listener."""
        self._listeners.append(listener)

    def can_apply(self, record: VerificationRecord) -> Tuple[bool, str]:
        """
        Check if a new record may replace the current one.

        Returns:
            Tuple of (allowed, reason)
        """
        valid, reason = TransitionGuard.validate_record(self._donation_id, record)
        if not valid:
            return False, reason
        return TransitionGuard.can_transition(self.current_state, classify(record))

    def apply(
        self,
        record: VerificationRecord,
        reason: str = "",
        operator_override: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ) -> VerificationTransitionEvent:
        """
        Replace the current record with a new one.

        Args:
            record: New verification record
            reason: Reason for transition
            operator_override: Skip the transition table (record
                ownership is still checked)
            details: Additional details

        Returns:
            VerificationTransitionEvent

        Raises:
            InvalidStateError: If the transition is not allowed
        """
        if operator_override:
            allowed, guard_reason = TransitionGuard.validate_record(
                self._donation_id, record
            )
        else:
            allowed, guard_reason = self.can_apply(record)

        from_state = self.current_state
        to_state = classify(record)

        if not allowed:
            raise InvalidStateError(
                f"Cannot transition donation {self._donation_id} from "
                f"{from_state.value} to {to_state.value}: {guard_reason}",
                code="VAL_INVALID_TRANSITION",
                details={"from_state": from_state.value, "to_state": to_state.value},
            )

        event = VerificationTransitionEvent(
            donation_id=self._donation_id,
            from_state=from_state,
            to_state=to_state,
            reason=reason if from_state != to_state else (reason or "No change"),
            operator_override=operator_override,
            details=details or {},
        )

        self._record = record
        self._history.append(event)

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Verification listener error: {e}")

        logger.info(
            f"Donation {self._donation_id}: "
            f"{from_state.value} -> {to_state.value} "
            f"({event.reason})"
        )

        return event

    # --------------------------------------------------------
    # STATE QUERIES
    # --------------------------------------------------------

    def is_terminal(self) -> bool:
        """Check if the record is in a terminal state."""
        return self.current_state.is_terminal()

    def allows_submission(self) -> bool:
        """Check if an explicit verify request may submit."""
        return self.current_state.allows_submission()

    def is_stalled(
        self,
        now: Optional[datetime] = None,
        stall_after: Union[timedelta, float] = 15 * 60,
    ) -> bool:
        """Check if the managed record is a stalled pending attempt."""
        return is_stalled(self._record, now=now, stall_after=stall_after)
