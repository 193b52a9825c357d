"""
Donation Verification - Types.

============================================================
PURPOSE
============================================================
All type definitions for the donation verification layer.

CRITICAL PRINCIPLE:
    "Verification state is DERIVED, never stored."
    "Only the orchestrator changes the underlying records."

============================================================
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal


# ============================================================
# HASH PREFIXES
# ============================================================

PENDING_HASH_PREFIX = "pending_"
"""Placeholder prefix for a submitted-but-unconfirmed transaction."""

FAILED_HASH_PREFIX = "failed_"
"""Placeholder prefix written when a submission attempt failed."""


# ============================================================
# PAYMENT STATUS
# ============================================================

class PaymentStatus(Enum):
    """Payment status of a donation, as reported by the store."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @classmethod
    def parse(cls, value: Any) -> "PaymentStatus":
        """Parse a raw status value, case-insensitively."""
        if isinstance(value, PaymentStatus):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown payment status: {value!r}")


# ============================================================
# VERIFICATION LIFECYCLE STATES
# ============================================================

class VerificationState(Enum):
    """
    Verification lifecycle state.

    State Machine:

    UNSUBMITTED
         │
         ▼
      PENDING ──────► FAILED
         │              │
         ▼              │ (explicit retry only)
      VERIFIED ◄────────┘

    VERIFIED is final. FAILED is final for automatic
    transitions; only a user/operator action resubmits.
    """

    UNSUBMITTED = "UNSUBMITTED"
    """No verification record exists."""

    PENDING = "PENDING"
    """Submitted, awaiting chain confirmation."""

    VERIFIED = "VERIFIED"
    """Confirmed on chain with a real transaction hash."""

    FAILED = "FAILED"
    """Any record that is neither pending nor verified."""

    def is_terminal(self) -> bool:
        """Check if no further transition is possible."""
        return self == VerificationState.VERIFIED

    def allows_submission(self) -> bool:
        """Check if an explicit verify request may submit from this state."""
        return self in {VerificationState.UNSUBMITTED, VerificationState.FAILED}

    @property
    def label(self) -> str:
        """Human-readable label for display."""
        return _STATE_LABELS[self]


_STATE_LABELS = {
    VerificationState.UNSUBMITTED: "Not Verified",
    VerificationState.PENDING: "Pending",
    VerificationState.VERIFIED: "Verified",
    VerificationState.FAILED: "Failed",
}


# ============================================================
# VERIFICATION RECORD
# ============================================================

@dataclass
class VerificationRecord:
    """
    On-chain verification record of one donation.

    At most one record exists per donation.
    """

    donation_id: str
    """Donation this record belongs to."""

    verified: bool = False
    """Whether the chain confirmed the transaction."""

    transaction_hash: Optional[str] = None
    """Chain transaction hash, or a pending_/failed_ placeholder."""

    block_number: int = 0
    """Block number (0 means not yet mined)."""

    timestamp: Optional[datetime] = None
    """Confirmation instant, meaningful only when verified."""

    submitted_at: Optional[datetime] = None
    """When the current attempt was submitted."""

    network: str = "sepolia"
    """Chain network identifier."""

    @property
    def is_pending_hash(self) -> bool:
        """Check if the hash is a pending placeholder."""
        return bool(self.transaction_hash) and self.transaction_hash.startswith(
            PENDING_HASH_PREFIX
        )

    @property
    def is_placeholder_hash(self) -> bool:
        """Check if the hash never existed on chain."""
        if not self.transaction_hash:
            return False
        return self.transaction_hash.startswith(
            (PENDING_HASH_PREFIX, FAILED_HASH_PREFIX)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "donation_id": self.donation_id,
            "verified": self.verified,
            "transaction_hash": self.transaction_hash,
            "block_number": self.block_number,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "network": self.network,
        }


# ============================================================
# DONATION
# ============================================================

@dataclass
class Donation:
    """A donation as read from the store."""

    donation_id: str
    amount: Optional[Decimal]
    payment_status: PaymentStatus = PaymentStatus.PENDING
    currency: str = "RON"
    donor_id: Optional[str] = None
    charity_id: Optional[str] = None
    project_id: Optional[str] = None
    anonymous: bool = False
    message: Optional[str] = None
    created_at: Optional[datetime] = None
    verification: Optional[VerificationRecord] = None

    @property
    def display_donor_id(self) -> Optional[str]:
        """Donor reference safe to show; hidden for anonymous donations."""
        return None if self.anonymous else self.donor_id

    def validate(self) -> None:
        """
        Validate stored donation invariants.

        Raises:
            InvalidStateError: If the amount is not positive
        """
        if self.amount is not None and self.amount <= 0:
            raise InvalidStateError(
                f"Donation {self.donation_id} has non-positive amount {self.amount}",
                code="VAL_INVALID_AMOUNT",
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for display (donor hidden if anonymous)."""
        return {
            "donation_id": self.donation_id,
            "amount": str(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "payment_status": self.payment_status.value,
            "donor_id": self.display_donor_id,
            "charity_id": self.charity_id,
            "project_id": self.project_id,
            "anonymous": self.anonymous,
            "message": self.message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "verification": self.verification.to_dict() if self.verification else None,
        }


# ============================================================
# FUND FLOW
# ============================================================

@dataclass
class FundFlow:
    """Charity fund flow bookkeeping; either side may be missing."""

    total_received: Optional[Decimal] = None
    total_disbursed: Optional[Decimal] = None


# ============================================================
# STATISTICS SNAPSHOTS
# ============================================================

@dataclass
class DonorStatsSnapshot:
    """Donor-level summary. Derived, never persisted."""

    total_count: int = 0
    total_amount: Decimal = Decimal("0")
    average_amount: Decimal = Decimal("0")
    distinct_charities: int = 0
    distinct_projects: int = 0
    verified_count: int = 0
    verified_amount: Decimal = Decimal("0")
    transparency_score: float = 0.0
    last_donation_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_count": self.total_count,
            "total_amount": float(self.total_amount),
            "average_amount": float(self.average_amount),
            "distinct_charities": self.distinct_charities,
            "distinct_projects": self.distinct_projects,
            "verified_count": self.verified_count,
            "verified_amount": float(self.verified_amount),
            "transparency_score": self.transparency_score,
            "last_donation_at": self.last_donation_at.isoformat() if self.last_donation_at else None,
        }


@dataclass
class CharityStatsSnapshot:
    """Charity-level summary. Derived, never persisted."""

    total_count: int = 0
    total_amount: Decimal = Decimal("0")
    average_amount: Decimal = Decimal("0")
    distinct_donors: int = 0
    verified_count: int = 0
    verified_amount: Decimal = Decimal("0")
    transparency_score: float = 0.0
    total_received: Decimal = Decimal("0")
    total_disbursed: Decimal = Decimal("0")
    funding_efficiency: float = 0.0
    """Disbursed / received * 100. Not clamped: may exceed 100."""
    last_donation_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_count": self.total_count,
            "total_amount": float(self.total_amount),
            "average_amount": float(self.average_amount),
            "distinct_donors": self.distinct_donors,
            "verified_count": self.verified_count,
            "verified_amount": float(self.verified_amount),
            "transparency_score": self.transparency_score,
            "total_received": float(self.total_received),
            "total_disbursed": float(self.total_disbursed),
            "funding_efficiency": self.funding_efficiency,
            "last_donation_at": self.last_donation_at.isoformat() if self.last_donation_at else None,
        }


@dataclass
class PlatformStatsSnapshot:
    """Platform-wide verification summary (admin view)."""

    total_count: int = 0
    total_amount: Decimal = Decimal("0")
    verified_count: int = 0
    verified_amount: Decimal = Decimal("0")
    pending_count: int = 0
    failed_count: int = 0
    unsubmitted_count: int = 0
    transparency_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_count": self.total_count,
            "total_amount": float(self.total_amount),
            "verified_count": self.verified_count,
            "verified_amount": float(self.verified_amount),
            "pending_count": self.pending_count,
            "failed_count": self.failed_count,
            "unsubmitted_count": self.unsubmitted_count,
            "transparency_score": self.transparency_score,
        }


# ============================================================
# BULK RESULTS
# ============================================================

@dataclass
class BulkItemResult:
    """Outcome of one item in a bulk operation."""

    item_id: str
    success: bool
    record: Optional[VerificationRecord] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data: Dict[str, Any] = {"id": self.item_id, "success": self.success}
        if self.record is not None:
            data["record"] = self.record.to_dict()
        if not self.success:
            data["error"] = self.error
            data["error_code"] = self.error_code
        return data


@dataclass
class BulkResult:
    """
    Result of a partial-failure batch.

    Not a transaction: successful items stay applied
    regardless of failures elsewhere in the batch.
    """

    successful: int = 0
    failed: int = 0
    total: int = 0
    per_item: List[BulkItemResult] = field(default_factory=list)

    @classmethod
    def from_items(cls, items: List[BulkItemResult]) -> "BulkResult":
        """Build counts from per-item outcomes."""
        successful = sum(1 for item in items if item.success)
        return cls(
            successful=successful,
            failed=len(items) - successful,
            total=len(items),
            per_item=list(items),
        )

    @property
    def successful_items(self) -> List[BulkItemResult]:
        return [item for item in self.per_item if item.success]

    @property
    def failed_items(self) -> List[BulkItemResult]:
        return [item for item in self.per_item if not item.success]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "successful": self.successful,
            "failed": self.failed,
            "total": self.total,
            "per_item": [item.to_dict() for item in self.per_item],
        }


# ============================================================
# EXCEPTIONS
# ============================================================

class VerificationEngineError(Exception):
    """Base exception for the verification layer."""

    default_code = "INT_UNEXPECTED_ERROR"
    default_retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        is_retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.is_retryable = self.default_retryable if is_retryable is None else is_retryable
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "is_retryable": self.is_retryable,
            "details": self.details,
        }


class InvalidStateError(VerificationEngineError):
    """Precondition violation, correctable by the user."""

    default_code = "VAL_INVALID_STATE"


class NetworkError(VerificationEngineError):
    """Transport-level failure."""

    default_code = "NET_CONNECTION_FAILED"
    default_retryable = True


class RemoteError(VerificationEngineError):
    """Domain failure reported by an external service. Never auto-retried."""

    default_code = "REM_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        http_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, is_retryable=False, details=details)
        self.http_status = http_status


class NotFoundError(RemoteError):
    """The store reported that an entity does not exist."""

    default_code = "REM_NOT_FOUND"
