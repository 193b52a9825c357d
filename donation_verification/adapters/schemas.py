"""
Pydantic Schemas for the Donation API wire format.

camelCase on the wire, snake_case in Python. Every timestamp
passes through the timestamp normalizer on the way in.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..queries import VerificationPage, VerificationQuery
from ..stats import percentage
from ..timestamps import TimestampNormalizer
from ..types import (
    Donation,
    FundFlow,
    PaymentStatus,
    PlatformStatsSnapshot,
    VerificationRecord,
)


_normalizer = TimestampNormalizer()


def unwrap_envelope(payload: Any) -> Any:
    """Strip the {"data": ...} response envelope when present."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _id_to_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================
# VERIFICATION RECORD
# =============================================================

class VerificationRecordSchema(WireModel):
    """Verification record as sent by the API."""

    donation_id: Optional[str] = Field(default=None, alias="donationId")
    verified: bool = False
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    block_number: int = Field(default=0, alias="blockNumber")
    timestamp: Any = None
    submitted_at: Any = Field(
        default=None,
        validation_alias=AliasChoices("submittedAt", "createdAt", "submitted_at"),
    )
    network: Optional[str] = None

    @field_validator("donation_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        return _id_to_str(value)

    @field_validator("block_number", mode="before")
    @classmethod
    def _null_block(cls, value):
        return 0 if value is None or value == "" else value

    @field_validator("verified", mode="before")
    @classmethod
    def _null_verified(cls, value):
        return False if value is None else value

    def to_record(self, donation_id: Optional[str] = None) -> VerificationRecord:
        record_id = self.donation_id or donation_id
        if record_id is None:
            raise ValueError("Verification record has no donation id")
        return VerificationRecord(
            donation_id=record_id,
            verified=self.verified,
            transaction_hash=self.transaction_hash or None,
            block_number=self.block_number,
            timestamp=_normalizer.instant_or_none(self.timestamp),
            submitted_at=_normalizer.instant_or_none(self.submitted_at),
            network=self.network or "sepolia",
        )


def record_to_payload(record: VerificationRecord) -> Dict[str, Any]:
    """Wire body for PUT /admin/verifications/{id}."""
    return {
        "donationId": record.donation_id,
        "verified": record.verified,
        "transactionHash": record.transaction_hash,
        "blockNumber": record.block_number,
        "timestamp": record.timestamp.isoformat() if record.timestamp else None,
        "submittedAt": record.submitted_at.isoformat() if record.submitted_at else None,
        "network": record.network,
    }


# =============================================================
# DONATION
# =============================================================

class DonationSchema(WireModel):
    """Donation as sent by the API."""

    id: str
    amount: Optional[Decimal] = None
    currency: str = "RON"
    payment_status: str = Field(default="PENDING", alias="paymentStatus")
    donor_id: Optional[str] = Field(default=None, alias="donorId")
    charity_id: Optional[str] = Field(default=None, alias="charityId")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    anonymous: bool = Field(
        default=False,
        validation_alias=AliasChoices("anonymous", "isAnonymous"),
    )
    message: Optional[str] = None
    created_at: Any = Field(default=None, alias="createdAt")
    verification: Optional[VerificationRecordSchema] = Field(
        default=None,
        validation_alias=AliasChoices(
            "blockchainVerification", "BlockchainVerification", "verification"
        ),
    )

    @field_validator("id", "donor_id", "charity_id", "project_id", mode="before")
    @classmethod
    def _coerce_ids(cls, value):
        return _id_to_str(value)

    @field_validator("anonymous", mode="before")
    @classmethod
    def _null_anonymous(cls, value):
        return False if value is None else value

    def to_donation(self) -> Donation:
        """
        Raises:
            ValueError: On an unknown payment status
        """
        return Donation(
            donation_id=self.id,
            amount=self.amount,
            currency=self.currency or "RON",
            payment_status=PaymentStatus.parse(self.payment_status),
            donor_id=self.donor_id,
            charity_id=self.charity_id,
            project_id=self.project_id,
            anonymous=self.anonymous,
            message=self.message,
            created_at=_normalizer.instant_or_none(self.created_at),
            verification=(
                self.verification.to_record(donation_id=self.id)
                if self.verification is not None else None
            ),
        )


# =============================================================
# STATISTICS PAYLOADS
# =============================================================

class FundFlowSchema(WireModel):
    total_received: Optional[Decimal] = Field(default=None, alias="totalReceived")
    total_disbursed: Optional[Decimal] = Field(default=None, alias="totalDisbursed")

    def to_flow(self) -> FundFlow:
        return FundFlow(
            total_received=self.total_received,
            total_disbursed=self.total_disbursed,
        )


class DonorStatsPayload(WireModel):
    """GET /donations/stats/{donorId}"""

    donations: List[DonationSchema] = Field(default_factory=list)

    @classmethod
    def parse(cls, payload: Any) -> "DonorStatsPayload":
        body = unwrap_envelope(payload)
        if isinstance(body, list):
            body = {"donations": body}
        return cls.model_validate(body or {})


class CharityStatsPayload(WireModel):
    """GET /donations/charity/{charityId}/stats"""

    donations: List[DonationSchema] = Field(default_factory=list)
    flow: Optional[FundFlowSchema] = None

    @classmethod
    def parse(cls, payload: Any) -> "CharityStatsPayload":
        return cls.model_validate(unwrap_envelope(payload) or {})


class PlatformStatsSchema(WireModel):
    """GET /donations/blockchain/stats"""

    total_count: int = Field(default=0, validation_alias=AliasChoices("totalCount", "total"))
    total_amount: Decimal = Field(default=Decimal("0"), alias="totalAmount")
    verified_count: int = Field(
        default=0, validation_alias=AliasChoices("verifiedCount", "verified")
    )
    verified_amount: Decimal = Field(default=Decimal("0"), alias="verifiedAmount")
    pending_count: int = Field(default=0, validation_alias=AliasChoices("pendingCount", "pending"))
    failed_count: int = Field(default=0, validation_alias=AliasChoices("failedCount", "failed"))
    unsubmitted_count: int = Field(
        default=0, validation_alias=AliasChoices("unsubmittedCount", "unsubmitted")
    )

    @field_validator(
        "total_count", "verified_count", "pending_count", "failed_count",
        "unsubmitted_count", "total_amount", "verified_amount",
        mode="before",
    )
    @classmethod
    def _null_is_zero(cls, value):
        return 0 if value is None else value

    def to_snapshot(self) -> PlatformStatsSnapshot:
        return PlatformStatsSnapshot(
            total_count=self.total_count,
            total_amount=self.total_amount,
            verified_count=self.verified_count,
            verified_amount=self.verified_amount,
            pending_count=self.pending_count,
            failed_count=self.failed_count,
            unsubmitted_count=self.unsubmitted_count,
            transparency_score=percentage(self.verified_count, self.total_count),
        )


# =============================================================
# ADMIN LISTING
# =============================================================

class PaginationSchema(WireModel):
    page: int = 1
    limit: int = 10
    total: int = 0


class VerificationListPayload(WireModel):
    """GET /admin/verifications"""

    verifications: List[VerificationRecordSchema] = Field(default_factory=list)
    pagination: Optional[PaginationSchema] = None

    @classmethod
    def parse(cls, payload: Any) -> "VerificationListPayload":
        body = unwrap_envelope(payload)
        if isinstance(body, list):
            body = {"verifications": body}
        return cls.model_validate(body or {})

    def to_page(self, query: VerificationQuery) -> VerificationPage:
        pagination = self.pagination or PaginationSchema(
            page=query.page, limit=query.limit, total=len(self.verifications)
        )
        return VerificationPage(
            items=[item.to_record() for item in self.verifications],
            page=pagination.page,
            limit=pagination.limit,
            total=pagination.total,
        )
