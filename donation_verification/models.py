"""
Donation Verification - ORM Models.

============================================================
PURPOSE
============================================================
SQLAlchemy ORM models for the relational donation store.

TABLES:
- users: Donors and other accounts
- charities: Charities receiving donations
- donations: Donation records
- blockchain_verifications: At most one per donation
- charity_fund_flows: Received / disbursed bookkeeping

DateTime columns hold NAIVE UTC values. Readers must pass
them through the timestamp normalizer.

============================================================
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String,
    Integer,
    Numeric,
    DateTime,
    Boolean,
    Text,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow_naive() -> datetime:
    """Current UTC time without tzinfo, as stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================
# BASE
# ============================================================

class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


# ============================================================
# USER / CHARITY MODELS
# ============================================================

class UserModel(Base):
    """Platform account."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    role: Mapped[str] = mapped_column(String(32), default="donor")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)

    donations: Mapped[List["DonationModel"]] = relationship(back_populates="donor")


class CharityModel(Base):
    """Charity receiving donations."""

    __tablename__ = "charities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)

    donations: Mapped[List["DonationModel"]] = relationship(back_populates="charity")
    fund_flow: Mapped[Optional["CharityFundFlowModel"]] = relationship(
        back_populates="charity",
        cascade="all, delete-orphan",
        uselist=False,
    )


# ============================================================
# DONATION MODEL
# ============================================================

class DonationModel(Base):
    """
    Persisted donation.

    Donor and charity links are nulled when those rows are
    deleted; the donation itself is kept for the audit trail.
    """

    __tablename__ = "donations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    currency: Mapped[str] = mapped_column(String(8), default="RON")
    payment_status: Mapped[str] = mapped_column(String(16), default="PENDING", index=True)

    donor_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    charity_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("charities.id", ondelete="SET NULL"), index=True
    )
    project_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)

    anonymous: Mapped[bool] = mapped_column(Boolean, default=False)
    message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, index=True)

    donor: Mapped[Optional[UserModel]] = relationship(back_populates="donations")
    charity: Mapped[Optional[CharityModel]] = relationship(back_populates="donations")
    verification: Mapped[Optional["BlockchainVerificationModel"]] = relationship(
        back_populates="donation",
        cascade="all, delete-orphan",
        uselist=False,
    )


# ============================================================
# VERIFICATION MODEL
# ============================================================

class BlockchainVerificationModel(Base):
    """On-chain verification record (1:1 with donations)."""

    __tablename__ = "blockchain_verifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    donation_id: Mapped[str] = mapped_column(
        ForeignKey("donations.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    verified: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    transaction_hash: Mapped[Optional[str]] = mapped_column(String(128), index=True)
    block_number: Mapped[int] = mapped_column(Integer, default=0)
    network: Mapped[str] = mapped_column(String(32), default="sepolia")

    timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive
    )

    donation: Mapped[DonationModel] = relationship(back_populates="verification")

    __table_args__ = (
        Index("ix_verifications_verified_created", "verified", "created_at"),
    )


# ============================================================
# FUND FLOW MODEL
# ============================================================

class CharityFundFlowModel(Base):
    """Charity fund flow bookkeeping."""

    __tablename__ = "charity_fund_flows"

    charity_id: Mapped[str] = mapped_column(
        ForeignKey("charities.id", ondelete="CASCADE"), primary_key=True
    )
    total_received: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    total_disbursed: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow_naive, onupdate=utcnow_naive
    )

    charity: Mapped[CharityModel] = relationship(back_populates="fund_flow")
