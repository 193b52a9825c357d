"""
SQL Repository Tests.

============================================================
PURPOSE
============================================================
Tests for SqlDonationStore against in-memory SQLite.

TEST CATEGORIES:
- Donation loading with verification records
- Verification save / update / delete
- Admin listing
- Bulk deletes keep donations for the audit trail

============================================================
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from donation_verification.adapters.base import BulkEntity
from donation_verification.queries import VerificationQuery
from donation_verification.repository import (
    SqlDonationStore,
    create_session_factory,
    init_schema,
    to_async_url,
)
from donation_verification.types import (
    Donation,
    FundFlow,
    InvalidStateError,
    NotFoundError,
    PaymentStatus,
    VerificationRecord,
)


SUBMITTED = datetime(2024, 2, 1, 9, 30, tzinfo=timezone.utc)


def donation(donation_id, donor_id="u1", charity_id="c1", amount="50.00", verification=None):
    return Donation(
        donation_id=donation_id,
        amount=Decimal(amount),
        payment_status=PaymentStatus.SUCCEEDED,
        donor_id=donor_id,
        charity_id=charity_id,
        verification=verification,
    )


async def seeded_store():
    factory = create_session_factory("sqlite://")
    await init_schema(factory)
    store = SqlDonationStore(factory)

    await store.add_user("u1", name="Ana")
    await store.add_user("u2", name="Radu")
    await store.add_charity("c1", name="Food Bank")
    await store.add_donation(donation("d1", verification=VerificationRecord(
        donation_id="d1",
        verified=True,
        transaction_hash="0xaaa",
        block_number=12,
        submitted_at=SUBMITTED,
    )))
    await store.add_donation(donation("d2", verification=VerificationRecord(
        donation_id="d2",
        transaction_hash="pending_bbb",
        submitted_at=SUBMITTED,
    )))
    await store.add_donation(donation("d3", donor_id="u2"))
    return store


# ============================================================
# DONATIONS
# ============================================================

class TestDonations:
    """Tests for donation loading."""

    @pytest.mark.asyncio
    async def test_get_donation_with_record(self):
        """Test the 1:1 verification record is loaded."""
        store = await seeded_store()

        loaded = await store.get_donation("d1")

        assert loaded.amount == Decimal("50.00")
        assert loaded.payment_status == PaymentStatus.SUCCEEDED
        assert loaded.verification.transaction_hash == "0xaaa"
        assert loaded.verification.submitted_at == SUBMITTED

    @pytest.mark.asyncio
    async def test_get_missing_donation(self):
        """Test unknown id."""
        store = await seeded_store()

        assert await store.get_donation("nope") is None

    @pytest.mark.asyncio
    async def test_created_at_is_aware(self):
        """Stored naive timestamps come back as UTC."""
        store = await seeded_store()

        loaded = await store.get_donation("d3")

        assert loaded.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_listing_by_owner(self):
        """Test donor, charity and platform listings."""
        store = await seeded_store()

        assert {d.donation_id for d in await store.list_donor_donations("u1")} == {"d1", "d2"}
        assert len(await store.list_charity_donations("c1")) == 3
        assert len(await store.list_all_donations()) == 3

    @pytest.mark.asyncio
    async def test_non_positive_amount_rejected(self):
        """Test stored amount invariant."""
        store = await seeded_store()

        with pytest.raises(InvalidStateError):
            await store.add_donation(donation("bad", amount="0"))

    @pytest.mark.asyncio
    async def test_fund_flow(self):
        """Test fund flow round trip."""
        store = await seeded_store()
        await store.set_fund_flow("c1", FundFlow(
            total_received=Decimal("1000"),
            total_disbursed=Decimal("250"),
        ))

        flow = await store.get_fund_flow("c1")

        assert flow.total_disbursed == Decimal("250")
        assert await store.get_fund_flow("c9") is None


# ============================================================
# VERIFICATION RECORDS
# ============================================================

class TestVerificationRecords:
    """Tests for record persistence."""

    @pytest.mark.asyncio
    async def test_save_creates_record(self):
        """Test saving a first record."""
        store = await seeded_store()

        saved = await store.save_verification(VerificationRecord(
            donation_id="d3", verified=True, transaction_hash="0xccc", block_number=40,
        ))

        assert saved.block_number == 40
        assert (await store.get_verification("d3")).verified is True

    @pytest.mark.asyncio
    async def test_save_replaces_record(self):
        """Test the record stays 1:1."""
        store = await seeded_store()

        await store.save_verification(VerificationRecord(
            donation_id="d2", verified=True, transaction_hash="0xbbb", block_number=5,
        ))

        page = await store.list_verifications(VerificationQuery(limit=100))
        assert page.total == 2
        assert (await store.get_verification("d2")).transaction_hash == "0xbbb"

    @pytest.mark.asyncio
    async def test_save_for_missing_donation(self):
        """Test record ownership."""
        store = await seeded_store()

        with pytest.raises(NotFoundError):
            await store.save_verification(VerificationRecord(donation_id="ghost"))

    @pytest.mark.asyncio
    async def test_update(self):
        """Test field updates."""
        store = await seeded_store()

        updated = await store.update_verification("d2", {"block_number": 77, "verified": True})

        assert updated.block_number == 77
        assert updated.verified is True
        assert updated.transaction_hash == "pending_bbb"

    @pytest.mark.asyncio
    async def test_update_unknown_field(self):
        """Test unknown fields."""
        store = await seeded_store()

        with pytest.raises(ValueError):
            await store.update_verification("d1", {"amount": 1})

    @pytest.mark.asyncio
    async def test_update_missing_record(self):
        """Test updating a donation without a record."""
        store = await seeded_store()

        with pytest.raises(NotFoundError):
            await store.update_verification("d3", {"verified": True})

    @pytest.mark.asyncio
    async def test_delete(self):
        """Test deleting keeps the donation."""
        store = await seeded_store()

        assert await store.delete_verification("d1") is True
        assert await store.delete_verification("d1") is False
        assert (await store.get_donation("d1")).verification is None


# ============================================================
# ADMIN LISTING
# ============================================================

class TestListVerifications:
    """Tests for list_verifications."""

    @pytest.mark.asyncio
    async def test_filter_and_search(self):
        """Test verified filter and hash search."""
        store = await seeded_store()

        verified = await store.list_verifications(VerificationQuery(verified=True))
        searched = await store.list_verifications(VerificationQuery(search="PENDING"))

        assert [r.donation_id for r in verified.items] == ["d1"]
        assert [r.donation_id for r in searched.items] == ["d2"]

    @pytest.mark.asyncio
    async def test_sort_and_paginate(self):
        """Test ordering by block number."""
        store = await seeded_store()

        page = await store.list_verifications(
            VerificationQuery(sort_by="blockNumber", sort_order="asc", limit=1, page=2)
        )

        assert page.total == 2
        assert [r.donation_id for r in page.items] == ["d1"]
        assert not page.has_next


# ============================================================
# BULK DELETE
# ============================================================

class TestBulkDelete:
    """Tests for admin bulk deletes."""

    @pytest.mark.asyncio
    async def test_users_partial(self):
        """Donations outlive their donor."""
        store = await seeded_store()

        result = await store.bulk_delete(BulkEntity.USERS, ["u1", "ghost"])

        assert (result.successful, result.failed) == (1, 1)
        assert result.failed_items[0].error_code == "REM_NOT_FOUND"
        assert (await store.get_donation("d1")).donor_id is None

    @pytest.mark.asyncio
    async def test_charities(self):
        """Test charity deletion."""
        store = await seeded_store()

        result = await store.bulk_delete(BulkEntity.CHARITIES, ["c1"])

        assert result.successful == 1
        assert await store.list_charity_donations("c1") == []


# ============================================================
# ASYNC ENGINE
# ============================================================

class TestAsyncEngine:
    """Tests for the async engine and session helpers."""

    @pytest.mark.parametrize("url,expected", [
        ("sqlite://", "sqlite+aiosqlite://"),
        ("sqlite:///donations.db", "sqlite+aiosqlite:///donations.db"),
        ("postgresql://u:p@db/donations", "postgresql+asyncpg://u:p@db/donations"),
        ("postgresql+asyncpg://u:p@db/donations", "postgresql+asyncpg://u:p@db/donations"),
    ])
    def test_async_url(self, url, expected):
        """Test sync driver URLs map to async drivers."""
        assert to_async_url(url) == expected

    @pytest.mark.asyncio
    async def test_sessions_are_async(self):
        """Test the store runs on AsyncSession."""
        factory = create_session_factory("sqlite://")
        store = SqlDonationStore(factory)

        assert isinstance(factory, async_sessionmaker)
        async with store.session_scope() as session:
            assert isinstance(session, AsyncSession)

    @pytest.mark.asyncio
    async def test_concurrent_reads(self):
        """Reads from several tasks interleave on the event loop."""
        store = await seeded_store()

        first, second, missing = await asyncio.gather(
            store.get_donation("d1"),
            store.get_donation("d3"),
            store.get_donation("nope"),
        )

        assert first.donation_id == "d1"
        assert second.donor_id == "u2"
        assert missing is None
