"""
Donation Verification - In-Memory Adapters.

============================================================
PURPOSE
============================================================
In-memory store and mock chain submitter for tests and
dry runs.

FEATURES:
- Configurable latency
- Per-donation error injection (network / remote)
- Pending mode (returns pending_ placeholder hashes)
- Call counting and full state tracking

============================================================
"""

import asyncio
import hashlib
import logging
import random
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from ..queries import VerificationPage, VerificationQuery
from ..types import (
    BulkItemResult,
    BulkResult,
    Donation,
    FundFlow,
    NetworkError,
    NotFoundError,
    PlatformStatsSnapshot,
    RemoteError,
    VerificationRecord,
    PENDING_HASH_PREFIX,
)
from .base import BulkEntity, ChainSubmissionService, DonationStore


logger = logging.getLogger(__name__)


_SORT_KEYS = {
    "createdAt": lambda r: r.submitted_at or datetime.min.replace(tzinfo=timezone.utc),
    "verified": lambda r: r.verified,
    "blockNumber": lambda r: r.block_number or 0,
    "timestamp": lambda r: r.timestamp or datetime.min.replace(tzinfo=timezone.utc),
    "transactionHash": lambda r: r.transaction_hash or "",
}

_RECORD_FIELDS = (
    "verified",
    "transaction_hash",
    "block_number",
    "timestamp",
    "submitted_at",
    "network",
)


# ============================================================
# IN-MEMORY DONATION STORE
# ============================================================

class InMemoryDonationStore(DonationStore):
    """
    DonationStore kept in dictionaries.

    Verification records live apart from donations and are
    attached on read, like a 1:1 relation.
    """

    def __init__(
        self,
        donations: Optional[Iterable[Donation]] = None,
        platform_stats: Optional[PlatformStatsSnapshot] = None,
    ):
        self._donations: Dict[str, Donation] = {}
        self._records: Dict[str, VerificationRecord] = {}
        self._fund_flows: Dict[str, FundFlow] = {}
        self._users: Set[str] = set()
        self._charities: Set[str] = set()
        self._platform_stats = platform_stats

        # Error injection
        self.save_errors: Dict[str, Exception] = {}

        self.save_count = 0

        for donation in donations or []:
            self.add_donation(donation)

    # --------------------------------------------------------
    # SETUP
    # --------------------------------------------------------

    def add_donation(self, donation: Donation) -> None:
        self._donations[donation.donation_id] = replace(donation, verification=None)
        if donation.verification is not None:
            self._records[donation.donation_id] = donation.verification
        if donation.donor_id is not None:
            self._users.add(donation.donor_id)
        if donation.charity_id is not None:
            self._charities.add(donation.charity_id)

    def set_fund_flow(self, charity_id: str, flow: FundFlow) -> None:
        self._fund_flows[charity_id] = flow

    def add_users(self, *user_ids: str) -> None:
        self._users.update(user_ids)

    def add_charities(self, *charity_ids: str) -> None:
        self._charities.update(charity_ids)

    def has_user(self, user_id: str) -> bool:
        return user_id in self._users

    def has_charity(self, charity_id: str) -> bool:
        return charity_id in self._charities

    # --------------------------------------------------------
    # DONATIONS
    # --------------------------------------------------------

    def _attach(self, donation: Donation) -> Donation:
        return replace(donation, verification=self._records.get(donation.donation_id))

    async def get_donation(self, donation_id: str) -> Optional[Donation]:
        donation = self._donations.get(donation_id)
        return self._attach(donation) if donation else None

    async def list_donor_donations(self, donor_id: str) -> List[Donation]:
        return [
            self._attach(d) for d in self._donations.values() if d.donor_id == donor_id
        ]

    async def list_charity_donations(self, charity_id: str) -> List[Donation]:
        return [
            self._attach(d) for d in self._donations.values() if d.charity_id == charity_id
        ]

    async def list_all_donations(self) -> List[Donation]:
        return [self._attach(d) for d in self._donations.values()]

    async def get_fund_flow(self, charity_id: str) -> Optional[FundFlow]:
        return self._fund_flows.get(charity_id)

    async def get_platform_stats(self) -> Optional[PlatformStatsSnapshot]:
        return self._platform_stats

    # --------------------------------------------------------
    # VERIFICATION RECORDS
    # --------------------------------------------------------

    async def get_verification(self, donation_id: str) -> Optional[VerificationRecord]:
        return self._records.get(donation_id)

    async def save_verification(self, record: VerificationRecord) -> VerificationRecord:
        if record.donation_id in self.save_errors:
            raise self.save_errors[record.donation_id]
        if record.donation_id not in self._donations:
            raise NotFoundError(f"Donation {record.donation_id} not found")
        self._records[record.donation_id] = record
        self.save_count += 1
        return record

    async def list_verifications(self, query: VerificationQuery) -> VerificationPage:
        records = list(self._records.values())

        if query.verified is not None:
            records = [r for r in records if r.verified is query.verified]
        if query.search:
            needle = query.search.lower()
            records = [
                r for r in records
                if needle in r.donation_id.lower() or needle in (r.transaction_hash or "").lower()
            ]

        records.sort(key=_SORT_KEYS[query.sort_by], reverse=query.sort_order == "desc")

        return VerificationPage(
            items=records[query.offset:query.offset + query.limit],
            page=query.page,
            limit=query.limit,
            total=len(records),
        )

    async def update_verification(
        self,
        donation_id: str,
        changes: Dict[str, Any],
    ) -> VerificationRecord:
        record = self._records.get(donation_id)
        if record is None:
            raise NotFoundError(f"Verification for donation {donation_id} not found")

        unknown = set(changes) - set(_RECORD_FIELDS)
        if unknown:
            raise ValueError(f"Unknown verification fields: {sorted(unknown)}")

        updated = replace(record, **changes)
        self._records[donation_id] = updated
        return updated

    async def delete_verification(self, donation_id: str) -> bool:
        return self._records.pop(donation_id, None) is not None

    # --------------------------------------------------------
    # BULK OPERATIONS
    # --------------------------------------------------------

    async def bulk_delete(self, entity: BulkEntity, ids: Iterable[str]) -> BulkResult:
        pool = self._users if entity == BulkEntity.USERS else self._charities
        items = []
        for item_id in dict.fromkeys(ids):
            if item_id in pool:
                pool.discard(item_id)
                items.append(BulkItemResult(item_id=item_id, success=True))
            else:
                items.append(BulkItemResult(
                    item_id=item_id,
                    success=False,
                    error=f"{entity.value[:-1].capitalize()} {item_id} not found",
                    error_code="REM_NOT_FOUND",
                ))
        return BulkResult.from_items(items)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

@dataclass
class MockConfig:
    """Configuration for the mock chain submitter."""

    # Latency simulation
    min_latency_ms: float = 0.0
    """Minimum simulated latency."""

    max_latency_ms: float = 0.0
    """Maximum simulated latency."""

    # Behaviour
    pending: bool = False
    """Return pending_ placeholder records instead of verified ones."""

    network: str = "sepolia"
    """Network written into produced records."""

    first_block: int = 1_000_000
    """Block number of the first verified record."""

    # Error injection
    network_failures: Set[str] = field(default_factory=set)
    """Donation ids whose submission raises NetworkError."""

    remote_failures: Set[str] = field(default_factory=set)
    """Donation ids whose submission raises RemoteError."""


# ============================================================
# MOCK CHAIN SUBMITTER
# ============================================================

class MockChainSubmitter(ChainSubmissionService):
    """
    Mock chain submission service for testing.

    Produces deterministic hashes per donation and attempt.
    """

    def __init__(self, config: Optional[MockConfig] = None):
        self._config = config or MockConfig()
        self._next_block = self._config.first_block
        self._force_next_error: Optional[Exception] = None

        self.call_count = 0
        self.calls: List[str] = []

    @property
    def config(self) -> MockConfig:
        return self._config

    def force_next_error(self, error: Exception) -> None:
        """Make the next submit() raise this error."""
        self._force_next_error = error

    def calls_for(self, donation_id: str) -> int:
        return self.calls.count(donation_id)

    async def _simulate_latency(self) -> None:
        if self._config.max_latency_ms <= 0:
            return
        latency = random.uniform(self._config.min_latency_ms, self._config.max_latency_ms)
        await asyncio.sleep(latency / 1000)

    async def submit(self, donation: Donation) -> VerificationRecord:
        self.call_count += 1
        self.calls.append(donation.donation_id)
        await self._simulate_latency()

        if self._force_next_error is not None:
            error = self._force_next_error
            self._force_next_error = None
            raise error

        if donation.donation_id in self._config.network_failures:
            raise NetworkError(
                f"Simulated network error for {donation.donation_id}",
                code="NET_CONNECTION_FAILED",
            )

        if donation.donation_id in self._config.remote_failures:
            raise RemoteError(
                f"Simulated rejection for {donation.donation_id}",
                code="REM_SUBMISSION_REJECTED",
            )

        now = datetime.now(timezone.utc)

        if self._config.pending:
            return VerificationRecord(
                donation_id=donation.donation_id,
                verified=False,
                transaction_hash=f"{PENDING_HASH_PREFIX}{uuid.uuid4().hex[:16]}",
                block_number=0,
                submitted_at=now,
                network=self._config.network,
            )

        digest = hashlib.sha256(
            f"{donation.donation_id}:{self.calls_for(donation.donation_id)}".encode()
        ).hexdigest()
        block = self._next_block
        self._next_block += 1

        logger.debug(f"Mock verified {donation.donation_id} in block {block}")

        return VerificationRecord(
            donation_id=donation.donation_id,
            verified=True,
            transaction_hash=f"0x{digest}",
            block_number=block,
            timestamp=now,
            submitted_at=now,
            network=self._config.network,
        )
