"""
Donation Verification - Collaborator Interfaces.

============================================================
PURPOSE
============================================================
Abstract interfaces for the external collaborators:
- DonationStore:          donations, records, fund flows, admin ops
- ChainSubmissionService: writes a donation proof on chain

DESIGN PRINCIPLES:
- Backend-agnostic (HTTP API, SQL, in-memory)
- Clean separation from orchestration logic
- Fully testable with in-memory adapters

============================================================
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..queries import VerificationQuery, VerificationPage
from ..types import (
    BulkResult,
    Donation,
    FundFlow,
    PlatformStatsSnapshot,
    VerificationRecord,
)


logger = logging.getLogger(__name__)


class BulkEntity(Enum):
    """Entities that support bulk deletion."""

    USERS = "users"
    CHARITIES = "charities"


# ============================================================
# DONATION STORE
# ============================================================

class DonationStore(ABC):
    """
    Persistent store of donations and verification records.

    All methods are async. Absence is reported as None where the
    entity is optional; NotFoundError where it must exist.
    """

    # --------------------------------------------------------
    # DONATIONS
    # --------------------------------------------------------

    @abstractmethod
    async def get_donation(self, donation_id: str) -> Optional[Donation]:
        """
        Get one donation with its verification record attached.

        Returns:
            Donation, or None if it does not exist
        """
        pass

    @abstractmethod
    async def list_donor_donations(self, donor_id: str) -> List[Donation]:
        """Get every donation made by a donor."""
        pass

    @abstractmethod
    async def list_charity_donations(self, charity_id: str) -> List[Donation]:
        """Get every donation received by a charity."""
        pass

    @abstractmethod
    async def get_fund_flow(self, charity_id: str) -> Optional[FundFlow]:
        """Get a charity's fund flow bookkeeping, if any."""
        pass

    async def get_charity_donations_and_flow(
        self,
        charity_id: str,
    ) -> Tuple[List[Donation], Optional[FundFlow]]:
        """Donations and fund flow of a charity; backends may fetch both at once."""
        donations = await self.list_charity_donations(charity_id)
        flow = await self.get_fund_flow(charity_id)
        return donations, flow

    async def get_platform_stats(self) -> Optional[PlatformStatsSnapshot]:
        """
        Get the platform-wide verification summary.

        Returns:
            Snapshot, or None when the caller should aggregate locally
        """
        return None

    @abstractmethod
    async def list_all_donations(self) -> List[Donation]:
        """Every donation, for local platform aggregation."""
        pass

    # --------------------------------------------------------
    # VERIFICATION RECORDS
    # --------------------------------------------------------

    @abstractmethod
    async def get_verification(self, donation_id: str) -> Optional[VerificationRecord]:
        """Get the verification record of a donation, if any."""
        pass

    @abstractmethod
    async def save_verification(self, record: VerificationRecord) -> VerificationRecord:
        """
        Create or replace the verification record of a donation.

        Returns:
            The record as stored
        """
        pass

    @abstractmethod
    async def list_verifications(self, query: VerificationQuery) -> VerificationPage:
        """Paginated admin listing of verification records."""
        pass

    @abstractmethod
    async def update_verification(
        self,
        donation_id: str,
        changes: Dict[str, Any],
    ) -> VerificationRecord:
        """
        Apply an operator override to a verification record.

        Raises:
            NotFoundError: If no record exists
        """
        pass

    @abstractmethod
    async def delete_verification(self, donation_id: str) -> bool:
        """
        Delete a verification record.

        Returns:
            True if a record was deleted
        """
        pass

    # --------------------------------------------------------
    # BULK OPERATIONS
    # --------------------------------------------------------

    @abstractmethod
    async def bulk_delete(self, entity: BulkEntity, ids: Iterable[str]) -> BulkResult:
        """
        Delete several users or charities.

        Partial failure: each id succeeds or fails on its own.
        """
        pass


# ============================================================
# CHAIN SUBMISSION SERVICE
# ============================================================

class ChainSubmissionService(ABC):
    """
    External service that writes a donation proof to a ledger.

    Submissions are not revocable and must never be retried
    blindly by callers.
    """

    @abstractmethod
    async def submit(self, donation: Donation) -> VerificationRecord:
        """
        Submit a donation for on-chain verification.

        Args:
            donation: Donation to verify

        Returns:
            The resulting record (pending or verified)

        Raises:
            NetworkError: Transport failure
            RemoteError: The service rejected the submission
        """
        pass
