"""
Donation Verification - Admin Service.

============================================================
PURPOSE
============================================================
Operator-facing operations on verification records and
accounts.

- Paginated listing of verification records
- Operator overrides (bypass the transition table, still
  re-classified and logged as overrides)
- Record deletion
- Bulk deletion of users and charities with per-item results

Every change invalidates the affected cache entries.

============================================================
"""

import logging
from dataclasses import fields, replace
from typing import Any, Dict, Iterable, List, Optional

from .adapters.base import BulkEntity, DonationStore
from .cache import (
    RequestCache,
    PLATFORM_STATS_KEY,
    charity_stats_key,
    donation_cache_keys,
    donor_stats_key,
)
from .queries import VerificationPage, VerificationQuery
from .state_machine import VerificationStateMachine, VerificationTransitionEvent
from .stats import StatsAggregator
from .timestamps import normalize_timestamp
from .types import (
    BulkResult,
    NotFoundError,
    PlatformStatsSnapshot,
    VerificationRecord,
)


logger = logging.getLogger(__name__)


_OVERRIDABLE_FIELDS = {
    f.name for f in fields(VerificationRecord) if f.name != "donation_id"
}

_TIMESTAMP_FIELDS = ("timestamp", "submitted_at")


class AdminVerificationService:
    """
    Admin operations over a DonationStore.

    Usage:
        admin = AdminVerificationService(store, cache)
        page = await admin.list_verifications(VerificationQuery(verified=False))
        await admin.override_verification("42", {"verified": True}, reason="Manual check")
    """

    def __init__(
        self,
        store: DonationStore,
        cache: Optional[RequestCache] = None,
        aggregator: Optional[StatsAggregator] = None,
    ):
        self._store = store
        self._cache = cache
        self._aggregator = aggregator or StatsAggregator()
        self._overrides: List[VerificationTransitionEvent] = []

    @property
    def overrides(self) -> List[VerificationTransitionEvent]:
        """Overrides applied through this service."""
        return list(self._overrides)

    # --------------------------------------------------------
    # VERIFICATION RECORDS
    # --------------------------------------------------------

    async def list_verifications(
        self,
        query: Optional[VerificationQuery] = None,
    ) -> VerificationPage:
        query = query or VerificationQuery()
        page = await self._store.list_verifications(query)
        logger.debug(
            f"Listed verifications page {page.page}/{page.total_pages} "
            f"({len(page.items)} of {page.total})"
        )
        return page

    async def override_verification(
        self,
        donation_id: str,
        changes: Dict[str, Any],
        reason: str = "Operator override",
    ) -> VerificationRecord:
        """
        Apply an operator change to a verification record.

        Args:
            donation_id: Donation whose record is changed
            changes: Field name -> new value (snake_case record fields)
            reason: Reason written to the transition log

        Returns:
            The record as stored

        Raises:
            NotFoundError: No record exists for the donation
            ValueError: Unknown field or unparsable timestamp
        """
        donation_id = str(donation_id)

        unknown = set(changes) - _OVERRIDABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown verification fields: {sorted(unknown)}")

        current = await self._store.get_verification(donation_id)
        if current is None:
            raise NotFoundError(f"Verification for donation {donation_id} not found")

        changes = dict(changes)
        for name in _TIMESTAMP_FIELDS:
            if name in changes and changes[name] is not None:
                instant = normalize_timestamp(changes[name])
                if not instant:
                    raise ValueError(f"Unparsable {name}: {changes[name]!r}")
                changes[name] = instant

        machine = VerificationStateMachine(donation_id, current)
        event = machine.apply(
            replace(current, **changes),
            reason=reason,
            operator_override=True,
            details={"changes": sorted(changes)},
        )

        saved = await self._store.update_verification(donation_id, changes)
        self._overrides.append(event)

        if event.from_state != event.to_state:
            logger.warning(
                f"Operator override on donation {donation_id}: "
                f"{event.from_state.value} -> {event.to_state.value} ({reason})"
            )

        await self._invalidate_donation(donation_id)
        return saved

    async def delete_verification(self, donation_id: str) -> bool:
        """
        Delete a verification record.

        Returns:
            True if a record was deleted
        """
        donation_id = str(donation_id)
        deleted = await self._store.delete_verification(donation_id)
        if deleted:
            logger.info(f"Deleted verification record of donation {donation_id}")
            await self._invalidate_donation(donation_id)
        else:
            logger.info(f"No verification record to delete for donation {donation_id}")
        return deleted

    # --------------------------------------------------------
    # BULK DELETION
    # --------------------------------------------------------

    async def bulk_delete_users(self, user_ids: Iterable[str]) -> BulkResult:
        return await self._bulk_delete(BulkEntity.USERS, user_ids)

    async def bulk_delete_charities(self, charity_ids: Iterable[str]) -> BulkResult:
        return await self._bulk_delete(BulkEntity.CHARITIES, charity_ids)

    async def _bulk_delete(self, entity: BulkEntity, ids: Iterable[str]) -> BulkResult:
        ids = list(dict.fromkeys(str(item_id) for item_id in ids))
        if not ids:
            return BulkResult()

        result = await self._store.bulk_delete(entity, ids)
        logger.info(
            f"Bulk delete {entity.value}: {result.successful} deleted, "
            f"{result.failed} failed, {result.total} total"
        )

        if self._cache is not None and result.successful:
            key_for = donor_stats_key if entity == BulkEntity.USERS else charity_stats_key
            for item in result.successful_items:
                self._cache.invalidate(key_for(item.item_id))
            self._cache.invalidate(PLATFORM_STATS_KEY)

        return result

    # --------------------------------------------------------
    # PLATFORM
    # --------------------------------------------------------

    async def platform_stats(self) -> PlatformStatsSnapshot:
        """Platform verification summary, never cached."""
        snapshot = await self._store.get_platform_stats()
        if snapshot is not None:
            return snapshot
        return self._aggregator.aggregate_platform(await self._store.list_all_donations())

    async def _invalidate_donation(self, donation_id: str) -> None:
        if self._cache is None:
            return
        donation = await self._store.get_donation(donation_id)
        if donation is None:
            keys = donation_cache_keys(donation_id)
        else:
            keys = donation_cache_keys(donation_id, donation.donor_id, donation.charity_id)
        for key in keys:
            self._cache.invalidate(key)
