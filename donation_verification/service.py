"""
Donation Verification - Statistics Service.

Cached read side: donor, charity and platform statistics
and per-donation verification status, built from the store
and the stats aggregator.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .adapters.base import DonationStore
from .cache import (
    RequestCache,
    PLATFORM_STATS_KEY,
    charity_stats_key,
    donation_cache_keys,
    donor_stats_key,
    verification_key,
)
from .config import VerificationEngineConfig
from .explorer import ExplorerLinkResolver
from .state_machine import classify
from .stats import StatsAggregator, TrendReport
from .types import (
    CharityStatsSnapshot,
    Donation,
    DonorStatsSnapshot,
    PlatformStatsSnapshot,
    VerificationRecord,
    VerificationState,
)


logger = logging.getLogger(__name__)


@dataclass
class VerificationStatusView:
    """Verification status of one donation, ready for display."""

    donation_id: str
    state: VerificationState
    record: Optional[VerificationRecord] = None
    explorer_url: Optional[str] = None

    @property
    def label(self) -> str:
        return self.state.label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "donation_id": self.donation_id,
            "state": self.state.value,
            "label": self.label,
            "record": self.record.to_dict() if self.record else None,
            "explorer_url": self.explorer_url,
        }


class DonationStatsService:
    """
    Statistics with an explicit, owned cache.

    Every read goes through the cache with the configured TTL;
    force_refresh drops the entry first.
    """

    def __init__(
        self,
        store: DonationStore,
        cache: Optional[RequestCache] = None,
        aggregator: Optional[StatsAggregator] = None,
        config: Optional[VerificationEngineConfig] = None,
        explorer: Optional[ExplorerLinkResolver] = None,
    ):
        self._config = config or VerificationEngineConfig()
        self._store = store
        self._cache = cache or RequestCache(default_ttl_ms=self._config.cache.stats_ttl_ms)
        self._aggregator = aggregator or StatsAggregator()
        self._explorer = explorer or ExplorerLinkResolver()

    @property
    def cache(self) -> RequestCache:
        return self._cache

    async def _cached(self, key: str, fetch_fn, ttl_ms: int, force_refresh: bool):
        if force_refresh:
            self._cache.invalidate(key)
        return await self._cache.get_or_fetch(key, fetch_fn, ttl_ms=ttl_ms)

    # --------------------------------------------------------
    # STATISTICS
    # --------------------------------------------------------

    async def donor_stats(self, donor_id: str, force_refresh: bool = False) -> DonorStatsSnapshot:
        async def fetch() -> DonorStatsSnapshot:
            donations = await self._store.list_donor_donations(donor_id)
            return self._aggregator.aggregate_donor(donations)

        return await self._cached(
            donor_stats_key(donor_id), fetch, self._config.cache.stats_ttl_ms, force_refresh
        )

    async def charity_stats(
        self,
        charity_id: str,
        force_refresh: bool = False,
    ) -> CharityStatsSnapshot:
        async def fetch() -> CharityStatsSnapshot:
            donations, flow = await self._store.get_charity_donations_and_flow(charity_id)
            return self._aggregator.aggregate_charity(donations, flow)

        return await self._cached(
            charity_stats_key(charity_id), fetch, self._config.cache.stats_ttl_ms, force_refresh
        )

    async def platform_stats(self, force_refresh: bool = False) -> PlatformStatsSnapshot:
        """
        Platform summary from the store, aggregated locally when the
        store has no precomputed one.
        """
        async def fetch() -> PlatformStatsSnapshot:
            snapshot = await self._store.get_platform_stats()
            if snapshot is not None:
                return snapshot
            logger.debug("Store has no platform stats, aggregating locally")
            return self._aggregator.aggregate_platform(await self._store.list_all_donations())

        return await self._cached(
            PLATFORM_STATS_KEY, fetch, self._config.cache.stats_ttl_ms, force_refresh
        )

    async def donor_trends(self, donor_id: str) -> TrendReport:
        """Monthly verification trend of a donor's donations."""
        donations = await self._store.list_donor_donations(donor_id)
        return self._aggregator.verification_trends(self._aggregator.build_timeline(donations))

    # --------------------------------------------------------
    # VERIFICATION STATUS
    # --------------------------------------------------------

    async def verification_status(
        self,
        donation_id: str,
        force_refresh: bool = False,
    ) -> VerificationStatusView:
        record = await self._cached(
            verification_key(donation_id),
            lambda: self._store.get_verification(donation_id),
            self._config.cache.verification_ttl_ms,
            force_refresh,
        )
        network = record.network if record else self._config.verification.network
        return VerificationStatusView(
            donation_id=donation_id,
            state=classify(record),
            record=record,
            explorer_url=self._explorer.resolve(record.transaction_hash if record else None, network),
        )

    # --------------------------------------------------------
    # INVALIDATION
    # --------------------------------------------------------

    def invalidate_donation(self, donation: Donation) -> None:
        """Drop every cache entry a change to this donation affects."""
        for key in donation_cache_keys(donation.donation_id, donation.donor_id, donation.charity_id):
            self._cache.invalidate(key)
