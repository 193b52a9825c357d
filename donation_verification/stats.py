"""
Donation Verification - Statistics Aggregator.

============================================================
PURPOSE
============================================================
Derives donor, charity and platform summaries from raw
donation lists. Snapshots are ephemeral and never persisted.

RULES:
- Empty input -> zeros, never NaN or ZeroDivisionError
- Missing/null numbers count as zero
- Money is Decimal quantized to cents
- Percentages are floats
- Distinct counterparts are de-duplicated by reference id
- Funding efficiency is NOT clamped (> 100 must surface)
- Goal progress IS clamped to 100

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Union

from .state_machine import classify
from .timestamps import normalize_timestamp
from .types import (
    Donation,
    FundFlow,
    VerificationState,
    DonorStatsSnapshot,
    CharityStatsSnapshot,
    PlatformStatsSnapshot,
)


logger = logging.getLogger(__name__)


CENTS = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

Number = Union[int, float, Decimal, str, None]


# ============================================================
# NUMERIC HELPERS
# ============================================================

def to_decimal(value: Number) -> Decimal:
    """Coerce a raw numeric field to Decimal; missing or junk is zero."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.debug(f"Non-numeric amount {value!r} counted as zero")
        return ZERO
    return result if result.is_finite() else ZERO


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def percentage(numerator: Number, denominator: Number, places: int = 1) -> float:
    """
    numerator / denominator * 100, rounded half-up.

    Returns 0.0 when the denominator is not positive.
    """
    num = to_decimal(numerator)
    den = to_decimal(denominator)
    if den <= 0:
        return 0.0
    exponent = Decimal(1).scaleb(-places)
    return float((num / den * HUNDRED).quantize(exponent, rounding=ROUND_HALF_UP))


def progress_percentage(current: Number, goal: Number) -> float:
    """
    Funding goal progress, clamped to [0, 100].

    Args:
        current: Amount raised so far
        goal: Funding goal

    Returns:
        min(current / goal * 100, 100); 0 when goal <= 0
    """
    goal_value = to_decimal(goal)
    current_value = to_decimal(current)
    if goal_value <= 0 or current_value <= 0:
        return 0.0
    return float(min(current_value / goal_value * HUNDRED, HUNDRED))


# ============================================================
# TREND TYPES
# ============================================================

@dataclass
class TrendPoint:
    """One period of a donation timeline."""

    period: str
    total_amount: Decimal = ZERO
    donation_count: int = 0
    verified_amount: Decimal = ZERO
    verified_count: int = 0
    verification_rate: int = 0
    """Rounded integer percent of verified donations in the period."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "total_amount": float(self.total_amount),
            "donation_count": self.donation_count,
            "verified_amount": float(self.verified_amount),
            "verified_count": self.verified_count,
            "verification_rate": self.verification_rate,
        }


@dataclass
class TrendReport:
    """Per-period trend with summary."""

    trends: List[TrendPoint] = field(default_factory=list)
    total_amount: Decimal = ZERO
    total_donations: int = 0
    average_verification_rate: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trends": [point.to_dict() for point in self.trends],
            "summary": {
                "total_amount": float(self.total_amount),
                "total_donations": self.total_donations,
                "average_verification_rate": self.average_verification_rate,
            },
        }


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


# ============================================================
# STATS AGGREGATOR
# ============================================================

class StatsAggregator:
    """
    Pure aggregation over donation lists.

    Counts every donation it is given; callers choose which
    payment statuses to pass in.
    """

    # --------------------------------------------------------
    # DONOR / CHARITY
    # --------------------------------------------------------

    def aggregate_donor(self, donations: Iterable[Donation]) -> DonorStatsSnapshot:
        """
        Summarize one donor's donations.

        Args:
            donations: The donor's donations

        Returns:
            DonorStatsSnapshot
        """
        donations = list(donations)
        common = self._common(donations)

        return DonorStatsSnapshot(
            distinct_charities=len({d.charity_id for d in donations if d.charity_id is not None}),
            distinct_projects=len({d.project_id for d in donations if d.project_id is not None}),
            **common,
        )

    def aggregate_charity(
        self,
        donations: Iterable[Donation],
        flow: Optional[FundFlow] = None,
    ) -> CharityStatsSnapshot:
        """
        Summarize one charity's donations and fund flow.

        Args:
            donations: Donations received by the charity
            flow: Fund flow bookkeeping (None counts as zero)

        Returns:
            CharityStatsSnapshot
        """
        donations = list(donations)
        common = self._common(donations)

        flow = flow or FundFlow()
        received = to_decimal(flow.total_received)
        disbursed = to_decimal(flow.total_disbursed)

        efficiency = percentage(disbursed, received, places=2)
        if efficiency > 100:
            logger.warning(
                f"Funding efficiency {efficiency}% exceeds 100 "
                f"(disbursed={disbursed}, received={received})"
            )

        return CharityStatsSnapshot(
            # Raw donor_id so anonymous donors still count
            distinct_donors=len({d.donor_id for d in donations if d.donor_id is not None}),
            total_received=quantize_money(received),
            total_disbursed=quantize_money(disbursed),
            funding_efficiency=efficiency,
            **common,
        )

    def _common(self, donations: List[Donation]) -> Dict[str, Any]:
        total_count = len(donations)
        total_amount = sum((to_decimal(d.amount) for d in donations), ZERO)

        verified = [d for d in donations if classify(d.verification) == VerificationState.VERIFIED]
        verified_amount = sum((to_decimal(d.amount) for d in verified), ZERO)

        average = total_amount / total_count if total_count > 0 else ZERO

        return {
            "total_count": total_count,
            "total_amount": quantize_money(total_amount),
            "average_amount": quantize_money(average),
            "verified_count": len(verified),
            "verified_amount": quantize_money(verified_amount),
            "transparency_score": percentage(len(verified), total_count),
            "last_donation_at": self._latest(donations),
        }

    @staticmethod
    def _latest(donations: List[Donation]) -> Optional[datetime]:
        instants = [normalize_timestamp(d.created_at) for d in donations]
        valid = [instant for instant in instants if isinstance(instant, datetime)]
        return max(valid) if valid else None

    # --------------------------------------------------------
    # PLATFORM
    # --------------------------------------------------------

    def aggregate_platform(self, donations: Iterable[Donation]) -> PlatformStatsSnapshot:
        """Platform-wide verification summary."""
        counts = {state: 0 for state in VerificationState}
        total_amount = ZERO
        verified_amount = ZERO
        total_count = 0

        for donation in donations:
            state = classify(donation.verification)
            amount = to_decimal(donation.amount)
            counts[state] += 1
            total_count += 1
            total_amount += amount
            if state == VerificationState.VERIFIED:
                verified_amount += amount

        return PlatformStatsSnapshot(
            total_count=total_count,
            total_amount=quantize_money(total_amount),
            verified_count=counts[VerificationState.VERIFIED],
            verified_amount=quantize_money(verified_amount),
            pending_count=counts[VerificationState.PENDING],
            failed_count=counts[VerificationState.FAILED],
            unsubmitted_count=counts[VerificationState.UNSUBMITTED],
            transparency_score=percentage(counts[VerificationState.VERIFIED], total_count),
        )

    # --------------------------------------------------------
    # TRENDS
    # --------------------------------------------------------

    def build_timeline(self, donations: Iterable[Donation]) -> List[Dict[str, Any]]:
        """
        Group donations by calendar month (UTC) of created_at.

        Donations without a valid created_at are skipped.

        Returns:
            Timeline rows ordered by period
        """
        buckets: Dict[str, Dict[str, Any]] = {}
        for donation in donations:
            instant = normalize_timestamp(donation.created_at)
            if not isinstance(instant, datetime):
                continue
            period = instant.strftime("%Y-%m")
            row = buckets.setdefault(period, {
                "period": period,
                "total_amount": ZERO,
                "donation_count": 0,
                "verified_amount": ZERO,
                "verified_count": 0,
            })
            amount = to_decimal(donation.amount)
            row["total_amount"] += amount
            row["donation_count"] += 1
            if classify(donation.verification) == VerificationState.VERIFIED:
                row["verified_amount"] += amount
                row["verified_count"] += 1

        return [buckets[period] for period in sorted(buckets)]

    def verification_trends(self, timeline: Iterable[Dict[str, Any]]) -> TrendReport:
        """
        Per-period verification rates with a summary.

        Args:
            timeline: Rows with period, total_amount, donation_count,
                verified_amount and verified_count (missing counts as 0)

        Returns:
            TrendReport
        """
        points = []
        for row in timeline:
            count = int(to_decimal(row.get("donation_count")))
            verified_count = int(to_decimal(row.get("verified_count")))
            rate = (
                _round_half_up(Decimal(verified_count) / Decimal(count) * HUNDRED)
                if count > 0 else 0
            )
            points.append(TrendPoint(
                period=str(row.get("period", "")),
                total_amount=quantize_money(to_decimal(row.get("total_amount"))),
                donation_count=count,
                verified_amount=quantize_money(to_decimal(row.get("verified_amount"))),
                verified_count=verified_count,
                verification_rate=rate,
            ))

        average_rate = (
            _round_half_up(Decimal(sum(p.verification_rate for p in points)) / len(points))
            if points else 0
        )

        return TrendReport(
            trends=points,
            total_amount=sum((p.total_amount for p in points), ZERO),
            total_donations=sum(p.donation_count for p in points),
            average_verification_rate=average_rate,
        )


# ============================================================
# MODULE-LEVEL CONVENIENCE
# ============================================================

_default_aggregator = StatsAggregator()


def aggregate_donor(donations: Iterable[Donation]) -> DonorStatsSnapshot:
    return _default_aggregator.aggregate_donor(donations)


def aggregate_charity(
    donations: Iterable[Donation],
    flow: Optional[FundFlow] = None,
) -> CharityStatsSnapshot:
    return _default_aggregator.aggregate_charity(donations, flow)


def aggregate_platform(donations: Iterable[Donation]) -> PlatformStatsSnapshot:
    return _default_aggregator.aggregate_platform(donations)


def verification_trends(timeline: Iterable[Dict[str, Any]]) -> TrendReport:
    return _default_aggregator.verification_trends(timeline)
