"""
Donation Verification - Verification Orchestrator.

============================================================
PURPOSE
============================================================
The only component that changes verification records.

Talks to the chain submission service and the store, guards
every change with the state machine, and invalidates cached
statistics afterwards.

============================================================
DESIGN PRINCIPLES
============================================================
- IDEMPOTENT: A verified donation is never resubmitted
- NO BLIND RETRIES: A submission is sent at most once per call
- NOT CANCELLABLE: Timeouts abandon waiting, never the submission
- SETTLE-ALL: Bulk calls finish every item and never raise

============================================================
VERIFY WORKFLOW
============================================================
1. Load donation (NotFoundError if absent)
2. Require payment status SUCCEEDED (InvalidStateError)
3. VERIFIED -> return existing record
4. PENDING and not stalled -> return existing record
5. Submit via ChainSubmissionService (optionally time-bounded)
6. Guard the transition, persist the record
7. Invalidate affected cache entries

============================================================
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .adapters.base import ChainSubmissionService, DonationStore
from .cache import RequestCache, donation_cache_keys, verification_key
from .config import VerificationEngineConfig
from .state_machine import (
    VerificationStateMachine,
    VerificationTransitionEvent,
    classify,
    is_stalled,
)
from .types import (
    BulkItemResult,
    BulkResult,
    Donation,
    InvalidStateError,
    NetworkError,
    NotFoundError,
    PaymentStatus,
    VerificationRecord,
    VerificationState,
)


logger = logging.getLogger(__name__)


class VerificationOrchestrator:
    """
    Coordinates single and bulk verification requests.

    Usage:
        orchestrator = VerificationOrchestrator(store, submitter, config, cache)
        record = await orchestrator.verify_one("42")
        result = await orchestrator.verify_many(["1", "2", "3"])
    """

    def __init__(
        self,
        store: DonationStore,
        submitter: ChainSubmissionService,
        config: Optional[VerificationEngineConfig] = None,
        cache: Optional[RequestCache] = None,
        on_transition: Optional[Callable[[VerificationTransitionEvent], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Donation store
            submitter: Chain submission service
            config: Engine configuration
            cache: Statistics cache to invalidate after changes
            on_transition: Listener for applied transitions
            clock: Returns the current aware UTC time
        """
        self._store = store
        self._submitter = submitter
        self._config = config or VerificationEngineConfig()
        self._cache = cache
        self._on_transition = on_transition
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        # Donation id -> running verification, so concurrent callers share one submission
        self._in_flight: Dict[str, asyncio.Future] = {}

        self._stats = {
            "requests": 0,
            "submitted": 0,
            "verified": 0,
            "pending": 0,
            "failed": 0,
            "skipped": 0,
        }

    @property
    def config(self) -> VerificationEngineConfig:
        return self._config

    # --------------------------------------------------------
    # SINGLE VERIFICATION
    # --------------------------------------------------------

    async def verify_one(self, donation_id: str) -> VerificationRecord:
        """
        Verify one donation on chain.

        Args:
            donation_id: Donation to verify

        Returns:
            The current (possibly unchanged) verification record

        Raises:
            NotFoundError: Donation does not exist
            InvalidStateError: Donation is not eligible
            NetworkError: Transport failure or submission wait timed out
            RemoteError: The external service reported a domain error
        """
        donation_id = str(donation_id)
        self._stats["requests"] += 1

        existing = self._in_flight.get(donation_id)
        if existing is not None:
            logger.info(f"Donation {donation_id}: joining in-flight verification")
            self._stats["skipped"] += 1
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(self._verify(donation_id))
        self._in_flight[donation_id] = task
        task.add_done_callback(lambda _: self._in_flight.pop(donation_id, None))
        return await asyncio.shield(task)

    async def _verify(self, donation_id: str) -> VerificationRecord:
        donation = await self._store.get_donation(donation_id)
        if donation is None:
            raise NotFoundError(f"Donation {donation_id} not found")

        if donation.payment_status != PaymentStatus.SUCCEEDED:
            raise InvalidStateError(
                f"Donation {donation_id} has payment status "
                f"{donation.payment_status.value}; only SUCCEEDED donations can be verified",
                code="VAL_PAYMENT_NOT_SUCCEEDED",
                details={"payment_status": donation.payment_status.value},
            )

        record = donation.verification
        if record is None:
            record = await self._store.get_verification(donation_id)

        machine = VerificationStateMachine(donation_id, record)
        if self._on_transition is not None:
            machine.add_listener(self._on_transition)

        state = machine.current_state
        now = self._clock()

        if state == VerificationState.VERIFIED:
            logger.info(f"Donation {donation_id} already verified, not resubmitting")
            self._stats["skipped"] += 1
            return record

        stall_after = self._config.verification.pending_stall_seconds
        if state == VerificationState.PENDING:
            if not is_stalled(record, now=now, stall_after=stall_after):
                logger.info(f"Donation {donation_id} has a pending submission, not resubmitting")
                self._stats["skipped"] += 1
                return record
            logger.warning(
                f"Donation {donation_id} pending since {record.submitted_at.isoformat()}, "
                f"resubmitting"
            )

        donation.validate()

        new_record = await self._submit(donation)
        if new_record.submitted_at is None:
            new_record = replace(new_record, submitted_at=now)

        machine.apply(
            new_record,
            reason="Resubmitted after stall" if state == VerificationState.PENDING else "Submitted",
            details={"transaction_hash": new_record.transaction_hash},
        )

        saved = await self._store.save_verification(new_record)
        self._invalidate(donation)

        outcome = classify(saved)
        if outcome == VerificationState.VERIFIED:
            self._stats["verified"] += 1
        elif outcome == VerificationState.PENDING:
            self._stats["pending"] += 1

        logger.info(f"Donation {donation_id}: verification {outcome.value}")
        return saved

    async def _submit(self, donation: Donation) -> VerificationRecord:
        """
        Send one submission, waiting at most submission_timeout_seconds.

        The submission itself is shielded: a timeout stops the wait
        but the request keeps running.
        """
        self._stats["submitted"] += 1
        timeout = self._config.timeouts.submission_timeout_seconds

        task = asyncio.ensure_future(self._submitter.submit(donation))
        try:
            if timeout is None:
                return await task
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            self._stats["failed"] += 1
            if task.done():
                # The submitter's own timeout; the outcome is unknown
                logger.error(f"Verification submission for {donation.donation_id} timed out")
                raise NetworkError(
                    f"Verification submission for donation {donation.donation_id} timed out; "
                    f"the submission may still complete",
                    code="TMO_SUBMISSION_CONFIRMATION",
                    is_retryable=False,
                    details={"donation_id": donation.donation_id},
                )
            task.add_done_callback(self._make_late_result_logger(donation.donation_id))
            raise NetworkError(
                f"Stopped waiting for verification of donation {donation.donation_id} "
                f"after {timeout}s; the submission may still complete",
                code="TMO_SUBMISSION_CONFIRMATION",
                is_retryable=False,
                details={"donation_id": donation.donation_id, "timeout_seconds": timeout},
            )
        except Exception as e:
            self._stats["failed"] += 1
            logger.error(f"Verification submission for {donation.donation_id} failed: {e}")
            raise

    @staticmethod
    def _make_late_result_logger(donation_id: str) -> Callable[[asyncio.Future], None]:
        def _log(task: asyncio.Future) -> None:
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                logger.warning(f"Late verification submission for {donation_id} failed: {error}")
            else:
                logger.warning(
                    f"Late verification submission for {donation_id} completed: "
                    f"{task.result().transaction_hash}"
                )
        return _log

    def _invalidate(self, donation: Donation) -> None:
        if self._cache is None:
            return
        for key in donation_cache_keys(donation.donation_id, donation.donor_id, donation.charity_id):
            self._cache.invalidate(key)

    # --------------------------------------------------------
    # BULK VERIFICATION
    # --------------------------------------------------------

    async def verify_many(self, donation_ids: Iterable[str]) -> BulkResult:
        """
        Verify several donations concurrently.

        Duplicate ids are verified once. Every item settles before
        this returns; item failures are reported, never raised.
        Completion order is not defined.

        Args:
            donation_ids: Donations to verify

        Returns:
            BulkResult with per-item outcomes
        """
        ids = list(dict.fromkeys(str(donation_id) for donation_id in donation_ids))
        if not ids:
            return BulkResult()

        semaphore = asyncio.Semaphore(self._config.verification.max_concurrent_verifications)

        async def run(donation_id: str) -> VerificationRecord:
            async with semaphore:
                return await self.verify_one(donation_id)

        results = await asyncio.gather(*(run(i) for i in ids), return_exceptions=True)

        items: List[BulkItemResult] = []
        for donation_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                items.append(BulkItemResult(
                    item_id=donation_id,
                    success=False,
                    error=str(result) or type(result).__name__,
                    error_code=getattr(result, "code", "INT_UNEXPECTED_ERROR"),
                ))
            else:
                items.append(BulkItemResult(item_id=donation_id, success=True, record=result))

        bulk = BulkResult.from_items(items)
        logger.info(
            f"Bulk verification: {bulk.successful} succeeded, "
            f"{bulk.failed} failed, {bulk.total} total"
        )
        return bulk

    # --------------------------------------------------------
    # QUERIES
    # --------------------------------------------------------

    async def get_status(self, donation_id: str) -> VerificationState:
        """Current derived state of a donation's verification."""
        donation_id = str(donation_id)
        if self._cache is None:
            return classify(await self._store.get_verification(donation_id))

        record = await self._cache.get_or_fetch(
            verification_key(donation_id),
            lambda: self._store.get_verification(donation_id),
            ttl_ms=self._config.cache.verification_ttl_ms,
        )
        return classify(record)

    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator counters."""
        return {**self._stats, "in_flight": len(self._in_flight)}
