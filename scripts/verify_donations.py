"""
Scripts - Verify Donations.

============================================================
RESPONSIBILITY
============================================================
Requests on-chain verification for one or more donations.

- Loads configuration from the environment (.env supported)
- Verifies every id concurrently, settling all of them
- Prints the bulk result as JSON

============================================================
USAGE
============================================================
python -m scripts.verify_donations ID [ID ...]

Options:
  --dry-run          Read donations from the store but submit
                     to the mock chain service and keep every
                     change in memory
  --timeout S        Stop waiting for a submission after S seconds
  -v, --verbose      Debug logging

With DATABASE_URL set, donations are read from (and records
written to) the database; otherwise the donation API is used.

============================================================
EXIT CODES
============================================================
- 0: Every donation verified, pending or already verified
- 1: At least one donation failed
- 2: Invalid configuration

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List

from donation_verification import (
    ApiChainSubmitter,
    ApiDonationStore,
    ApiTransport,
    BulkResult,
    DonationStore,
    InMemoryDonationStore,
    MockChainSubmitter,
    RequestCache,
    SqlDonationStore,
    VerificationEngineConfig,
    VerificationEngineError,
    VerificationOrchestrator,
    create_session_factory,
)


logger = logging.getLogger("verify_donations")


def parse_args(argv: List[str] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify donations on chain")
    parser.add_argument("ids", nargs="+", help="Donation ids to verify")
    parser.add_argument("--dry-run", action="store_true",
                        help="Use the mock chain service and keep changes in memory")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Submission wait timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


async def copy_donations(source: DonationStore, ids: List[str]) -> InMemoryDonationStore:
    """Read-only copy of the requested donations for a dry run."""
    target = InMemoryDonationStore()
    for donation_id in ids:
        try:
            donation = await source.get_donation(donation_id)
        except VerificationEngineError as e:
            logger.warning(f"Could not load donation {donation_id}: {e}")
            continue
        if donation is not None:
            target.add_donation(donation)
    return target


async def run(args: argparse.Namespace, config: VerificationEngineConfig) -> BulkResult:
    cache = RequestCache(default_ttl_ms=config.cache.stats_ttl_ms)

    async with ApiTransport(config.api, config.timeouts, config.retry) as transport:
        if config.database_url:
            store: DonationStore = SqlDonationStore(create_session_factory(config.database_url))
        else:
            store = ApiDonationStore(transport)

        if args.dry_run:
            logger.info("Dry run: submissions go to the mock chain service")
            store = await copy_donations(store, args.ids)
            submitter = MockChainSubmitter()
        else:
            submitter = ApiChainSubmitter(transport)

        orchestrator = VerificationOrchestrator(store, submitter, config=config, cache=cache)
        result = await orchestrator.verify_many(args.ids)
        logger.debug(f"Orchestrator stats: {orchestrator.get_stats()}")
        return result


def main(argv: List[str] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config = VerificationEngineConfig.from_env()
    if args.timeout is not None:
        config.timeouts.submission_timeout_seconds = args.timeout

    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(f"Invalid configuration: {problem}")
        return 2

    logger.info(f"Configuration: {config.to_dict()}")

    result = asyncio.run(run(args, config))
    print(json.dumps(result.to_dict(), indent=2))
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
