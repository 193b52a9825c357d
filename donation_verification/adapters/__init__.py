"""
Donation Verification - Adapters Package.

============================================================
PURPOSE
============================================================
Implementations of the external collaborators.

AVAILABLE ADAPTERS:
- ApiDonationStore / ApiChainSubmitter: REST API (aiohttp)
- InMemoryDonationStore / MockChainSubmitter: For testing

The SQL-backed store lives in donation_verification.repository.

UTILITIES:
- ApiTransport: Session, auth, error mapping, GET retry
- TransportLogger: Secure logging

============================================================
"""

# Base types
from .base import (
    DonationStore,
    ChainSubmissionService,
    BulkEntity,
)

# Adapters
from .http import ApiTransport, ApiDonationStore, ApiChainSubmitter
from .mock import InMemoryDonationStore, MockChainSubmitter, MockConfig

# Logging
from .logging_utils import (
    TransportLogger,
    mask_value,
    mask_headers,
    mask_params,
)


__all__ = [
    "DonationStore",
    "ChainSubmissionService",
    "BulkEntity",
    "ApiTransport",
    "ApiDonationStore",
    "ApiChainSubmitter",
    "InMemoryDonationStore",
    "MockChainSubmitter",
    "MockConfig",
    "TransportLogger",
    "mask_value",
    "mask_headers",
    "mask_params",
]
