"""
Donation Verification Package.

Verification status model and statistics aggregation for the
donation platform.

Core Principles:
- A verified donation is never resubmitted
- Only the orchestrator changes verification records
- Timestamps are normalized in one place, never raised on
- Bulk operations settle every item and report per-item results
- Caches are explicit instances, never module globals

Modules:
- types: Domain types and exceptions
- errors: Error code registry and HTTP status mapping
- config: Dataclass configuration (.env supported)
- timestamps: Timestamp normalization
- state_machine: Verification state classification and transitions
- orchestrator: Single and bulk verification
- stats: Donor, charity and platform aggregation
- explorer: Block explorer links
- cache: TTL request cache
- queries: Admin listing queries and history filters
- service: Cached statistics and status reads
- admin: Operator overrides and bulk deletion
- models / repository: SQLAlchemy store
- adapters: REST API and in-memory collaborators

Usage:
    from donation_verification import VerificationOrchestrator, InMemoryDonationStore
"""

from donation_verification.types import (
    PaymentStatus,
    VerificationState,
    VerificationRecord,
    Donation,
    FundFlow,
    DonorStatsSnapshot,
    CharityStatsSnapshot,
    PlatformStatsSnapshot,
    BulkItemResult,
    BulkResult,
    VerificationEngineError,
    InvalidStateError,
    NetworkError,
    RemoteError,
    NotFoundError,
    PENDING_HASH_PREFIX,
    FAILED_HASH_PREFIX,
)

from donation_verification.errors import (
    ErrorCategory,
    ErrorCodeInfo,
    ERROR_CODES,
    get_error_info,
    is_retryable,
    map_http_status,
    error_from_code,
)

from donation_verification.config import (
    RetryConfig,
    TimeoutConfig,
    CacheConfig,
    ApiConfig,
    VerificationConfig,
    VerificationEngineConfig,
)

from donation_verification.timestamps import (
    TimestampNormalizer,
    UNKNOWN_TIMESTAMP,
    INVALID_TIMESTAMP,
    normalize_timestamp,
    to_zone,
)

from donation_verification.state_machine import (
    VALID_TRANSITIONS,
    TransitionGuard,
    VerificationStateMachine,
    VerificationTransitionEvent,
    classify,
    is_stalled,
)

from donation_verification.cache import RequestCache
from donation_verification.explorer import ExplorerLinkResolver, resolve_explorer_url

from donation_verification.stats import (
    StatsAggregator,
    TrendReport,
    progress_percentage,
)

from donation_verification.queries import (
    VerificationQuery,
    VerificationPage,
    DonationHistoryFilters,
)

from donation_verification.adapters import (
    DonationStore,
    ChainSubmissionService,
    BulkEntity,
    ApiTransport,
    ApiDonationStore,
    ApiChainSubmitter,
    InMemoryDonationStore,
    MockChainSubmitter,
    MockConfig,
)

from donation_verification.repository import (
    SqlDonationStore,
    create_session_factory,
    init_schema,
)

from donation_verification.orchestrator import VerificationOrchestrator
from donation_verification.service import DonationStatsService, VerificationStatusView
from donation_verification.admin import AdminVerificationService


__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Types
    "PaymentStatus",
    "VerificationState",
    "VerificationRecord",
    "Donation",
    "FundFlow",
    "DonorStatsSnapshot",
    "CharityStatsSnapshot",
    "PlatformStatsSnapshot",
    "BulkItemResult",
    "BulkResult",
    "PENDING_HASH_PREFIX",
    "FAILED_HASH_PREFIX",
    # Exceptions
    "VerificationEngineError",
    "InvalidStateError",
    "NetworkError",
    "RemoteError",
    "NotFoundError",
    # Errors
    "ErrorCategory",
    "ErrorCodeInfo",
    "ERROR_CODES",
    "get_error_info",
    "is_retryable",
    "map_http_status",
    "error_from_code",
    # Config
    "RetryConfig",
    "TimeoutConfig",
    "CacheConfig",
    "ApiConfig",
    "VerificationConfig",
    "VerificationEngineConfig",
    # Timestamps
    "TimestampNormalizer",
    "UNKNOWN_TIMESTAMP",
    "INVALID_TIMESTAMP",
    "normalize_timestamp",
    "to_zone",
    # State machine
    "VALID_TRANSITIONS",
    "TransitionGuard",
    "VerificationStateMachine",
    "VerificationTransitionEvent",
    "classify",
    "is_stalled",
    # Cache / explorer
    "RequestCache",
    "ExplorerLinkResolver",
    "resolve_explorer_url",
    # Stats
    "StatsAggregator",
    "TrendReport",
    "progress_percentage",
    # Queries
    "VerificationQuery",
    "VerificationPage",
    "DonationHistoryFilters",
    # Adapters
    "DonationStore",
    "ChainSubmissionService",
    "BulkEntity",
    "ApiTransport",
    "ApiDonationStore",
    "ApiChainSubmitter",
    "InMemoryDonationStore",
    "MockChainSubmitter",
    "MockConfig",
    # SQL store
    "SqlDonationStore",
    "create_session_factory",
    "init_schema",
    # Services
    "VerificationOrchestrator",
    "DonationStatsService",
    "VerificationStatusView",
    "AdminVerificationService",
]
