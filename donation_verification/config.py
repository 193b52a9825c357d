"""
Donation Verification - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the verification layer.

CRITICAL CONSTRAINTS:
- No blind retries of chain submissions
- Bounded waits
- Explicit cache TTLs

Values are loaded from the environment (and a .env file
when present) by VerificationEngineConfig.from_env().

============================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from dotenv import load_dotenv


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry configuration for idempotent reads.

    SAFETY: Submissions (POST) are never retried.
    """

    max_retries: int = 3
    """Maximum number of retry attempts."""

    initial_delay_seconds: float = 0.5
    """Initial delay before first retry."""

    max_delay_seconds: float = 10.0
    """Maximum delay between retries."""

    backoff_multiplier: float = 2.0
    """Exponential backoff multiplier."""

    def delay_for_attempt(self, attempt: int) -> float:
        """Backoff delay before retry number `attempt` (0-based)."""
        delay = self.initial_delay_seconds * (self.backoff_multiplier ** attempt)
        return min(delay, self.max_delay_seconds)


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """Timeout configuration."""

    connection_timeout_seconds: float = 5.0
    """Connection timeout."""

    request_timeout_seconds: float = 10.0
    """Total timeout for one API request."""

    submission_timeout_seconds: Optional[float] = None
    """
    How long a caller waits for one verification submission.
    None waits indefinitely. Expiry abandons the wait only.
    """


# ============================================================
# CACHE CONFIGURATION
# ============================================================

@dataclass
class CacheConfig:
    """Statistics cache configuration."""

    stats_ttl_ms: int = 5 * 60 * 1000
    """TTL for donor/charity/platform statistics."""

    verification_ttl_ms: int = 30 * 1000
    """TTL for single verification status lookups."""


# ============================================================
# API CONFIGURATION
# ============================================================

@dataclass
class ApiConfig:
    """Remote donation API configuration."""

    base_url: str = "http://localhost:4700"
    """API base URL."""

    auth_token: Optional[str] = None
    """Bearer token for the current session."""

    default_headers: Dict[str, str] = field(default_factory=lambda: {
        "Content-Type": "application/json",
    })
    """Headers sent with every request."""


# ============================================================
# VERIFICATION CONFIGURATION
# ============================================================

@dataclass
class VerificationConfig:
    """Verification orchestration settings."""

    network: str = "sepolia"
    """Chain network used for explorer links and new records."""

    pending_stall_seconds: float = 15 * 60
    """A pending record older than this may be resubmitted explicitly."""

    max_concurrent_verifications: int = 10
    """Upper bound on in-flight submissions in one bulk call."""


# ============================================================
# ROOT CONFIGURATION
# ============================================================

@dataclass
class VerificationEngineConfig:
    """Complete configuration for the verification layer."""

    api: ApiConfig = field(default_factory=ApiConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)

    database_url: Optional[str] = None
    """SQL store URL, when the store is accessed directly."""

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "VerificationEngineConfig":
        """
        Build configuration from environment variables.

        Args:
            load_dotenv_file: Whether to load a .env file first

        Returns:
            VerificationEngineConfig
        """
        if load_dotenv_file:
            load_dotenv()

        submission_timeout = os.getenv("DONATION_SUBMISSION_TIMEOUT_SECONDS")

        return cls(
            api=ApiConfig(
                base_url=os.getenv("DONATION_API_URL", "http://localhost:4700"),
                auth_token=os.getenv("DONATION_API_TOKEN") or None,
            ),
            timeouts=TimeoutConfig(
                request_timeout_seconds=float(os.getenv("DONATION_API_TIMEOUT_SECONDS", "10")),
                submission_timeout_seconds=float(submission_timeout) if submission_timeout else None,
            ),
            cache=CacheConfig(
                stats_ttl_ms=int(os.getenv("DONATION_STATS_CACHE_TTL_MS", str(5 * 60 * 1000))),
            ),
            verification=VerificationConfig(
                network=os.getenv("DONATION_EXPLORER_NETWORK", "sepolia"),
                pending_stall_seconds=float(os.getenv("DONATION_PENDING_STALL_SECONDS", "900")),
                max_concurrent_verifications=int(
                    os.getenv("DONATION_MAX_CONCURRENT_VERIFICATIONS", "10")
                ),
            ),
            database_url=os.getenv("DATABASE_URL") or None,
        )

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of problems (empty if valid)
        """
        problems = []

        if not self.api.base_url.startswith(("http://", "https://")):
            problems.append(f"api.base_url must be http(s): {self.api.base_url}")
        if self.retry.max_retries < 0:
            problems.append("retry.max_retries must be >= 0")
        if self.timeouts.request_timeout_seconds <= 0:
            problems.append("timeouts.request_timeout_seconds must be positive")
        if (
            self.timeouts.submission_timeout_seconds is not None
            and self.timeouts.submission_timeout_seconds <= 0
        ):
            problems.append("timeouts.submission_timeout_seconds must be positive")
        if self.cache.stats_ttl_ms < 0:
            problems.append("cache.stats_ttl_ms must be >= 0")
        if self.verification.max_concurrent_verifications < 1:
            problems.append("verification.max_concurrent_verifications must be >= 1")

        return problems

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with credentials masked."""
        return {
            "api": {
                "base_url": self.api.base_url,
                "auth_token": "***" if self.api.auth_token else None,
            },
            "retry": {
                "max_retries": self.retry.max_retries,
                "initial_delay_seconds": self.retry.initial_delay_seconds,
            },
            "timeouts": {
                "request_timeout_seconds": self.timeouts.request_timeout_seconds,
                "submission_timeout_seconds": self.timeouts.submission_timeout_seconds,
            },
            "cache": {"stats_ttl_ms": self.cache.stats_ttl_ms},
            "verification": {
                "network": self.verification.network,
                "pending_stall_seconds": self.verification.pending_stall_seconds,
                "max_concurrent_verifications": self.verification.max_concurrent_verifications,
            },
            "database_url": self.database_url.split("@")[-1] if self.database_url else None,
        }
