"""
Error Taxonomy and Configuration Tests.

============================================================
PURPOSE
============================================================
Tests for the error code registry, HTTP status mapping and
environment-driven configuration.

============================================================
"""

import pytest

from donation_verification.config import RetryConfig, VerificationEngineConfig
from donation_verification.errors import (
    ERROR_CODES,
    RETRYABLE_ERROR_CODES,
    ErrorCategory,
    error_from_code,
    get_error_info,
    is_retryable,
    map_http_status,
)
from donation_verification.types import (
    InvalidStateError,
    NetworkError,
    NotFoundError,
    RemoteError,
    VerificationEngineError,
)


# ============================================================
# ERROR REGISTRY
# ============================================================

class TestErrorRegistry:
    """Tests for the error code registry."""

    def test_codes_are_self_consistent(self):
        """Test registry keys match their info."""
        for code, info in ERROR_CODES.items():
            assert info.code == code

    def test_submission_errors_not_retryable(self):
        """Nothing that could double-submit is retryable."""
        assert not is_retryable("TMO_SUBMISSION_CONFIRMATION")
        assert not is_retryable("REM_SUBMISSION_REJECTED")

    def test_transport_errors_retryable(self):
        """Test retryable transport codes."""
        assert "NET_CONNECTION_FAILED" in RETRYABLE_ERROR_CODES
        assert "TMO_READ" in RETRYABLE_ERROR_CODES
        assert "RTE_TOO_MANY_REQUESTS" in RETRYABLE_ERROR_CODES

    def test_remote_errors_never_retryable(self):
        """Test every remote-category code."""
        for info in ERROR_CODES.values():
            if info.category == ErrorCategory.REMOTE:
                assert not info.is_retryable

    def test_unknown_code(self):
        """Test fallback info for unknown codes."""
        info = get_error_info("XYZ_UNKNOWN")

        assert info.category == ErrorCategory.INTERNAL
        assert not info.is_retryable


# ============================================================
# HTTP STATUS MAPPING
# ============================================================

class TestHttpStatusMapping:
    """Tests for map_http_status / error_from_code."""

    @pytest.mark.parametrize("status,code", [
        (400, "REM_SERVICE_ERROR"),
        (401, "AUT_UNAUTHORIZED"),
        (403, "AUT_FORBIDDEN"),
        (404, "REM_NOT_FOUND"),
        (409, "REM_CONFLICT"),
        (422, "REM_SERVICE_ERROR"),
        (429, "RTE_TOO_MANY_REQUESTS"),
        (500, "NET_SERVER_UNAVAILABLE"),
        (503, "NET_SERVER_UNAVAILABLE"),
        (418, "REM_SERVICE_ERROR"),
    ])
    def test_mapping(self, status, code):
        """Test status to code."""
        assert map_http_status(status) == code

    @pytest.mark.parametrize("code,error_type", [
        ("REM_NOT_FOUND", NotFoundError),
        ("REM_CONFLICT", RemoteError),
        ("AUT_UNAUTHORIZED", RemoteError),
        ("NET_SERVER_UNAVAILABLE", NetworkError),
        ("RTE_TOO_MANY_REQUESTS", NetworkError),
        ("VAL_INVALID_QUERY", InvalidStateError),
        ("INT_SERIALIZATION_ERROR", VerificationEngineError),
    ])
    def test_error_types(self, code, error_type):
        """Test the exception class built for each code."""
        error = error_from_code(code, "message", http_status=400)

        assert type(error) is error_type
        assert error.code == code

    def test_network_errors_carry_retryability(self):
        """Test retryable flag from the registry."""
        assert error_from_code("NET_SERVER_UNAVAILABLE", "down").is_retryable
        assert not error_from_code("REM_CONFLICT", "conflict").is_retryable

    def test_remote_error_keeps_status(self):
        """Test http_status on remote errors."""
        assert error_from_code("REM_CONFLICT", "conflict", http_status=409).http_status == 409


# ============================================================
# CONFIGURATION
# ============================================================

class TestConfiguration:
    """Tests for VerificationEngineConfig."""

    def test_defaults_valid(self):
        """Test default configuration."""
        config = VerificationEngineConfig()

        assert config.validate() == []
        assert config.cache.stats_ttl_ms == 300_000
        assert config.verification.pending_stall_seconds == 900
        assert config.timeouts.submission_timeout_seconds is None

    def test_from_env(self, monkeypatch):
        """Test environment variables."""
        monkeypatch.setenv("DONATION_API_URL", "https://api.example.org")
        monkeypatch.setenv("DONATION_API_TOKEN", "secret-token")
        monkeypatch.setenv("DONATION_EXPLORER_NETWORK", "polygon")
        monkeypatch.setenv("DONATION_STATS_CACHE_TTL_MS", "1000")
        monkeypatch.setenv("DONATION_SUBMISSION_TIMEOUT_SECONDS", "30")
        monkeypatch.setenv("DONATION_MAX_CONCURRENT_VERIFICATIONS", "4")

        config = VerificationEngineConfig.from_env(load_dotenv_file=False)

        assert config.api.base_url == "https://api.example.org"
        assert config.api.auth_token == "secret-token"
        assert config.verification.network == "polygon"
        assert config.cache.stats_ttl_ms == 1000
        assert config.timeouts.submission_timeout_seconds == 30.0
        assert config.verification.max_concurrent_verifications == 4

    def test_to_dict_masks_token(self):
        """Test credentials are masked."""
        config = VerificationEngineConfig()
        config.api.auth_token = "secret-token"

        assert "secret-token" not in str(config.to_dict())

    def test_validate_reports_problems(self):
        """Test invalid settings."""
        config = VerificationEngineConfig()
        config.api.base_url = "ftp://nope"
        config.verification.max_concurrent_verifications = 0

        problems = config.validate()

        assert len(problems) == 2

    def test_backoff(self):
        """Test exponential backoff is capped."""
        retry = RetryConfig(initial_delay_seconds=1, backoff_multiplier=2, max_delay_seconds=5)

        assert [retry.delay_for_attempt(i) for i in range(4)] == [1, 2, 4, 5]
