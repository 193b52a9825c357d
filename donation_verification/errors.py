"""
Donation Verification - Error Taxonomy.

============================================================
PURPOSE
============================================================
Error classification for verification and statistics failures.

ERROR CATEGORIES:
1. Validation Errors - Precondition violated (InvalidState)
2. Network Errors    - Transport failures (NetworkError)
3. Timeout Errors    - Waiting abandoned (NetworkError)
4. Remote Errors     - External service domain failure (RemoteError)
5. Internal Errors   - Bugs and unexpected data

RETRYABLE vs NON-RETRYABLE:
- Retryable: transport failures on idempotent reads
- Non-retryable: anything that could double-submit a
  chain transaction, and every remote domain error

Malformed timestamps are NOT errors here: the normalizer
returns a sentinel instead.

============================================================
"""

from enum import Enum
from typing import Optional, Dict, Any, Set
from dataclasses import dataclass

from .types import (
    VerificationEngineError,
    InvalidStateError,
    NetworkError,
    RemoteError,
    NotFoundError,
)


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    VALIDATION = "VALIDATION"
    """Precondition violation, user-correctable."""

    NETWORK = "NETWORK"
    """Transport failure."""

    TIMEOUT = "TIMEOUT"
    """Request or confirmation timed out."""

    RATE_LIMIT = "RATE_LIMIT"
    """Remote rate limit exceeded."""

    AUTHENTICATION = "AUTHENTICATION"
    """Credentials rejected."""

    REMOTE = "REMOTE"
    """External service reported a domain error."""

    INTERNAL = "INTERNAL"
    """Internal error."""


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    category: ErrorCategory
    is_retryable: bool
    description: str
    recommended_action: str


ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    # ========== VALIDATION ERRORS ==========
    "VAL_INVALID_STATE": ErrorCodeInfo(
        code="VAL_INVALID_STATE",
        category=ErrorCategory.VALIDATION,
        is_retryable=False,
        description="Donation is not eligible for this operation",
        recommended_action="Check donation state",
    ),
    "VAL_PAYMENT_NOT_SUCCEEDED": ErrorCodeInfo(
        code="VAL_PAYMENT_NOT_SUCCEEDED",
        category=ErrorCategory.VALIDATION,
        is_retryable=False,
        description="Only SUCCEEDED donations can be verified",
        recommended_action="Wait for payment to succeed",
    ),
    "VAL_INVALID_AMOUNT": ErrorCodeInfo(
        code="VAL_INVALID_AMOUNT",
        category=ErrorCategory.VALIDATION,
        is_retryable=False,
        description="Donation amount must be positive",
        recommended_action="Correct the donation record",
    ),
    "VAL_INVALID_TRANSITION": ErrorCodeInfo(
        code="VAL_INVALID_TRANSITION",
        category=ErrorCategory.VALIDATION,
        is_retryable=False,
        description="Verification state transition is not allowed",
        recommended_action="Review the record before retrying",
    ),
    "VAL_INVALID_QUERY": ErrorCodeInfo(
        code="VAL_INVALID_QUERY",
        category=ErrorCategory.VALIDATION,
        is_retryable=False,
        description="Query parameters are invalid",
        recommended_action="Fix query parameters",
    ),

    # ========== NETWORK ERRORS ==========
    "NET_CONNECTION_FAILED": ErrorCodeInfo(
        code="NET_CONNECTION_FAILED",
        category=ErrorCategory.NETWORK,
        is_retryable=True,
        description="Failed to reach the remote API",
        recommended_action="Check network and retry",
    ),
    "NET_SERVER_UNAVAILABLE": ErrorCodeInfo(
        code="NET_SERVER_UNAVAILABLE",
        category=ErrorCategory.NETWORK,
        is_retryable=True,
        description="Remote API returned a 5xx status",
        recommended_action="Retry with backoff",
    ),
    "NET_BAD_RESPONSE": ErrorCodeInfo(
        code="NET_BAD_RESPONSE",
        category=ErrorCategory.NETWORK,
        is_retryable=True,
        description="Response body could not be decoded",
        recommended_action="Retry or investigate the API",
    ),

    # ========== TIMEOUT ERRORS ==========
    "TMO_READ": ErrorCodeInfo(
        code="TMO_READ",
        category=ErrorCategory.TIMEOUT,
        is_retryable=True,
        description="Read timeout",
        recommended_action="Retry with backoff",
    ),
    "TMO_SUBMISSION_CONFIRMATION": ErrorCodeInfo(
        code="TMO_SUBMISSION_CONFIRMATION",
        category=ErrorCategory.TIMEOUT,
        is_retryable=False,
        description="Stopped waiting for a submission; it may still land on chain",
        recommended_action="Query verification status before retrying",
    ),

    # ========== RATE LIMIT ERRORS ==========
    "RTE_TOO_MANY_REQUESTS": ErrorCodeInfo(
        code="RTE_TOO_MANY_REQUESTS",
        category=ErrorCategory.RATE_LIMIT,
        is_retryable=True,
        description="Remote API rate limit exceeded",
        recommended_action="Wait and retry",
    ),

    # ========== AUTHENTICATION ERRORS ==========
    "AUT_UNAUTHORIZED": ErrorCodeInfo(
        code="AUT_UNAUTHORIZED",
        category=ErrorCategory.AUTHENTICATION,
        is_retryable=False,
        description="Session token missing or expired",
        recommended_action="Log in again",
    ),
    "AUT_FORBIDDEN": ErrorCodeInfo(
        code="AUT_FORBIDDEN",
        category=ErrorCategory.AUTHENTICATION,
        is_retryable=False,
        description="Operation not permitted for this role",
        recommended_action="Use an account with the required role",
    ),

    # ========== REMOTE ERRORS ==========
    "REM_SERVICE_ERROR": ErrorCodeInfo(
        code="REM_SERVICE_ERROR",
        category=ErrorCategory.REMOTE,
        is_retryable=False,
        description="External service rejected the request",
        recommended_action="Operator review required",
    ),
    "REM_NOT_FOUND": ErrorCodeInfo(
        code="REM_NOT_FOUND",
        category=ErrorCategory.REMOTE,
        is_retryable=False,
        description="Entity not found",
        recommended_action="Check the identifier",
    ),
    "REM_CONFLICT": ErrorCodeInfo(
        code="REM_CONFLICT",
        category=ErrorCategory.REMOTE,
        is_retryable=False,
        description="Entity changed concurrently or already exists",
        recommended_action="Reload and review",
    ),
    "REM_SUBMISSION_REJECTED": ErrorCodeInfo(
        code="REM_SUBMISSION_REJECTED",
        category=ErrorCategory.REMOTE,
        is_retryable=False,
        description="Chain submission service rejected the donation",
        recommended_action="Operator review required",
    ),

    # ========== INTERNAL ERRORS ==========
    "INT_UNEXPECTED_ERROR": ErrorCodeInfo(
        code="INT_UNEXPECTED_ERROR",
        category=ErrorCategory.INTERNAL,
        is_retryable=False,
        description="Unexpected internal error",
        recommended_action="Investigate error logs",
    ),
    "INT_SERIALIZATION_ERROR": ErrorCodeInfo(
        code="INT_SERIALIZATION_ERROR",
        category=ErrorCategory.INTERNAL,
        is_retryable=False,
        description="Failed to parse remote payload",
        recommended_action="Check data formats",
    ),
    "INT_PERSISTENCE_ERROR": ErrorCodeInfo(
        code="INT_PERSISTENCE_ERROR",
        category=ErrorCategory.INTERNAL,
        is_retryable=False,
        description="Database operation failed and was rolled back",
        recommended_action="Check database connectivity and logs",
    ),
}


# ============================================================
# HTTP STATUS MAPPING
# ============================================================

HTTP_STATUS_MAPPING: Dict[int, str] = {
    400: "REM_SERVICE_ERROR",
    401: "AUT_UNAUTHORIZED",
    403: "AUT_FORBIDDEN",
    404: "REM_NOT_FOUND",
    409: "REM_CONFLICT",
    422: "REM_SERVICE_ERROR",
    429: "RTE_TOO_MANY_REQUESTS",
}


def map_http_status(status: int) -> str:
    """
    Map an HTTP status to an internal error code.

    Args:
        status: HTTP status code

    Returns:
        Internal error code
    """
    if status in HTTP_STATUS_MAPPING:
        return HTTP_STATUS_MAPPING[status]
    if status >= 500:
        return "NET_SERVER_UNAVAILABLE"
    return "REM_SERVICE_ERROR"


def get_error_info(code: str) -> ErrorCodeInfo:
    """
    Get error info for a code.

    Args:
        code: Error code

    Returns:
        ErrorCodeInfo or default unknown error
    """
    return ERROR_CODES.get(code, ErrorCodeInfo(
        code=code,
        category=ErrorCategory.INTERNAL,
        is_retryable=False,
        description=f"Unknown error: {code}",
        recommended_action="Investigate error",
    ))


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    return get_error_info(code).is_retryable


def error_from_code(
    code: str,
    message: str,
    http_status: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> VerificationEngineError:
    """
    Build the typed exception for an error code.

    Args:
        code: Internal error code
        message: Error message
        http_status: HTTP status, when the error came from the API
        details: Extra context

    Returns:
        Exception instance (not raised)
    """
    info = get_error_info(code)

    if code == "REM_NOT_FOUND":
        return NotFoundError(message, code=code, http_status=http_status, details=details)
    if info.category == ErrorCategory.VALIDATION:
        return InvalidStateError(message, code=code, details=details)
    if info.category in {ErrorCategory.NETWORK, ErrorCategory.TIMEOUT, ErrorCategory.RATE_LIMIT}:
        return NetworkError(message, code=code, is_retryable=info.is_retryable, details=details)
    if info.category in {ErrorCategory.REMOTE, ErrorCategory.AUTHENTICATION}:
        return RemoteError(message, code=code, http_status=http_status, details=details)
    return VerificationEngineError(message, code=code, details=details)


# ============================================================
# RETRYABLE ERROR SETS
# ============================================================

RETRYABLE_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if info.is_retryable
}
