"""
Donation API - Secure Logging Utilities.

============================================================
PURPOSE
============================================================
Logging for API transport operations with:
- Credential masking (bearer tokens, passwords)
- Request/response sanitization
- Per-request ids for correlating request and response lines

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw session tokens
2. Mask the Authorization header
3. Mask credential-like query/body parameters
4. Log only a hash of request bodies

============================================================
"""

import hashlib
import json
import logging
import re
from typing import Any, Dict, Optional


# ============================================================
# SENSITIVE DATA PATTERNS
# ============================================================

SENSITIVE_HEADERS = {
    "authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
}

SENSITIVE_PARAMS = {
    "password",
    "token",
    "access_token",
    "refresh_token",
    "accesstoken",
    "refreshtoken",
    "secret",
    "privatekey",
    "private_key",
}

# JWTs: three base64url segments
_JWT_PATTERN = re.compile(r"[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}")


# ============================================================
# MASKING FUNCTIONS
# ============================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only first few chars.

    Args:
        value: Value to mask
        show_chars: Number of chars to show at start

    Returns:
        Masked value
    """
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Mask sensitive headers."""
    if not headers:
        return {}

    masked = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            masked[key] = mask_value(str(value))
        else:
            masked[key] = value
    return masked


def mask_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Mask sensitive parameters, recursing into nested dicts."""
    if not params:
        return {}

    masked = {}
    for key, value in params.items():
        if key.lower() in SENSITIVE_PARAMS:
            masked[key] = mask_value(str(value)) if value else value
        elif isinstance(value, dict):
            masked[key] = mask_params(value)
        elif isinstance(value, str) and _JWT_PATTERN.search(value):
            masked[key] = _JWT_PATTERN.sub("***JWT***", value)
        else:
            masked[key] = value
    return masked


def hash_body(body: Any) -> Optional[str]:
    """Short hash of a request body instead of its content."""
    if body is None:
        return None
    try:
        text = json.dumps(body, sort_keys=True, default=str)
    except (TypeError, ValueError):
        text = str(body)
    return hashlib.sha256(text.encode()).hexdigest()[:16]


# ============================================================
# TRANSPORT LOGGER
# ============================================================

class TransportLogger:
    """
    Secure logger for API requests.

    Every line carries a request id; credentials are masked.
    """

    def __init__(self, service: str = "donation_api", logger_name: Optional[str] = None):
        self._service = service
        self._logger = logging.getLogger(logger_name or f"{__name__}.{service}")
        self._request_counter = 0

    def next_request_id(self) -> str:
        self._request_counter += 1
        return f"{self._service}-{self._request_counter}"

    def log_request(
        self,
        request_id: str,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
    ) -> None:
        self._logger.debug(
            f"[{request_id}] {method} {path} "
            f"headers={mask_headers(headers)} params={mask_params(params)} "
            f"body_hash={hash_body(body)}"
        )

    def log_response(
        self,
        request_id: str,
        status: int,
        latency_ms: float,
    ) -> None:
        level = logging.DEBUG if status < 400 else logging.WARNING
        self._logger.log(level, f"[{request_id}] -> {status} in {latency_ms:.0f}ms")

    def log_error(
        self,
        request_id: str,
        error: Exception,
        attempt: int = 0,
        will_retry: bool = False,
    ) -> None:
        suffix = " (retrying)" if will_retry else ""
        self._logger.warning(
            f"[{request_id}] attempt {attempt + 1} failed: "
            f"{type(error).__name__}: {error}{suffix}"
        )
