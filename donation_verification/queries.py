"""
Donation Verification - Query and Filter Types.

Admin verification listing queries, donation history filter
validation, and the paginated result page.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .timestamps import normalize_timestamp
from .types import InvalidStateError, VerificationRecord


logger = logging.getLogger(__name__)


MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 10

VERIFICATION_SORT_FIELDS = {"createdAt", "verified", "blockNumber", "timestamp", "transactionHash"}
HISTORY_SORT_FIELDS = {"createdAt", "amount", "charityName", "verificationStatus"}
SORT_ORDERS = {"asc", "desc"}
HISTORY_STATUSES = {"all", "PENDING", "PROCESSING", "SUCCEEDED", "FAILED", "REFUNDED"}
VERIFIED_FILTERS = {"all", "true", "false"}


def _parse_int(value: Any) -> Optional[int]:
    """Leading-integer parse; None when there is no number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    text = str(value).strip()
    digits = ""
    for index, char in enumerate(text):
        if char.isdigit() and char.isascii():
            digits += char
        elif index == 0 and char in "+-":
            digits += char
        else:
            break
    try:
        return int(digits)
    except ValueError:
        return None


def clamp_page(value: Any) -> int:
    return max(1, _parse_int(value) or 1)


def clamp_limit(value: Any) -> int:
    return min(MAX_PAGE_SIZE, max(1, _parse_int(value) or DEFAULT_PAGE_SIZE))


# ============================================================
# ADMIN VERIFICATION QUERY
# ============================================================

@dataclass
class VerificationQuery:
    """
    Admin listing of verification records.

    page and limit are clamped; unknown sort keys are rejected.
    """

    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    search: Optional[str] = None
    verified: Optional[bool] = None
    """None lists all records."""
    sort_by: str = "createdAt"
    sort_order: str = "desc"

    def __post_init__(self):
        self.page = clamp_page(self.page)
        self.limit = clamp_limit(self.limit)
        self.search = (self.search or "").strip() or None
        self.sort_order = str(self.sort_order).lower()

        if self.sort_by not in VERIFICATION_SORT_FIELDS:
            raise InvalidStateError(
                f"Unsupported sort field: {self.sort_by}",
                code="VAL_INVALID_QUERY",
                details={"allowed": sorted(VERIFICATION_SORT_FIELDS)},
            )
        if self.sort_order not in SORT_ORDERS:
            raise InvalidStateError(
                f"Unsupported sort order: {self.sort_order}",
                code="VAL_INVALID_QUERY",
            )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def to_params(self) -> Dict[str, str]:
        """Query-string parameters for GET /admin/verifications."""
        params = {
            "page": str(self.page),
            "limit": str(self.limit),
            "sortBy": self.sort_by,
            "sortOrder": self.sort_order,
        }
        if self.search:
            params["search"] = self.search
        if self.verified is not None:
            params["verified"] = "true" if self.verified else "false"
        return params


@dataclass
class VerificationPage:
    """One page of verification records."""

    items: List[VerificationRecord] = field(default_factory=list)
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    total: int = 0

    @property
    def total_pages(self) -> int:
        if self.total <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "page": self.page,
            "limit": self.limit,
            "total": self.total,
            "total_pages": self.total_pages,
        }


# ============================================================
# DONATION HISTORY FILTERS
# ============================================================

class DonationHistoryFilters:
    """Sanitizer for donor history filter input."""

    @staticmethod
    def validate(raw: Dict[str, Any]) -> Dict[str, Any]:
        """
        Keep only valid filters, in normalized form.

        Invalid values are dropped silently, never raised.

        Args:
            raw: Untrusted filter mapping (camelCase keys)

        Returns:
            Validated filters
        """
        validated: Dict[str, Any] = {}

        if raw.get("page"):
            validated["page"] = clamp_page(raw["page"])
        if raw.get("limit"):
            validated["limit"] = clamp_limit(raw["limit"])

        status = raw.get("status")
        if status and status in HISTORY_STATUSES:
            validated["status"] = status

        verified = raw.get("verified")
        if verified is not None and verified != "":
            text = str(verified).lower() if isinstance(verified, bool) else str(verified)
            if text in VERIFIED_FILTERS:
                validated["verified"] = text

        for key in ("startDate", "endDate"):
            if raw.get(key):
                instant = normalize_timestamp(raw[key])
                if isinstance(instant, datetime):
                    validated[key] = instant.date().isoformat()

        for key in ("charityId", "projectId"):
            if raw.get(key):
                parsed = _parse_int(raw[key])
                if parsed is not None and parsed > 0:
                    validated[key] = parsed

        sort_by = raw.get("sortBy")
        if sort_by and sort_by in HISTORY_SORT_FIELDS:
            validated["sortBy"] = sort_by

        sort_order = raw.get("sortOrder")
        if sort_order and sort_order in SORT_ORDERS:
            validated["sortOrder"] = sort_order

        dropped = set(raw) - set(validated)
        if dropped:
            logger.debug(f"Dropped history filters: {sorted(dropped)}")

        return validated
