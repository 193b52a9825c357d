"""
Donation Verification - Timestamp Normalizer.

============================================================
PURPOSE
============================================================
Converts every timestamp shape seen upstream into one
canonical, UTC-aware instant.

INPUT SHAPES:
- Chain clients:   epoch SECONDS (number or 10-digit string)
- Relational store: naive UTC strings ("2024-01-15 10:30:00")
- Native values:   datetime / date objects

RULES:
- Numbers and exactly-10-digit strings are epoch seconds
- Strings without "Z" or an offset are UTC, never local time
- Naive datetimes are UTC
- None yields UNKNOWN_TIMESTAMP
- Anything unparsable yields INVALID_TIMESTAMP
- NEVER raises

Formatting (locale, display zone) is a presentation
concern; to_zone() is provided for convenience only.

============================================================
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


logger = logging.getLogger(__name__)


DEFAULT_DISPLAY_ZONE = "Europe/Bucharest"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_EPOCH_SECONDS_PATTERN = re.compile(r"[0-9]{10}")

# "Z" or +HH:MM / -HHMM / +HH at the end of the time part
_ZONE_DESIGNATOR_PATTERN = re.compile(r"(?:[zZ]|([+-])([0-9]{2})(?::?([0-9]{2}))?)$")

_DATE_ONLY_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


# ============================================================
# SENTINELS
# ============================================================

class UnknownTimestamp:
    """Sentinel type: no timestamp was provided."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNKNOWN_TIMESTAMP"


class InvalidTimestamp:
    """Sentinel type: a timestamp was provided but is not a valid instant."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "INVALID_TIMESTAMP"


UNKNOWN_TIMESTAMP = UnknownTimestamp()
INVALID_TIMESTAMP = InvalidTimestamp()

NormalizedTimestamp = Union[datetime, UnknownTimestamp, InvalidTimestamp]


# ============================================================
# NORMALIZATION
# ============================================================

def normalize_timestamp(value: Any) -> NormalizedTimestamp:
    """
    Normalize a raw timestamp into a UTC-aware datetime.

    Args:
        value: Epoch seconds, ISO string, datetime, date or None

    Returns:
        Aware datetime in UTC, UNKNOWN_TIMESTAMP or INVALID_TIMESTAMP
    """
    if value is None:
        return UNKNOWN_TIMESTAMP

    # bool is an int subclass but never a timestamp
    if isinstance(value, bool):
        return INVALID_TIMESTAMP

    if isinstance(value, (int, float, Decimal)):
        return _from_epoch_seconds(value)

    if isinstance(value, str):
        text = value.strip()
        if _EPOCH_SECONDS_PATTERN.fullmatch(text):
            return _from_epoch_seconds(int(text))
        return _from_iso_string(text)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)

    logger.debug(f"Unsupported timestamp type: {type(value).__name__}")
    return INVALID_TIMESTAMP


def _from_epoch_seconds(seconds: Union[int, float, Decimal]) -> NormalizedTimestamp:
    """Epoch seconds to instant, via milliseconds."""
    try:
        milliseconds = Decimal(str(seconds)) * 1000
        return _EPOCH + timedelta(milliseconds=float(milliseconds))
    except (OverflowError, ValueError, InvalidOperation):
        return INVALID_TIMESTAMP


def _from_iso_string(text: str) -> NormalizedTimestamp:
    """Parse an ISO-8601 string, treating zone-less values as UTC."""
    if not text:
        return INVALID_TIMESTAMP

    if _DATE_ONLY_PATTERN.fullmatch(text):
        try:
            return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
        except ValueError:
            return INVALID_TIMESTAMP

    # fromisoformat before Python 3.11 takes neither "Z" nor +HH / +HHMM
    zone = _ZONE_DESIGNATOR_PATTERN.search(text)
    if zone is None or zone.group(1) is None:
        base = text if zone is None else text[:zone.start()]
        text = base + "+00:00"
    else:
        sign, hours, minutes = zone.groups()
        text = f"{text[:zone.start()]}{sign}{hours}:{minutes or '00'}"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return INVALID_TIMESTAMP

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError:
        return INVALID_TIMESTAMP


def is_valid_instant(value: Any) -> bool:
    """Check if a normalized value is a real instant (not a sentinel)."""
    return isinstance(value, datetime)


def to_zone(
    instant: NormalizedTimestamp,
    tz_name: str = DEFAULT_DISPLAY_ZONE,
) -> NormalizedTimestamp:
    """
    Convert a canonical instant to a display zone.

    Sentinels pass through unchanged. Unknown zone names
    fall back to UTC.
    """
    if not isinstance(instant, datetime):
        return instant
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown display zone {tz_name!r}, using UTC")
        return instant.astimezone(timezone.utc)
    return instant.astimezone(zone)


# ============================================================
# NORMALIZER
# ============================================================

class TimestampNormalizer:
    """
    Injectable normalizer.

    Every call site funnels through normalize(); the display
    zone is carried along for presentation layers.
    """

    def __init__(self, display_zone: str = DEFAULT_DISPLAY_ZONE):
        self.display_zone = display_zone

    def normalize(self, value: Any) -> NormalizedTimestamp:
        return normalize_timestamp(value)

    def __call__(self, value: Any) -> NormalizedTimestamp:
        return normalize_timestamp(value)

    def for_display(self, value: Any) -> NormalizedTimestamp:
        """Normalize, then convert to the display zone."""
        return to_zone(normalize_timestamp(value), self.display_zone)

    def instant_or_none(self, value: Any):
        """Normalize, mapping both sentinels to None (for storage fields)."""
        normalized = normalize_timestamp(value)
        return normalized if isinstance(normalized, datetime) else None
