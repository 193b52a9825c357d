"""
Donation Verification - Request Cache.

============================================================
PURPOSE
============================================================
Explicit, owned TTL cache for statistics and status reads.

- One instance per owner (passed in, never a module global)
- Per-call TTL: an entry is fresh while its age < ttl_ms
- Fetch errors propagate and are never cached
- Explicit invalidation entry points

CONCURRENCY:
Single event loop only. Check and write happen without an
await in between, so no lock is needed. Not thread-safe.

============================================================
"""

import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union


logger = logging.getLogger(__name__)


DEFAULT_TTL_MS = 5 * 60 * 1000

PLATFORM_STATS_KEY = "stats:platform"


# ============================================================
# CACHE KEYS
# ============================================================

def donor_stats_key(donor_id: str) -> str:
    return f"stats:donor:{donor_id}"


def charity_stats_key(charity_id: str) -> str:
    return f"stats:charity:{charity_id}"


def verification_key(donation_id: str) -> str:
    return f"verification:{donation_id}"


# ============================================================
# CACHE ENTRY
# ============================================================

@dataclass
class CacheEntry:
    """Cached value with the clock reading at store time."""

    value: Any
    created_at: float
    hits: int = 0

    def age_ms(self, now: float) -> float:
        """Age of the entry in milliseconds."""
        return (now - self.created_at) * 1000


# ============================================================
# REQUEST CACHE
# ============================================================

FetchFn = Callable[[], Union[Any, Awaitable[Any]]]


class RequestCache:
    """
    Key/value cache with per-entry age checks.

    Usage:
        cache = RequestCache(default_ttl_ms=60_000)
        stats = await cache.get_or_fetch(
            donor_stats_key(donor_id),
            lambda: store.list_donor_donations(donor_id),
        )
    """

    MAX_ENTRIES = 1000

    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize cache.

        Args:
            default_ttl_ms: TTL used when get_or_fetch gets none
            clock: Seconds clock (monotonic by default)
        """
        self._default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    @property
    def default_ttl_ms(self) -> int:
        return self._default_ttl_ms

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    # --------------------------------------------------------
    # READ
    # --------------------------------------------------------

    def get(self, key: str, ttl_ms: Optional[int] = None) -> Optional[Any]:
        """
        Get a fresh cached value without fetching.

        Returns:
            Cached value, or None if absent or stale
        """
        entry = self._fresh_entry(key, ttl_ms)
        return entry.value if entry else None

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: FetchFn,
        ttl_ms: Optional[int] = None,
    ) -> Any:
        """
        Return the cached value for key, fetching it when stale.

        Args:
            key: Cache key
            fetch_fn: Zero-arg callable, sync or async
            ttl_ms: Maximum acceptable age (default TTL if None)

        Returns:
            Cached or freshly fetched value

        Raises:
            Whatever fetch_fn raises; nothing is cached then
        """
        entry = self._fresh_entry(key, ttl_ms)
        if entry is not None:
            entry.hits += 1
            self._hits += 1
            logger.debug(f"Cache hit for {key}")
            return entry.value

        self._misses += 1
        logger.debug(f"Cache miss for {key}")

        value = fetch_fn()
        if inspect.isawaitable(value):
            value = await value

        self.put(key, value)
        return value

    def _fresh_entry(self, key: str, ttl_ms: Optional[int]) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        ttl = self._default_ttl_ms if ttl_ms is None else ttl_ms
        if entry.age_ms(self._clock()) >= ttl:
            return None
        return entry

    # --------------------------------------------------------
    # WRITE
    # --------------------------------------------------------

    def put(self, key: str, value: Any) -> None:
        """Store a value stamped with the current clock reading."""
        self._entries[key] = CacheEntry(value=value, created_at=self._clock())

        if len(self._entries) > self.MAX_ENTRIES:
            self._evict_expired()

    def _evict_expired(self) -> None:
        """Drop entries older than the default TTL."""
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if entry.age_ms(now) >= self._default_ttl_ms
        ]
        for key in expired:
            del self._entries[key]

        logger.debug(f"Evicted {len(expired)} expired cache entries")

    # --------------------------------------------------------
    # INVALIDATION
    # --------------------------------------------------------

    def invalidate(self, key: Optional[str] = None) -> None:
        """
        Clear one entry, or the whole cache when key is None.
        """
        if key is None:
            count = len(self._entries)
            self._entries.clear()
            logger.info(f"Cache cleared ({count} entries)")
            return

        if self._entries.pop(key, None) is not None:
            logger.debug(f"Cache entry invalidated: {key}")

    def invalidate_prefix(self, prefix: str) -> int:
        """
        Clear every entry whose key starts with prefix.

        Returns:
            Number of entries removed
        """
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries under {prefix}")
        return len(keys)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total = self._hits + self._misses
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": (self._hits / total * 100) if total > 0 else 0.0,
        }


def donation_cache_keys(
    donation_id: str,
    donor_id: Optional[str] = None,
    charity_id: Optional[str] = None,
) -> List[str]:
    """Cache keys a change to one donation's verification affects."""
    keys = [verification_key(donation_id), PLATFORM_STATS_KEY]
    if donor_id is not None:
        keys.append(donor_stats_key(donor_id))
    if charity_id is not None:
        keys.append(charity_stats_key(charity_id))
    return keys
