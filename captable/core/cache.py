"""
In-memory cache with TTL (time-to-live) expiration.

Backs the read-heavy list endpoints (projects, cap tables, investors).

- **Change-driven invalidation** — the cache listens on the change feed and
  drops every prefix a committed write can affect, so a write in one service
  also evicts views assembled by another (a new allocation invalidates the
  cap table investor listing).
- **TTL-based expiry** — bounds staleness even if an event is missed.
- **Max-size eviction** — the oldest entry is evicted (FIFO) once
  ``max_size`` is reached.

The async event loop is single-threaded, so plain dict operations need no
locking.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from captable.core.config import settings
from captable.core.events import ChangeEvent, ChangeFeed, change_feed

logger = logging.getLogger(__name__)

# Cache key prefixes owned by each service
PROJECTS_PREFIX = "projects:"
CAP_TABLES_PREFIX = "cap_tables:"
INVESTORS_PREFIX = "investors:"

# table name -> prefixes to drop when that table changes
INVALIDATION_MAP: Dict[str, Tuple[str, ...]] = {
    "projects": (PROJECTS_PREFIX, CAP_TABLES_PREFIX),
    "cap_tables": (CAP_TABLES_PREFIX,),
    "cap_table_investors": (CAP_TABLES_PREFIX, INVESTORS_PREFIX),
    "investors": (INVESTORS_PREFIX, CAP_TABLES_PREFIX),
    "subscriptions": (INVESTORS_PREFIX, CAP_TABLES_PREFIX),
    "token_allocations": (INVESTORS_PREFIX, CAP_TABLES_PREFIX),
}


class CacheEntry:
    """A single cached value with creation timestamp."""

    __slots__ = ("value", "created_at")

    def __init__(self, value: Any):
        self.value = value
        self.created_at = time.monotonic()

    def is_expired(self, ttl: float) -> bool:
        return (time.monotonic() - self.created_at) > ttl


class TTLCache:
    """
    Simple in-memory cache with TTL expiration and max-size eviction.

    Parameters
    ----------
    ttl : float
        Time-to-live in seconds for each cache entry.
    max_size : int
        Maximum number of entries. When exceeded, the oldest entry is evicted.
    enabled : bool
        When False, all operations are no-ops.
    """

    def __init__(
        self,
        ttl: float = 30.0,
        max_size: int = 1000,
        enabled: bool = True,
    ):
        self._store: Dict[str, CacheEntry] = {}
        self._ttl = ttl
        self._max_size = max_size
        self._enabled = enabled
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Retrieve a cached value by key.  Returns ``None`` on miss or expiry."""
        if not self._enabled:
            return None

        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self._ttl):
            del self._store[key]
            self._misses += 1
            logger.debug("Cache EXPIRED: %s", key)
            return None

        self._hits += 1
        logger.debug("Cache HIT: %s", key)
        return entry.value

    def set(self, key: str, value: Any) -> None:
        if not self._enabled:
            return

        if len(self._store) >= self._max_size and key not in self._store:
            oldest_key = next(iter(self._store))
            del self._store[oldest_key]
            logger.debug("Cache EVICTED (max_size): %s", oldest_key)

        self._store[key] = CacheEntry(value)
        logger.debug("Cache SET: %s", key)

    def invalidate(self, *prefixes: str) -> int:
        """
        Remove all entries whose keys start with any of the given prefixes.

        Returns the number of evicted entries.
        """
        if not self._enabled:
            return 0

        keys_to_remove = [k for k in self._store if any(k.startswith(p) for p in prefixes)]
        for k in keys_to_remove:
            del self._store[k]

        if keys_to_remove:
            logger.debug(
                "Cache INVALIDATED %d entries matching prefixes %s",
                len(keys_to_remove),
                prefixes,
            )
        return len(keys_to_remove)

    def on_change(self, event: ChangeEvent) -> None:
        """Change-feed listener: drop the prefixes affected by ``event.table``."""
        prefixes = INVALIDATION_MAP.get(event.table)
        if prefixes:
            self.invalidate(*prefixes)

    def bind(self, feed: ChangeFeed) -> Callable[[], None]:
        """Subscribe this cache to ``feed``; returns the unsubscribe callable."""
        return feed.on_change(self.on_change)

    def clear(self) -> None:
        count = len(self._store)
        self._store.clear()
        if count:
            logger.debug("Cache CLEARED (%d entries)", count)

    def get_stats(self) -> dict:
        """Return cache statistics for the health-check endpoint."""
        total = self._hits + self._misses
        return {
            "enabled": self._enabled,
            "size": len(self._store),
            "max_size": self._max_size,
            "ttl_seconds": self._ttl,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": f"{(self._hits / total * 100):.1f}%" if total > 0 else "N/A",
        }


# ── Global cache instance, kept in step with the change feed ──
cache = TTLCache(
    ttl=settings.CACHE_TTL,
    max_size=settings.CACHE_MAX_SIZE,
    enabled=settings.CACHE_ENABLED,
)
cache.bind(change_feed)
