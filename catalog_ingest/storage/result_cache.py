# catalog_ingest/storage/result_cache.py

"""In-memory TTL cache for filtered, sorted aggregate results."""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from catalog_ingest.config.settings import Settings
from catalog_ingest.filters.listing_filter import FilterBounds

logger = logging.getLogger("catalog_ingest.cache")

_KEY_VERSION = 3


@dataclass
class CacheEntry:
    """A cached value and its absolute expiry time."""

    value: list[Any]
    expires_at: float


def build_cache_key(
    query: str,
    platform: str,
    bounds: FilterBounds | None = None,
    headless: bool = False,
) -> str:
    """Build the canonical cache key for an aggregate request.

    Pagination (offset / limit) is absent so one entry
    serves every page of the same result set.
    """
    payload: dict[str, Any] = {
        "v": _KEY_VERSION,
        "q": query.strip(),
        "platform": platform.upper(),
        **(bounds or FilterBounds()).as_key(),
        "headless": headless or None,
    }
    return json.dumps(payload, sort_keys=True, ensure_ascii=False)


class ResultCache:
    """Key → listing-array store with a fixed default TTL.

    One instance is created at process start and injected wherever it is
    needed.  Concurrent readers/writers may race; the worst case is a
    redundant upstream fetch.
    """

    def __init__(self, ttl: float | None = None) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._ttl: float = (
            ttl if ttl is not None else Settings.RESULT_CACHE_TTL
        )

    def get(self, key: str) -> list[Any] | None:
        """Return a copy of the cached value, or ``None`` on miss/expiry."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if time.time() >= entry.expires_at:
            del self._entries[key]
            logger.debug("Cache entry expired for %s", key)
            return None
        logger.info("Cache hit for %s (%d items)", key, len(entry.value))
        return list(entry.value)

    def set(
        self,
        key: str,
        value: list[Any],
        ttl: float | None = None,
    ) -> None:
        """Store a copy of ``value`` for ``ttl`` seconds (default TTL if None)."""
        lifetime = ttl if ttl is not None else self._ttl
        self._entries[key] = CacheEntry(
            value=list(value),
            expires_at=time.time() + lifetime,
        )
        logger.info(
            "Cached %d items for %s (ttl=%.0fs)",
            len(value),
            key,
            lifetime,
        )

    def clear(self) -> int:
        """Purge all cached entries.

        Returns the number of entries that were removed.
        """
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cache manually purged (%d entries removed)", count)
        return count

    def evict_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = time.time()
        expired = [
            k for k, e in self._entries.items() if now >= e.expires_at
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Evicted %d expired cache entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
