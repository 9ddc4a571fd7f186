"""
Query result cache with TTL expiry and oldest-first eviction.

Keys combine the normalized query text, the filters and the requested limit,
so a filtered query never reuses an unfiltered result set.
"""

import json
import time
import hashlib
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class QueryCache:
    """
    Bounded cache of ranked result lists.

    Usage:
        cache = QueryCache(max_size=100, default_ttl=300)
        key = QueryCache.make_key(query, filters, limit)
        results = cache.get(key)
        if results is None:
            results = await run_query()
            cache.set(key, results)
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        if max_size <= 0:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock or time.monotonic
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    @staticmethod
    def make_key(
        query: str,
        filters: Optional[dict] = None,
        limit: Optional[int] = None,
        sources: Optional[list[str]] = None,
    ) -> str:
        """Stable key from the normalized query, sorted filters, limit and sources."""
        payload = json.dumps(
            {
                "query": " ".join(query.lower().split()),
                "filters": filters or {},
                "limit": limit,
                "sources": list(sources) if sources is not None else None,
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode()).hexdigest()[:32]

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            logger.debug(f"Query cache entry {key[:8]} expired")
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Store value; evicts the single oldest entry when full."""
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_size:
            oldest, _ = self._entries.popitem(last=False)
            logger.debug(f"Query cache full, evicted {oldest[:8]}")

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            ttl=self._default_ttl if ttl is None else ttl,
        )

    def clear(self) -> None:
        self._entries.clear()

    @property
    def size(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
