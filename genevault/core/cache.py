"""
Bounded result caches for the storage orchestrator.

Entries are opportunistic: a missing entry only costs a repeated upload or
decryption, never a wrong answer. Eviction is oldest-inserted-first.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Cache counters."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups served from the cache."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return round(self.hits / total, 2)


class CacheStore:
    """
    Capacity-bounded key/value cache with FIFO eviction.

    One instance per logical cache (store results, decrypted retrievals);
    instances are constructed by the caller and injected into the
    orchestrator, so tests get isolated caches.
    """

    def __init__(self, capacity: int = 100, name: str = "cache"):
        """
        Initialize cache.

        Args:
            capacity: Maximum number of entries
            name: Label used in logs and stats
        """
        if capacity < 1:
            raise ValueError(f"Cache capacity must be positive, got {capacity}")

        self.capacity = capacity
        self.name = name
        self._entries: "OrderedDict[Hashable, Any]" = OrderedDict()
        self.stats = CacheStats()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, counting a hit or a miss."""
        if key in self._entries:
            self.stats.hits += 1
            return self._entries[key]
        self.stats.misses += 1
        return None

    def put(self, key: Hashable, value: Any):
        """
        Insert or replace an entry, evicting the oldest ones beyond capacity.

        A replaced entry counts as newly inserted.
        """
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = value

        while len(self._entries) > self.capacity:
            evicted_key, _ = self._entries.popitem(last=False)
            self.stats.evictions += 1
            logger.debug(f"{self.name}: evicted {str(evicted_key)[:16]}...")

    def invalidate(self, key: Hashable) -> bool:
        """Drop one entry. Returns True if it existed."""
        return self._entries.pop(key, None) is not None

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Drop every entry whose key matches. Returns the number dropped."""
        doomed = [key for key in self._entries if predicate(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self, reset_stats: bool = True):
        """Remove all entries."""
        self._entries.clear()
        if reset_stats:
            self.stats = CacheStats()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Counters plus current size."""
        return {
            "name": self.name,
            "size": len(self._entries),
            "capacity": self.capacity,
            "hits": self.stats.hits,
            "misses": self.stats.misses,
            "evictions": self.stats.evictions,
            "hit_rate": self.stats.hit_rate,
        }
