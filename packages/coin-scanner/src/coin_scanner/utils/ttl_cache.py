"""
Time-to-live caches for RPC responses and block-range log batches.

Uses OrderedDict so an optional size bound can evict the least recently
used entry in O(1).
"""

import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _Miss:
    """Sentinel returned by TTLCache.get on a miss."""

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    """A cached value and the time it was captured."""
    value: V
    captured_at: float


class TTLCache(Generic[K, V]):
    """
    Maps keys to values that expire after a fixed TTL.

    Expired entries are evicted lazily on the next lookup. A lookup of an
    absent or expired key returns MISS, so a cached None is still a hit.
    """

    def __init__(
        self,
        ttl: float,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        """
        Initialize the cache.

        Args:
            ttl: Seconds an entry stays valid
            max_entries: Optional LRU bound; None means unbounded
            clock: Time source, injectable for tests
        """
        if ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl}")
        if max_entries is not None and max_entries <= 0:
            raise ValueError(f"Cache size bound must be positive, got {max_entries}")

        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[K, CacheEntry[V]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: K) -> V:
        """Return the cached value, or MISS when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return MISS

        if self._clock() - entry.captured_at >= self.ttl:
            del self._entries[key]
            self.misses += 1
            return MISS

        self._entries.move_to_end(key)
        self.hits += 1
        return entry.value

    def put(self, key: K, value: V) -> None:
        """Store a value, replacing any previous entry for the key."""
        if key in self._entries:
            del self._entries[key]
        self._entries[key] = CacheEntry(value=value, captured_at=self._clock())

        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and self._clock() - entry.captured_at < self.ttl

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
        }


class ResponseCache(TTLCache[str, Any]):
    """RPC results keyed by request fingerprint (30s TTL by default)."""

    def __init__(self, ttl: float = 30.0, **kwargs: Any) -> None:
        super().__init__(ttl, **kwargs)


class RangeCache(TTLCache[Hashable, list]):
    """Raw log batches keyed by block range (5 minute TTL by default)."""

    def __init__(self, ttl: float = 300.0, **kwargs: Any) -> None:
        super().__init__(ttl, **kwargs)
