# =============================================================================
# Content Cache
# =============================================================================
# In-memory store for fetched content: topic pages, post pages, decoded
# images and encoded Sixel payloads, keyed by content key.
#
# Eviction policy:
#   - Every entry carries an estimated size in bytes
#   - After each insert, least-recently-accessed entries are evicted until
#     the total size fits the configured byte budget
#   - Pinned entries (the ones backing the active screen) are never evicted
#   - An entry that cannot fit without touching pinned entries is rejected,
#     so the resident size never exceeds the budget
#
# Locking:
#   Entries are spread over buckets by key hash, each with its own lock, so
#   unrelated writers don't serialize on one another. A short accounting lock
#   guards the running total and the eviction sweep.
# =============================================================================

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Generic, Hashable, Iterable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

# Default byte budget: 64 MiB (tunable via [cache] budget_bytes)
DEFAULT_BUDGET_BYTES = 64 * 1024 * 1024

# Number of lock-striped buckets
DEFAULT_BUCKETS = 16


@dataclass
class CacheEntry(Generic[K, V]):
    """
    A cached value plus its bookkeeping.

    Attributes:
        key: Content key the value is stored under.
        value: The cached value.
        size: Estimated size in bytes.
        last_access: Monotonic access tick (higher = more recent).
    """
    key: K
    value: V
    size: int
    last_access: int


class ContentCache(Generic[K, V]):
    """
    Byte-budgeted LRU cache with pinning.

    Usage:
        >>> cache = ContentCache(budget_bytes=1024)
        >>> cache.put(TopicPageKey(1), page, size=200)
        >>> cache.get(TopicPageKey(1))
        TopicPage(...)
        >>> cache.pin({TopicPageKey(1)})

    Attributes:
        budget_bytes: Maximum total estimated size of resident entries.
    """

    def __init__(
        self,
        budget_bytes: int = DEFAULT_BUDGET_BYTES,
        buckets: int = DEFAULT_BUCKETS,
    ) -> None:
        if budget_bytes <= 0:
            raise ValueError("Cache budget must be positive")
        self.budget_bytes = budget_bytes
        self._buckets: list[dict[K, CacheEntry[K, V]]] = [{} for _ in range(buckets)]
        self._locks = [threading.Lock() for _ in range(buckets)]
        self._accounting = threading.Lock()
        self._clock = itertools.count(1)
        self._total = 0
        self._pinned: frozenset[K] = frozenset()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def _bucket(self, key: K) -> int:
        return hash(key) % len(self._buckets)

    def get(self, key: K) -> V | None:
        """Return the value for key and mark it recently used, or None."""
        index = self._bucket(key)
        with self._locks[index]:
            entry = self._buckets[index].get(key)
            if entry is None:
                return None
            entry.last_access = next(self._clock)
            return entry.value

    def peek(self, key: K) -> V | None:
        """Return the value for key without touching its access time."""
        index = self._bucket(key)
        with self._locks[index]:
            entry = self._buckets[index].get(key)
            return entry.value if entry else None

    def require(self, key: K) -> V:
        """
        Return the value for a key the caller believes is resident.

        Raises:
            CacheEvictionRace: If the entry was evicted in the meantime.
        """
        value = self.peek(key)
        if value is None:
            raise CacheEvictionRace(f"{key} was evicted before use")
        return value

    def __contains__(self, key: object) -> bool:
        index = self._bucket(key)  # type: ignore[arg-type]
        with self._locks[index]:
            return key in self._buckets[index]

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets)

    @property
    def total_size(self) -> int:
        """Sum of estimated sizes of all resident entries."""
        return self._total

    def keys(self) -> list[K]:
        keys: list[K] = []
        for index, bucket in enumerate(self._buckets):
            with self._locks[index]:
                keys.extend(bucket)
        return keys

    def snapshot(self) -> dict[K, V]:
        """
        Copy of the current key -> value mapping, without touching access
        times. Values are shared, not copied; they are immutable.
        """
        values: dict[K, V] = {}
        for index, bucket in enumerate(self._buckets):
            with self._locks[index]:
                values.update((key, entry.value) for key, entry in bucket.items())
        return values

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def put(self, key: K, value: V, size: int) -> None:
        """
        Insert or replace an entry, then evict down to the budget.

        Raises:
            CacheFullError: If the entry cannot fit without evicting pinned
                            entries. The cache is left unchanged.
        """
        size = max(int(size), 1)
        with self._accounting:
            previous = self._size_of(key)
            pinned_total = self._pinned_size(exclude=key)
            if size + pinned_total > self.budget_bytes:
                raise CacheFullError(
                    f"{key} needs {size} bytes; budget {self.budget_bytes}, "
                    f"pinned {pinned_total}"
                )

            index = self._bucket(key)
            with self._locks[index]:
                self._buckets[index][key] = CacheEntry(
                    key=key, value=value, size=size, last_access=next(self._clock)
                )
            self._total += size - previous
            self._evict_locked(self.budget_bytes, protect=key)

    def discard(self, key: K) -> bool:
        """Remove an entry if present. Returns True if something was removed."""
        with self._accounting:
            return self._remove_locked(key)

    def pin(self, keys: Iterable[K]) -> None:
        """
        Replace the pinned set.

        Pinned keys may be absent; they are protected as soon as they arrive.
        Pinning touches resident entries so they count as recently used.
        """
        self._pinned = frozenset(keys)
        for key in self._pinned:
            self.get(key)

    @property
    def pinned(self) -> frozenset[K]:
        return self._pinned

    def evict_until(self, budget: int) -> list[K]:
        """
        Evict least-recently-used unpinned entries until total <= budget.

        Returns:
            Keys that were evicted, oldest first.
        """
        with self._accounting:
            return self._evict_locked(budget)

    def clear(self) -> None:
        with self._accounting:
            for index, bucket in enumerate(self._buckets):
                with self._locks[index]:
                    bucket.clear()
            self._total = 0

    # -------------------------------------------------------------------------
    # Internals (callers hold the accounting lock)
    # -------------------------------------------------------------------------

    def _size_of(self, key: K) -> int:
        index = self._bucket(key)
        with self._locks[index]:
            entry = self._buckets[index].get(key)
            return entry.size if entry else 0

    def _pinned_size(self, exclude: Any = None) -> int:
        return sum(self._size_of(key) for key in self._pinned if key != exclude)

    def _remove_locked(self, key: K) -> bool:
        index = self._bucket(key)
        with self._locks[index]:
            entry = self._buckets[index].pop(key, None)
        if entry is None:
            return False
        self._total -= entry.size
        return True

    def _evict_locked(self, budget: int, protect: Any = None) -> list[K]:
        if self._total <= budget:
            return []

        candidates: list[CacheEntry[K, V]] = []
        for index, bucket in enumerate(self._buckets):
            with self._locks[index]:
                candidates.extend(
                    entry for key, entry in bucket.items()
                    if key not in self._pinned and key != protect
                )
        candidates.sort(key=lambda entry: entry.last_access)

        evicted: list[K] = []
        for entry in candidates:
            if self._total <= budget:
                break
            if self._remove_locked(entry.key):
                evicted.append(entry.key)

        if evicted:
            logger.debug(f"Evicted {len(evicted)} cache entries, total now {self._total} bytes")
        return evicted


# =============================================================================
# Exceptions
# =============================================================================

class CacheError(Exception):
    """Base class for content cache errors."""
    pass


class CacheEvictionRace(CacheError):
    """An entry was evicted between being looked up and being used."""
    pass


class CacheFullError(CacheError):
    """An entry cannot fit in the budget without evicting pinned entries."""
    pass
