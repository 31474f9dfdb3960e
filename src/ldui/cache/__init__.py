# =============================================================================
# Cache Module
# =============================================================================
# Byte-budgeted in-memory content cache. Nothing is persisted: the forum is
# the source of truth and everything here can be re-fetched.
# =============================================================================

from ldui.cache.store import (
    CacheEntry,
    CacheError,
    CacheEvictionRace,
    CacheFullError,
    ContentCache,
    DEFAULT_BUDGET_BYTES,
)

__all__ = [
    "CacheEntry",
    "CacheError",
    "CacheEvictionRace",
    "CacheFullError",
    "ContentCache",
    "DEFAULT_BUDGET_BYTES",
]
