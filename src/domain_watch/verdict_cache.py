"""
Time-bounded verdict cache.

A process-local, best-effort map from a lookup key to a verdict. Entries
older than their TTL are reported as absent and replaced on the next write
for the same key; a cold cache is always correct.
"""

import time
from typing import Callable, Optional

from .models import CacheEntry

DEFAULT_TTL_SECONDS = 15 * 60


class VerdictCache:
    """
    TTL cache shared by the verdict sources.

    Writes are last-write-wins per key. All methods are synchronous, so on a
    single event loop no entry is ever observed half-written.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the cache.

        Args:
            ttl_seconds: Default lifetime of an entry
            clock: Monotonic time source in seconds (defaults to time.monotonic)
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str):
        """
        Look up a verdict.

        Returns:
            The cached verdict, or None when absent or expired
        """
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.verdict

    def put(self, key: str, verdict, ttl: Optional[float] = None) -> CacheEntry:
        """
        Store a verdict, replacing any previous (possibly expired) entry.

        Args:
            key: Lookup key
            verdict: The verdict to store
            ttl: Lifetime in seconds (defaults to the cache TTL)

        Returns:
            The stored CacheEntry
        """
        lifetime = self._ttl if ttl is None else ttl
        if lifetime <= 0:
            raise ValueError(f"ttl must be positive, got {lifetime}")
        now = self._clock()
        entry = CacheEntry(key=key, verdict=verdict, stored_at=now, expires_at=now + lifetime)
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> bool:
        """Drop a single key. Returns True if it was present."""
        return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
