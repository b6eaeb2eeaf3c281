"""
Caching layer for authorization decisions.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, Optional, Set, Tuple

from .exceptions import CacheCorruption
from .models import CacheEntry, Decision, DecisionSource

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str]


class PermissionCache:
    """
    Short-lived memoization of check results keyed by (principal, relation, resource).

    The remote service stays the source of truth; the cache only smooths bursts
    of identical checks within a page load. Entries are never returned past
    their expiry, the least recently used entry is evicted on overflow, and
    writes on a resource invalidate every entry that references it.

    One lock guards all operations, so instances can be shared by concurrent
    requests. Construct one per process and inject it; there is no module-level
    instance.
    """

    def __init__(
        self,
        ttl_seconds: float = 10.0,
        max_size: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the permission cache.

        Args:
            ttl_seconds: Default time-to-live for entries
            max_size: Maximum number of entries before LRU eviction
            clock: Monotonic time source, injectable for tests
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._by_resource: Dict[str, Set[CacheKey]] = {}
        # Bumped on every invalidation; both only ever increase.
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.invalidations = 0

    def get(self, principal: str, relation: str, resource: str) -> Optional[Decision]:
        """Return a cache-sourced Decision, or None on a miss."""
        key = (principal, relation, resource)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            try:
                allowed, expires_at = self._validate(entry)
            except CacheCorruption as e:
                logger.warning(f"Dropping corrupt cache entry for {key}: {e}")
                self._remove(key)
                self.misses += 1
                return None

            if self._clock() >= expires_at:
                self._remove(key)
                self.misses += 1
                return None

            self._entries.move_to_end(key)
            self.hits += 1

        return Decision(
            allowed=allowed,
            source=DecisionSource.CACHE,
            resource=resource,
            relation=relation,
            principal=principal,
        )

    def put(
        self,
        principal: str,
        relation: str,
        resource: str,
        allowed: bool,
        ttl: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """
        Cache a check result for ``ttl`` seconds (default ``ttl_seconds``).

        When ``generation`` is given (from ``generation(resource)`` taken
        before the remote call) and the resource was invalidated since, the
        result is stale and is not stored.

        Returns:
            True if the entry was stored
        """
        ttl = self.ttl_seconds if ttl is None else ttl
        if ttl <= 0:
            return False
        key = (principal, relation, resource)
        with self._lock:
            if generation is not None and generation != self._generation(resource):
                logger.debug(f"Discarding stale check result for {key}")
                return False
            if key in self._entries:
                self._entries.move_to_end(key)
            else:
                while len(self._entries) >= self.max_size:
                    self._evict_least_recently_used()
            self._entries[key] = CacheEntry(allowed=bool(allowed), expires_at=self._clock() + ttl)
            self._by_resource.setdefault(resource, set()).add(key)
        return True

    def generation(self, resource: str) -> int:
        """Current invalidation generation of a resource."""
        with self._lock:
            return self._generation(resource)

    def invalidate_resource(self, resource: str) -> int:
        """Remove all entries for a resource. Returns the number removed."""
        with self._lock:
            self._generations[resource] = self._generations.get(resource, 0) + 1
            keys = self._by_resource.pop(resource, set())
            for key in keys:
                self._entries.pop(key, None)
            self.invalidations += len(keys)
        if keys:
            logger.debug(f"Invalidated {len(keys)} cache entries for {resource}")
        return len(keys)

    def invalidate_principal(self, principal: str) -> int:
        """Remove all entries for a principal."""
        with self._lock:
            keys = [k for k in self._entries if k[0] == principal]
            for key in keys:
                self._remove(key)
            self.invalidations += len(keys)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._entries.clear()
            self._by_resource.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
                "invalidations": self.invalidations,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @staticmethod
    def _validate(entry) -> Tuple[bool, float]:
        if not isinstance(entry, CacheEntry):
            raise CacheCorruption(f"unexpected entry type {type(entry).__name__}")
        if not isinstance(entry.allowed, bool) or not isinstance(entry.expires_at, (int, float)):
            raise CacheCorruption("entry fields have unexpected types")
        return entry.allowed, float(entry.expires_at)

    def _generation(self, resource: str) -> int:
        # Caller holds the lock.
        return self._epoch + self._generations.get(resource, 0)

    def _remove(self, key: CacheKey) -> None:
        # Caller holds the lock.
        self._entries.pop(key, None)
        keys = self._by_resource.get(key[2])
        if keys is not None:
            keys.discard(key)
            if not keys:
                del self._by_resource[key[2]]

    def _evict_least_recently_used(self) -> None:
        key = next(iter(self._entries))
        self._remove(key)
        self.evictions += 1
