"""
In-memory result cache with TTL, dependency links, tags and LRU eviction.

An entry is valid iff it has not expired (now - written_at < ttl_seconds)
and every key it depends on is itself present and valid. Dependency
invalidation is transitive: evicting an entry evicts everything that depends
on it, directly or indirectly.

Key properties:
- TTL is per entry and fixed at write time; reads never extend it
- Reads update LRU recency, writes insert as most recently used
- When full, the least recently used entry is evicted together with its
  dependents, so no valid entry ever points at a missing dependency
- invalidate_by_tag() drops every entry carrying any of the given tags

All mutation happens under a single lock, so one ResultCache can be shared
by asyncio tasks and threads alike. Dependency cycles are treated as an
internal inconsistency: the offending entry is dropped and reads of it miss.

Example:
    cache = ResultCache(capacity=500)
    cache.set("topology:prod", entities, ttl_seconds=300, tags={"guid-1"})
    cache.set("health:prod", score, ttl_seconds=30, depends_on={"topology:prod"})

    cache.invalidate_by_tag("guid-1")   # drops both entries
    assert cache.get("health:prod") is None
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from kafka_query import metrics
from kafka_query.exceptions import CacheInconsistencyError

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 500


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached value with its expiry, dependencies and tags.

    Attributes:
        key: Cache key the entry is stored under
        value: Cached value (returned by reference on every hit)
        written_at: Clock reading when the entry was written
        ttl_seconds: Lifetime from written_at
        depends_on: Keys that must stay valid for this entry to be valid
        tags: Labels used for bulk invalidation (e.g. entity GUIDs)
    """

    key: str
    value: Any
    written_at: float
    ttl_seconds: float
    depends_on: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()

    @property
    def expires_at(self) -> float:
        return self.written_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Point-in-time cache counters."""

    hits: int
    misses: int
    evictions: int
    size: int
    capacity: int

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class ResultCache:
    """
    Bounded LRU cache with per-entry TTL and transitive dependency invalidation.

    Args:
        capacity: Maximum number of entries held at once
        clock: Monotonic clock in seconds; injectable for tests
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._clock = clock
        self._lock = threading.RLock()
        # Insertion order doubles as recency order: first key is least recent
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        # Reverse dependency index: key -> keys whose depends_on contains it
        self._dependents: dict[str, set[str]] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get(self, key: str) -> CacheEntry | None:
        """
        Look up a valid entry.

        Expired entries and entries with an invalid dependency are evicted
        on the way. A hit moves the entry to the most-recently-used position
        but never extends its TTL.

        Returns:
            The CacheEntry, or None on a miss
        """
        with self._lock:
            try:
                valid = self._is_valid(key, self._clock(), ())
            except CacheInconsistencyError as e:
                logger.warning("Dropping cache entry: %s", e)
                self._evict(key, "inconsistent")
                valid = False

            if not valid:
                self._misses += 1
                metrics.record_cache_lookup(hit=False)
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            metrics.record_cache_lookup(hit=True)
            return self._entries[key]

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        depends_on: Iterable[str] = (),
        tags: Iterable[str] = (),
    ) -> CacheEntry | None:
        """
        Write an entry, replacing any previous value for the key.

        Writes are last-writer-wins. Entries that depended on a replaced
        key keep depending on it and stay valid.

        Args:
            key: Cache key
            value: Value to cache
            ttl_seconds: Lifetime of the entry, must be positive
            depends_on: Keys this entry is derived from
            tags: Labels for invalidate_by_tag()

        Returns:
            The stored CacheEntry, or None if the entry was dropped because
            its dependencies would form a cycle
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        deps = frozenset(depends_on)
        with self._lock:
            if self._creates_cycle(key, deps):
                error = CacheInconsistencyError(key, "dependency cycle")
                logger.warning("Dropping cache write: %s", error)
                self._evict(key, "inconsistent")
                return None

            now = self._clock()
            previous = self._entries.pop(key, None)
            if previous is not None:
                self._unlink(key, previous.depends_on)
            else:
                self._make_room(now, protected=deps)

            entry = CacheEntry(
                key=key,
                value=value,
                written_at=now,
                ttl_seconds=ttl_seconds,
                depends_on=deps,
                tags=frozenset(tags),
            )
            self._entries[key] = entry
            for dep in deps:
                self._dependents.setdefault(dep, set()).add(key)

            missing = [d for d in deps if d not in self._entries]
            if missing:
                logger.debug("Cache entry %s depends on absent keys %s", key, missing)

            metrics.set_cache_size(len(self._entries))
            return entry

    def invalidate(self, key: str) -> int:
        """
        Evict an entry and every entry that transitively depends on it.

        Returns:
            Number of entries removed
        """
        with self._lock:
            return self._evict(key, "invalidated")

    def invalidate_by_tag(self, *tags: str) -> int:
        """
        Evict every entry whose tags intersect the given tags, with dependents.

        Returns:
            Number of entries removed
        """
        wanted = set(tags)
        with self._lock:
            victims = [k for k, e in self._entries.items() if e.tags & wanted]
            removed = sum(self._evict(k, "tag") for k in victims)
        if removed:
            logger.debug("Invalidated %d cache entries for tags %s", removed, sorted(wanted))
        return removed

    def purge_expired(self) -> int:
        """Evict all expired entries (and their dependents) now."""
        with self._lock:
            return self._purge_expired(self._clock())

    def clear(self) -> None:
        """Drop every entry. Statistics are kept."""
        with self._lock:
            self._entries.clear()
            self._dependents.clear()
            metrics.set_cache_size(0)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=len(self._entries),
                capacity=self.capacity,
            )

    def keys(self) -> list[str]:
        """Keys currently stored, least recently used first (validity not checked)."""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        """Validity check that does not touch recency or statistics."""
        if not isinstance(key, str):
            return False
        with self._lock:
            try:
                return self._is_valid(key, self._clock(), ())
            except CacheInconsistencyError:
                return False

    # -------------------------------------------------------------------------
    # Internals - callers must hold self._lock
    # -------------------------------------------------------------------------

    def _is_valid(self, key: str, now: float, path: tuple[str, ...]) -> bool:
        if key in path:
            raise CacheInconsistencyError(key, "dependency cycle")

        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(now):
            self._evict(key, "expired")
            return False

        for dep in entry.depends_on:
            if not self._is_valid(dep, now, path + (key,)):
                self._evict(key, "dependency")
                return False
        return True

    def _creates_cycle(self, key: str, deps: frozenset[str]) -> bool:
        """True if key is reachable from deps through existing dependency links."""
        seen: set[str] = set()
        stack = list(deps)
        while stack:
            current = stack.pop()
            if current == key:
                return True
            if current in seen:
                continue
            seen.add(current)
            entry = self._entries.get(current)
            if entry is not None:
                stack.extend(entry.depends_on)
        return False

    def _make_room(self, now: float, protected: frozenset[str]) -> None:
        if len(self._entries) < self.capacity:
            return
        self._purge_expired(now)
        while len(self._entries) >= self.capacity:
            victim = next((k for k in self._entries if k not in protected), None)
            if victim is None:
                victim = next(iter(self._entries))
            self._evict(victim, "lru")

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        return sum(self._evict(k, "expired") for k in expired)

    def _unlink(self, key: str, depends_on: frozenset[str]) -> None:
        for dep in depends_on:
            dependents = self._dependents.get(dep)
            if dependents is not None:
                dependents.discard(key)
                if not dependents:
                    del self._dependents[dep]

    def _evict(self, key: str, reason: str) -> int:
        """Remove key and all transitive dependents. Returns entries removed."""
        removed = 0
        stack = [key]
        while stack:
            current = stack.pop()
            stack.extend(self._dependents.pop(current, ()))
            entry = self._entries.pop(current, None)
            if entry is None:
                continue
            self._unlink(current, entry.depends_on)
            removed += 1
            metrics.record_eviction(reason if current == key else "dependency")

        if removed:
            self._evictions += removed
            logger.debug("Evicted %d cache entries starting at %s (%s)", removed, key, reason)
            metrics.set_cache_size(len(self._entries))
        return removed
