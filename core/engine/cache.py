# InsightGen - Session Result Cache
# ==================================
"""
In-memory caches for the resolution engine.

BoundedTTLCache is a thread-safe map with a fixed capacity and a fixed
time-to-live. Expired entries are removed lazily on lookup; when an insert
would exceed capacity, expired entries are purged first and then the
oldest-inserted entry is evicted.

SessionResultCache keys BoundedTTLCache on QuestionFingerprint and refuses
anything that is not an error-free template/direct result with SQL.

Both caches are constructed explicitly and injected where needed so tests can
build isolated copies.
"""

import copy
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Generic, Hashable, Optional, TypeVar

from .fingerprint import QuestionFingerprint, normalize_text
from .models import OrchestrationResult

logger = logging.getLogger(__name__)

K = TypeVar('K', bound=Hashable)
V = TypeVar('V')

DEFAULT_SESSION_CACHE_SIZE = 100
DEFAULT_SESSION_CACHE_TTL = 30 * 60


@dataclass
class CacheEntry(Generic[V]):
    """A cached value with its insertion time and hit count."""
    value: V
    inserted_at: float
    hit_count: int = 0

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now - self.inserted_at > ttl_seconds


class BoundedTTLCache(Generic[K, V]):
    """
    Thread-safe bounded cache with TTL expiry and oldest-inserted eviction.

    Example:
        cache = BoundedTTLCache(max_size=500, ttl_seconds=300)
        cache.set("pi", ["Pressure Injury", "pressure ulcer"])
        cache.get("pi")
    """

    def __init__(self, max_size: int, ttl_seconds: float,
                 clock: Callable[[], float] = time.time, name: str = "cache"):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of entries held at once
            ttl_seconds: Lifetime of an entry from insertion
            clock: Time source in seconds (injectable for tests)
            name: Label used in log messages
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: 'OrderedDict[K, CacheEntry[V]]' = OrderedDict()
        self._lock = Lock()
        self._stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {'hits': 0, 'misses': 0, 'evictions': 0, 'expirations': 0}

    def get_entry(self, key: K) -> Optional[CacheEntry[V]]:
        """Return the live entry for a key, counting the hit, or None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats['misses'] += 1
                return None

            if entry.is_expired(self._clock(), self.ttl_seconds):
                del self._entries[key]
                self._stats['expirations'] += 1
                self._stats['misses'] += 1
                logger.debug(f"{self.name} EXPIRED (key={str(key)[:32]})")
                return None

            entry.hit_count += 1
            self._stats['hits'] += 1
            return entry

    def get(self, key: K) -> Optional[V]:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: K, value: V) -> None:
        """Insert or replace a value; last write wins."""
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                self._purge_expired(now)
                while len(self._entries) >= self.max_size:
                    oldest_key, _ = self._entries.popitem(last=False)
                    self._stats['evictions'] += 1
                    logger.debug(f"{self.name} EVICT oldest entry (key={str(oldest_key)[:32]})")
            self._entries[key] = CacheEntry(value=value, inserted_at=now)

    def delete(self, key: K) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_where(self, predicate: Callable[[K], bool]) -> int:
        """Remove every entry whose key satisfies predicate."""
        with self._lock:
            doomed = [k for k in self._entries if predicate(k)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def cleanup_expired(self) -> int:
        """Remove all expired entries; returns the number removed."""
        with self._lock:
            return self._purge_expired(self._clock())

    def _purge_expired(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.is_expired(now, self.ttl_seconds)]
        for k in expired:
            del self._entries[k]
        self._stats['expirations'] += len(expired)
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._stats = self._empty_stats()
        logger.info(f"{self.name} CLEARED ({count} entries removed)")

    def stats(self) -> Dict[str, Any]:
        """Hit/miss counters, hit rate and entry age distribution."""
        with self._lock:
            total = self._stats['hits'] + self._stats['misses']
            hit_rate = (self._stats['hits'] / total * 100) if total > 0 else 0.0
            now = self._clock()
            ages = [now - e.inserted_at for e in self._entries.values()]
            return {
                'size': len(self._entries),
                'max_size': self.max_size,
                'ttl_seconds': self.ttl_seconds,
                **self._stats,
                'hit_rate': round(hit_rate, 1),
                'oldest_entry_age_seconds': round(max(ages), 1) if ages else 0,
                'newest_entry_age_seconds': round(min(ages), 1) if ages else 0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: K) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock(), self.ttl_seconds)


class SessionResultCache:
    """
    Maps a QuestionFingerprint to a completed resolution.

    Funnel and error results, and results without SQL, are refused: they are
    either incomplete or not reproducible without fresh input.

    Example:
        cache = SessionResultCache(max_size=100, ttl_seconds=1800)
        fp = QuestionFingerprint.create("count of active wounds", "C1", model_id="m1")
        if cache.get(fp) is None:
            result = orchestrator.resolve(...)
            cache.set(fp, result)
    """

    def __init__(self, max_size: int = DEFAULT_SESSION_CACHE_SIZE,
                 ttl_seconds: float = DEFAULT_SESSION_CACHE_TTL,
                 clock: Callable[[], float] = time.time):
        self._cache: BoundedTTLCache[QuestionFingerprint, OrchestrationResult] = BoundedTTLCache(
            max_size=max_size, ttl_seconds=ttl_seconds, clock=clock, name="Session cache"
        )
        self._rejected = 0
        self._rejected_lock = Lock()

    @property
    def max_size(self) -> int:
        return self._cache.max_size

    @property
    def ttl_seconds(self) -> float:
        return self._cache.ttl_seconds

    def get(self, fingerprint: QuestionFingerprint) -> Optional[OrchestrationResult]:
        """Return a copy of the cached result, or None on miss/expiry."""
        entry = self.get_entry(fingerprint)
        return entry.value if entry is not None else None

    def get_entry(self, fingerprint: QuestionFingerprint) -> Optional[CacheEntry[OrchestrationResult]]:
        """Like get, but returns the entry (copied value) including hit count."""
        entry = self._cache.get_entry(fingerprint)
        if entry is None:
            return None
        logger.info(f"Cache HIT for query (key={fingerprint.digest[:8]}, hits={entry.hit_count})")
        return CacheEntry(value=copy.deepcopy(entry.value), inserted_at=entry.inserted_at,
                          hit_count=entry.hit_count)

    def set(self, fingerprint: QuestionFingerprint, value: OrchestrationResult) -> bool:
        """
        Store a result if it is cache-eligible.

        Args:
            fingerprint: Key for the request that produced value
            value: Resolution result

        Returns:
            True if stored, False if refused
        """
        if not value.is_cacheable():
            with self._rejected_lock:
                self._rejected += 1
            logger.debug(f"Cache REFUSED {value.mode.value} result (key={fingerprint.digest[:8]})")
            return False

        stored = copy.deepcopy(value)
        stored.cache_hit = None
        self._cache.set(fingerprint, stored)
        logger.info(f"Cache SET for query (key={fingerprint.digest[:8]}, mode={value.mode.value})")
        return True

    def invalidate(self, customer_id: Optional[str] = None,
                   schema_version: Optional[str] = None) -> int:
        """
        Remove entries for a customer and/or schema version.

        With neither argument, removes everything.

        Returns:
            Number of entries removed
        """
        customer = normalize_text(customer_id) if customer_id else None
        schema = normalize_text(schema_version) if schema_version else None

        def matches(fp: QuestionFingerprint) -> bool:
            if customer and fp.customer_id != customer:
                return False
            if schema and fp.schema_version != schema:
                return False
            return True

        removed = self._cache.delete_where(matches)
        logger.info(f"Cache INVALIDATE customer={customer or '*'} schema={schema or '*'} ({removed} removed)")
        return removed

    def cleanup_expired(self) -> int:
        return self._cache.cleanup_expired()

    def clear(self) -> None:
        self._cache.clear()
        with self._rejected_lock:
            self._rejected = 0

    def stats(self) -> Dict[str, Any]:
        stats = self._cache.stats()
        with self._rejected_lock:
            stats['rejected'] = self._rejected
        return stats

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, fingerprint: QuestionFingerprint) -> bool:
        return fingerprint in self._cache
