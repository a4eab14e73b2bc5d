"""
Expiring cache of per-ZIP ACS payloads on top of a KeyValueBackend.

All keys live under a version-stamped prefix (``acs_cache_v1.0_``), so
bumping the cache version orphans older entries and clear() never touches
unrelated keys in the same backend.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from ..utils.errors import StorageQuotaExceeded
from .base import KeyValueBackend
from .models import CacheEntry, CacheStats, variables_hash

logger = logging.getLogger(__name__)

DEFAULT_TTL_S = 30 * 24 * 60 * 60  # 30 days


class CacheStore:
    """
    TTL cache with quota-driven eviction of the oldest writes.

    Args:
        backend: Durable key/value store
        version: Cache format version, part of every key
        ttl_s: Lifetime of an entry in seconds
        evict_count: Entries dropped when the backend reports it is full
        max_size_bytes: Optional size budget for this namespace; exceeding it
            after a write evicts the oldest entries down to 80% of the budget
        clock: Returns the current time in epoch seconds
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        version: str = "1.0",
        ttl_s: float = DEFAULT_TTL_S,
        evict_count: int = 20,
        max_size_bytes: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_s <= 0:
            raise ValueError("ttl_s must be > 0")
        self.backend = backend
        self.version = version
        self.ttl_s = float(ttl_s)
        self.evict_count = evict_count
        self.max_size_bytes = max_size_bytes
        self.clock = clock
        self._lock = threading.RLock()

    @property
    def prefix(self) -> str:
        return f"acs_cache_v{self.version}_"

    def make_key(self, zip_code: str, variables: Iterable[str]) -> str:
        return f"{self.prefix}{zip_code}_{variables_hash(variables)}"

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def _decode(self, raw: str) -> CacheEntry:
        return CacheEntry.from_dict(json.loads(raw))

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Return the live entry for `key`, or None.

        Expired and unreadable entries are deleted on the way out.
        """
        with self._lock:
            raw = self.backend.get(key)
            if raw is None:
                return None
            try:
                entry = self._decode(raw)
            except ValueError as e:
                logger.warning(f"Dropping corrupt cache entry {key}: {e}")
                self.backend.delete(key)
                return None
            if entry.is_expired(self.clock()):
                self.backend.delete(key)
                return None
            return entry

    def put(self, key: str, data: dict[str, Any], metadata: Optional[dict[str, Any]] = None) -> CacheEntry:
        """
        Write an entry expiring ttl_s from now.

        If the backend is full, the evict_count oldest entries are removed
        and the write is retried once.

        Raises:
            StorageQuotaExceeded: the retry also failed
        """
        now = self.clock()
        entry = CacheEntry(
            data=dict(data),
            metadata={
                **(metadata or {}),
                "cached_at": datetime.fromtimestamp(now, timezone.utc).isoformat(),
                "cache_version": self.version,
            },
            cached_at=now,
            expiry=now + self.ttl_s,
        )
        raw = json.dumps(entry.to_dict())

        with self._lock:
            try:
                self.backend.set(key, raw)
            except StorageQuotaExceeded:
                evicted = self.evict_oldest(self.evict_count)
                logger.warning(f"Cache full, evicted {evicted} oldest entries; retrying write")
                self.backend.set(key, raw)

            self._enforce_budget(keep=key)
        return entry

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _entries_by_age(self) -> list[tuple[float, str, int]]:
        """(cached_at, key, size) for every key in the namespace, oldest first."""
        entries = []
        for key in self.backend.keys(self.prefix):
            raw = self.backend.get(key)
            if raw is None:
                continue
            try:
                cached_at = self._decode(raw).cached_at
            except ValueError:
                cached_at = 0.0
            entries.append((cached_at, key, len(key) + len(raw)))
        entries.sort()
        return entries

    def evict_oldest(self, count: int) -> int:
        """Delete the `count` entries with the earliest write time."""
        with self._lock:
            victims = self._entries_by_age()[:max(0, count)]
            for _, key, _ in victims:
                self.backend.delete(key)
        if victims:
            logger.info(f"Evicted {len(victims)} oldest cache entries")
        return len(victims)

    def _enforce_budget(self, keep: str) -> None:
        if self.max_size_bytes is None:
            return
        total = self.backend.namespace_bytes(self.prefix)
        if total <= self.max_size_bytes:
            return
        entries = self._entries_by_age()
        total = sum(size for _, _, size in entries)

        target = self.max_size_bytes * 0.8
        evicted = 0
        for _, key, size in entries:
            if total <= target:
                break
            if key == keep:
                continue
            self.backend.delete(key)
            total -= size
            evicted += 1
        logger.info(f"Cache over budget, evicted {evicted} entries ({total} bytes remain)")

    def sweep(self) -> int:
        """Remove expired and unreadable entries. Returns how many were removed."""
        removed = 0
        with self._lock:
            now = self.clock()
            for key in self.backend.keys(self.prefix):
                raw = self.backend.get(key)
                if raw is None:
                    continue
                try:
                    expired = self._decode(raw).is_expired(now)
                except ValueError:
                    expired = True
                if expired:
                    self.backend.delete(key)
                    removed += 1
        if removed:
            logger.info(f"Cleaned {removed} expired cache entries")
        return removed

    def clear(self) -> int:
        """Delete every entry in this namespace. Returns how many were removed."""
        with self._lock:
            keys = self.backend.keys(self.prefix)
            for key in keys:
                self.backend.delete(key)
        logger.info(f"Cleared {len(keys)} cache entries")
        return len(keys)

    def count(self) -> int:
        return len(self.backend.keys(self.prefix))

    def size_bytes(self) -> int:
        with self._lock:
            return self.backend.namespace_bytes(self.prefix)

    def expired_count(self) -> int:
        now = self.clock()
        expired = 0
        with self._lock:
            for key in self.backend.keys(self.prefix):
                raw = self.backend.get(key)
                if raw is None:
                    continue
                try:
                    if self._decode(raw).is_expired(now):
                        expired += 1
                except ValueError:
                    continue
        return expired

    def stats(self) -> CacheStats:
        return CacheStats(count=self.count(), size_bytes=self.size_bytes(), expired=self.expired_count())
