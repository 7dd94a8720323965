"""
QR Code Cache

LRU + TTL cache of rendered payment QR images, keyed by
(identifier, qr_type, size, style, branding).

Expired entries are removed lazily on access and by a periodic sweep, so
keys nobody asks for again do not pin memory.
"""
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from ..models.qr import QrCacheEntry, QrImage
from .scheduler import SweepScheduler, attach_job

logger = logging.getLogger(__name__)

# Rough per-entry bookkeeping overhead for the memory estimate
ENTRY_OVERHEAD_BYTES = 200

CacheKey = Tuple[str, str, int, str, bool]


class QrCache:
    """
    Bounded cache of QR images.

    Recency order is the order of the underlying OrderedDict: the first key
    is the least recently used one.
    """

    def __init__(
        self,
        max_entries: int = 500,
        ttl_seconds: float = 3600.0,
        cleanup_interval_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self._cache: "OrderedDict[CacheKey, QrCacheEntry]" = OrderedDict()
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock

        self._scheduler: Optional[SweepScheduler] = None
        self._cleanup_job_id: Optional[str] = None

        logger.info(f"QR cache initialized (max_entries={max_entries}, ttl={ttl_seconds}s)")

    @staticmethod
    def make_key(
        identifier: str,
        qr_type: str,
        size: int,
        style: str,
        branding: bool
    ) -> CacheKey:
        return (identifier, qr_type, int(size), style, bool(branding))

    def _is_expired(self, entry: QrCacheEntry, now: float) -> bool:
        return now - entry.timestamp > self._ttl

    def get(
        self,
        identifier: str,
        qr_type: str,
        size: int,
        style: str,
        branding: bool
    ) -> Optional[QrImage]:
        """
        Look up a QR image.

        Returns:
            The cached image, or None on a miss or when the entry expired
            (expired entries are deleted here)
        """
        key = self.make_key(identifier, qr_type, size, style, branding)
        entry = self._cache.get(key)
        if entry is None:
            logger.debug(f"QR cache miss: {key}")
            return None

        now = self._clock()
        if self._is_expired(entry, now):
            logger.debug(f"QR cache entry expired: {key}")
            del self._cache[key]
            return None

        entry.access_count += 1
        entry.last_accessed = now
        self._cache.move_to_end(key)
        logger.debug(f"QR cache hit: {key} (access_count={entry.access_count})")
        return entry.data

    def set(
        self,
        identifier: str,
        qr_type: str,
        size: int,
        style: str,
        branding: bool,
        qr_data: QrImage
    ) -> None:
        """Store a QR image, evicting the least recently used key when full."""
        key = self.make_key(identifier, qr_type, size, style, branding)
        now = self._clock()

        if key not in self._cache and len(self._cache) >= self._max_entries:
            self._evict_lru()

        self._cache[key] = QrCacheEntry(
            data=qr_data,
            timestamp=now,
            access_count=1,
            last_accessed=now,
        )
        self._cache.move_to_end(key)
        logger.debug(f"QR cached: {key} (size={len(self._cache)})")

    def has(
        self,
        identifier: str,
        qr_type: str,
        size: int,
        style: str,
        branding: bool
    ) -> bool:
        """Membership test; does not count as an access."""
        key = self.make_key(identifier, qr_type, size, style, branding)
        entry = self._cache.get(key)
        if entry is None:
            return False
        if self._is_expired(entry, self._clock()):
            del self._cache[key]
            return False
        return True

    def preload(self, scenarios: Iterable[Dict[str, Any]]) -> int:
        """
        Warm the cache.

        Args:
            scenarios: Dicts with identifier, qr_type, size, style, branding
                and qr_data keys

        Returns:
            Number of entries loaded
        """
        count = 0
        for scenario in scenarios:
            self.set(
                scenario["identifier"],
                scenario["qr_type"],
                scenario["size"],
                scenario["style"],
                scenario["branding"],
                scenario["qr_data"],
            )
            count += 1
        logger.info(f"QR cache preload completed ({count} entries)")
        return count

    def _evict_lru(self) -> None:
        if not self._cache:
            return
        lru_key, _ = self._cache.popitem(last=False)
        logger.debug(f"QR cache LRU eviction: {lru_key}")

    def cleanup(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug(f"QR cache cleanup removed {len(expired)} entries, {len(self._cache)} remaining")
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        """
        Monitoring snapshot.

        hitRate approximates hits as every access after the first one per
        entry. memoryUsage is payload length plus a fixed overhead per entry;
        it is an estimate, not real memory accounting.
        """
        now = self._clock()
        total_accesses = 0
        hits = 0
        oldest_timestamp = now
        memory_usage = 0

        for entry in self._cache.values():
            total_accesses += entry.access_count
            hits += entry.access_count - 1
            oldest_timestamp = min(oldest_timestamp, entry.timestamp)
            memory_usage += len(entry.data.data) + ENTRY_OVERHEAD_BYTES

        return {
            "size": len(self._cache),
            "maxSize": self._max_entries,
            "hitRate": hits / total_accesses if total_accesses else 0.0,
            "oldestEntryAge": int((now - oldest_timestamp) * 1000),
            "memoryUsage": memory_usage,
        }

    def __len__(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        self._cache.clear()
        logger.info("QR cache cleared")

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def start_cleanup_task(self, scheduler: Optional[SweepScheduler]) -> None:
        """Register the periodic expiry sweep on `scheduler`."""
        self.stop_cleanup_task()
        self._scheduler = scheduler
        self._cleanup_job_id = attach_job(
            scheduler,
            f"qr_cache_cleanup_{id(self):x}",
            self._sweep,
            self._cleanup_interval,
        )

    def stop_cleanup_task(self) -> None:
        if self._scheduler is not None and self._cleanup_job_id is not None:
            self._scheduler.remove_job(self._cleanup_job_id)
        self._cleanup_job_id = None

    @property
    def cleanup_task_running(self) -> bool:
        return self._cleanup_job_id is not None

    def shutdown(self) -> None:
        """Stop the sweep and drop all entries."""
        self.stop_cleanup_task()
        self.clear()
        logger.info("QR cache shutdown")

    async def _sweep(self) -> None:
        try:
            self.cleanup()
        except Exception as e:
            logger.error(f"Error in QR cache cleanup: {e}", exc_info=True)
