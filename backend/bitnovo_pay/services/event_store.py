"""
Webhook Event Store

Bounded in-memory store of accepted webhook events for the tool layer.

Features:
- Deduplication by event_id
- Index by payment identifier for fast lookup
- TTL expiry via a periodic sweep (every 5 minutes by default)
- Oldest-first eviction of ~10% of entries when full

Events are ephemeral: the store is cleared on shutdown and
nothing is persisted.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from ..models.webhooks import WebhookEvent
from .scheduler import SweepScheduler, attach_job

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_SECONDS = 300.0
EVICTION_FRACTION = 0.1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEventStore:
    """
    Event store with a primary map and an identifier index.

    Invariant: `_events` and `_events_by_identifier` always agree. Removing
    the last event of an identifier deletes the identifier's index entry.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl_seconds: float = 3600.0,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Initialize event store.

        Args:
            max_entries: Capacity before oldest-first eviction kicks in
            ttl_seconds: Maximum event age, measured from received_at
            cleanup_interval_seconds: Period of the background TTL sweep
            clock: Source of "now" (timezone-aware UTC)
        """
        # {event_id: WebhookEvent}
        self._events: Dict[str, WebhookEvent] = {}

        # {identifier: {event_id, ...}}
        self._events_by_identifier: Dict[str, Set[str]] = {}

        self._max_entries = max_entries
        self._ttl = timedelta(seconds=ttl_seconds)
        self._cleanup_interval = cleanup_interval_seconds
        self._clock = clock

        self._scheduler: Optional[SweepScheduler] = None
        self._cleanup_job_id: Optional[str] = None

        logger.info(
            f"Webhook event store initialized "
            f"(max_entries={max_entries}, ttl={ttl_seconds}s)"
        )

    # ========================================================================
    # Writes
    # ========================================================================

    def store(self, event: WebhookEvent) -> bool:
        """
        Store a webhook event.

        Args:
            event: Event to insert

        Returns:
            True if stored, False if an event with the same event_id exists
        """
        if event.event_id in self._events:
            logger.debug(f"Duplicate webhook event ignored: {event.event_id}")
            return False

        if len(self._events) >= self._max_entries:
            # Overflow term covers a capacity lowered by update_config
            to_remove = max(
                int(self._max_entries * EVICTION_FRACTION),
                len(self._events) - self._max_entries + 1,
            )
            logger.warning(
                f"Event store full ({len(self._events)}/{self._max_entries}), "
                f"removing {to_remove} oldest events"
            )
            self._remove_oldest(to_remove)

        self._events[event.event_id] = event
        self._events_by_identifier.setdefault(event.identifier, set()).add(event.event_id)

        logger.info(
            f"Webhook event stored: {event.event_id} "
            f"(identifier={event.identifier}, status={event.status}, "
            f"validated={event.validated})"
        )
        return True

    def cleanup(self) -> int:
        """
        Remove events older than the TTL.

        Returns:
            Number of events removed
        """
        expiration = self._clock() - self._ttl
        expired = [
            event_id for event_id, event in self._events.items()
            if event.received_at < expiration
        ]
        for event_id in expired:
            self._remove_event(event_id)

        if expired:
            logger.info(
                f"Event store cleanup removed {len(expired)} events, "
                f"{len(self._events)} remaining"
            )
        return len(expired)

    def clear(self) -> None:
        """Drop all events and the identifier index."""
        count = len(self._events)
        self._events.clear()
        self._events_by_identifier.clear()
        logger.info(f"Event store cleared ({count} events)")

    def _remove_oldest(self, count: int) -> None:
        oldest = sorted(self._events.values(), key=lambda e: e.received_at)[:count]
        for event in oldest:
            self._remove_event(event.event_id)
        logger.debug(f"Removed {len(oldest)} oldest events")

    def _remove_event(self, event_id: str) -> None:
        event = self._events.pop(event_id, None)
        if event is None:
            return

        identifier_events = self._events_by_identifier.get(event.identifier)
        if identifier_events is not None:
            identifier_events.discard(event_id)
            if not identifier_events:
                del self._events_by_identifier[event.identifier]

    # ========================================================================
    # Reads (newest first)
    # ========================================================================

    def get_by_identifier(self, identifier: str) -> List[WebhookEvent]:
        """All events for a payment identifier, newest first."""
        event_ids = self._events_by_identifier.get(identifier)
        if not event_ids:
            return []

        events = [self._events[event_id] for event_id in event_ids if event_id in self._events]
        return _newest_first(events)

    def get_recent(self, limit: int = 50) -> List[WebhookEvent]:
        """Most recent events across all identifiers."""
        return _newest_first(self._events.values())[:limit]

    def get_by_event_id(self, event_id: str) -> Optional[WebhookEvent]:
        return self._events.get(event_id)

    def get_validated(self, limit: int = 50) -> List[WebhookEvent]:
        """Most recent events whose signature check passed."""
        validated = [event for event in self._events.values() if event.validated]
        return _newest_first(validated)[:limit]

    def get_stats(self) -> Dict[str, Any]:
        """
        Store statistics.

        Returns:
            totalEvents, uniqueIdentifiers, oldestEventAge/newestEventAge
            (milliseconds, None when empty), validatedCount, invalidatedCount
        """
        now = self._clock()
        events = list(self._events.values())
        oldest_age = None
        newest_age = None
        validated_count = sum(1 for event in events if event.validated)

        if events:
            ages = [(now - event.received_at).total_seconds() * 1000 for event in events]
            oldest_age = int(max(ages))
            newest_age = int(min(ages))

        return {
            "totalEvents": len(events),
            "uniqueIdentifiers": len(self._events_by_identifier),
            "oldestEventAge": oldest_age,
            "newestEventAge": newest_age,
            "validatedCount": validated_count,
            "invalidatedCount": len(events) - validated_count,
        }

    def get_config(self) -> Dict[str, Any]:
        return {
            "maxEntries": self._max_entries,
            "ttlMs": int(self._ttl.total_seconds() * 1000),
            "cleanupIntervalMs": int(self._cleanup_interval * 1000),
        }

    def update_config(
        self,
        max_entries: Optional[int] = None,
        ttl_seconds: Optional[float] = None
    ) -> None:
        """Change limits in place; they apply from the next store/cleanup."""
        if max_entries is not None:
            self._max_entries = max_entries
        if ttl_seconds is not None:
            self._ttl = timedelta(seconds=ttl_seconds)
        logger.info(f"Event store config updated: {self.get_config()}")

    def __len__(self) -> int:
        return len(self._events)

    # ========================================================================
    # Background sweep
    # ========================================================================

    def start_cleanup_task(self, scheduler: Optional[SweepScheduler]) -> None:
        """Register the periodic TTL sweep on `scheduler`."""
        self.stop_cleanup_task()
        self._scheduler = scheduler
        self._cleanup_job_id = attach_job(
            scheduler,
            f"event_store_cleanup_{id(self):x}",
            self._sweep,
            self._cleanup_interval,
        )
        if self._cleanup_job_id:
            logger.debug(f"Event store cleanup task started (every {self._cleanup_interval}s)")

    def stop_cleanup_task(self) -> None:
        if self._scheduler is not None and self._cleanup_job_id is not None:
            self._scheduler.remove_job(self._cleanup_job_id)
            logger.debug("Event store cleanup task stopped")
        self._cleanup_job_id = None

    @property
    def cleanup_task_running(self) -> bool:
        return self._cleanup_job_id is not None

    def shutdown(self) -> None:
        """Stop the sweep and drop all events."""
        self.stop_cleanup_task()
        self.clear()
        logger.info("Event store shutdown complete")

    async def _sweep(self) -> None:
        try:
            self.cleanup()
        except Exception as e:
            logger.error(f"Error in event store cleanup: {e}", exc_info=True)


def _newest_first(events) -> List[WebhookEvent]:
    return sorted(events, key=lambda e: e.received_at, reverse=True)
