"""
Nonce Cache for Webhook Replay Protection

Remembers nonces seen within a freshness window. A nonce reused inside the
window marks a replayed delivery.

The cache lives in process memory: a restart resets the replay window. That
is acceptable because the window is only a few minutes long.
"""
import logging
import time
from typing import Callable, Dict

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 300.0


class NonceCache:
    """
    Freshness-window nonce registry.

    Expired entries are purged lazily on every `add`, so memory stays
    bounded by the delivery rate times the window length.
    """

    def __init__(
        self,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        # {nonce: first_seen}
        self._seen: Dict[str, float] = {}
        self._max_age = max_age_seconds
        self._clock = clock

    def add(self, nonce: str) -> bool:
        """
        Record a nonce.

        Returns:
            True if the nonce is new (or its previous sighting expired),
            False if it was already seen inside the window
        """
        now = self._clock()
        self._purge(now)

        if nonce in self._seen:
            logger.warning("Replayed nonce rejected")
            return False

        self._seen[nonce] = now
        return True

    def _purge(self, now: float) -> None:
        cutoff = now - self._max_age
        expired = [nonce for nonce, seen_at in self._seen.items() if seen_at <= cutoff]
        for nonce in expired:
            del self._seen[nonce]
        if expired:
            logger.debug(f"Purged {len(expired)} expired nonces")

    def __contains__(self, nonce: str) -> bool:
        seen_at = self._seen.get(nonce)
        return seen_at is not None and self._clock() - seen_at < self._max_age

    def size(self) -> int:
        return len(self._seen)

    def clear(self) -> None:
        self._seen.clear()
