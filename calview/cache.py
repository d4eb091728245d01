"""In-process cache of expanded calendar feeds."""

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Optional

from .models import CacheDiagnostic, CacheEntry, CacheKey, CalendarEvent
from .timezone_utils import now_utc

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30.0


class CacheStore:
    """Keyed store of expansion results with lazy TTL expiry.

    Entries are never swept in the background; staleness is decided when an
    entry is read. The store is unbounded unless ``max_entries`` is set, in
    which case the least recently used entry is evicted. All access to the
    underlying map holds a lock, so one instance can be shared across threads.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: Optional[int] = None,
        time_provider: Callable[[], datetime] = now_utc,
    ) -> None:
        """Initialize cache store.

        Args:
            ttl_seconds: Maximum entry age for a cache hit
            max_entries: Optional LRU bound, ``None`` for unbounded
            time_provider: Callable returning the current aware datetime
        """
        if ttl_seconds < 0:
            raise ValueError(f"ttl_seconds must be >= 0, got {ttl_seconds}")
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")

        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = max_entries
        self.time_provider = time_provider
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()

        logger.debug("Cache store initialized (ttl=%.1fs, max_entries=%s)", ttl_seconds, max_entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def is_fresh(self, entry: CacheEntry, now: Optional[datetime] = None) -> bool:
        """Check whether ``entry`` is younger than the TTL."""
        return entry.age_seconds(now or self.time_provider()) < self.ttl_seconds

    def get(
        self, key: CacheKey, window_months: int, force_refresh: bool = False
    ) -> Optional[tuple[CalendarEvent, ...]]:
        """Return cached events, or ``None`` on a miss.

        A hit needs an entry for ``key`` built with the same ``window_months``
        and younger than the TTL, and ``force_refresh`` must be false. A miss
        never deletes the entry; it stays available through :meth:`peek`.
        """
        if force_refresh:
            logger.debug("Cache bypass for %s (force refresh)", key)
            return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("Cache miss for %s (no entry)", key)
                return None
            if entry.date_range_months != window_months:
                logger.debug(
                    "Cache miss for %s (window %d != cached %d)",
                    key,
                    window_months,
                    entry.date_range_months,
                )
                return None
            if not self.is_fresh(entry):
                logger.debug("Cache miss for %s (expired)", key)
                return None

            self._entries.move_to_end(key)
            logger.debug("Cache hit for %s (%d events)", key, entry.event_count)
            return entry.events

    def peek(self, key: CacheKey) -> Optional[CacheEntry]:
        """Return the entry for ``key`` regardless of age or window."""
        with self._lock:
            return self._entries.get(key)

    def put(
        self, key: CacheKey, events: Iterable[CalendarEvent], window_months: int
    ) -> CacheEntry:
        """Create or replace the entry for ``key``, timestamped now."""
        entry = CacheEntry(
            events=tuple(events),
            timestamp=self.time_provider(),
            date_range_months=window_months,
        )
        with self._lock:
            self._store(key, entry)
        logger.debug("Cached %d events for %s", entry.event_count, key)
        return entry

    def restore(self, key: CacheKey, entry: CacheEntry) -> bool:
        """Put back a previous entry unchanged if ``key`` is currently empty.

        Returns:
            True if the entry was restored
        """
        with self._lock:
            if key in self._entries:
                return False
            self._store(key, entry)
        logger.debug("Restored previous entry for %s (%d events)", key, entry.event_count)
        return True

    def _store(self, key: CacheKey, entry: CacheEntry) -> None:
        # Caller holds the lock
        self._entries[key] = entry
        self._entries.move_to_end(key)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted least recently used entry %s", evicted)

    def invalidate(self, key: CacheKey) -> None:
        """Remove the entry for ``key`` if present."""
        with self._lock:
            removed = self._entries.pop(key, None)
        if removed is not None:
            logger.debug("Invalidated cache entry %s", key)

    def invalidate_calendar(self, calendar_id: str) -> int:
        """Remove every entry belonging to ``calendar_id``.

        Returns:
            Number of entries removed
        """
        with self._lock:
            keys = [key for key in self._entries if key.calendar_id == calendar_id]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug("Invalidated %d cache entries for calendar %s", len(keys), calendar_id)
        return len(keys)

    def invalidate_all(self) -> None:
        """Clear the entire store."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("Cleared calendar cache (%d entries)", count)

    def diagnostics(self) -> list[CacheDiagnostic]:
        """Describe every cached entry for operational visibility."""
        now = self.time_provider()
        with self._lock:
            items = list(self._entries.items())
        return [
            CacheDiagnostic(
                calendar_id=key.calendar_id,
                feed_url=key.feed_url,
                event_count=entry.event_count,
                last_updated=entry.timestamp,
                date_range_months=entry.date_range_months,
                age_seconds=entry.age_seconds(now),
                is_fresh=self.is_fresh(entry, now),
            )
            for key, entry in items
        ]
