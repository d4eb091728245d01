"""Orchestration of fetch, expansion, caching and enrichment for calendar views."""

import asyncio
import logging
import random
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Optional

from .cache import CacheStore
from .event_filter import enrich_with_preferences, filter_by_range, sort_events
from .exceptions import CalviewError, FeedError, NetworkError, ParseError
from .fetcher import FeedFetcher
from .models import CacheDiagnostic, CacheEntry, CacheKey, CalendarEvent, CalendarRecord
from .parser import ICalExpander
from .registry import CalendarRegistry, MappingPreferences, PreferencesProvider
from .timezone_utils import ensure_aware

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MONTHS = 1
DEFAULT_MAX_WINDOW_MONTHS = 12

# Backoff constants
MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3


class CalendarService:
    """Entry point used by the rendering layer to obtain events for a calendar.

    A request resolves the calendar through the registry, serves the cached
    expansion when it is fresh, and otherwise fetches and expands the feed.
    When fetching or parsing fails, the most recent cached expansion for the
    calendar is served instead (even if stale); the error only surfaces when
    nothing was ever cached. Concurrent requests for the same calendar share
    one in-flight fetch.
    """

    def __init__(
        self,
        registry: CalendarRegistry,
        fetcher: Optional[FeedFetcher] = None,
        expander: Optional[ICalExpander] = None,
        cache: Optional[CacheStore] = None,
        preferences: Optional[PreferencesProvider] = None,
        settings: Any = None,
    ) -> None:
        """Initialize calendar service.

        Args:
            registry: Calendar registry used to resolve calendar ids
            fetcher: Feed fetcher, built from settings if omitted
            expander: iCal expander, built from settings if omitted
            cache: Cache store, built from settings if omitted
            preferences: Color and visibility preferences
            settings: Application settings object
        """
        self.settings = settings
        self.registry = registry
        # An empty CacheStore is falsy, so injected collaborators are tested against None
        self.fetcher = fetcher if fetcher is not None else FeedFetcher(settings)
        self.expander = expander if expander is not None else ICalExpander(settings)
        if cache is None:
            cache = CacheStore(
                ttl_seconds=float(getattr(settings, "cache_ttl_seconds", 30)),
                max_entries=getattr(settings, "max_cache_entries", None),
            )
        self.cache = cache
        self.preferences: PreferencesProvider = (
            preferences if preferences is not None else MappingPreferences()
        )
        self.default_timezone = getattr(settings, "default_timezone", None) or "UTC"

        self.default_window_months = int(
            getattr(settings, "default_window_months", DEFAULT_WINDOW_MONTHS)
        )
        self.max_window_months = int(
            getattr(settings, "max_window_months", DEFAULT_MAX_WINDOW_MONTHS)
        )
        self.max_retries = int(getattr(settings, "max_retries", 0))
        self.retry_backoff_factor = float(getattr(settings, "retry_backoff_factor", 1.5))

        self._key_locks: dict[CacheKey, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: Any) -> "CalendarService":
        """Build a service wired to the calendars listed in ``settings``."""
        return cls(
            registry=settings.build_registry(),
            preferences=settings.build_preferences(),
            settings=settings,
        )

    async def __aenter__(self) -> "CalendarService":
        """Async context manager entry."""
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Release the fetcher's HTTP client."""
        await self.fetcher.close()

    def _resolve_window(self, window_months: Optional[int]) -> int:
        if window_months is None:
            return self.default_window_months
        if window_months < 0 or window_months > self.max_window_months:
            raise ValueError(
                f"window_months must be between 0 and {self.max_window_months}, got {window_months}"
            )
        return window_months

    def _lock_for(self, key: CacheKey) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    def _prune_locks(self) -> None:
        """Drop idle fetch locks whose cache entry is gone."""
        for key in list(self._key_locks):
            if key not in self.cache and not self._key_locks[key].locked():
                del self._key_locks[key]

    async def get_events(
        self,
        calendar_id: str,
        window_months: Optional[int] = None,
        force_refresh: bool = False,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
    ) -> list[CalendarEvent]:
        """Return the enriched events of one calendar.

        Args:
            calendar_id: Registry id of the calendar
            window_months: Recurrence expansion window, settings default if omitted
            force_refresh: Discard the cached entry and fetch again
            range_start: Optional lower bound of the visible range
            range_end: Optional upper bound of the visible range

        Returns:
            Events with display colors attached, hidden calendars removed

        Raises:
            NotFoundError: If the calendar is not registered
            NetworkError: If the feed is unreachable and nothing is cached
            FetchError: If the feed request fails and nothing is cached
            ParseError: If the feed is not valid iCal and nothing is cached
            ValueError: If the window or range arguments are invalid
        """
        if (range_start is None) != (range_end is None):
            raise ValueError("range_start and range_end must be given together")
        if range_start is not None and range_end is not None:
            range_start = ensure_aware(range_start, self.default_timezone)
            range_end = ensure_aware(range_end, self.default_timezone)
            if range_end < range_start:
                raise ValueError("range_end must not be before range_start")

        window = self._resolve_window(window_months)
        calendar = self.registry.get_calendar(calendar_id)
        key = CacheKey(feed_url=calendar.feed_url, calendar_id=calendar.id)

        events = self.cache.get(key, window, force_refresh)
        if events is None:
            events = await self._load_events(calendar, key, window, force_refresh)

        if range_start is not None and range_end is not None:
            events = filter_by_range(events, range_start, range_end)

        return enrich_with_preferences(events, self.preferences)

    async def _load_events(
        self,
        calendar: CalendarRecord,
        key: CacheKey,
        window_months: int,
        force_refresh: bool,
    ) -> tuple[CalendarEvent, ...]:
        """Fetch and expand a feed under the per-key lock, with stale fallback."""
        async with self._lock_for(key):
            # Another request may have refreshed the entry while we waited
            if not force_refresh:
                events = self.cache.get(key, window_months)
                if events is not None:
                    return events

            previous = self.cache.peek(key)
            if force_refresh:
                self.cache.invalidate(key)

            try:
                raw_text = await self._fetch_with_retry(calendar.feed_url)
                expanded = self.expander.expand(raw_text, calendar.id, window_months)
            except (FeedError, ParseError) as e:
                if previous is None:
                    logger.error("Failed to load calendar %s: %s", calendar.id, e)
                    raise
                return self._serve_stale(key, previous, e)

            entry = self.cache.put(key, expanded, window_months)
            # The LRU bound may have evicted other keys
            self._prune_locks()
            logger.info(
                "Loaded %d events for calendar %s (window=%d months)",
                entry.event_count,
                calendar.id,
                window_months,
            )
            return entry.events

    def _serve_stale(
        self, key: CacheKey, previous: CacheEntry, error: CalviewError
    ) -> tuple[CalendarEvent, ...]:
        # A failed forced refresh must not lose the last good expansion
        self.cache.restore(key, previous)
        logger.warning(
            "Serving stale cache for calendar %s (%d events, %.0fs old) after error: %s",
            key.calendar_id,
            previous.event_count,
            previous.age_seconds(self.cache.time_provider()),
            error,
        )
        return previous.events

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff time with jitter.

        Args:
            attempt: Current retry attempt number (0-indexed)

        Returns:
            float: Backoff time in seconds including jitter
        """
        base_backoff = min(self.retry_backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311 - jitter not cryptographic
        return base_backoff + jitter

    async def _fetch_with_retry(self, url: str) -> str:
        """Fetch ``url``, retrying network failures up to ``max_retries`` times."""
        attempt = 0
        while True:
            try:
                return await self.fetcher.fetch(url)
            except NetworkError as e:
                if attempt >= self.max_retries:
                    raise
                backoff_time = self._calculate_backoff(attempt)
                logger.warning(
                    "Fetch failed (attempt %s/%s), retrying in %.1fs: %s",
                    attempt + 1,
                    self.max_retries + 1,
                    backoff_time,
                    e,
                )
                await asyncio.sleep(backoff_time)
                attempt += 1

    async def get_events_for_calendars(
        self,
        calendar_ids: Iterable[str],
        window_months: Optional[int] = None,
        force_refresh: bool = False,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
    ) -> list[CalendarEvent]:
        """Merge the events of several calendars into one sorted list.

        Calendars that fail to load are skipped and logged, so one broken feed
        does not blank the whole view. Unknown calendar ids still raise.
        """
        ids = list(dict.fromkeys(calendar_ids))
        results = await asyncio.gather(
            *(
                self.get_events(
                    calendar_id,
                    window_months=window_months,
                    force_refresh=force_refresh,
                    range_start=range_start,
                    range_end=range_end,
                )
                for calendar_id in ids
            ),
            return_exceptions=True,
        )

        merged: list[CalendarEvent] = []
        for calendar_id, result in zip(ids, results):
            if isinstance(result, (FeedError, ParseError)):
                logger.warning("Skipping calendar %s: %s", calendar_id, result)
                continue
            if isinstance(result, BaseException):
                raise result
            merged.extend(result)

        return sort_events(merged)

    async def refresh(
        self, calendar_id: str, window_months: Optional[int] = None
    ) -> list[CalendarEvent]:
        """Force a re-fetch of one calendar and return its events."""
        return await self.get_events(calendar_id, window_months=window_months, force_refresh=True)

    def invalidate(self, calendar_id: str) -> int:
        """Drop cached expansions of ``calendar_id``.

        Returns:
            Number of cache entries removed
        """
        removed = self.cache.invalidate_calendar(calendar_id)
        self._prune_locks()
        logger.info("Invalidated cache for calendar %s (%d entries)", calendar_id, removed)
        return removed

    def invalidate_all(self) -> None:
        """Drop every cached expansion."""
        self.cache.invalidate_all()
        self._prune_locks()

    def get_cache_diagnostics(self) -> list[CacheDiagnostic]:
        """Describe the cache contents for operational visibility."""
        return self.cache.diagnostics()
