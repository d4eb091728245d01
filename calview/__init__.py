"""calview - iCal feed ingestion, recurrence expansion and caching for calendar views."""

__version__ = "0.1.0"

from .cache import CacheStore
from .config import CalendarConfig, CalviewSettings, load_settings
from .event_filter import enrich_events, filter_by_range, is_full_day
from .exceptions import (
    CalviewError,
    ConfigError,
    FeedError,
    FetchError,
    NetworkError,
    NotFoundError,
    ParseError,
)
from .fetcher import FeedFetcher
from .models import CacheDiagnostic, CacheEntry, CacheKey, CalendarEvent, CalendarRecord
from .parser import ICalExpander
from .registry import InMemoryCalendarRegistry, MappingPreferences
from .service import CalendarService

__all__ = [
    "CacheDiagnostic",
    "CacheEntry",
    "CacheKey",
    "CacheStore",
    "CalendarConfig",
    "CalendarEvent",
    "CalendarRecord",
    "CalendarService",
    "CalviewError",
    "CalviewSettings",
    "ConfigError",
    "FeedError",
    "FeedFetcher",
    "FetchError",
    "ICalExpander",
    "InMemoryCalendarRegistry",
    "MappingPreferences",
    "NetworkError",
    "NotFoundError",
    "ParseError",
    "enrich_events",
    "filter_by_range",
    "is_full_day",
    "load_settings",
]
