"""Timezone helpers and the central clock for calview.

``now_utc()`` is the single source of "now" for window computation and cache
timestamps. It can be pinned for tests with the ``CALVIEW_TEST_TIME``
environment variable (ISO 8601, e.g. ``2024-01-15T12:00:00Z``).
"""

from __future__ import annotations

import datetime
import logging
import os
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

UTC = datetime.timezone.utc

TEST_TIME_ENV = "CALVIEW_TEST_TIME"


def now_utc() -> datetime.datetime:
    """Return current UTC time with tzinfo.

    Honors ``CALVIEW_TEST_TIME``; a naive override is interpreted as UTC.
    """
    test_time = os.environ.get(TEST_TIME_ENV)
    if test_time:
        try:
            dt = date_parser.isoparse(test_time)
        except (ValueError, OverflowError):
            logger.warning("Invalid %s value %r, using real clock", TEST_TIME_ENV, test_time)
        else:
            if dt.tzinfo is None:
                return dt.replace(tzinfo=UTC)
            return dt.astimezone(UTC)
    return datetime.datetime.now(UTC)


@lru_cache(maxsize=64)
def get_zone(name: str) -> datetime.tzinfo:
    """Resolve an IANA timezone name, falling back to UTC for unknown names."""
    if not name or name.upper() in ("UTC", "Z", "GMT"):
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return UTC


def ensure_aware(dt: datetime.datetime, default_timezone: str = "UTC") -> datetime.datetime:
    """Attach ``default_timezone`` to a naive (floating) datetime.

    Aware datetimes are returned unchanged.
    """
    if dt.tzinfo is not None and dt.tzinfo.utcoffset(dt) is not None:
        return dt
    return dt.replace(tzinfo=get_zone(default_timezone))


def date_to_datetime(value: datetime.date, default_timezone: str = "UTC") -> datetime.datetime:
    """Convert a DATE value to midnight in ``default_timezone``."""
    return datetime.datetime.combine(value, datetime.time.min, tzinfo=get_zone(default_timezone))


def to_utc(dt: datetime.datetime) -> datetime.datetime:
    """Normalize a datetime to UTC, treating naive values as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
