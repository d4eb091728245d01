"""Shared fixtures for calview tests."""

from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any

import pytest

# Fixed "now" used by time-dependent tests: Monday 2024-01-15 12:00 UTC
FIXED_NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config: Any) -> None:
    """Configure pytest with markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Tests that exercise several components together")
    config.addinivalue_line("markers", "fast: Tests that finish in well under a second")


class FakeClock:
    """Settable clock usable as a ``time_provider``."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to FIXED_NOW that tests can advance."""
    return FakeClock()


@pytest.fixture
def fixed_now() -> Callable[[], datetime]:
    """Time provider that always returns FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object used across unit tests.

    Fields mirror ``CalviewSettings`` without reading files or the environment.
    """
    return SimpleNamespace(
        cache_ttl_seconds=30,
        max_cache_entries=None,
        default_window_months=1,
        max_window_months=12,
        default_timezone="UTC",
        max_occurrences_per_rule=10000,
        max_skipped_occurrences=100000,
        request_timeout=30,
        user_agent="calview-test/1.0",
        max_retries=0,
        retry_backoff_factor=1.5,
    )


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Ensure CALVIEW_* environment variables do not leak between tests."""
    for name in ("CALVIEW_TEST_TIME", "CALVIEW_CONFIG", "CALVIEW_DEBUG", "CALVIEW_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def single_event_ics() -> str:
    """Calendar with one non-recurring event."""
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calview//tests//EN
BEGIN:VEVENT
UID:abc
SUMMARY:Planning
DESCRIPTION:Quarterly planning
LOCATION:Room 1
DTSTART:20240101T100000
DTEND:20240101T110000
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def daily_recurring_ics() -> str:
    """Calendar with an unbounded daily standup (floating times)."""
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calview//tests//EN
BEGIN:VEVENT
UID:xyz
SUMMARY:Standup
DTSTART:20240101T090000
DTEND:20240101T093000
RRULE:FREQ=DAILY
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def weekly_with_exceptions_ics() -> str:
    """Weekly Monday meeting with one EXDATE and one moved instance."""
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calview//tests//EN
BEGIN:VEVENT
UID:weekly
SUMMARY:Team sync
DTSTART:20240101T140000Z
DTEND:20240101T150000Z
RRULE:FREQ=WEEKLY;BYDAY=MO
EXDATE:20240108T140000Z
END:VEVENT
BEGIN:VEVENT
UID:weekly
RECURRENCE-ID:20240115T140000Z
SUMMARY:Team sync (moved)
DTSTART:20240115T160000Z
DTEND:20240115T170000Z
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def all_day_ics() -> str:
    """Calendar with a single all-day event and no DTEND."""
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//calview//tests//EN
BEGIN:VEVENT
UID:holiday
SUMMARY:Holiday
DTSTART;VALUE=DATE:20240115
END:VEVENT
END:VCALENDAR
"""
