"""Collaborator interfaces for calendar metadata and display preferences.

The calendar registry (subscription storage) and the preferences store live
outside the ingestion engine. This module defines the contracts the engine
relies on, plus in-memory implementations used by the CLI and tests.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Optional, Protocol, runtime_checkable

from .exceptions import NotFoundError
from .models import CalendarRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class CalendarRegistry(Protocol):
    """Protocol for looking up calendar subscriptions."""

    def get_calendar(self, calendar_id: str) -> CalendarRecord:
        """Return the calendar with ``calendar_id``.

        Raises:
            NotFoundError: If the calendar is unknown
        """
        ...


@runtime_checkable
class PreferencesProvider(Protocol):
    """Protocol for per-calendar display preferences."""

    def color_for(self, calendar_id: str) -> Optional[str]:
        """Return the display color, or None for the default color."""
        ...

    def is_visible(self, calendar_id: str) -> bool:
        """Return False when the calendar is hidden."""
        ...


class InMemoryCalendarRegistry:
    """Dictionary-backed calendar registry."""

    def __init__(self, calendars: Iterable[CalendarRecord] = ()) -> None:
        self._calendars: dict[str, CalendarRecord] = {}
        self._lock = threading.Lock()
        for calendar in calendars:
            self.add(calendar)

    def add(self, calendar: CalendarRecord) -> None:
        """Add or replace a calendar."""
        with self._lock:
            self._calendars[calendar.id] = calendar
        logger.debug("Registered calendar %s (%s)", calendar.id, calendar.feed_url)

    def remove(self, calendar_id: str) -> None:
        """Remove a calendar.

        Raises:
            NotFoundError: If the calendar is unknown
        """
        with self._lock:
            if self._calendars.pop(calendar_id, None) is None:
                raise NotFoundError(calendar_id)

    def get_calendar(self, calendar_id: str) -> CalendarRecord:
        with self._lock:
            calendar = self._calendars.get(calendar_id)
        if calendar is None:
            raise NotFoundError(calendar_id)
        return calendar

    def list_calendars(self) -> list[CalendarRecord]:
        """Return all registered calendars in insertion order."""
        with self._lock:
            return list(self._calendars.values())


class MappingPreferences:
    """Preferences backed by plain color and visibility mappings."""

    def __init__(
        self,
        colors: Optional[Mapping[str, Optional[str]]] = None,
        visibility: Optional[Mapping[str, Optional[bool]]] = None,
    ) -> None:
        self.colors: dict[str, Optional[str]] = dict(colors or {})
        self.visibility: dict[str, Optional[bool]] = dict(visibility or {})

    def color_for(self, calendar_id: str) -> Optional[str]:
        return self.colors.get(calendar_id)

    def is_visible(self, calendar_id: str) -> bool:
        # Calendars without a stored flag are visible
        return self.visibility.get(calendar_id) is not False

    def set_color(self, calendar_id: str, color: Optional[str]) -> None:
        """Set or clear the color of a calendar."""
        self.colors[calendar_id] = color

    def set_visible(self, calendar_id: str, visible: bool) -> None:
        """Show or hide a calendar."""
        self.visibility[calendar_id] = visible
