"""Event filtering and display enrichment for calendar views."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Optional

from .models import CalendarEvent

if TYPE_CHECKING:
    from .registry import PreferencesProvider

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#3b82f6"

FULL_DAY_SECONDS = 24 * 60 * 60


def filter_by_range(
    events: Iterable[CalendarEvent],
    range_start: datetime.datetime,
    range_end: datetime.datetime,
) -> list[CalendarEvent]:
    """Select events overlapping ``[range_start, range_end]``.

    Overlap is inclusive: an event that ends exactly at ``range_start`` or
    starts exactly at ``range_end`` is kept. Input order is preserved.
    """
    return [
        event
        for event in events
        if event.start_time <= range_end and event.end_time >= range_start
    ]


def enrich_events(
    events: Iterable[CalendarEvent],
    color_by_calendar_id: Optional[Mapping[str, Optional[str]]] = None,
    visibility_by_calendar_id: Optional[Mapping[str, Optional[bool]]] = None,
) -> list[CalendarEvent]:
    """Attach display colors and drop events of hidden calendars.

    Calendars missing from ``visibility_by_calendar_id`` (or mapped to ``None``)
    are visible. Events are copied; the inputs are never modified.
    """
    colors = color_by_calendar_id or {}
    visibility = visibility_by_calendar_id or {}

    enriched = []
    for event in events:
        if visibility.get(event.calendar_id) is False:
            continue
        color = colors.get(event.calendar_id) or DEFAULT_COLOR
        enriched.append(event.model_copy(update={"color": color}))
    return enriched


def enrich_with_preferences(
    events: Iterable[CalendarEvent], preferences: PreferencesProvider
) -> list[CalendarEvent]:
    """Same as :func:`enrich_events`, reading preferences from a provider."""
    enriched = []
    hidden: set[str] = set()
    for event in events:
        if event.calendar_id in hidden or not preferences.is_visible(event.calendar_id):
            hidden.add(event.calendar_id)
            continue
        color = preferences.color_for(event.calendar_id) or DEFAULT_COLOR
        enriched.append(event.model_copy(update={"color": color}))

    if hidden:
        logger.debug("Dropped events of hidden calendars: %s", sorted(hidden))
    return enriched


def is_full_day(event: CalendarEvent) -> bool:
    """Heuristic used by day/week grids to place an event in the all-day row.

    DATE-valued events are always full-day. Otherwise an event counts when it
    lasts at least 24 hours, or when both ends fall on midnight in the event's
    own timezone.
    """
    if event.is_all_day:
        return True
    if event.duration_seconds >= FULL_DAY_SECONDS:
        return True
    midnight = datetime.time.min
    return (
        event.end_time > event.start_time
        and event.start_time.time() == midnight
        and event.end_time.time() == midnight
    )


def sort_events(events: Iterable[CalendarEvent]) -> list[CalendarEvent]:
    """Return events ordered by start then end time (stable)."""
    return sorted(events, key=lambda e: (e.start_time, e.end_time))
