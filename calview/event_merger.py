"""Event merging and deduplication for iCal expansion.

Handles RECURRENCE-ID overrides (moved or modified instances of a recurring
series) and guarantees that event ids are unique within one expansion result.
"""

import logging
from collections.abc import Iterable

from .models import CalendarEvent

logger = logging.getLogger(__name__)


class EventMerger:
    """Merges expanded occurrences with RECURRENCE-ID overrides and deduplicates."""

    def merge_overrides(
        self,
        occurrences: list[CalendarEvent],
        overrides: list[CalendarEvent],
        suppressed_ids: Iterable[str] = (),
    ) -> list[CalendarEvent]:
        """Replace expanded occurrences by their overrides.

        An override carries the id of the occurrence it replaces
        (``{uid}-{original start}``), so the replacement keeps the position of
        the original occurrence in iteration order.

        Args:
            occurrences: Occurrences produced from RRULE/RDATE expansion
            overrides: Override events that fall inside the expansion window
            suppressed_ids: Ids of every override in the feed, including the ones
                moved outside the window; matching occurrences are dropped

        Returns:
            Occurrences with overrides applied, followed by overrides that did
            not match any generated occurrence
        """
        override_by_id = {event.id: event for event in overrides}
        suppressed = set(suppressed_ids)
        merged: list[CalendarEvent] = []
        replaced: set[str] = set()
        suppressed_count = 0

        for occurrence in occurrences:
            override = override_by_id.get(occurrence.id)
            if override is not None:
                merged.append(override)
                replaced.add(occurrence.id)
            elif occurrence.id in suppressed:
                suppressed_count += 1
            else:
                merged.append(occurrence)

        merged.extend(event for event in overrides if event.id not in replaced)

        if replaced or suppressed_count:
            logger.debug(
                "RECURRENCE-ID processing: replaced %d occurrences, suppressed %d moved out of window",
                len(replaced),
                suppressed_count,
            )
        return merged

    def deduplicate_events(self, events: list[CalendarEvent]) -> list[CalendarEvent]:
        """Remove duplicate events, keeping the first event for each id.

        Identical copies (same id, title, times and recurrence id) are dropped
        silently; distinct events sharing an id are dropped with a warning.

        Args:
            events: Calendar events in expansion order

        Returns:
            Deduplicated list of events, order preserved
        """
        seen_keys: set[tuple] = set()
        seen_ids: set[str] = set()
        deduplicated = []

        for event in events:
            key = (
                event.id,
                event.title,
                event.start_time.isoformat(),
                event.end_time.isoformat(),
                event.is_all_day,
                event.recurrence_id,
            )
            if key in seen_keys:
                continue
            if event.id in seen_ids:
                logger.warning("Dropping event %r: id already used by another event", event.id)
                continue
            seen_keys.add(key)
            seen_ids.add(event.id)
            deduplicated.append(event)

        if len(events) != len(deduplicated):
            logger.debug("Removed %d duplicate events", len(events) - len(deduplicated))

        return deduplicated
