"""iCalendar parsing and recurrence expansion."""

import logging
import uuid
from collections.abc import Callable, Iterator
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

from dateutil.relativedelta import relativedelta
from dateutil.rrule import rrule, rruleset, rrulestr
from icalendar import Calendar
from icalendar.prop import vRecur

from .event_merger import EventMerger
from .exceptions import ParseError
from .models import CalendarEvent, ExpansionStats
from .timezone_utils import UTC, date_to_datetime, ensure_aware, get_zone, now_utc

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES_PER_RULE = 10000
DEFAULT_MAX_SKIPPED_OCCURRENCES = 100000


def _as_list(value: Any) -> list[Any]:
    """Normalize a property that may appear once or several times."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def occurrence_id(uid: str, start: datetime) -> str:
    """Build the id of one occurrence of a recurring series."""
    return f"{uid}-{int(start.timestamp())}"


class ICalExpander:
    """Parses an iCal document and expands it into concrete CalendarEvents.

    Recurring events are expanded within N months either side of the current
    day, with the window computed on every call. A VEVENT that cannot be converted
    is skipped with a warning; the rest of the feed is still returned. A
    document that cannot be parsed at all raises ``ParseError``.
    """

    def __init__(
        self,
        settings: Any = None,
        time_provider: Callable[[], datetime] = now_utc,
    ) -> None:
        """Initialize expander.

        Args:
            settings: Application settings (``default_timezone``, ``max_occurrences_per_rule``,
                ``max_skipped_occurrences``)
            time_provider: Callable returning the current aware datetime
        """
        self.default_timezone = getattr(settings, "default_timezone", "UTC") or "UTC"
        self.max_occurrences = int(
            getattr(settings, "max_occurrences_per_rule", DEFAULT_MAX_OCCURRENCES_PER_RULE)
        )
        self.max_skipped = int(
            getattr(settings, "max_skipped_occurrences", DEFAULT_MAX_SKIPPED_OCCURRENCES)
        )
        self.time_provider = time_provider
        self.merger = EventMerger()
        logger.debug(
            "iCal expander initialized (default_timezone=%s, max_occurrences=%d)",
            self.default_timezone,
            self.max_occurrences,
        )

    def expand(self, raw_text: str, calendar_id: str, window_months: int) -> list[CalendarEvent]:
        """Parse ``raw_text`` and return its events for ``calendar_id``.

        Raises:
            ParseError: If the document is not valid iCalendar
            ValueError: If ``window_months`` is negative
        """
        events, _ = self.expand_with_stats(raw_text, calendar_id, window_months)
        return events

    def get_window(self, window_months: int) -> tuple[datetime, datetime]:
        """Return the half-open expansion window ``[start, end)``.

        The window covers the whole current day in the default timezone,
        widened by ``window_months`` on each side, so a zero-month window
        still holds today's occurrences.
        """
        if window_months < 0:
            raise ValueError(f"window_months must be >= 0, got {window_months}")
        today = self.time_provider().astimezone(get_zone(self.default_timezone)).date()
        day_start = date_to_datetime(today, self.default_timezone)
        day_end = date_to_datetime(today + timedelta(days=1), self.default_timezone)
        months = relativedelta(months=window_months)
        return day_start - months, day_end + months

    def expand_with_stats(
        self, raw_text: str, calendar_id: str, window_months: int
    ) -> tuple[list[CalendarEvent], ExpansionStats]:
        """Parse and expand, also returning counters for diagnostics."""
        window_start, window_end = self.get_window(window_months)
        calendar = self._parse_calendar(raw_text)

        stats = ExpansionStats()
        singles: list[CalendarEvent] = []
        occurrences: list[CalendarEvent] = []
        overrides: list[CalendarEvent] = []
        override_ids: set[str] = set()

        for component in calendar.walk():
            stats.total_components += 1
            if component.name != "VEVENT":
                continue
            stats.event_components += 1

            try:
                if component.get("RECURRENCE-ID") is not None:
                    override = self._build_override(component, calendar_id)
                    stats.overrides += 1
                    override_ids.add(override.id)
                    if window_start <= override.start_time < window_end:
                        overrides.append(override)
                elif self._is_recurring(component):
                    stats.recurring_masters += 1
                    expanded = list(
                        self._expand_recurring(component, calendar_id, window_start, window_end)
                    )
                    stats.occurrences += len(expanded)
                    occurrences.extend(expanded)
                else:
                    singles.append(self._build_single(component, calendar_id))
            except Exception as e:
                stats.skipped += 1
                uid = component.get("UID", "<no-uid>")
                warning = f"Skipping malformed event {uid}: {e}"
                stats.add_warning(warning)
                logger.warning(warning)

        # Series occurrences keep their slot in iteration order after single events
        merged = singles + self.merger.merge_overrides(occurrences, overrides, override_ids)
        events = self.merger.deduplicate_events(merged)

        logger.debug(
            "Expanded calendar %s: %d events (%d VEVENTs, %d recurring, %d overrides, %d skipped)",
            calendar_id,
            len(events),
            stats.event_components,
            stats.recurring_masters,
            stats.overrides,
            stats.skipped,
        )
        return events, stats

    def _parse_calendar(self, raw_text: str) -> Calendar:
        """Parse the document into a VCALENDAR component tree."""
        if not raw_text or not raw_text.strip():
            raise ParseError("Empty iCal content")

        try:
            calendar = Calendar.from_ical(raw_text)
        except Exception as e:
            logger.exception("Failed to parse iCal content")
            raise ParseError(f"Invalid iCal content: {e}") from e

        if getattr(calendar, "name", None) != "VCALENDAR":
            raise ParseError(
                f"Expected VCALENDAR component, got {getattr(calendar, 'name', None)!r}"
            )
        return calendar

    @staticmethod
    def _is_recurring(component: Any) -> bool:
        return component.get("RRULE") is not None or component.get("RDATE") is not None

    def _to_datetime(self, value: Any) -> tuple[datetime, bool]:
        """Convert a DATE or DATE-TIME value to an aware datetime.

        Returns:
            Tuple of (datetime, is_date_value)
        """
        if isinstance(value, datetime):
            return ensure_aware(value, self.default_timezone), False
        if isinstance(value, date):
            return date_to_datetime(value, self.default_timezone), True
        raise ValueError(f"Unsupported date value: {value!r}")

    def _get_times(self, component: Any) -> tuple[datetime, datetime, bool]:
        """Read start, end and all-day flag from a VEVENT.

        Without DTEND the end comes from DURATION, else one day for DATE starts
        and zero length for DATE-TIME starts.
        """
        dtstart = component.get("DTSTART")
        if dtstart is None:
            raise ValueError("missing DTSTART")
        start, is_all_day = self._to_datetime(dtstart.dt)

        dtend = component.get("DTEND")
        duration = component.get("DURATION")
        if dtend is not None:
            end, _ = self._to_datetime(dtend.dt)
        elif duration is not None:
            end = start + duration.dt
        elif is_all_day:
            end = start + timedelta(days=1)
        else:
            end = start

        if end < start:
            raise ValueError(f"end {end.isoformat()} before start {start.isoformat()}")
        return start, end, is_all_day

    @staticmethod
    def _text(component: Any, name: str) -> Optional[str]:
        value = component.get(name)
        if value is None:
            return None
        return str(value)

    @staticmethod
    def _uid(component: Any) -> Optional[str]:
        uid = component.get("UID")
        if uid is None:
            return None
        uid = str(uid).strip()
        return uid or None

    def _build_single(self, component: Any, calendar_id: str) -> CalendarEvent:
        """Build the one CalendarEvent of a non-recurring VEVENT."""
        start, end, is_all_day = self._get_times(component)
        return CalendarEvent(
            id=self._uid(component) or str(uuid.uuid4()),
            title=self._text(component, "SUMMARY") or "",
            description=self._text(component, "DESCRIPTION"),
            location=self._text(component, "LOCATION"),
            start_time=start,
            end_time=end,
            is_all_day=is_all_day,
            calendar_id=calendar_id,
        )

    def _build_override(self, component: Any, calendar_id: str) -> CalendarEvent:
        """Build a RECURRENCE-ID instance with the id of the occurrence it replaces."""
        uid = self._uid(component)
        if uid is None:
            raise ValueError("RECURRENCE-ID instance without UID")
        original_start, _ = self._to_datetime(component.get("RECURRENCE-ID").dt)
        start, end, is_all_day = self._get_times(component)
        return CalendarEvent(
            id=occurrence_id(uid, original_start),
            title=self._text(component, "SUMMARY") or "",
            description=self._text(component, "DESCRIPTION"),
            location=self._text(component, "LOCATION"),
            start_time=start,
            end_time=end,
            is_all_day=is_all_day,
            calendar_id=calendar_id,
            recurrence_id=uid,
        )

    def _expand_recurring(
        self,
        component: Any,
        calendar_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> Iterator[CalendarEvent]:
        """Yield occurrences of a recurring master inside the window.

        Occurrences are visited in chronological order from DTSTART. The walk
        stops at the first occurrence at or past ``window_end``, so unbounded
        rules are never exhausted. Occurrences before the window are bounded
        by ``max_skipped_occurrences``.
        """
        uid = self._uid(component)
        if uid is None:
            # Occurrence ids need a stable prefix
            uid = str(uuid.uuid4())
        master_start, master_end, is_all_day = self._get_times(component)
        duration = master_end - master_start
        rule_set = self._build_ruleset(component, master_start, is_all_day)

        title = self._text(component, "SUMMARY") or ""
        description = self._text(component, "DESCRIPTION")
        location = self._text(component, "LOCATION")

        emitted = 0
        skipped = 0
        for start in rule_set:
            if start >= window_end:
                break
            if start < window_start:
                skipped += 1
                if skipped > self.max_skipped:
                    logger.warning(
                        "Event %s skipped more than %d occurrences before the window, "
                        "abandoning expansion",
                        uid,
                        self.max_skipped,
                    )
                    break
                continue
            if emitted >= self.max_occurrences:
                logger.warning(
                    "Event %s reached max occurrences (%d), truncating expansion",
                    uid,
                    self.max_occurrences,
                )
                break
            emitted += 1
            yield CalendarEvent(
                id=occurrence_id(uid, start),
                title=title,
                description=description,
                location=location,
                start_time=start,
                end_time=start + duration,
                is_all_day=is_all_day,
                calendar_id=calendar_id,
                recurrence_id=uid,
            )

    def _build_ruleset(self, component: Any, start: datetime, is_all_day: bool) -> rruleset:
        """Build an rruleset from RRULE, RDATE and EXDATE anchored at ``start``."""
        rule_set = rruleset()
        # DTSTART is always the first instance, even when the rule would not produce it
        rule_set.rdate(start)

        for recur in _as_list(component.get("RRULE")):
            rule_set.rrule(self._build_rrule(recur, start))

        for rdate in self._collect_dates(component.get("RDATE"), start, is_all_day):
            rule_set.rdate(rdate)

        for exdate in self._collect_dates(component.get("EXDATE"), start, is_all_day):
            rule_set.exdate(exdate)

        return rule_set

    def _build_rrule(self, recur: vRecur, start: datetime) -> rrule:
        """Convert an icalendar vRecur to a dateutil rrule.

        UNTIL is applied after parsing so that floating or DATE values can be
        made comparable with an aware DTSTART.
        """
        rule = vRecur(recur)
        until_values = _as_list(rule.pop("UNTIL", None))
        rule_text = rule.to_ical().decode("utf-8")
        parsed = rrulestr(rule_text, dtstart=start)

        if until_values:
            until = until_values[0]
            if isinstance(until, datetime):
                until_dt = until if until.tzinfo is not None else until.replace(tzinfo=start.tzinfo)
            else:
                # A DATE bound includes the whole day
                until_dt = datetime.combine(until, time(23, 59, 59), tzinfo=start.tzinfo)
            parsed = parsed.replace(until=until_dt.astimezone(UTC))
        return parsed

    def _collect_dates(self, prop: Any, start: datetime, is_all_day: bool) -> list[datetime]:
        """Flatten RDATE/EXDATE properties into aware datetimes.

        A DATE value applied to a timed series takes the series' start time
        and a floating DATE-TIME takes the zone of DTSTART.
        PERIOD values contribute their start.
        """
        dates: list[datetime] = []
        for dates_prop in _as_list(prop):
            for item in getattr(dates_prop, "dts", []):
                value = item.dt
                if isinstance(value, tuple):
                    value = value[0]
                if isinstance(value, datetime):
                    # Floating values share the series zone, as UNTIL does
                    if value.tzinfo is None:
                        value = value.replace(tzinfo=start.tzinfo)
                    dates.append(value)
                elif isinstance(value, date):
                    if is_all_day:
                        dates.append(date_to_datetime(value, self.default_timezone))
                    else:
                        dates.append(datetime.combine(value, start.timetz()))
        return dates
