"""Command-line entry for calview.

Prints calendar events as JSON, either from a configured feed or from a local
.ics file, which is handy for checking how a feed expands.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn, Optional

from dateutil.parser import isoparse

from .config import CalviewSettings, load_settings
from .event_filter import filter_by_range, sort_events
from .exceptions import CalviewError
from .logging_config import configure_logging
from .parser import ICalExpander
from .service import CalendarService
from .timezone_utils import ensure_aware


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for calview CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="calview",
        description="calview - iCal feed expansion and caching",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m calview calendars                          # List configured calendars
  python -m calview events team --months 3             # Events of calendar 'team'
  python -m calview events team --start 2024-05-01 --end 2024-05-31
  python -m calview expand holidays.ics                # Expand a local file
        """,
    )
    parser.add_argument("--config", metavar="PATH", help="YAML config file (default: CALVIEW_CONFIG or config/calview.yaml)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("calendars", help="List configured calendars")

    events = subparsers.add_parser("events", help="Fetch and print the events of a calendar")
    events.add_argument("calendar_id", help="Configured calendar id")
    _add_range_arguments(events)
    events.add_argument("--refresh", action="store_true", help="Bypass the cache")

    expand = subparsers.add_parser("expand", help="Expand a local .ics file")
    expand.add_argument("file", type=Path, help="Path to an .ics file")
    expand.add_argument("--calendar-id", help="Calendar id to tag events with (default: file name)")
    _add_range_arguments(expand)
    expand.add_argument("--stats", action="store_true", help="Print expansion counters too")

    return parser


def _add_range_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--months", type=int, metavar="N", help="Recurrence window in months")
    parser.add_argument("--start", type=isoparse, metavar="ISO", help="Start of the visible range")
    parser.add_argument("--end", type=isoparse, metavar="ISO", help="End of the visible range")


def _resolve_range(
    args: argparse.Namespace, settings: CalviewSettings
) -> tuple[Optional[datetime], Optional[datetime]]:
    if (args.start is None) != (args.end is None):
        raise ValueError("--start and --end must be given together")
    if args.start is None:
        return None, None
    return (
        ensure_aware(args.start, settings.default_timezone),
        ensure_aware(args.end, settings.default_timezone),
    )


def _dump(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


async def _run_events(args: argparse.Namespace, settings: CalviewSettings) -> None:
    range_start, range_end = _resolve_range(args, settings)
    async with CalendarService.from_settings(settings) as service:
        events = await service.get_events(
            args.calendar_id,
            window_months=args.months,
            force_refresh=args.refresh,
            range_start=range_start,
            range_end=range_end,
        )
    _dump([event.model_dump(mode="json") for event in sort_events(events)])


def _run_expand(args: argparse.Namespace, settings: CalviewSettings) -> None:
    range_start, range_end = _resolve_range(args, settings)
    months = settings.default_window_months if args.months is None else args.months
    calendar_id = args.calendar_id or args.file.stem

    try:
        raw_text = args.file.read_text(encoding="utf-8")
    except OSError as e:
        raise CalviewError(f"Cannot read {args.file}: {e}") from e

    events, stats = ICalExpander(settings).expand_with_stats(raw_text, calendar_id, months)
    if range_start is not None and range_end is not None:
        events = filter_by_range(events, range_start, range_end)

    payload: dict[str, Any] = {"events": [e.model_dump(mode="json") for e in sort_events(events)]}
    if args.stats:
        payload["stats"] = stats.model_dump()
    _dump(payload)


def _run_calendars(settings: CalviewSettings) -> None:
    _dump([calendar.model_dump() for calendar in settings.calendars])


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Run the calview CLI and exit with its status code."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config)
        configure_logging(debug_mode=args.debug, log_level=settings.log_level)

        if args.command == "calendars":
            _run_calendars(settings)
        elif args.command == "events":
            asyncio.run(_run_events(args, settings))
        else:
            _run_expand(args, settings)
    except CalviewError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except ValueError as exc:
        print(f"Invalid arguments: {exc}", file=sys.stderr)
        sys.exit(2)

    sys.exit(0)


if __name__ == "__main__":
    main()
