#!/usr/bin/env python3
"""Fetch the current view from the configured source and print its layout."""

import argparse
import asyncio
import logging
import sys
from datetime import date

from event_calendar.config import CalendarConfig
from event_calendar.event_calendar import EventCalendar
from event_calendar.services.event_source import HttpEventSource
from event_calendar.services.google_calendar import GoogleCalendarSource
from event_calendar.views import ViewMode

# Configure logging
logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('--view', choices=[m.value for m in ViewMode], default=ViewMode.WEEKLY.value)
    parser.add_argument('--date', type=date.fromisoformat, default=None,
                        help='Anchor date (YYYY-MM-DD), defaults to today')
    parser.add_argument('--google', action='store_true',
                        help='Read Google Calendar directly instead of the events endpoint')
    parser.add_argument('--image', default=None, help='Write the rendered grid to this PNG path')
    return parser.parse_args(argv)


async def run(args) -> None:
    config = CalendarConfig.from_env()
    source = GoogleCalendarSource(config) if args.google else HttpEventSource.from_config(config)
    calendar = EventCalendar(source, config=config, view_mode=ViewMode(args.view), anchor=args.date)

    try:
        events = await calendar.load()
        logger.info(f"Successfully retrieved {len(events)} events for {calendar.current_range()}")

        for day, layouts in calendar.layout().items():
            print(f"\n{day.strftime('%a %Y-%m-%d')}")
            print("-" * 80)
            for event in calendar.all_day_events()[day]:
                print(f"  [all day] {event.title}")
            for layout in layouts:
                position = layout.position
                print(
                    f"  {layout.event.start.strftime('%H:%M')}-{layout.event.end.strftime('%H:%M')} "
                    f"{layout.event.title[:30]:<30} top={position.top:.2f} height={position.height:.2f} "
                    f"col={layout.column + 1}/{layout.column_count} "
                    f"touch={'T' if layout.touching_top else '-'}{'B' if layout.touching_bottom else '-'}"
                )

        if args.image:
            calendar.generate_image().save(args.image)
            logger.info(f"Saved calendar image to {args.image}")
    finally:
        calendar.close()


def main(argv=None):
    args = parse_args(argv)
    try:
        asyncio.run(run(args))
    except Exception:
        logger.error("An error occurred:", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
