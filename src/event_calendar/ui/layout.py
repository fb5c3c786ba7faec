"""Calendar layout calculations and positioning."""

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Sequence, Tuple

from ..models import CalendarEvent, EventLayout, EventPosition, local_midnight
from .styles import MIN_EVENT_HEIGHT, PIXELS_PER_MINUTE

logger = logging.getLogger(__name__)


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60


def _layout_order(event: CalendarEvent) -> Tuple[datetime, timedelta, str]:
    # Earlier first, then longer first; id keeps ties reproducible
    return event.start, -event.duration, event.id


def day_bounds(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Half-open ``[start, end)`` bounds of a local day.

    DST transition days are 23 or 25 hours long.
    """
    return local_midnight(day, tz), local_midnight(day + timedelta(days=1), tz)


def event_overlaps_day(event: CalendarEvent, day_start: datetime, day_end: datetime) -> bool:
    if event.start == event.end:
        return day_start <= event.start < day_end
    return event.start < day_end and event.end > day_start


def timed_events_for_day(events: Iterable[CalendarEvent], day: date,
                         tz: tzinfo) -> List[CalendarEvent]:
    """Get timed (non-all-day) events that overlap a local day."""
    day_start, day_end = day_bounds(day, tz)
    return [
        e for e in events
        if not e.is_all_day and event_overlaps_day(e, day_start, day_end)
    ]


def all_day_events_for_day(events: Iterable[CalendarEvent], day: date,
                           tz: tzinfo) -> List[CalendarEvent]:
    day_start, day_end = day_bounds(day, tz)
    return [
        e for e in events
        if e.is_all_day and event_overlaps_day(e, day_start, day_end)
    ]


def clip_to_day(event: CalendarEvent, day_start: datetime, day_end: datetime) -> CalendarEvent:
    """Return ``event`` with start/end limited to the day, or ``event`` itself if it fits."""
    start = max(event.start, day_start)
    end = max(min(event.end, day_end), start)
    if start == event.start and end == event.end:
        return event
    return replace(event, start=start, end=end)


def group_overlapping_events(events: Sequence[CalendarEvent]) -> List[List[CalendarEvent]]:
    """
    Partition events into maximal groups connected by temporal overlap.

    Overlap is strict (``a.start < b.end and b.start < a.end``), so events
    that merely touch stay in separate groups unless a third event bridges
    them. Connectivity is transitive.

    Args:
        events: Timed events of a single day

    Returns:
        Groups ordered by their earliest event, each in layout order
    """
    ordered = sorted(events, key=_layout_order)
    parent = list(range(len(ordered)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i, first in enumerate(ordered):
        for j in range(i + 1, len(ordered)):
            second = ordered[j]
            # Sorted by start, so nothing later can overlap ``first`` either
            if second.start >= first.end:
                break
            if first.overlaps(second):
                parent[find(j)] = find(i)

    groups: Dict[int, List[CalendarEvent]] = {}
    for index, event in enumerate(ordered):
        groups.setdefault(find(index), []).append(event)
    return list(groups.values())


def assign_columns(group: Sequence[CalendarEvent]) -> Tuple[Dict[str, int], int]:
    """
    Pack the events of one overlap group into side-by-side columns.

    Each event goes into the lowest column whose events have all ended by
    its start. This never uses more columns than the peak number of
    simultaneously active events.

    Returns:
        Tuple of (column index by event id, column count)
    """
    column_ends: List[datetime] = []
    columns: Dict[str, int] = {}

    for event in sorted(group, key=_layout_order):
        for index, column_end in enumerate(column_ends):
            if column_end <= event.start:
                column_ends[index] = event.end
                columns[event.id] = index
                break
        else:
            column_ends.append(event.end)
            columns[event.id] = len(column_ends) - 1

    return columns, len(column_ends)


def calculate_event_position(event: CalendarEvent, day_start: datetime, day_end: datetime,
                             column: int = 0, column_count: int = 1,
                             pixels_per_minute: float = PIXELS_PER_MINUTE,
                             min_height: float = MIN_EVENT_HEIGHT) -> EventPosition:
    """
    Calculate the geometry of a timed event inside its day column.

    Args:
        event: The event to place
        day_start: Start of the rendered day (top of the column)
        day_end: End of the rendered day (bottom of the column)
        column: Column assigned within the overlap group
        column_count: Number of columns in the overlap group
        pixels_per_minute: Vertical scale
        min_height: Height short events are raised to

    Returns:
        EventPosition with fractional pixel top/height and percent left/width
    """
    if column_count < 1 or not 0 <= column < column_count:
        raise ValueError(f"Invalid column {column} of {column_count}")

    clipped = clip_to_day(event, day_start, day_end)
    day_height = _minutes(day_end - day_start) * pixels_per_minute

    top = _minutes(clipped.start - day_start) * pixels_per_minute
    top = min(max(top, 0.0), day_height)
    height = max(_minutes(clipped.duration) * pixels_per_minute, min_height)
    height = min(height, day_height - top)

    width = 100 / column_count
    return EventPosition(top=top, height=height, left_percent=column * width, width_percent=width)


def detect_touching(event: CalendarEvent, day_events: Iterable[CalendarEvent]) -> Tuple[bool, bool]:
    """
    Determine whether other events share this event's top or bottom edge.

    Returns:
        Tuple of (touching_top, touching_bottom)
    """
    touching_top = touching_bottom = False
    for other in day_events:
        if other.id == event.id:
            continue
        touching_top = touching_top or other.end == event.start
        touching_bottom = touching_bottom or other.start == event.end
    return touching_top, touching_bottom


def layout_day(events: Iterable[CalendarEvent], day: date, tz: tzinfo,
               pixels_per_minute: float = PIXELS_PER_MINUTE,
               min_height: float = MIN_EVENT_HEIGHT) -> List[EventLayout]:
    """
    Lay out every timed event of a local day.

    All-day events are ignored. Events crossing midnight are clipped to the
    day for grouping and positioning; the returned layouts carry the
    original, unclipped events.
    """
    day_start, day_end = day_bounds(day, tz)

    # Same id means same event; keep the last one seen
    by_id: Dict[str, CalendarEvent] = {}
    for event in timed_events_for_day(events, day, tz):
        by_id[event.id] = event
    day_events = list(by_id.values())

    clipped = [clip_to_day(e, day_start, day_end) for e in day_events]
    layouts = []
    for group in group_overlapping_events(clipped):
        columns, column_count = assign_columns(group)
        for event in group:
            original = by_id[event.id]
            position = calculate_event_position(
                event, day_start, day_end, columns[event.id], column_count,
                pixels_per_minute, min_height
            )
            touching_top, touching_bottom = detect_touching(original, day_events)
            layouts.append(EventLayout(
                event=original,
                position=position,
                column=columns[event.id],
                column_count=column_count,
                touching_top=touching_top,
                touching_bottom=touching_bottom,
            ))

    logger.debug(f"Laid out {len(layouts)} timed events for {day.isoformat()}")
    return layouts


def layout_days(events: Sequence[CalendarEvent], days: Iterable[date],
                tz: tzinfo) -> Dict[date, List[EventLayout]]:
    return {day: layout_day(events, day, tz) for day in days}
