"""Core calendar data types shared by the cache, the sources and the layout."""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Dict, Optional, Tuple, Union
from dataclasses import dataclass, field

import pytz

# Smallest step between two adjacent ranges on the wire
ONE_MS = timedelta(milliseconds=1)

DEFAULT_EVENT_COLOR = '#4285f4'


@dataclass(frozen=True)
class CalendarEvent:
    """Represents a calendar event with standardized fields.

    Two events with the same ``id`` are the same event; whichever was fetched
    last replaces the other in the cache.
    """
    id: str
    start: datetime
    end: datetime
    is_all_day: bool = False
    color: str = DEFAULT_EVENT_COLOR
    title: str = ''
    calendar: Optional[str] = None
    calendar_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Event {self.id} ends before it starts")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: 'CalendarEvent') -> bool:
        """Strict temporal overlap; events that only touch do not overlap."""
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class DateRange:
    """Closed time interval ``[time_min, time_max]``."""
    time_min: datetime
    time_max: datetime

    def __post_init__(self):
        if self.time_max < self.time_min:
            raise ValueError(
                f"Invalid range: {self.time_min.isoformat()} is after {self.time_max.isoformat()}"
            )

    def __str__(self) -> str:
        return f"[{self.time_min.isoformat()} .. {self.time_max.isoformat()}]"

    def contains(self, other: 'DateRange') -> bool:
        return other.time_min >= self.time_min and other.time_max <= self.time_max

    def overlaps_event(self, event: CalendarEvent) -> bool:
        return event.start <= self.time_max and event.end >= self.time_min

    def union(self, other: 'DateRange') -> 'DateRange':
        """Bounding box of both ranges, including any gap between them."""
        return DateRange(min(self.time_min, other.time_min), max(self.time_max, other.time_max))

    def to_params(self) -> Dict[str, str]:
        """Query parameters for the events endpoint."""
        return {
            'timeMin': _to_utc_iso(self.time_min),
            'timeMax': _to_utc_iso(self.time_max),
        }


@dataclass(frozen=True)
class EventPosition:
    """Pixel/percent geometry of a timed event inside its day column."""
    top: float
    height: float
    left_percent: float
    width_percent: float


@dataclass(frozen=True)
class EventLayout:
    """Everything a renderer needs to draw one timed event."""
    event: CalendarEvent
    position: EventPosition
    column: int
    column_count: int
    touching_top: bool = False
    touching_bottom: bool = False


def _to_utc_iso(dt: datetime) -> str:
    dt = dt.astimezone(pytz.UTC)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{dt.microsecond // 1000:03d}Z"


def local_midnight(day: date, tz: tzinfo) -> datetime:
    """Localized start of ``day`` in ``tz`` (pytz-aware)."""
    naive = datetime.combine(day, time.min)
    if hasattr(tz, 'localize'):
        return tz.localize(naive)
    return naive.replace(tzinfo=tz)


def end_of_day(day: date, tz: tzinfo) -> datetime:
    """Last millisecond of ``day`` in ``tz``."""
    return local_midnight(day + timedelta(days=1), tz) - ONE_MS


def parse_event_datetime(value: Union[str, datetime], tz: tzinfo) -> Tuple[datetime, bool]:
    """
    Parse an event start/end value and determine if it's an all-day value.

    Args:
        value: ISO 8601 string (``Z`` suffix allowed), date-only string, or datetime
        tz: Timezone used for naive values and date-only values

    Returns:
        Tuple of (aware datetime in ``tz``, is_all_day)

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and 'T' in value:  # Has time component
        dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    elif isinstance(value, str) and value:
        return local_midnight(date.fromisoformat(value), tz), True
    else:
        raise ValueError(f"Unsupported datetime value: {value!r}")

    if dt.tzinfo is None:
        dt = tz.localize(dt) if hasattr(tz, 'localize') else dt.replace(tzinfo=tz)
    return dt.astimezone(tz), False
