"""In-memory record of which time range has been fetched, and its events."""

import logging
from typing import Dict, Iterable, List, Optional

from ..models import ONE_MS, CalendarEvent, DateRange

logger = logging.getLogger(__name__)


class RangeCache:
    """
    Tracks a single contiguous fetched range plus the events inside it.

    The range only ever grows through ``merge``. Gaps between two merged
    ranges are absorbed into the bounding box, so callers must only merge
    ranges adjacent to or overlapping the current bounds (which is what
    ``missing_ranges`` produces). ``invalidate`` and ``evict_view`` are the
    only ways to shrink it.
    """

    def __init__(self):
        self._bounds: Optional[DateRange] = None
        self._events: Dict[str, CalendarEvent] = {}

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._events

    @property
    def bounds(self) -> Optional[DateRange]:
        return self._bounds

    @property
    def is_empty(self) -> bool:
        return self._bounds is None and not self._events

    def get(self, event_id: str) -> Optional[CalendarEvent]:
        return self._events.get(event_id)

    def is_covered(self, requested: DateRange) -> bool:
        """Check if ``requested`` lies entirely inside the fetched range."""
        return self._bounds is not None and self._bounds.contains(requested)

    def missing_ranges(self, requested: DateRange) -> List[DateRange]:
        """
        Compute the parts of ``requested`` that still need fetching.

        Args:
            requested: The range a view wants to display

        Returns:
            ``[requested]`` when nothing is cached, otherwise up to two ranges:
            the part before the cached range and the part after it. A request
            that does not touch the cache also gets the gap up to the cached
            edge, so merging the results never leaves a hole in the bounds
        """
        if self._bounds is None:
            return [requested]

        missing = []
        if requested.time_min < self._bounds.time_min:
            missing.append(DateRange(
                requested.time_min,
                max(requested.time_min, self._bounds.time_min - ONE_MS)
            ))
        if requested.time_max > self._bounds.time_max:
            missing.append(DateRange(
                min(requested.time_max, self._bounds.time_max + ONE_MS),
                requested.time_max
            ))
        return missing

    def merge(self, events: Iterable[CalendarEvent], fetched_range: DateRange) -> None:
        """
        Upsert events by id and grow the cached range to include ``fetched_range``.

        Later data for an id replaces earlier data. Merging the same
        events and range twice leaves the cache unchanged.
        """
        count = 0
        for event in events:
            self._events[event.id] = event
            count += 1

        if self._bounds is None:
            self._bounds = fetched_range
        else:
            self._bounds = self._bounds.union(fetched_range)

        logger.debug(f"Merged {count} events for {fetched_range}; cache now covers {self._bounds}")

    def events_overlapping(self, date_range: DateRange) -> List[CalendarEvent]:
        """Get cached events that overlap ``date_range``, ordered by start."""
        events = [e for e in self._events.values() if date_range.overlaps_event(e)]
        events.sort(key=lambda e: (e.start, e.id))
        return events

    def invalidate(self) -> None:
        logger.info(f"Invalidating range cache ({len(self._events)} events, bounds {self._bounds})")
        self._bounds = None
        self._events.clear()

    def evict_view(self, date_range: DateRange) -> int:
        """
        Drop the events visible in ``date_range`` ahead of a forced refresh.

        A single bounding range cannot describe the hole this leaves, so the
        whole fetched range is forgotten and the next request refetches.

        Returns:
            Number of events removed
        """
        evicted = [e.id for e in self._events.values() if date_range.overlaps_event(e)]
        for event_id in evicted:
            del self._events[event_id]
        self._bounds = None
        logger.info(f"Evicted {len(evicted)} events in {date_range}; cached range reset")
        return len(evicted)
