"""Calendar controller tying navigation, fetching and layout together."""

import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from PIL import Image

from .config import CalendarConfig
from .models import CalendarEvent, DateRange, EventLayout
from .services.event_source import EventSource, HttpEventSource
from .services.fetch_coordinator import FetchCoordinator, RefreshScope
from .ui.layout import all_day_events_for_day, layout_days
from .ui.renderer import CalendarRenderer
from .views import ViewMode, range_for_view, shift_anchor, visible_days

logger = logging.getLogger(__name__)

GRID_VIEWS = (ViewMode.DAILY, ViewMode.WEEKLY)


class EventCalendar:
    """
    Holds the current view and anchor date and keeps the visible events in
    sync with them.

    Every navigation method requests the new view's range from the fetch
    coordinator and returns the events visible in it.
    """

    def __init__(self, source: EventSource, config: Optional[CalendarConfig] = None,
                 default_events: Iterable[CalendarEvent] = (),
                 coordinator: Optional[FetchCoordinator] = None,
                 view_mode: ViewMode = ViewMode.WEEKLY,
                 anchor: Optional[date] = None):
        self.config = config or CalendarConfig.from_env()
        self.tz = self.config.timezone
        self.week_start = self.config.week_start
        self.coordinator = coordinator or FetchCoordinator(
            source, debounce=self.config.debounce, default_events=default_events
        )
        self.view_mode = view_mode
        self.anchor = anchor or datetime.now(self.tz).date()
        self.visible_events: List[CalendarEvent] = []
        self.coordinator.add_listener(self._on_events)

    @classmethod
    def from_config(cls, config: Optional[CalendarConfig] = None,
                    default_events: Iterable[CalendarEvent] = ()) -> 'EventCalendar':
        """Build a calendar backed by the HTTP events endpoint."""
        config = config or CalendarConfig.from_env()
        return cls(HttpEventSource.from_config(config), config=config, default_events=default_events)

    def _on_events(self, events: List[CalendarEvent]) -> None:
        self.visible_events = events

    def current_range(self) -> DateRange:
        return range_for_view(self.view_mode, self.anchor, self.tz, self.week_start)

    def visible_days(self) -> List[date]:
        return visible_days(self.view_mode, self.anchor, self.week_start)

    async def load(self, force_refresh: bool = False) -> List[CalendarEvent]:
        date_range = self.current_range()
        logger.info(f"Loading {self.view_mode.value} view for {self.anchor.isoformat()}")
        return await self.coordinator.request(date_range, force_refresh=force_refresh)

    async def set_view(self, view_mode: ViewMode) -> List[CalendarEvent]:
        self.view_mode = view_mode
        return await self.load()

    async def go_to(self, day: date) -> List[CalendarEvent]:
        self.anchor = day
        return await self.load()

    async def go_to_today(self) -> List[CalendarEvent]:
        return await self.go_to(datetime.now(self.tz).date())

    async def navigate(self, steps: int = 1) -> List[CalendarEvent]:
        """Move forward (or back, for negative ``steps``) by whole view periods."""
        self.anchor = shift_anchor(self.view_mode, self.anchor, steps)
        return await self.load()

    async def refresh(self, scope: RefreshScope = RefreshScope.VIEW) -> List[CalendarEvent]:
        """Refetch after an event was created or edited elsewhere."""
        logger.info(f"Refreshing calendar ({scope.value})")
        return await self.coordinator.refresh(self.current_range(), scope)

    def layout(self) -> Dict[date, List[EventLayout]]:
        """Timed-event geometry for every visible day."""
        return layout_days(self.visible_events, self.visible_days(), self.tz)

    def all_day_events(self) -> Dict[date, List[CalendarEvent]]:
        return {
            day: all_day_events_for_day(self.visible_events, day, self.tz)
            for day in self.visible_days()
        }

    def generate_image(self, width: int = 1200, height: int = 800,
                       renderer: Optional[CalendarRenderer] = None) -> Image.Image:
        """
        Render the current daily or weekly view.

        Raises:
            ValueError: If the current view is not a time grid
        """
        if self.view_mode not in GRID_VIEWS:
            raise ValueError(f"Cannot render a time grid for the {self.view_mode.value} view")
        renderer = renderer or CalendarRenderer(today=datetime.now(self.tz).date())
        return renderer.render(self.visible_days(), self.layout(), width, height)

    def close(self) -> None:
        self.coordinator.remove_listener(self._on_events)
        self.coordinator.close()
