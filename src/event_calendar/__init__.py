from .models import CalendarEvent, DateRange, EventLayout, EventPosition
from .views import ViewMode, range_for_view
from .services.range_cache import RangeCache
from .services.fetch_coordinator import FetchCoordinator, RefreshScope
from .event_calendar import EventCalendar

__all__ = [
    'CalendarEvent', 'DateRange', 'EventLayout', 'EventPosition',
    'ViewMode', 'range_for_view',
    'RangeCache', 'FetchCoordinator', 'RefreshScope',
    'EventCalendar',
]
