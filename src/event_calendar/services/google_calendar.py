"""Google Calendar source for fetching calendar events straight from the API."""

import os
import json
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import CalendarConfig
from ..models import DEFAULT_EVENT_COLOR, CalendarEvent, DateRange
from .event_source import STOP_RETRYING_STATUSES, EventSource, EventSourceError, parse_event_dto

logger = logging.getLogger(__name__)

SCOPES = ['https://www.googleapis.com/auth/calendar.readonly']

# Google Calendar event colorId palette
GOOGLE_EVENT_COLORS = {
    '1': '#a4bdfc',   # Lavender
    '2': '#7ae7bf',   # Sage
    '3': '#dbadff',   # Grape
    '4': '#ff887c',   # Flamingo
    '5': '#fbd75b',   # Banana
    '6': '#ffb878',   # Tangerine
    '7': '#46d6db',   # Peacock
    '8': '#e1e1e1',   # Graphite
    '9': '#5484ed',   # Blueberry
    '10': '#51b749',  # Basil
    '11': '#dc2127',  # Tomato
}

PASSTHROUGH_FIELDS = ('description', 'location', 'htmlLink', 'hangoutLink', 'status')


def load_credentials(token_file: str) -> Optional[Credentials]:
    """
    Load authorized-user credentials, refreshing them if they have expired.

    Args:
        token_file: Path of the JSON token file written by the OAuth flow

    Returns:
        Credentials, or None if there is no usable token
    """
    if not os.path.exists(token_file):
        logger.warning(f"Google Calendar token file not found at: {token_file}")
        return None

    try:
        credentials = Credentials.from_authorized_user_file(token_file, SCOPES)
    except (ValueError, json.JSONDecodeError) as e:
        logger.error(f"Error loading token file: {e}")
        return None

    if credentials.expired and credentials.refresh_token:
        logger.info("Token expired, attempting refresh...")
        try:
            credentials.refresh(Request())
        except RefreshError as e:
            logger.error(f"Failed to refresh token - may be invalid or revoked: {e}")
            return None
        with open(token_file, 'w') as f:
            f.write(credentials.to_json())
        logger.info("Successfully refreshed access token")

    return credentials


class GoogleCalendarSource(EventSource):
    """Event source backed by the Google Calendar v3 API."""

    def __init__(self, config: Optional[CalendarConfig] = None,
                 calendar_ids: Optional[Dict[str, str]] = None,
                 credentials: Optional[Credentials] = None,
                 service: Any = None):
        self.config = config or CalendarConfig.from_env()
        self.tz = self.config.timezone
        self.service = service
        self._credentials = credentials
        self._calendar_ids = dict(calendar_ids) if calendar_ids else self.config.google_calendar_ids
        self._calendar_colors: Dict[str, str] = {}
        # The discovery client is not thread-safe and fetches run in worker threads
        self._lock = threading.Lock()
        logger.info(f"Using {len(self._calendar_ids)} Google calendars")

    def _initialize_service(self, force_refresh: bool = False) -> None:
        """
        Initialize the Google Calendar service with credentials.

        Args:
            force_refresh: Force reload of credentials from disk
        """
        if self.service and not force_refresh:
            return

        if force_refresh or not self._credentials:
            self._credentials = load_credentials(self.config.google_token_file)
        if not self._credentials:
            raise EventSourceError("No valid Google Calendar credentials found", status=401)

        self.service = build('calendar', 'v3', credentials=self._credentials, cache_discovery=False)
        self._load_calendar_colors()

    def _load_calendar_colors(self) -> None:
        try:
            self._calendar_colors = {
                calendar_id: color for calendar_id, _, color in self.list_calendars() if color
            }
        except HttpError as e:
            logger.warning(f"Could not load calendar colors: {e}")

    def list_calendars(self) -> List[Tuple[str, str, Optional[str]]]:
        """List the user's calendars as (id, summary, background color) tuples."""
        calendar_list = self.service.calendarList().list().execute()
        return [
            (item['id'], item.get('summary', item['id']), item.get('backgroundColor'))
            for item in calendar_list.get('items', [])
        ]

    def _event_color(self, event: Dict[str, Any], calendar_id: str) -> str:
        calendar_color = self._calendar_colors.get(calendar_id, DEFAULT_EVENT_COLOR)
        return GOOGLE_EVENT_COLORS.get(event.get('colorId'), calendar_color)

    def _format_event(self, event: Dict[str, Any], calendar_name: str,
                      calendar_id: str) -> CalendarEvent:
        """Convert a Google Calendar event to the standardized format."""
        dto = {
            'id': event['id'],
            'start': event['start'],
            'end': event['end'],
            'title': event.get('summary', '(No title)'),
            'color': self._event_color(event, calendar_id),
            'calendar': calendar_name,
            'calendarId': calendar_id,
        }
        for key in PASSTHROUGH_FIELDS:
            if event.get(key) is not None:
                dto[key] = event[key]
        return parse_event_dto(dto, self.tz)

    def _fetch_calendar_events(self, calendar_id: str, calendar_name: str,
                               time_min: str, time_max: str) -> List[CalendarEvent]:
        """
        Fetch events from a single calendar, following pagination.

        Args:
            calendar_id: Google Calendar ID
            calendar_name: Friendly name for the calendar
            time_min: Start time in ISO format
            time_max: End time in ISO format

        Returns:
            List of CalendarEvent objects
        """
        calendar_events = []
        page_token = None
        while True:
            events_result = self.service.events().list(
                calendarId=calendar_id,
                timeMin=time_min,
                timeMax=time_max,
                singleEvents=True,
                orderBy='startTime',
                pageToken=page_token
            ).execute()

            calendar_events.extend(
                self._format_event(event, calendar_name, calendar_id)
                for event in events_result.get('items', [])
                if event.get('status') != 'cancelled'
            )
            page_token = events_result.get('nextPageToken')
            if not page_token:
                break

        logger.info(f"Retrieved {len(calendar_events)} events from calendar: {calendar_name}")
        return calendar_events

    def _retry_after_auth_error(self, calendar_id: str, calendar_name: str,
                                time_min: str, time_max: str,
                                error: Exception) -> List[CalendarEvent]:
        """Reload credentials from disk and retry once; raise a 401 if that fails too."""
        logger.error(f"Authentication error for calendar {calendar_name}: {error}")
        logger.error("Invalidating cached credentials and retrying...")
        self.service = None
        self._credentials = None

        try:
            self._initialize_service(force_refresh=True)
            return self._fetch_calendar_events(calendar_id, calendar_name, time_min, time_max)
        except (RefreshError, HttpError, EventSourceError) as retry_error:
            logger.error(f"Failed to fetch events after credential refresh: {retry_error}")
            raise EventSourceError(
                f"Google Calendar authentication failed: {str(error)}", status=401
            ) from retry_error

    def fetch_events(self, date_range: DateRange, force_refresh: bool = False) -> List[CalendarEvent]:
        """
        Fetch events from every configured calendar for one range.

        The range only counts as fetched if every calendar answered, so a
        failure in any one calendar fails the whole range.

        Raises:
            EventSourceError: With status 401 if credentials are missing or
                revoked, otherwise with the status of the failing calendar
                (a 404 wins over other statuses)
        """
        with self._lock:
            self._initialize_service()

            params = date_range.to_params()
            time_min, time_max = params['timeMin'], params['timeMax']
            logger.info(f"Fetching Google events from {time_min} to {time_max}")

            all_events = []
            failures: List[Tuple[str, HttpError]] = []
            for calendar_name, calendar_id in self._calendar_ids.items():
                try:
                    all_events.extend(
                        self._fetch_calendar_events(calendar_id, calendar_name, time_min, time_max)
                    )
                except RefreshError as e:
                    all_events.extend(
                        self._retry_after_auth_error(calendar_id, calendar_name, time_min, time_max, e)
                    )
                except HttpError as e:
                    if e.resp.status == 401:
                        all_events.extend(
                            self._retry_after_auth_error(calendar_id, calendar_name, time_min, time_max, e)
                        )
                    else:
                        logger.error(f"Error fetching events from calendar {calendar_name}: {e}")
                        failures.append((calendar_name, e))

            if failures:
                raise _failed_calendars_error(failures, len(self._calendar_ids)) from failures[0][1]
            return all_events


def _failed_calendars_error(failures: List[Tuple[str, HttpError]],
                            calendar_count: int) -> EventSourceError:
    statuses = [e.resp.status for _, e in failures]
    stop_statuses = [s for s in statuses if s in STOP_RETRYING_STATUSES]
    status = stop_statuses[0] if stop_statuses else statuses[0]
    names = ', '.join(name for name, _ in failures)
    return EventSourceError(
        f"Failed to fetch {len(failures)} of {calendar_count} Google calendars ({names})",
        status=status
    )
