"""Remote event sources and the wire format of the events endpoint."""

import logging
from datetime import tzinfo
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..models import (
    DEFAULT_EVENT_COLOR, ONE_MS, CalendarEvent, DateRange, end_of_day, parse_event_datetime
)

logger = logging.getLogger(__name__)

# Statuses after which retrying on our own is pointless
STOP_RETRYING_STATUSES = (401, 404)

_KNOWN_FIELDS = ('id', 'start', 'end', 'isAllDay', 'color', 'title', 'calendar', 'calendarId')


class EventSourceError(RuntimeError):
    """A fetch for one range failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def stop_retrying(self) -> bool:
        return self.status in STOP_RETRYING_STATUSES


class MalformedResponseError(EventSourceError):
    """The source answered, but the payload could not be turned into events."""


class EventSource:
    """Something that can list the events of a time range.

    ``fetch_events`` may be a plain method (run in a worker thread by the
    coordinator) or a coroutine function.
    """

    def fetch_events(self, date_range: DateRange, force_refresh: bool = False) -> List[CalendarEvent]:
        raise NotImplementedError


def _dto_time(value: Any) -> Any:
    # Google-shaped {'dateTime': ...} / {'date': ...} objects are accepted too
    if isinstance(value, dict):
        return value.get('dateTime', value.get('date'))
    return value


def parse_event_dto(dto: Dict[str, Any], tz: tzinfo) -> CalendarEvent:
    """
    Convert one event object from the events endpoint into a CalendarEvent.

    Args:
        dto: Event object with at least ``id``, ``start`` and ``end``
        tz: Timezone for naive and date-only values

    Returns:
        CalendarEvent; unknown keys are kept in ``extra``

    Raises:
        MalformedResponseError: If the id is missing or a date cannot be parsed
    """
    try:
        event_id = dto['id']
        if not event_id:
            raise ValueError("empty id")
        start, start_is_date = parse_event_datetime(_dto_time(dto['start']), tz)
        end, end_is_date = parse_event_datetime(_dto_time(dto['end']), tz)

        if end_is_date:
            # Date-only ends are exclusive
            end = max(end - ONE_MS, end_of_day(start.date(), tz))

        return CalendarEvent(
            id=str(event_id),
            start=start,
            end=end,
            is_all_day=bool(dto.get('isAllDay', start_is_date)),
            color=dto.get('color') or DEFAULT_EVENT_COLOR,
            title=dto.get('title') or '',
            calendar=dto.get('calendar'),
            calendar_id=dto.get('calendarId'),
            extra={k: v for k, v in dto.items() if k not in _KNOWN_FIELDS},
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedResponseError(f"Invalid event in response: {e!r}") from e


def parse_events_payload(payload: Any, tz: tzinfo) -> List[CalendarEvent]:
    """Parse a ``{"events": [...]}`` response body.

    One bad event rejects the whole payload.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('events'), list):
        raise MalformedResponseError("Invalid API response format: missing 'events' field")
    return [parse_event_dto(dto, tz) for dto in payload['events']]


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason or 'Unknown error'

    error = body.get('error') if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get('message') or 'Unknown error'
    return error or 'Unknown error'


class HttpEventSource(EventSource):
    """Fetches events from the ``GET /events`` endpoint."""

    def __init__(self, base_url: str, tz: tzinfo, token: Optional[str] = None,
                 timeout: float = 10, calendar_ids: Optional[Sequence[str]] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.tz = tz
        self.timeout = timeout
        self.calendar_ids = list(calendar_ids or [])
        self.session = session or requests.Session()
        self._token = token

    @classmethod
    def from_config(cls, config: Any) -> 'HttpEventSource':
        return cls(
            base_url=config.events_api_url,
            tz=config.timezone,
            token=config.load_env_key('EVENTS_API_TOKEN'),
            timeout=config.events_api_timeout,
            calendar_ids=config.events_calendar_ids,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self._token:
            headers['Authorization'] = f'Bearer {self._token}'
        return headers

    def fetch_events(self, date_range: DateRange, force_refresh: bool = False) -> List[CalendarEvent]:
        """
        Fetch the events of one range.

        Args:
            date_range: Range to list events for
            force_refresh: Ask the server to bypass its own cache

        Returns:
            List of CalendarEvent objects

        Raises:
            EventSourceError: On transport failure or a non-2xx status
            MalformedResponseError: If the body is not a valid events payload
        """
        params = date_range.to_params()
        if force_refresh:
            params['forceRefresh'] = 'true'
        if self.calendar_ids:
            params['calendarIds'] = ','.join(self.calendar_ids)

        try:
            response = self.session.get(
                f'{self.base_url}/events',
                params=params,
                headers=self._headers(),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Failed to fetch events for {date_range}: {str(e)}")
            raise EventSourceError(f"Failed to fetch events: {str(e)}") from e

        if not response.ok:
            message = _error_message(response)
            logger.error(f"Events API error ({response.status_code}) for {date_range}: {message}")
            raise EventSourceError(
                f"Events API error ({response.status_code}): {message}",
                status=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError(f"Events API returned invalid JSON: {str(e)}") from e

        events = parse_events_payload(payload, self.tz)
        logger.info(f"Retrieved {len(events)} events for {date_range}")
        return events
