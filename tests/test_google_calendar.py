import os
import tempfile
import unittest
from datetime import datetime
from unittest import mock

import pytz
from googleapiclient.errors import HttpError

from event_calendar.config import CalendarConfig
from event_calendar.models import DateRange
from event_calendar.services.event_source import EventSourceError
from event_calendar.services.fetch_coordinator import FetchCoordinator
from event_calendar.services.google_calendar import (
    GOOGLE_EVENT_COLORS, GoogleCalendarSource, load_credentials
)

RANGE = DateRange(
    pytz.UTC.localize(datetime(2024, 3, 4)),
    pytz.UTC.localize(datetime(2024, 3, 10, 23, 59, 59, 999000)),
)
CONFIG = CalendarConfig({'CALENDAR_TIMEZONE': 'UTC', 'GOOGLE_CALENDAR_TOKEN_FILE': '/nonexistent/token.json'})


def google_event(event_id, start, end, **kwargs):
    item = {'id': event_id, 'start': start, 'end': end}
    item.update(kwargs)
    return item


def http_error(status):
    return HttpError(mock.Mock(status=status, reason='error'), b'{}')


class TestGoogleCalendarSource(unittest.TestCase):
    def setUp(self):
        self.service = mock.MagicMock()
        self.list_call = self.service.events.return_value.list
        self.source = GoogleCalendarSource(
            CONFIG, calendar_ids={'work': 'work@example.com'},
            credentials=mock.Mock(), service=self.service
        )

    def test_fetch_follows_pages_and_maps_colors(self):
        self.list_call.return_value.execute.side_effect = [
            {
                'items': [google_event('a', {'dateTime': '2024-03-05T09:00:00Z'},
                                       {'dateTime': '2024-03-05T10:00:00Z'},
                                       summary='Planning', colorId='11', location='HQ')],
                'nextPageToken': 'page2',
            },
            {
                'items': [
                    google_event('b', {'date': '2024-03-06'}, {'date': '2024-03-07'}),
                    google_event('gone', {'date': '2024-03-06'}, {'date': '2024-03-07'},
                                 status='cancelled'),
                ],
            },
        ]

        events = self.source.fetch_events(RANGE)

        self.assertEqual([e.id for e in events], ['a', 'b'])
        self.assertEqual(events[0].color, GOOGLE_EVENT_COLORS['11'])
        self.assertEqual(events[0].title, 'Planning')
        self.assertEqual(events[0].calendar, 'work')
        self.assertEqual(events[0].extra, {'location': 'HQ'})
        self.assertTrue(events[1].is_all_day)
        self.assertEqual(events[1].title, '(No title)')

        first_call = self.list_call.call_args_list[0]
        self.assertEqual(first_call.kwargs['timeMin'], '2024-03-04T00:00:00.000Z')
        self.assertTrue(first_call.kwargs['singleEvents'])
        self.assertEqual(self.list_call.call_args_list[1].kwargs['pageToken'], 'page2')

    def test_calendar_color_is_the_fallback(self):
        self.source._calendar_colors = {'work@example.com': '#16a765'}
        self.list_call.return_value.execute.return_value = {'items': [
            google_event('a', {'dateTime': '2024-03-05T09:00:00Z'}, {'dateTime': '2024-03-05T10:00:00Z'}),
        ]}

        events = self.source.fetch_events(RANGE)

        self.assertEqual(events[0].color, '#16a765')

    def test_only_calendar_failing_raises_its_status(self):
        self.list_call.return_value.execute.side_effect = http_error(500)

        with self.assertRaises(EventSourceError) as ctx:
            self.source.fetch_events(RANGE)

        self.assertEqual(ctx.exception.status, 500)
        self.assertFalse(ctx.exception.stop_retrying)
        self.assertIsInstance(ctx.exception.__cause__, HttpError)

    def test_one_failing_calendar_fails_the_range(self):
        source = GoogleCalendarSource(
            CONFIG, calendar_ids={'broken': 'broken@example.com', 'work': 'work@example.com'},
            credentials=mock.Mock(), service=self.service
        )
        self.list_call.return_value.execute.side_effect = [
            http_error(500),
            {'items': [google_event('a', {'dateTime': '2024-03-05T09:00:00Z'},
                                    {'dateTime': '2024-03-05T10:00:00Z'})]},
        ]

        with self.assertRaises(EventSourceError) as ctx:
            source.fetch_events(RANGE)

        self.assertIn('1 of 2', str(ctx.exception))
        self.assertIn('broken', str(ctx.exception))

    def test_not_found_calendar_stops_retrying(self):
        source = GoogleCalendarSource(
            CONFIG, calendar_ids={'flaky': 'flaky@example.com', 'gone': 'gone@example.com'},
            credentials=mock.Mock(), service=self.service
        )
        self.list_call.return_value.execute.side_effect = [http_error(503), http_error(404)]

        with self.assertRaises(EventSourceError) as ctx:
            source.fetch_events(RANGE)

        self.assertEqual(ctx.exception.status, 404)
        self.assertTrue(ctx.exception.stop_retrying)

    @mock.patch('event_calendar.services.google_calendar.load_credentials', return_value=None)
    def test_unauthorized_becomes_401_after_retry(self, mock_load):
        self.list_call.return_value.execute.side_effect = http_error(401)

        with self.assertRaises(EventSourceError) as ctx:
            self.source.fetch_events(RANGE)

        self.assertEqual(ctx.exception.status, 401)
        self.assertTrue(ctx.exception.stop_retrying)
        mock_load.assert_called_once_with('/nonexistent/token.json')

    @mock.patch('event_calendar.services.google_calendar.load_credentials', return_value=None)
    def test_missing_credentials(self, mock_load):
        source = GoogleCalendarSource(CONFIG, calendar_ids={'work': 'work@example.com'})

        with self.assertRaises(EventSourceError) as ctx:
            source.fetch_events(RANGE)

        self.assertEqual(ctx.exception.status, 401)

    @mock.patch('event_calendar.services.google_calendar.build')
    def test_service_built_lazily_with_calendar_colors(self, mock_build):
        service = mock_build.return_value
        service.calendarList.return_value.list.return_value.execute.return_value = {'items': [
            {'id': 'work@example.com', 'summary': 'Work', 'backgroundColor': '#16a765'},
            {'id': 'other@example.com'},
        ]}
        service.events.return_value.list.return_value.execute.return_value = {'items': []}
        credentials = mock.Mock()
        source = GoogleCalendarSource(CONFIG, calendar_ids={'work': 'work@example.com'},
                                      credentials=credentials)

        source.fetch_events(RANGE)

        mock_build.assert_called_once_with('calendar', 'v3', credentials=credentials,
                                           cache_discovery=False)
        self.assertEqual(source._calendar_colors, {'work@example.com': '#16a765'})
        self.assertEqual(source.list_calendars(), [
            ('work@example.com', 'Work', '#16a765'),
            ('other@example.com', 'other@example.com', None),
        ])


class TestGoogleSourceWithCoordinator(unittest.IsolatedAsyncioTestCase):
    async def test_server_error_leaves_range_uncovered(self):
        service = mock.MagicMock()
        service.events.return_value.list.return_value.execute.side_effect = http_error(500)
        source = GoogleCalendarSource(CONFIG, calendar_ids={'primary': 'primary'},
                                      credentials=mock.Mock(), service=service)
        coordinator = FetchCoordinator(source, debounce=0)

        with self.assertLogs('event_calendar.services.fetch_coordinator', 'ERROR'):
            await coordinator.request(RANGE)

        self.assertFalse(coordinator.cache.is_covered(RANGE))
        self.assertIsNone(coordinator.cache.bounds)
        self.assertFalse(coordinator.stopped)

    async def test_not_found_sets_the_stop_flag(self):
        service = mock.MagicMock()
        service.events.return_value.list.return_value.execute.side_effect = http_error(404)
        source = GoogleCalendarSource(CONFIG, calendar_ids={'primary': 'primary'},
                                      credentials=mock.Mock(), service=service)
        coordinator = FetchCoordinator(source, debounce=0)

        await coordinator.request(RANGE)

        self.assertTrue(coordinator.stopped)
        self.assertIsNone(coordinator.cache.bounds)


class TestLoadCredentials(unittest.TestCase):
    def test_missing_token_file(self):
        self.assertIsNone(load_credentials('/nonexistent/token.json'))

    @mock.patch('event_calendar.services.google_calendar.Credentials')
    def test_expired_token_is_refreshed_and_saved(self, mock_credentials):
        credentials = mock_credentials.from_authorized_user_file.return_value
        credentials.expired = True
        credentials.refresh_token = 'refresh'
        credentials.to_json.return_value = '{"token": "new"}'

        with tempfile.TemporaryDirectory() as td:
            path = os.path.join(td, 'token.json')
            with open(path, 'w') as f:
                f.write('{"token": "old"}')

            self.assertIs(load_credentials(path), credentials)
            with open(path) as f:
                self.assertEqual(f.read(), '{"token": "new"}')

        credentials.refresh.assert_called_once()


if __name__ == "__main__":
    unittest.main(verbosity=2)
