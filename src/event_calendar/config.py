"""Configuration loaded from the environment and an optional ``.env`` file."""

import os
import logging
from typing import Callable, Dict, List, Mapping, Optional, TypeVar

import pytz
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_EVENTS_API_URL = 'http://localhost:3000/api/google-calendar'
DEFAULT_TIMEZONE = 'US/Eastern'
DEFAULT_TOKEN_FILE = '~/.event_calendar/google_calendar_token.json'
CALENDAR_ID_PREFIX = 'GOOGLE_CALENDAR_ID_'


class CalendarConfig:
    """Read-only view over configuration variables."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(os.environ if values is None else values)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> 'CalendarConfig':
        """Load ``.env`` (without overriding the real environment) and snapshot it."""
        load_dotenv(dotenv_path)
        return cls()

    def get_config(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    def load_env_key(self, key: str) -> Optional[str]:
        """Get a secret or optional setting; empty values count as unset."""
        return self._values.get(key) or None

    def _get_number(self, key: str, default: T, cast: Callable[[str], T]) -> T:
        raw = self._values.get(key)
        if raw is None or raw == '':
            return default
        try:
            return cast(raw)
        except ValueError:
            raise ValueError(f"{key} must be a number, got {raw!r}")

    @property
    def events_api_url(self) -> str:
        return self.get_config('EVENTS_API_URL', DEFAULT_EVENTS_API_URL)

    @property
    def events_api_timeout(self) -> float:
        return self._get_number('EVENTS_API_TIMEOUT', 10.0, float)

    @property
    def events_calendar_ids(self) -> List[str]:
        """Calendar IDs sent as ``calendarIds``; empty means the server default."""
        raw = self.get_config('EVENTS_CALENDAR_IDS', '')
        return [cid.strip() for cid in raw.split(',') if cid.strip()]

    @property
    def timezone(self) -> pytz.BaseTzInfo:
        name = self.get_config('CALENDAR_TIMEZONE', DEFAULT_TIMEZONE)
        try:
            return pytz.timezone(name)
        except pytz.UnknownTimeZoneError:
            raise ValueError(f"CALENDAR_TIMEZONE is not a known timezone: {name!r}")

    @property
    def debounce(self) -> float:
        """Debounce window in seconds."""
        return self._get_number('CALENDAR_DEBOUNCE_MS', 150, int) / 1000

    @property
    def week_start(self) -> int:
        week_start = self._get_number('CALENDAR_WEEK_START', 6, int)
        if not 0 <= week_start <= 6:
            raise ValueError(f"CALENDAR_WEEK_START must be between 0 and 6, got {week_start}")
        return week_start

    @property
    def google_calendar_ids(self) -> Dict[str, str]:
        """Calendar IDs by friendly name (e.g. GOOGLE_CALENDAR_ID_HOLIDAYS -> 'holidays')."""
        calendar_ids = {'primary': self.get_config('GOOGLE_CALENDAR_ID', 'primary')}
        for key, value in self._values.items():
            if key.startswith(CALENDAR_ID_PREFIX) and value:
                calendar_ids[key[len(CALENDAR_ID_PREFIX):].lower()] = value
        logger.debug(f"Loaded {len(calendar_ids)} calendar IDs")
        return calendar_ids

    @property
    def google_token_file(self) -> str:
        return os.path.expanduser(self.get_config('GOOGLE_CALENDAR_TOKEN_FILE', DEFAULT_TOKEN_FILE))
