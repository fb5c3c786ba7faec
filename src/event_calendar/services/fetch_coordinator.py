"""Keeps the range cache in step with navigation.

A request waits out a short debounce window, asks the cache what is
missing, fetches the missing ranges concurrently and publishes the events
visible in the requested range. A newer request supersedes an older one:
the older cycle's token is cancelled and its results are never merged.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence

from ..models import CalendarEvent, DateRange
from .event_source import EventSource, EventSourceError, MalformedResponseError
from .range_cache import RangeCache

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.15  # seconds

EventsListener = Callable[[List[CalendarEvent]], None]


class RefreshScope(Enum):
    VIEW = 'view'
    FULL = 'full'


class CancellationToken:
    """Marks one fetch cycle as superseded."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class FetchCoordinator:
    """
    Runs fetch cycles against an event source on behalf of a calendar view.

    Only one cycle is ever in flight. Requests arriving while one is
    pending or running restart the debounce window, and every caller
    waiting at that point receives the result of the cycle that finally
    runs.
    """

    def __init__(self, source: EventSource, cache: Optional[RangeCache] = None,
                 debounce: float = DEFAULT_DEBOUNCE,
                 default_events: Iterable[CalendarEvent] = ()):
        self.source = source
        self.cache = cache if cache is not None else RangeCache()
        self.debounce = debounce
        self.default_events = list(default_events)
        self.stopped = False
        self.visible_events: List[CalendarEvent] = []

        self._listeners: List[EventsListener] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._token: Optional[CancellationToken] = None
        self._cycle: Optional[asyncio.Task] = None
        self._pending_force = False
        # Callers waiting for the next cycle to start, and for the running one
        self._waiters: List[asyncio.Future] = []
        self._cycle_waiters: List[asyncio.Future] = []

    @property
    def in_flight(self) -> bool:
        return self._cycle is not None and not self._cycle.done()

    def add_listener(self, listener: EventsListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventsListener) -> None:
        self._listeners.remove(listener)

    def resume(self) -> None:
        """Clear the stop flag set by an authentication or not-found error."""
        if self.stopped:
            logger.info("Resuming automatic fetches")
        self.stopped = False

    async def request(self, date_range: DateRange, force_refresh: bool = False) -> List[CalendarEvent]:
        """
        Request the events visible in ``date_range``.

        Args:
            date_range: Range the view displays
            force_refresh: Refetch the whole range even if it is cached

        Returns:
            Events overlapping the range of the last request in a burst
        """
        if self.stopped:
            logger.warning(f"Fetching stopped after an authentication or not-found error; serving cache for {date_range}")
            visible = self._cached_or_default(date_range)
            self._publish(visible)
            return list(visible)

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        self._waiters.append(future)
        self._supersede()
        self._pending_force = self._pending_force or force_refresh
        self._timer = loop.call_later(self.debounce, self._start_cycle, date_range)
        return await future

    async def refresh(self, date_range: DateRange,
                      scope: RefreshScope = RefreshScope.VIEW) -> List[CalendarEvent]:
        """
        Drop cached data and refetch ``date_range``.

        A view refresh evicts the events visible in the range and resets the
        cached range; a full refresh empties the cache.
        """
        self.resume()
        if scope is RefreshScope.FULL:
            self.cache.invalidate()
        else:
            self.cache.evict_view(date_range)
        return await self.request(date_range, force_refresh=True)

    def close(self) -> None:
        """Cancel pending and in-flight work; waiting callers are cancelled."""
        self._supersede()
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            waiter.cancel()

    def _supersede(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if self._token is not None:
            logger.debug("Cancelling in-flight fetch cycle")
            self._token.cancel()
            self._token = None
        if self._cycle is not None and not self._cycle.done():
            self._cycle.cancel()
        self._cycle = None

        # Callers of the superseded cycle move on to the next one
        self._waiters.extend(self._cycle_waiters)
        self._cycle_waiters = []

    def _start_cycle(self, date_range: DateRange) -> None:
        self._timer = None
        force_refresh, self._pending_force = self._pending_force, False
        self._cycle_waiters, self._waiters = self._waiters, []

        token = CancellationToken()
        self._token = token
        self._cycle = asyncio.ensure_future(self._run_cycle(date_range, force_refresh, token))

    async def _run_cycle(self, date_range: DateRange, force_refresh: bool,
                         token: CancellationToken) -> None:
        missing = [date_range] if force_refresh else self.cache.missing_ranges(date_range)
        if missing:
            logger.info(
                f"Fetching {len(missing)} range(s) for {date_range}: "
                + ', '.join(str(r) for r in missing)
            )
        else:
            logger.info(f"{date_range} is already cached")

        try:
            results = await asyncio.gather(
                *(self._fetch_range(r, force_refresh) for r in missing),
                return_exceptions=True
            )
        except asyncio.CancelledError:
            logger.debug(f"Fetch cycle for {date_range} aborted")
            raise

        if token.cancelled:
            logger.debug(f"Discarding late results for superseded range {date_range}")
            return

        try:
            visible = self._commit(date_range, missing, results)
        except Exception:
            logger.exception(f"Failed to apply fetched events for {date_range}")
            visible = self._cached_or_default(date_range)

        self._finish(token, visible)

    async def _fetch_range(self, date_range: DateRange, force_refresh: bool) -> List[CalendarEvent]:
        fetch = self.source.fetch_events
        if inspect.iscoroutinefunction(fetch):
            return await fetch(date_range, force_refresh)
        return await asyncio.to_thread(fetch, date_range, force_refresh)

    def _commit(self, date_range: DateRange, missing: Sequence[DateRange],
                results: Sequence[object]) -> List[CalendarEvent]:
        failures = 0
        for sub_range, result in zip(missing, results):
            if isinstance(result, BaseException):
                failures += 1
                self._handle_failure(sub_range, result)
                continue
            self.cache.merge(result, sub_range)
            logger.info(f"Merged {len(result)} events for {sub_range}")

        if missing and failures == len(missing) and self.cache.bounds is None:
            logger.warning(f"No events could be fetched for {date_range}; using default events")
            return list(self.default_events)
        return self.cache.events_overlapping(date_range)

    def _handle_failure(self, sub_range: DateRange, error: BaseException) -> None:
        if isinstance(error, EventSourceError) and error.stop_retrying:
            self.stopped = True
            logger.warning(f"Authentication error or user not found ({error.status}), stopping retries")
        elif isinstance(error, MalformedResponseError):
            logger.error(f"Dropping malformed response for {sub_range}: {error}")
        else:
            logger.error(f"Error fetching events for {sub_range}: {error}")

    def _finish(self, token: CancellationToken, visible: List[CalendarEvent]) -> None:
        if self._token is token:
            self._token = None
            self._cycle = None
        waiters, self._cycle_waiters = self._cycle_waiters, []

        self._publish(visible)
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(list(visible))

    def _cached_or_default(self, date_range: DateRange) -> List[CalendarEvent]:
        if self.cache.bounds is None:
            return list(self.default_events)
        return self.cache.events_overlapping(date_range)

    def _publish(self, visible: List[CalendarEvent]) -> None:
        self.visible_events = visible
        for listener in list(self._listeners):
            try:
                listener(list(visible))
            except Exception:
                logger.exception("Events listener failed")
