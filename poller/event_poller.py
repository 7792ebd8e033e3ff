"""Per-feed event cache that polls its feed and publishes UI-facing state."""
import asyncio
import contextlib
import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

from auth.token_gate import TokenGate
from feeds.errors import FETCH_FAILED, AuthenticationExpiredError, FeedError
from feeds.fetcher import FeedFetcher
from processor.models import CalendarEvent, FeedState, timestamp_key

logger = logging.getLogger(__name__)


class EventPoller:
    """
    Holds the events of one calendar feed for as long as a view is bound.

    All state changes happen on the event loop; the blocking fetch pipeline
    runs in a worker thread. At most one fetch is in flight, and fetches
    closer than ``min_fetch_gap`` seconds to the last completed one are
    dropped. After ``stop()`` late results are discarded.
    """

    POLL_INTERVAL = 60
    MIN_FETCH_GAP = 5
    RETRY_DELAY = 5
    INITIAL_RETRIES = 3

    def __init__(
        self,
        feed_url: str,
        fetcher: FeedFetcher,
        token_gate: Optional[TokenGate] = None,
        poll_interval: float = POLL_INTERVAL,
        min_fetch_gap: float = MIN_FETCH_GAP,
        retry_delay: float = RETRY_DELAY,
        initial_retries: int = INITIAL_RETRIES,
        clock: Callable[[], float] = time.monotonic
    ):
        self.feed_url = feed_url
        self.fetcher = fetcher
        self.token_gate = token_gate
        self.poll_interval = poll_interval
        self.min_fetch_gap = min_fetch_gap
        self.retry_delay = retry_delay
        self.initial_retries = initial_retries
        self.clock = clock

        self.state = FeedState()
        self._alive = True
        self._in_flight = False
        self._retry_count = 0
        self._runner: Optional[asyncio.Task] = None
        self._retry_task: Optional[asyncio.Task] = None

    @property
    def events(self) -> List[CalendarEvent]:
        return self.state.events

    @property
    def loading(self) -> bool:
        return self.state.loading

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    def get_events(self) -> FeedState:
        return self.state

    async def start(self) -> None:
        """Run the initial fetch and start polling. Must be called on a running loop."""
        if self._runner or not self._alive:
            return
        self._runner = asyncio.create_task(self._run_loop())

    def stop(self) -> None:
        """Stop polling; in-flight fetches finish but no longer touch state."""
        self._alive = False
        for task in (self._runner, self._retry_task):
            if task is not None:
                task.cancel()
        self._runner = None
        self._retry_task = None

    async def close(self) -> None:
        """stop() and wait for the cancelled tasks to unwind."""
        tasks = [task for task in (self._runner, self._retry_task) if task is not None]
        self.stop()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def refetch(self) -> bool:
        """
        Fetch now, outside the poll schedule.

        Returns:
            False if the request was dropped by the in-flight or rate guard
        """
        return await self._fetch(retry_eligible=False)

    async def _run_loop(self) -> None:
        await self._fetch(retry_eligible=True)
        while self._alive:
            await asyncio.sleep(self.poll_interval)
            await self._fetch(retry_eligible=False)

    async def _fetch(self, retry_eligible: bool, rate_limited: bool = True) -> bool:
        if not self._alive or self._in_flight:
            logger.debug(f"Dropping fetch for {self.feed_url}: already in flight")
            return False

        last_fetch = self.state.last_fetch_time
        if (rate_limited and last_fetch is not None
                and self.clock() - last_fetch < self.min_fetch_gap):
            logger.debug(f"Dropping fetch for {self.feed_url}: last fetch too recent")
            return False

        if not self.feed_url:
            self.state.events = []
            self.state.loading = False
            return True

        self._in_flight = True
        error = None
        retryable = False
        try:
            events = await self._run_pipeline(retry_eligible)
        except AuthenticationExpiredError as e:
            error = str(e)
        except FeedError as e:
            error = str(e) or FETCH_FAILED
            retryable = True
        except Exception as e:
            logger.error(f"Unexpected error fetching {self.feed_url}: {e}", exc_info=True)
            error = FETCH_FAILED
            retryable = True
        finally:
            self._in_flight = False

        if not self._alive:
            return True

        self.state.last_fetch_time = self.clock()

        if error is None:
            self.state.events = events
            self.state.error = None
            self.state.loading = False
            self._retry_count = 0
            return True

        if retryable and retry_eligible and self._retry_count < self.initial_retries:
            self._retry_count += 1
            logger.warning(
                f"Fetch for {self.feed_url} failed, retry "
                f"{self._retry_count}/{self.initial_retries} in {self.retry_delay} seconds"
            )
            self._retry_task = asyncio.create_task(self._retry_after_delay())
            return True

        # Existing events are kept so the view does not flicker
        logger.error(f"Fetch for {self.feed_url} failed: {error}")
        self.state.error = error
        self.state.loading = False
        return True

    async def _retry_after_delay(self) -> None:
        await asyncio.sleep(self.retry_delay)
        self._retry_task = None
        # Spaced by retry_delay already, so not rate limited
        await self._fetch(retry_eligible=True, rate_limited=False)

    async def _run_pipeline(self, retry_eligible: bool) -> List[CalendarEvent]:
        if self.token_gate is not None and not self.token_gate.is_token_usable():
            refreshed = await asyncio.to_thread(self.token_gate.refresh_token)
            if not refreshed:
                raise AuthenticationExpiredError()

        max_attempts = self.initial_retries if retry_eligible else None
        return await asyncio.to_thread(
            self.fetcher.fetch_events, self.feed_url, max_attempts, True
        )


class CombinedView:
    """Several pollers shown together, e.g. a subscriber's dashboard."""

    def __init__(self, pollers: Dict[str, EventPoller]):
        self.pollers = pollers

    @property
    def events(self) -> List[Tuple[str, CalendarEvent]]:
        """Events of every calendar as (calendar key, event), sorted by start."""
        merged = [
            (key, event)
            for key, poller in self.pollers.items()
            for event in poller.events
        ]
        merged.sort(key=lambda item: timestamp_key(item[1].start))
        return merged

    @property
    def loading(self) -> bool:
        return any(poller.loading for poller in self.pollers.values())

    @property
    def errors(self) -> Dict[str, str]:
        return {
            key: poller.error
            for key, poller in self.pollers.items()
            if poller.error
        }

    async def start(self) -> None:
        for poller in self.pollers.values():
            await poller.start()

    def stop(self) -> None:
        for poller in self.pollers.values():
            poller.stop()
