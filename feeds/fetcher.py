"""Feed fetcher with relay fallback, retries and per-URL cooldown."""
import logging
import time
from typing import Callable, List, Optional

import requests

from auth.token_gate import TokenGate
from feeds.errors import (
    FETCH_FAILED,
    AuthenticationExpiredError,
    FeedCoolingDownError,
    FeedFetchError,
    InvalidFeedUrlError,
    RelayAuthError,
    RelayError,
)
from feeds.health import FeedHealthTracker, HealthStatus, default_tracker
from feeds.relay import AUTH_STATUS_CODES, RelayClient
from feeds.resolver import canonicalize, validate_feed_url
from processor.ics_parser import ICSParser
from processor.models import CalendarEvent

logger = logging.getLogger(__name__)

USER_AGENT = 'CalendarFeeds/1.0'


class FeedFetcher:
    """Retrieves raw ICS text for canonical feed URLs."""

    MAX_ATTEMPTS = 3
    BASE_DELAY = 1  # seconds

    def __init__(
        self,
        relay: Optional[RelayClient] = None,
        token_gate: Optional[TokenGate] = None,
        tracker: FeedHealthTracker = default_tracker,
        timeout: int = 30,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
        parser: Optional[ICSParser] = None
    ):
        """
        Initialize the feed fetcher.

        Args:
            relay: Relay client used when a direct fetch fails
            token_gate: Gate asked to refresh the token after auth failures
            tracker: Failure tracker shared with other fetchers
            timeout: HTTP request timeout in seconds (default: 30)
            max_attempts: Retry attempts per fetch (default: 3)
            sleep: Backoff sleep function
            parser: ICS parser for fetch_events
        """
        self.relay = relay
        self.token_gate = token_gate
        self.tracker = tracker
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.parser = parser or ICSParser()

    def fetch_events(
        self,
        feed_url: str,
        max_attempts: Optional[int] = None,
        strict: bool = False
    ) -> List[CalendarEvent]:
        """
        Resolve, fetch and parse a calendar feed.

        Args:
            feed_url: URL as stored for the calendar
            max_attempts: Override for the retry attempt count
            strict: Raise FeedFetchError instead of returning no events
                when every attempt failed or the feed is cooling down

        Returns:
            Time-sorted list of events; empty for invalid or unreachable feeds

        Raises:
            AuthenticationExpiredError: If upstream auth failed and could not
                be refreshed
            FeedFetchError: In strict mode, if the feed could not be fetched
            FeedCoolingDownError: In strict mode, if the feed is cooling down
        """
        if not feed_url:
            return []

        try:
            validate_feed_url(feed_url)
        except InvalidFeedUrlError as e:
            logger.warning(f"Invalid calendar URL format {feed_url!r}: {e.message}")
            return []

        ics_url = canonicalize(feed_url.strip())
        if strict and self.tracker.should_skip(ics_url):
            logger.info(f"Skipping {ics_url}: feed is cooling down")
            raise FeedCoolingDownError()

        ics_text = self._fetch_text(ics_url, max_attempts)
        if ics_text is None and strict:
            raise FeedFetchError(FETCH_FAILED)
        if not ics_text:
            return []

        events = self.parser.parse(ics_text)
        logger.info(f"Parsed {len(events)} events from {ics_url}")
        return events

    def fetch_feed_text(self, canonical_url: str, max_attempts: Optional[int] = None) -> str:
        """
        Fetch raw ICS text, trying a direct request then the relay.

        Every failed attempt counts against the URL in the shared tracker.
        Once the URL enters cooldown the loop stops and later calls return
        immediately until the cooldown elapses.

        Args:
            canonical_url: Canonical feed URL
            max_attempts: Override for the retry attempt count

        Returns:
            ICS text, or an empty string if the feed could not be fetched

        Raises:
            AuthenticationExpiredError: If the final attempt failed on auth
                and the token could not be refreshed
        """
        return self._fetch_text(canonical_url, max_attempts) or ''

    def _fetch_text(self, canonical_url: str, max_attempts: Optional[int]) -> Optional[str]:
        """Like fetch_feed_text, but None when every attempt failed."""
        if not isinstance(canonical_url, str) or not canonical_url:
            return ''

        if self.tracker.should_skip(canonical_url):
            logger.info(f"Skipping {canonical_url}: feed is cooling down")
            return ''

        attempts = max(1, max_attempts or self.max_attempts)

        for attempt in range(attempts):
            self.tracker.record_attempt(canonical_url)
            auth_failure = False

            try:
                text = self._fetch_direct(canonical_url)
                self.tracker.record_success(canonical_url)
                return text
            except (requests.RequestException, ValueError) as e:
                auth_failure = self._is_auth_response(e)
                logger.warning(
                    f"Direct fetch failed (attempt {attempt + 1}/{attempts}): {e}"
                )

            if self.relay is not None:
                try:
                    text = self.relay.fetch(canonical_url)
                    self.tracker.record_success(canonical_url)
                    return text
                except RelayAuthError as e:
                    auth_failure = True
                    logger.warning(f"Relay reported an auth failure: {e}")
                except RelayError as e:
                    logger.warning(f"Relay fetch failed (attempt {attempt + 1}/{attempts}): {e}")

            health = self.tracker.record_failure(canonical_url)
            cooling_down = health.status is HealthStatus.COOLDOWN
            last_attempt = attempt == attempts - 1 or cooling_down

            if auth_failure and not self._refresh_token() and last_attempt:
                logger.error(f"Authentication expired while fetching {canonical_url}")
                raise AuthenticationExpiredError()

            if last_attempt:
                break

            delay = self.BASE_DELAY * (2 ** attempt)
            logger.info(f"Retrying {canonical_url} in {delay} seconds")
            self.sleep(delay)

        logger.error(
            f"Giving up on {canonical_url} after {attempt + 1} attempts",
            extra={'failure_count': health.failure_count}
        )
        return None

    def _fetch_direct(self, url: str) -> str:
        response = requests.get(
            url,
            headers={'Accept': 'text/calendar', 'User-Agent': USER_AGENT},
            timeout=self.timeout
        )
        response.raise_for_status()
        response.encoding = 'utf-8'
        return response.text

    def _refresh_token(self) -> bool:
        if self.token_gate is None:
            return False
        try:
            refreshed = self.token_gate.refresh_token()
        except Exception as e:
            logger.warning(f"Token refresh raised: {e}", exc_info=True)
            return False
        logger.info(f"Token refresh {'succeeded' if refreshed else 'failed'}")
        return refreshed

    @staticmethod
    def _is_auth_response(error: Exception) -> bool:
        response = getattr(error, 'response', None)
        return response is not None and response.status_code in AUTH_STATUS_CODES
