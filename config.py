"""Environment-driven settings and logging setup."""
import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from auth.token_gate import TokenGate
from feeds.fetcher import FeedFetcher
from feeds.health import FeedHealthTracker
from feeds.relay import RelayClient
from poller.event_poller import EventPoller


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@dataclass
class Settings:
    """Runtime settings read from environment variables."""
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    relay_function_name: Optional[str] = None
    fetch_max_attempts: int = 3
    poll_interval_seconds: int = 60
    feed_cooldown_seconds: int = 60
    feed_failure_threshold: int = 3

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=int(os.environ.get('TIMEOUT_SECONDS', '30')),
            relay_function_name=os.environ.get('RELAY_FUNCTION_NAME') or None,
            fetch_max_attempts=int(os.environ.get('FETCH_MAX_ATTEMPTS', '3')),
            poll_interval_seconds=int(os.environ.get('POLL_INTERVAL_SECONDS', '60')),
            feed_cooldown_seconds=int(os.environ.get('FEED_COOLDOWN_SECONDS', '60')),
            feed_failure_threshold=int(os.environ.get('FEED_FAILURE_THRESHOLD', '3'))
        )


def build_tracker(settings: Settings) -> FeedHealthTracker:
    """Failure tracker with the cooldown policy from settings."""
    return FeedHealthTracker(
        failure_threshold=settings.feed_failure_threshold,
        cooldown_seconds=settings.feed_cooldown_seconds
    )


def build_fetcher(
    settings: Settings,
    token_gate: Optional[TokenGate] = None,
    tracker: Optional[FeedHealthTracker] = None
) -> FeedFetcher:
    """
    Wire a FeedFetcher from settings.

    Pass the same ``tracker`` to every fetcher that should share cooldowns;
    without one a tracker is built from settings.
    """
    relay = None
    if settings.relay_function_name:
        relay = RelayClient(settings.relay_function_name)

    return FeedFetcher(
        relay=relay,
        token_gate=token_gate,
        tracker=tracker if tracker is not None else build_tracker(settings),
        timeout=settings.timeout_seconds,
        max_attempts=settings.fetch_max_attempts
    )


def build_poller(
    feed_url: str,
    settings: Settings,
    token_gate: Optional[TokenGate] = None,
    tracker: Optional[FeedHealthTracker] = None
) -> EventPoller:
    """Poller for one feed, using a fetcher wired from the same settings."""
    return EventPoller(
        feed_url,
        build_fetcher(settings, token_gate, tracker),
        token_gate=token_gate,
        poll_interval=settings.poll_interval_seconds
    )
