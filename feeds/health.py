"""Per-URL failure tracking shared by every feed fetcher in the process."""
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    HEALTHY = 'healthy'
    DEGRADED = 'degraded'
    COOLDOWN = 'cooldown'


@dataclass
class FeedHealth:
    """Failure state for one canonical feed URL."""
    failure_count: int = 0
    last_attempt_time: Optional[float] = None
    status: HealthStatus = HealthStatus.HEALTHY


class FeedHealthTracker:
    """
    Tracks failures per canonical URL and enforces a cooldown.

    A URL moves HEALTHY -> DEGRADED on its first failure and into COOLDOWN
    once ``failure_threshold`` failures accumulate. While cooling down,
    ``should_skip`` returns True; after ``cooldown_seconds`` have passed
    since the last attempt the URL is reset to HEALTHY.
    """

    FAILURE_THRESHOLD = 3
    COOLDOWN_SECONDS = 60

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        cooldown_seconds: float = COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._feeds: Dict[str, FeedHealth] = {}
        self._lock = threading.Lock()

    def snapshot(self, url: str) -> FeedHealth:
        """Copy of the current state for ``url``."""
        with self._lock:
            health = self._feeds.get(url, FeedHealth())
            return FeedHealth(health.failure_count, health.last_attempt_time, health.status)

    def should_skip(self, url: str) -> bool:
        """
        Check whether ``url`` is cooling down.

        Evicts the URL from cooldown once the window has elapsed.
        """
        with self._lock:
            health = self._feeds.get(url)
            if health is None or health.status is not HealthStatus.COOLDOWN:
                return False

            elapsed = self.clock() - (health.last_attempt_time or 0)
            if elapsed < self.cooldown_seconds:
                return True

            logger.info(f"Cooldown elapsed for {url}, allowing retries")
            del self._feeds[url]
            return False

    def record_attempt(self, url: str) -> None:
        with self._lock:
            health = self._feeds.setdefault(url, FeedHealth())
            health.last_attempt_time = self.clock()

    def record_failure(self, url: str) -> FeedHealth:
        """
        Count a failed attempt for ``url``.

        Returns:
            The updated state; status is COOLDOWN once the threshold is hit
        """
        with self._lock:
            health = self._feeds.setdefault(url, FeedHealth())
            health.failure_count += 1
            health.last_attempt_time = self.clock()

            if health.failure_count >= self.failure_threshold:
                if health.status is not HealthStatus.COOLDOWN:
                    logger.warning(
                        f"Feed {url} failed {health.failure_count} times, "
                        f"cooling down for {self.cooldown_seconds} seconds"
                    )
                health.status = HealthStatus.COOLDOWN
            else:
                health.status = HealthStatus.DEGRADED

            return FeedHealth(health.failure_count, health.last_attempt_time, health.status)

    def record_success(self, url: str) -> None:
        with self._lock:
            self._feeds.pop(url, None)

    def reset(self) -> None:
        with self._lock:
            self._feeds.clear()


# Process-wide tracker shared by all fetchers unless one is injected
default_tracker = FeedHealthTracker()
