"""Upstream auth token checks consulted before and during feed fetches."""
import logging
import time
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)


class TokenGate:
    """Reports whether an upstream token is usable and tries to extend it."""

    def is_token_usable(self) -> bool:
        raise NotImplementedError

    def refresh_token(self) -> bool:
        raise NotImplementedError


class AlwaysUsableTokenGate(TokenGate):
    """Gate for public feeds that need no token."""

    def is_token_usable(self) -> bool:
        return True

    def refresh_token(self) -> bool:
        return True


class GoogleTokenGate(TokenGate):
    """
    Token gate for a Google access token obtained by the implicit flow.

    Such tokens cannot be refreshed; "refreshing" probes the Calendar API
    and extends the local expiry if the token is still accepted.
    """

    PROBE_URL = 'https://www.googleapis.com/calendar/v3/users/me/calendarList'
    EXPIRY_BUFFER_SECONDS = 300
    EXTEND_SECONDS = 3600

    def __init__(
        self,
        token: Optional[str] = None,
        expires_at: Optional[float] = None,
        timeout: int = 30,
        clock: Callable[[], float] = time.time
    ):
        self.token = token
        self.expires_at = expires_at
        self.timeout = timeout
        self.clock = clock

    def save_token(self, token: str, expires_in: int = EXTEND_SECONDS) -> None:
        self.token = token
        self.expires_at = self.clock() + expires_in

    def clear(self) -> None:
        self.token = None
        self.expires_at = None

    def is_token_usable(self) -> bool:
        if not self.token or self.expires_at is None:
            return False
        return self.clock() < self.expires_at - self.EXPIRY_BUFFER_SECONDS

    def refresh_token(self) -> bool:
        """
        Check the token against Google and extend its expiry.

        Returns:
            True if the token is still accepted, False otherwise
        """
        if not self.token:
            return False

        try:
            response = requests.get(
                self.PROBE_URL,
                headers={
                    'Authorization': f"Bearer {self.token}",
                    'Content-Type': 'application/json'
                },
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(f"Token probe failed: {e}")
            return False

        if response.ok:
            self.save_token(self.token, self.EXTEND_SECONDS)
            return True

        logger.info(f"Google token rejected with HTTP {response.status_code}, clearing it")
        self.clear()
        return False
