"""Exceptions raised by the feed ingestion pipeline."""

NOT_A_CALENDAR_URL = (
    "Please enter a valid calendar URL from Google Calendar, Outlook, "
    "Yahoo or iCloud"
)
WRONG_LINK_TYPE = (
    "This Google Calendar link can't be used. Use the public address in "
    "iCal format, the embed link, or the calendar settings link"
)
CONNECTION_EXPIRED = (
    "Your calendar connection has expired. Please reconnect your Google Calendar"
)
FETCH_FAILED = "Failed to fetch calendar events. Please try again later"


class FeedError(Exception):
    """Base class for feed ingestion errors."""


class InvalidFeedUrlError(FeedError, ValueError):
    """Raised when a URL is not an accepted calendar feed address."""

    def __init__(self, url: str, message: str = NOT_A_CALENDAR_URL):
        super().__init__(message)
        self.url = url
        self.message = message

    @property
    def wrong_link_type(self) -> bool:
        return self.message == WRONG_LINK_TYPE


class FeedFetchError(FeedError):
    """Raised when feed text cannot be retrieved."""


class RelayError(FeedFetchError):
    """Raised when the relay function fails or returns an error payload."""


class RelayAuthError(RelayError):
    """Raised when the relay reports an authorization failure upstream."""


class AuthenticationExpiredError(FeedFetchError):
    """Raised when upstream auth failed and the token could not be refreshed."""

    def __init__(self, message: str = CONNECTION_EXPIRED):
        super().__init__(message)


class FeedCoolingDownError(FeedFetchError):
    """Raised in strict mode when a feed is skipped because it is cooling down."""

    def __init__(self, message: str = FETCH_FAILED):
        super().__init__(message)
