"""Validation and canonicalization of user-supplied calendar URLs."""
import logging
import re
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from feeds.errors import InvalidFeedUrlError, WRONG_LINK_TYPE

logger = logging.getLogger(__name__)

GOOGLE_HOST = 'calendar.google.com'

# Matched against the full hostname
ALLOWED_HOST_PATTERNS = [
    re.compile(r'calendar\.google\.com'),
    re.compile(r'outlook\.office365\.com'),
    re.compile(r'outlook\.live\.com'),
    re.compile(r'calendar\.yahoo\.com'),
    re.compile(r'p[0-9]{2}-caldav\.icloud\.com'),
]

GOOGLE_ICS_TEMPLATE = 'https://calendar.google.com/calendar/ical/{calendar_id}/public/basic.ics'
GOOGLE_ADD_BY_URL = 'https://calendar.google.com/calendar/u/0/r/settings/addbyurl'

_EMBED_PATH = '/calendar/embed'
_ICS_EXPORT_PATH = '/calendar/ical/'
_SETTINGS_PATH = '/calendar/u/0/r/settings'
_HOME_PATH = '/calendar/u/0/r'
_CID_QUERY = '/calendar/u/0/r?cid='
_ICS_ID = re.compile(r'/calendar/ical/(.+?)/.*\.ics$')


def _is_allowed_host(hostname: str) -> bool:
    return any(pattern.fullmatch(hostname) for pattern in ALLOWED_HOST_PATTERNS)


def _is_google_feed_shape(url: str) -> bool:
    return (
        url.endswith('.ics')
        or _ICS_EXPORT_PATH in url
        or _EMBED_PATH in url
        or _SETTINGS_PATH in url
        or _CID_QUERY in url
    )


def validate_feed_url(url: str) -> str:
    """
    Validate a calendar URL against the provider allow-list.

    Args:
        url: URL as entered by the user

    Returns:
        The URL, stripped of surrounding whitespace

    Raises:
        InvalidFeedUrlError: With a message telling a wrong Google link
            shape apart from a URL that is not a calendar link at all
    """
    if not isinstance(url, str) or not url.strip():
        raise InvalidFeedUrlError(str(url or ''))

    url = url.strip()
    try:
        parts = urlsplit(url)
        hostname = parts.hostname or ''
        has_credentials = parts.username is not None or parts.password is not None
    except ValueError:
        raise InvalidFeedUrlError(url)

    if parts.scheme != 'https' or not _is_allowed_host(hostname):
        raise InvalidFeedUrlError(url)

    if has_credentials or parts.fragment or '#' in url:
        raise InvalidFeedUrlError(url)

    if hostname == GOOGLE_HOST and not _is_google_feed_shape(url):
        raise InvalidFeedUrlError(url, WRONG_LINK_TYPE)

    return url


def is_valid_feed_url(url: str) -> bool:
    """Return True if the URL is an accepted calendar feed address."""
    try:
        validate_feed_url(url)
    except InvalidFeedUrlError:
        return False
    return True


def canonicalize(url: str) -> str:
    """
    Rewrite supported Google Calendar links into the public ICS export URL.

    Embed links, settings links and ``cid`` links are rewritten; ICS URLs
    and other providers' URLs pass through unchanged. Never raises.
    """
    try:
        parts = urlsplit(url)
        if parts.hostname != GOOGLE_HOST or url.endswith('.ics'):
            return url

        query = parse_qs(parts.query)
        calendar_id = ''

        if _EMBED_PATH in url:
            calendar_id = query.get('src', [''])[0]
        elif _SETTINGS_PATH in url:
            calendar_id = url.rstrip('/').split('/')[-1]
        elif _HOME_PATH in url:
            calendar_id = query.get('cid', [''])[0]

        if calendar_id:
            return GOOGLE_ICS_TEMPLATE.format(calendar_id=quote(calendar_id, safe=''))
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Error converting calendar URL {url!r}: {e}")

    return url


def extract_calendar_id(url: str) -> str:
    """
    Extract the Google calendar id from an embed or ICS URL.

    Returns:
        Decoded calendar id, or an empty string if none is present
    """
    if not is_valid_feed_url(url):
        return ''

    parts = urlsplit(url.strip())
    if parts.hostname != GOOGLE_HOST:
        return ''

    if _EMBED_PATH in url:
        return parse_qs(parts.query).get('src', [''])[0]

    match = _ICS_ID.search(parts.path)
    return unquote(match.group(1)) if match else ''


def is_valid_ics_url(url: str) -> bool:
    """Return True if the URL is valid and canonicalizes to an ICS export."""
    if not is_valid_feed_url(url):
        return False

    path = urlsplit(canonicalize(url.strip())).path
    if urlsplit(url.strip()).hostname == GOOGLE_HOST:
        return _ICS_EXPORT_PATH in path and path.endswith('.ics')
    return path.endswith('.ics')


def subscribe_url(url: str) -> str:
    """Google Calendar "add by URL" link for subscribing to a feed."""
    ics_url = canonicalize(url.strip()) if isinstance(url, str) else ''
    if not is_valid_ics_url(ics_url):
        logger.warning(f"Invalid ICS URL provided for subscription: {ics_url!r}")
        return GOOGLE_ADD_BY_URL
    return f"{GOOGLE_ADD_BY_URL}?{urlencode({'cid': ics_url})}"
