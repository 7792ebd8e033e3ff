"""Recurrence rule parsing and expansion."""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from processor.models import CalendarEvent, RecurrenceRule, timestamp_key

logger = logging.getLogger(__name__)

# Cap for open-ended rules (no COUNT and no UNTIL)
DEFAULT_MAX_OCCURRENCES = 52

_STEPS = {
    'DAILY': lambda n: relativedelta(days=n),
    'WEEKLY': lambda n: relativedelta(weeks=n),
    'MONTHLY': lambda n: relativedelta(months=n),
    'YEARLY': lambda n: relativedelta(years=n),
}


def _int_or_none(value: str) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _int_list(value: str) -> List[int]:
    numbers = []
    for part in value.split(','):
        number = _int_or_none(part)
        if number is not None:
            numbers.append(number)
    return numbers


def parse_until(value: str) -> Optional[datetime]:
    """
    Parse an UNTIL value as a UTC instant.

    Accepts ``YYYYMMDD`` and ``YYYYMMDDTHHMMSS[Z]``; missing time parts
    default to zero.

    Returns:
        Aware UTC datetime, or None if the value is malformed
    """
    value = value.strip().rstrip('Z')
    try:
        year = int(value[0:4])
        month = int(value[4:6])
        day = int(value[6:8])
        hour = int(value[9:11]) if len(value) > 8 else 0
        minute = int(value[11:13]) if len(value) > 10 else 0
        second = int(value[13:15]) if len(value) > 12 else 0
        return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_rrule(rule_text: str) -> RecurrenceRule:
    """
    Parse a raw RRULE string into a RecurrenceRule.

    Args:
        rule_text: e.g. "FREQ=WEEKLY;INTERVAL=2;COUNT=10"

    Returns:
        RecurrenceRule with defaults for anything absent or malformed
    """
    rule = RecurrenceRule()

    for part in rule_text.split(';'):
        key, _, value = part.partition('=')
        key = key.strip().upper()
        value = value.strip()

        if key == 'FREQ':
            rule.frequency = value.upper()
        elif key == 'INTERVAL':
            interval = _int_or_none(value)
            if interval:
                rule.interval = interval
        elif key == 'COUNT':
            rule.count = _int_or_none(value)
        elif key == 'UNTIL':
            rule.until = parse_until(value)
        elif key == 'BYDAY':
            rule.by_day = [day for day in value.split(',') if day]
        elif key == 'BYMONTH':
            rule.by_month = _int_list(value)
        elif key == 'BYMONTHDAY':
            rule.by_month_day = _int_list(value)

    return rule


def expand(template: CalendarEvent, rule_text: str) -> List[CalendarEvent]:
    """
    Expand a recurring template event into concrete occurrences.

    Occurrences step from the template start by frequency x interval using
    calendar arithmetic. Expansion stops at COUNT, at the first candidate
    starting after UNTIL, or after DEFAULT_MAX_OCCURRENCES when the rule is
    open-ended. BYDAY, BYMONTH and BYMONTHDAY are not applied.

    Args:
        template: Event carrying the series' first start and duration
        rule_text: Raw RRULE value

    Returns:
        List of occurrences with ids "{uid}-{n}", n starting at 1
    """
    rule = parse_rrule(rule_text)
    limit = rule.count or DEFAULT_MAX_OCCURRENCES
    interval = rule.interval if rule.interval > 0 else 1
    step = _STEPS.get(rule.frequency)

    occurrences = []
    current = template.start

    while len(occurrences) < limit:
        if rule.until is not None and timestamp_key(current) > timestamp_key(rule.until):
            break

        occurrences.append(template.occurrence(len(occurrences) + 1, current))

        if step is None:
            logger.warning(
                f"Unsupported recurrence frequency '{rule.frequency}' "
                f"for event '{template.id}'"
            )
            break

        # Month-end days clamp and stay clamped (Jan 31 -> Feb 29 -> Mar 29)
        try:
            current = current + step(interval)
        except (OverflowError, ValueError):
            logger.warning(f"Recurrence for event '{template.id}' ran past year 9999")
            break

    return occurrences
