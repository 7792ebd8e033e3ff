"""Line-oriented parser for ICS calendar feeds."""
import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from processor.models import CalendarEvent, timestamp_key
from processor.recurrence import expand

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r'\r\n|\n|\r')


class ICSParser:
    """Parser turning raw ICS text into CalendarEvent objects."""

    REQUIRED_FIELDS = ('id', 'title', 'start', 'end')

    def parse(self, ics_text: str) -> List[CalendarEvent]:
        """
        Parse ICS text into events, expanding recurring ones.

        Malformed events are dropped; this method never raises.

        Args:
            ics_text: Raw calendar text

        Returns:
            List of CalendarEvent objects sorted by start time
        """
        if isinstance(ics_text, bytes):
            ics_text = ics_text.decode('utf-8', errors='replace')
        if not isinstance(ics_text, str):
            logger.warning(f"Expected ICS text, got {type(ics_text).__name__}")
            return []

        events = []
        current = None
        nested_depth = 0

        for line in self.unfold_lines(ics_text):
            if line == 'BEGIN:VEVENT':
                current = {}
                nested_depth = 0
            elif line == 'END:VEVENT':
                if current is not None:
                    events.extend(self._finish_event(current))
                current = None
            elif current is None:
                continue
            elif line.startswith('BEGIN:'):
                # VALARM and friends carry their own DESCRIPTION etc.
                nested_depth += 1
            elif line.startswith('END:'):
                nested_depth = max(0, nested_depth - 1)
            elif nested_depth == 0:
                self._apply_property(current, line)

        events.sort(key=lambda event: timestamp_key(event.start))
        return events

    @staticmethod
    def unfold_lines(ics_text: str) -> List[str]:
        """
        Split text into logical lines, joining folded continuations.

        A physical line beginning with a single space continues the
        previous one; the space is dropped.
        """
        physical = _LINE_BREAK.split(ics_text)
        logical = []
        index = 0

        while index < len(physical):
            line = physical[index]
            while index + 1 < len(physical) and physical[index + 1].startswith(' '):
                line += physical[index + 1][1:]
                index += 1
            logical.append(line.strip())
            index += 1

        return logical

    def _apply_property(self, event: Dict, line: str) -> None:
        if ':' not in line:
            return

        key_part, value = line.split(':', 1)
        key, *raw_params = key_part.split(';')
        key = key.upper()
        params = self._parse_params(raw_params)

        if key == 'UID':
            event['id'] = value
        elif key == 'SUMMARY':
            event['title'] = value
        elif key == 'DESCRIPTION':
            event['description'] = value.replace('\\n', '\n').replace('\\,', ',')
        elif key == 'DTSTART':
            event['start'] = parse_ics_datetime(value, params)
        elif key == 'DTEND':
            event['end'] = parse_ics_datetime(value, params)
        elif key == 'RRULE':
            event['recurrence_rule'] = value
            event['is_recurring'] = True

    @staticmethod
    def _parse_params(raw_params: List[str]) -> Dict[str, str]:
        params = {}
        for param in raw_params:
            name, _, value = param.partition('=')
            params[name.upper()] = value
        return params

    def _finish_event(self, fields: Dict) -> List[CalendarEvent]:
        missing = [name for name in self.REQUIRED_FIELDS if not fields.get(name)]
        if missing:
            logger.warning(
                f"Dropping event '{fields.get('id', '<no uid>')}' "
                f"missing required fields: {', '.join(missing)}"
            )
            return []

        event = CalendarEvent(**fields)
        if event.recurrence_rule:
            return expand(event, event.recurrence_rule)
        return [event]


def parse_ics_datetime(value: str, params: Optional[Dict[str, str]] = None) -> Optional[datetime]:
    """
    Parse a DTSTART/DTEND value.

    ``...Z`` values are UTC instants. Values with a TZID or no suffix are
    floating wall-clock times taken literally (naive datetimes). Date-only
    values become naive midnight.

    Returns:
        datetime, or None if the value cannot be parsed
    """
    # TZID is deliberately not looked up; the wall-clock components are kept
    is_utc = value.endswith('Z')
    clean = value.replace('Z', '').strip()

    try:
        year = int(clean[0:4])
        month = int(clean[4:6])
        day = int(clean[6:8])

        if 'T' not in clean:
            return datetime(year, month, day)

        hour = int(clean[9:11])
        minute = int(clean[11:13])
        second = int(clean[13:15] or '0')
    except ValueError:
        logger.warning(f"Unparseable ICS date value: {value!r}")
        return None

    try:
        if is_utc:
            return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
        return datetime(year, month, day, hour, minute, second)
    except ValueError:
        logger.warning(f"Out of range ICS date value: {value!r}")
        return None


def parse_ics(ics_text: str) -> List[CalendarEvent]:
    """Parse ICS text with a default parser."""
    return ICSParser().parse(ics_text)
