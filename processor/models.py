"""Data models for calendar feed ingestion."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import List, Optional


def timestamp_key(value: datetime) -> float:
    """Numeric ordering key; floating times are read as UTC components."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


@dataclass
class CalendarEvent:
    """One occurrence of something happening in time."""
    id: str
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    is_recurring: bool = False
    recurrence_rule: Optional[str] = None

    @property
    def duration(self) -> timedelta:
        """Template duration; zero or negative for malformed feeds."""
        return self.end - self.start

    def occurrence(self, number: int, start: datetime) -> 'CalendarEvent':
        """Copy of this event moved to ``start`` as occurrence ``number``."""
        return replace(
            self,
            id=f"{self.id}-{number}",
            start=start,
            end=start + self.duration,
            is_recurring=True,
            recurrence_rule=None
        )


@dataclass
class RecurrenceRule:
    """Parsed RRULE. The BY* filters are kept but not applied."""
    frequency: str = 'DAILY'
    interval: int = 1
    count: Optional[int] = None
    until: Optional[datetime] = None
    by_day: List[str] = field(default_factory=list)
    by_month: List[int] = field(default_factory=list)
    by_month_day: List[int] = field(default_factory=list)


@dataclass
class FeedState:
    """UI-facing state owned by one poller."""
    events: List[CalendarEvent] = field(default_factory=list)
    loading: bool = True
    error: Optional[str] = None
    last_fetch_time: Optional[float] = None
