"""Shared fixtures for feed ingestion tests."""
import pytest


class FakeClock:
    """Manually advanced clock returning simulated seconds."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


SAMPLE_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Google Inc//Google Calendar 70.9054//EN
BEGIN:VEVENT
UID:single@example.com
SUMMARY:Potluck Dinner
DTSTART:20240102T120000Z
DTEND:20240102T140000Z
DESCRIPTION:Location: Community Center\\nBring a dish
END:VEVENT
BEGIN:VEVENT
UID:daily@example.com
SUMMARY:Morning Yoga
DTSTART:20240101T090000Z
DTEND:20240101T100000Z
RRULE:FREQ=DAILY;COUNT=3
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_ics():
    return SAMPLE_ICS
