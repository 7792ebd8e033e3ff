"""Which events a subscriber may still leave feedback on."""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from processor.models import CalendarEvent, timestamp_key

FEEDBACK_WINDOW = timedelta(hours=24)


def can_leave_feedback(
    event: CalendarEvent,
    user_id: Optional[str],
    now: Optional[datetime] = None
) -> bool:
    """
    Check whether ``user_id`` may leave feedback on ``event``.

    Feedback opens once the event has started and closes 24 hours after it
    ends. Both bounds are exclusive. Anonymous users never qualify.
    """
    if not user_id:
        return False

    current = timestamp_key(now or datetime.now(timezone.utc))
    window_end = timestamp_key(event.end + FEEDBACK_WINDOW)
    return timestamp_key(event.start) < current < window_end


def feedback_eligible_events(
    events: List[CalendarEvent],
    user_id: Optional[str],
    now: Optional[datetime] = None
) -> List[CalendarEvent]:
    """Events open for feedback, most recent start first."""
    now = now or datetime.now(timezone.utc)
    eligible = [event for event in events if can_leave_feedback(event, user_id, now)]
    eligible.sort(key=lambda event: timestamp_key(event.start), reverse=True)
    return eligible
