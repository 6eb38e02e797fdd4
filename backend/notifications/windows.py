"""
Time-window predicates for scheduled notifications.

All checks compare absolute instants; a deadline is never truncated to a
local date, so second-level deadlines match exactly.
"""

from datetime import datetime, timedelta

from models.notification import TimeWindow

REMINDER_LEAD = timedelta(minutes=5)
# Must be >= the reminder tick period, otherwise slow ticks leave gaps
REMINDER_WIDTH = timedelta(minutes=1)
REMINDER_PREFETCH_SLACK = timedelta(minutes=1)
DIGEST_SPAN = timedelta(days=7)


def reminder_window(now: datetime) -> TimeWindow:
    """Deadlines in [now + 5min, now + 6min) get a reminder on this tick."""
    start = now + REMINDER_LEAD
    return TimeWindow(start=start, end=start + REMINDER_WIDTH)


def reminder_prefetch_window(now: datetime) -> TimeWindow:
    """
    Superset of the reminder window used as the store-level prefilter.

    Candidates are re-checked with is_reminder_due() so skew between the
    store clock and ours can't admit a task early.
    """
    window = reminder_window(now)
    return TimeWindow(
        start=window.start - REMINDER_PREFETCH_SLACK,
        end=window.end + REMINDER_PREFETCH_SLACK,
    )


def digest_windows(now: datetime) -> tuple[TimeWindow, TimeWindow]:
    """Return (past_week, next_week) closed windows around now."""
    past = TimeWindow(start=now - DIGEST_SPAN, end=now, closed=True)
    upcoming = TimeWindow(start=now, end=now + DIGEST_SPAN, closed=True)
    return past, upcoming


def is_reminder_due(deadline: datetime, now: datetime) -> bool:
    return reminder_window(now).contains(deadline)


def is_due_within_last_week(deadline: datetime, now: datetime) -> bool:
    return digest_windows(now)[0].contains(deadline)


def is_upcoming_within_week(deadline: datetime, now: datetime) -> bool:
    return digest_windows(now)[1].contains(deadline)


def is_overdue(deadline: datetime, now: datetime, completed: bool) -> bool:
    return not completed and deadline < now
