"""
Date and time helpers: slot intervals, overlap, business calendar rules and
display formatting.

Nothing here touches storage. Rules that depend on "now" take the current
moment as an argument; services obtain it from an injected ``Clock``.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from . import config

MINUTES_PER_DAY = 24 * 60

# A clock is any callable returning the current local datetime
Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now()


def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class TimeRange:
    """
    Half-open interval ``[start, end)`` on a single day, in minutes since midnight.

    ``end`` may exceed ``MINUTES_PER_DAY`` when built from a slot that runs past
    midnight; ``ends_same_day`` reports that.
    """
    start: int
    end: int

    @classmethod
    def from_slot(cls, start_time: time, duration_minutes: int) -> "TimeRange":
        start = minutes_of(start_time)
        return cls(start, start + duration_minutes)

    @property
    def duration(self) -> int:
        return self.end - self.start

    @property
    def ends_same_day(self) -> bool:
        return self.end <= MINUTES_PER_DAY

    def overlaps(self, other: "TimeRange") -> bool:
        # Touching endpoints do not overlap
        return self.start < other.end and other.start < self.end


def overlaps(a: TimeRange, b: TimeRange) -> bool:
    return a.overlaps(b)


def end_time(start_time: time, duration_minutes: int) -> time:
    return (datetime.combine(date.min, start_time) + timedelta(minutes=duration_minutes)).time()


def is_in_past(day: date, start_time: time, now: datetime) -> bool:
    """
    Check whether a slot starts before ``now``.

    Earlier days are always past; on the current day the start time must not
    be earlier than the current time.
    """
    today = now.date()
    if day < today:
        return True
    if day == today:
        return start_time < now.time()
    return False


def is_today(day: date, now: datetime) -> bool:
    return day == now.date()


def is_past(day: date, start_time: time, now: datetime) -> bool:
    return datetime.combine(day, start_time) < now


def is_upcoming(day: date, start_time: time, now: datetime) -> bool:
    return datetime.combine(day, start_time) > now


def is_within_business_hours(value: time,
                             start: Optional[time] = None,
                             end: Optional[time] = None) -> bool:
    """Check if a time falls within business hours (inclusive on both ends)."""
    start = start or config.BUSINESS_HOURS_START
    end = end or config.BUSINESS_HOURS_END
    return start <= value <= end


def is_weekday(day: date) -> bool:
    return day.weekday() < 5


def next_business_day(day: date) -> date:
    candidate = day + timedelta(days=1)
    while not is_weekday(candidate):
        candidate += timedelta(days=1)
    return candidate


def previous_business_day(day: date) -> date:
    candidate = day - timedelta(days=1)
    while not is_weekday(candidate):
        candidate -= timedelta(days=1)
    return candidate


def relative_day_label(day: date, today: date) -> str:
    """
    Describe a date relative to today.

    Returns:
        "Today", "Tomorrow", "Yesterday", "In N days" or "N days ago"
    """
    diff = (day - today).days
    if diff == 0:
        return "Today"
    if diff == 1:
        return "Tomorrow"
    if diff == -1:
        return "Yesterday"
    if diff > 0:
        return f"In {diff} days"
    return f"{abs(diff)} days ago"


def format_time(value: time) -> str:
    """Format a time in 12-hour form, e.g. ``9:30 AM``."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    hours, mins = divmod(minutes, 60)
    if mins == 0:
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{hours}h {mins}m"
