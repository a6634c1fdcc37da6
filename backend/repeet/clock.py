"""
Calendar helpers for Repeet.

Review dates are plain calendar dates. Anything that carries a time of day is
truncated to its date before arithmetic, so two calls on the same day always
agree regardless of the wall-clock time.
"""

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo

DateLike = Union[date, datetime, str]


class Clock:
    """Source of "now" and "today" in a fixed timezone."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz or timezone.utc

    @classmethod
    def from_name(cls, name: str) -> "Clock":
        if name.upper() == "UTC":
            return cls(timezone.utc)
        return cls(ZoneInfo(name))

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()


def to_calendar_date(value: DateLike) -> date:
    """Drop any time-of-day component. Accepts dates, datetimes and ISO strings."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def next_review_date(rating: int, today: DateLike) -> date:
    """Rating 1 schedules tomorrow, rating 5 five days out."""
    return to_calendar_date(today) + timedelta(days=rating)


def format_relative_date(target: DateLike, today: DateLike) -> str:
    """Human label for a review date, e.g. "Today", "In 3 days", "2 days ago"."""
    diff_days = (to_calendar_date(target) - to_calendar_date(today)).days

    if diff_days == 0:
        return "Today"
    if diff_days == 1:
        return "Tomorrow"
    if diff_days == -1:
        return "Yesterday"
    if diff_days < 0:
        return f"{abs(diff_days)} days ago"
    return f"In {diff_days} days"
