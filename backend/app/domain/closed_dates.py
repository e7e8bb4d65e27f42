from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from ..models import RecurringPattern
from ..utils.time import DEFAULT_TIMEZONE, to_local_date


@dataclass(frozen=True)
class ClosedDateEntry:
    day: date
    reason: Optional[str] = None
    is_recurring: bool = False
    recurring_pattern: Optional[RecurringPattern] = None

    def matches(self, day: date) -> bool:
        # the stored date itself is always closed, whatever the recurrence
        if self.day == day:
            return True
        if self.is_recurring and self.recurring_pattern == RecurringPattern.YEARLY:
            return (self.day.month, self.day.day) == (day.month, day.day)
        return False


@dataclass(frozen=True)
class ClosedState:
    closed: bool
    reason: Optional[str] = None


class ClosedDateRegistry:
    """Read-only view over the admin closed-date calendar."""

    def __init__(self, entries: Iterable[ClosedDateEntry] = ()) -> None:
        self._entries = tuple(entries)

    @property
    def entries(self) -> tuple[ClosedDateEntry, ...]:
        return self._entries

    def is_closed(self, day: date | datetime, tz_name: str = DEFAULT_TIMEZONE) -> ClosedState:
        day = to_local_date(day, tz_name)
        for entry in self._entries:
            if entry.matches(day):
                return ClosedState(closed=True, reason=entry.reason or None)
        return ClosedState(closed=False)
