from datetime import date, datetime, time
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Bangkok"


def local_today(tz_name: str = DEFAULT_TIMEZONE) -> date:
    return datetime.now(ZoneInfo(tz_name)).date()


def to_local_date(value: date | datetime, tz_name: str = DEFAULT_TIMEZONE) -> date:
    """Normalize to a calendar date; aware datetimes are converted to local time first."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(tz_name))
        return value.date()
    return value


def parse_hhmm(value: str) -> int:
    """Return minutes since midnight for an "HH:MM" string. Raises ValueError."""
    if not isinstance(value, str):
        raise ValueError(f"time must be a string, got {type(value).__name__}")
    hours_text, sep, minutes_text = value.strip().partition(":")
    if not sep:
        raise ValueError(f"time must be HH:MM, got {value!r}")
    hours = int(hours_text)
    minutes = int(minutes_text)
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or (hours == 24 and minutes != 0):
        raise ValueError(f"time out of range: {value!r}")
    return hours * 60 + minutes


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def minutes_to_time(minutes: int) -> time:
    if minutes >= 24 * 60:
        return time.max
    return time(minutes // 60, minutes % 60)


def time_to_minutes(value: time) -> int:
    if value == time.max:
        return 24 * 60
    return value.hour * 60 + value.minute
