from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..models import UserType
from ..utils.time import parse_hhmm
from .system_settings import SystemSettings

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_LIMIT = 3
DEFAULT_MAX_LOAN_DURATION = 14
DEFAULT_MAX_ADVANCE_BOOKING_DAYS = 30

# (max_items, max_days, max_advance_booking_days)
DEFAULT_USER_TYPE_LIMITS: dict[UserType, tuple[int, int, int]] = {
    UserType.TEACHER: (10, 30, 60),
    UserType.STAFF: (5, 14, 30),
    UserType.STUDENT: (3, 7, 14),
}
_FALLBACK_USER_TYPE_LIMITS = (5, 14, 30)

MISSING_USER_TYPE_WARNING = "กรุณาอัปเดตประเภทผู้ใช้ในโปรไฟล์เพื่อรับสิทธิ์การยืมที่เหมาะสม"

DEFAULT_START_HOUR = 8
DEFAULT_END_HOUR = 18
DEFAULT_LUNCH_START = "12:00"
DEFAULT_LUNCH_END = "13:00"


@dataclass(frozen=True)
class UserTypeLimits:
    user_type: Optional[UserType]
    max_items: int
    max_loan_days: int
    max_advance_booking_days: int
    is_default: bool
    source_enabled: bool
    warning: Optional[str] = None


def resolve_user_type_limits(settings: SystemSettings | None, user_type: UserType | str | None) -> UserTypeLimits:
    """
    Resolve the effective borrowing limits for a user type.
    Per-type limits apply only when the feature is enabled and the type's entry is active;
    anything else falls back to the system-wide defaults.
    """
    settings = settings or SystemSettings()
    resolved_type = _coerce_user_type(user_type)

    if settings.user_type_limits_enabled and resolved_type is not None:
        entry = settings.user_type_limits.get(resolved_type.value)
        if entry is not None and entry.is_active:
            max_items, max_days, max_advance = DEFAULT_USER_TYPE_LIMITS.get(resolved_type, _FALLBACK_USER_TYPE_LIMITS)
            return UserTypeLimits(
                user_type=resolved_type,
                max_items=entry.max_items if entry.max_items is not None else max_items,
                max_loan_days=entry.max_days if entry.max_days is not None else max_days,
                max_advance_booking_days=(
                    entry.max_advance_booking_days if entry.max_advance_booking_days is not None else max_advance
                ),
                is_default=False,
                source_enabled=True,
            )

    warning = None
    if settings.user_type_limits_enabled and resolved_type is None:
        warning = MISSING_USER_TYPE_WARNING
    return UserTypeLimits(
        user_type=resolved_type,
        max_items=_or_default(settings.default_category_limit, DEFAULT_CATEGORY_LIMIT),
        max_loan_days=_or_default(settings.max_loan_duration, DEFAULT_MAX_LOAN_DURATION),
        max_advance_booking_days=_or_default(settings.max_advance_booking_days, DEFAULT_MAX_ADVANCE_BOOKING_DAYS),
        is_default=True,
        source_enabled=settings.user_type_limits_enabled,
        warning=warning,
    )


@dataclass(frozen=True)
class LunchBreak:
    enabled: bool
    start_minutes: int
    end_minutes: int

    @property
    def start_hour(self) -> int:
        return self.start_minutes // 60

    @property
    def end_hour(self) -> int:
        return self.end_minutes // 60

    def covers(self, minutes: int) -> bool:
        return self.enabled and self.start_minutes <= minutes < self.end_minutes


@dataclass(frozen=True)
class OperatingWindow:
    start_hour: int
    end_hour: int
    lunch_break: Optional[LunchBreak] = None


def resolve_operating_window(settings: SystemSettings | None) -> OperatingWindow:
    """Bookable hours: the return window minus its last hour, which is kept for return processing."""
    settings = settings or SystemSettings()

    start_hour = DEFAULT_START_HOUR
    parsed_start = _parse_hour(settings.loan_return_start_time, "loanReturnStartTime")
    if parsed_start is not None:
        start_hour = parsed_start

    end_hour = DEFAULT_END_HOUR
    parsed_end = _parse_hour(settings.loan_return_end_time, "loanReturnEndTime")
    if parsed_end is not None:
        end_hour = parsed_end - 1
    if end_hour <= start_hour:
        end_hour = start_hour + 1

    return OperatingWindow(start_hour=start_hour, end_hour=end_hour, lunch_break=_resolve_lunch_break(settings))


def _resolve_lunch_break(settings: SystemSettings) -> LunchBreak:
    config = settings.lunch_break
    enabled = config.enabled if config is not None else True
    start_text = (config.start_time if config is not None else None) or DEFAULT_LUNCH_START
    end_text = (config.end_time if config is not None else None) or DEFAULT_LUNCH_END
    try:
        start = parse_hhmm(start_text)
        end = parse_hhmm(end_text)
    except ValueError:
        logger.warning("invalid lunch break %r-%r, using defaults", start_text, end_text)
        start = parse_hhmm(DEFAULT_LUNCH_START)
        end = parse_hhmm(DEFAULT_LUNCH_END)
    return LunchBreak(enabled=enabled, start_minutes=start, end_minutes=end)


def _parse_hour(value: str | None, name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        hour = parse_hhmm(value) // 60
    except ValueError:
        logger.warning("invalid %s %r, using default", name, value)
        return None
    if hour > 23:
        logger.warning("%s %r is past the end of the day, using default", name, value)
        return None
    return hour


def _coerce_user_type(value: UserType | str | None) -> Optional[UserType]:
    if value is None or isinstance(value, UserType):
        return value
    try:
        return UserType(value)
    except ValueError:
        logger.warning("unknown user type %r, treating as unset", value)
        return None


def _or_default(value: Optional[int], default: int) -> int:
    return value if value is not None else default
