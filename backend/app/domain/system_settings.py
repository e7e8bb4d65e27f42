"""Immutable snapshot of the admin-owned booking settings document.

The document is edited by administrators and may be incomplete or carry
values of the wrong type. Parsing never raises: unusable fields are logged
and replaced with ``None`` so that the policies fall back to their defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserTypeLimitConfig:
    max_items: Optional[int] = None
    max_days: Optional[int] = None
    max_advance_booking_days: Optional[int] = None
    is_active: bool = False
    user_type_name: Optional[str] = None


@dataclass(frozen=True)
class LunchBreakConfig:
    enabled: bool = True
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class SystemSettings:
    user_type_limits_enabled: bool = False
    user_type_limits: Mapping[str, UserTypeLimitConfig] = field(default_factory=lambda: MappingProxyType({}))
    default_category_limit: Optional[int] = None
    max_loan_duration: Optional[int] = None
    max_advance_booking_days: Optional[int] = None
    loan_return_start_time: Optional[str] = None
    loan_return_end_time: Optional[str] = None
    lunch_break: Optional[LunchBreakConfig] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "SystemSettings":
        """Build a snapshot from the stored document (camelCase or snake_case keys)."""
        if not raw:
            return cls()
        limits_raw = _pick(raw, "userTypeLimits", "user_type_limits")
        limits: dict[str, UserTypeLimitConfig] = {}
        if isinstance(limits_raw, Mapping):
            for user_type, entry in limits_raw.items():
                if isinstance(entry, Mapping):
                    limits[str(user_type)] = _parse_user_type_limit(str(user_type), entry)
        elif limits_raw is not None:
            logger.warning("ignoring userTypeLimits of type %s", type(limits_raw).__name__)

        lunch_raw = _pick(raw, "lunchBreak", "lunch_break")
        lunch: Optional[LunchBreakConfig] = None
        if isinstance(lunch_raw, Mapping):
            lunch = LunchBreakConfig(
                enabled=_pick(lunch_raw, "enabled") is not False,
                start_time=_as_str(_pick(lunch_raw, "startTime", "start_time")),
                end_time=_as_str(_pick(lunch_raw, "endTime", "end_time")),
                message=_as_str(_pick(lunch_raw, "message")),
            )

        return cls(
            user_type_limits_enabled=_pick(raw, "userTypeLimitsEnabled", "user_type_limits_enabled") is True,
            user_type_limits=MappingProxyType(limits),
            default_category_limit=_as_positive_int(
                _pick(raw, "defaultCategoryLimit", "default_category_limit"), "defaultCategoryLimit"
            ),
            max_loan_duration=_as_positive_int(_pick(raw, "maxLoanDuration", "max_loan_duration"), "maxLoanDuration"),
            max_advance_booking_days=_as_non_negative_int(
                _pick(raw, "maxAdvanceBookingDays", "max_advance_booking_days"), "maxAdvanceBookingDays"
            ),
            loan_return_start_time=_as_str(_pick(raw, "loanReturnStartTime", "loan_return_start_time")),
            loan_return_end_time=_as_str(_pick(raw, "loanReturnEndTime", "loan_return_end_time")),
            lunch_break=lunch,
        )


def _parse_user_type_limit(user_type: str, entry: Mapping[str, Any]) -> UserTypeLimitConfig:
    prefix = f"userTypeLimits.{user_type}"
    return UserTypeLimitConfig(
        max_items=_as_positive_int(_pick(entry, "maxItems", "max_items"), f"{prefix}.maxItems"),
        max_days=_as_positive_int(_pick(entry, "maxDays", "max_days"), f"{prefix}.maxDays"),
        max_advance_booking_days=_as_non_negative_int(
            _pick(entry, "maxAdvanceBookingDays", "max_advance_booking_days"),
            f"{prefix}.maxAdvanceBookingDays",
        ),
        is_active=_pick(entry, "isActive", "is_active") is True,
        user_type_name=_as_str(_pick(entry, "userTypeName", "user_type_name")),
    )


def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else None


def _as_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    # bool is an int subclass; a checkbox value is never a count
    if isinstance(value, bool):
        logger.warning("ignoring boolean value for %s", name)
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        logger.warning("ignoring unparseable value %r for %s", value, name)
        return None


def _as_positive_int(value: Any, name: str) -> Optional[int]:
    parsed = _as_int(value, name)
    if parsed is not None and parsed <= 0:
        logger.warning("ignoring non-positive value %r for %s", parsed, name)
        return None
    return parsed


def _as_non_negative_int(value: Any, name: str) -> Optional[int]:
    parsed = _as_int(value, name)
    if parsed is not None and parsed < 0:
        logger.warning("ignoring negative value %r for %s", parsed, name)
        return None
    return parsed
