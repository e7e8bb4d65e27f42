from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

from ..models import UserType
from ..utils.time import DEFAULT_TIMEZONE, parse_hhmm, to_local_date
from .closed_dates import ClosedDateRegistry
from .policies import UserTypeLimits, resolve_operating_window
from .quota import QuotaSnapshot, compute_quota
from .slots import (
    PICKUP_WINDOW_MINUTES,
    SLOT_INTERVAL_MINUTES,
    ExistingBooking,
    TimeSlot,
    annotate,
    find_conflict,
    generate_time_slots,
)
from .system_settings import SystemSettings

MIN_DURATION_MINUTES = 60
MAX_DURATION_MINUTES = 480


class ReasonCode(StrEnum):
    PAST_DATE = "PAST_DATE"
    CLOSED_DATE = "CLOSED_DATE"
    ADVANCE_WINDOW_EXCEEDED = "ADVANCE_WINDOW_EXCEEDED"
    INVALID_DURATION = "INVALID_DURATION"
    SLOT_UNAVAILABLE = "SLOT_UNAVAILABLE"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"


MSG_ACCEPTED = "สามารถจองได้"
MSG_PAST_DATE = "ไม่สามารถจองในวันที่ผ่านมาแล้ว"
MSG_CLOSED_DATE = "วันที่เลือกเป็นวันปิดทำการ"
MSG_ADVANCE_WINDOW = "ไม่สามารถจองล่วงหน้าเกิน {days} วัน"
MSG_TIME_REQUIRED = "กรุณาเลือกเวลาเริ่มต้นและเวลาสิ้นสุด"
MSG_TIME_FORMAT = "รูปแบบเวลาไม่ถูกต้อง"
MSG_END_BEFORE_START = "เวลาสิ้นสุดต้องมากกว่าเวลาเริ่มต้น"
MSG_DURATION_TOO_SHORT = "ระยะเวลาการจองต้องไม่น้อยกว่า {minutes} นาที"
MSG_DURATION_TOO_LONG = "ระยะเวลาการจองต้องไม่เกิน {minutes} นาที"
MSG_SLOT_UNAVAILABLE = "ช่วงเวลาที่เลือกไม่ว่าง กรุณาเลือกเวลาอื่น"
MSG_QUOTA_EXCEEDED = "คุณยืมอุปกรณ์ครบจำนวนสูงสุดแล้ว ({used}/{max_items} ชิ้น)"
MSG_RETURN_BEFORE_BORROW = "วันที่คืนต้องอยู่หลังวันที่ยืม"
MSG_LOAN_TOO_LONG = "ระยะเวลายืมต้องไม่เกิน {days} วัน"
MSG_RETURN_CLOSED = "ไม่สามารถคืนในวันที่เลือกได้ เนื่องจากเป็นวันปิดทำการ"


@dataclass(frozen=True)
class Decision:
    ok: bool
    reason_code: Optional[ReasonCode]
    message: str
    details: Optional[Mapping[str, Any]] = None

    @classmethod
    def accept(cls, details: Optional[Mapping[str, Any]] = None) -> "Decision":
        return cls(ok=True, reason_code=None, message=MSG_ACCEPTED, details=_freeze(details))

    @classmethod
    def reject(
        cls,
        reason_code: ReasonCode,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> "Decision":
        return cls(ok=False, reason_code=reason_code, message=message, details=_freeze(details))


@dataclass(frozen=True)
class ReservationRequest:
    equipment_id: int
    day: date
    user_type: Optional[UserType]
    quota_snapshot: QuotaSnapshot
    start_time: Optional[str] = None
    end_time: Optional[str] = None


@dataclass(frozen=True)
class LoanRequestCandidate:
    equipment_id: int
    borrow_date: date
    expected_return_date: date
    user_type: Optional[UserType]
    quota_snapshot: QuotaSnapshot


@dataclass(frozen=True)
class SlotListing:
    slots: list[TimeSlot] = field(default_factory=list)
    blocked_decision: Optional[Decision] = None


class ReservationEligibilityEngine:
    """
    Stateless accept/reject decisions for reservation and loan requests.
    Every input is an immutable snapshot supplied per call; policy violations are
    returned as a rejected Decision and never raised.
    """

    def __init__(
        self,
        *,
        min_duration_minutes: int = MIN_DURATION_MINUTES,
        max_duration_minutes: int = MAX_DURATION_MINUTES,
        slot_interval_minutes: int = SLOT_INTERVAL_MINUTES,
        pickup_minutes: int = PICKUP_WINDOW_MINUTES,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        if min_duration_minutes > max_duration_minutes:
            raise ValueError("min_duration_minutes must not exceed max_duration_minutes")
        self.min_duration_minutes = min_duration_minutes
        self.max_duration_minutes = max_duration_minutes
        self.slot_interval_minutes = slot_interval_minutes
        self.pickup_minutes = pickup_minutes
        self.timezone = timezone

    def check_date(
        self,
        day: date | datetime,
        limits: UserTypeLimits,
        closed_dates: ClosedDateRegistry,
        *,
        today: date,
    ) -> Decision:
        """Date-level checks only: past date, closed date, advance window."""
        day = self._local_date(day)
        if day < today:
            return Decision.reject(ReasonCode.PAST_DATE, MSG_PAST_DATE)

        closed = closed_dates.is_closed(day)
        if closed.closed:
            message = MSG_CLOSED_DATE if not closed.reason else f"{MSG_CLOSED_DATE}: {closed.reason}"
            return Decision.reject(ReasonCode.CLOSED_DATE, message, {"reason": closed.reason})

        days_ahead = (day - today).days
        if days_ahead > limits.max_advance_booking_days:
            return Decision.reject(
                ReasonCode.ADVANCE_WINDOW_EXCEEDED,
                MSG_ADVANCE_WINDOW.format(days=limits.max_advance_booking_days),
                {"max_advance_booking_days": limits.max_advance_booking_days, "days_ahead": days_ahead},
            )
        return Decision.accept()

    def evaluate(
        self,
        request: ReservationRequest,
        limits: UserTypeLimits,
        closed_dates: ClosedDateRegistry,
        existing_bookings: Sequence[ExistingBooking],
        *,
        today: date,
    ) -> Decision:
        day = self._local_date(request.day)
        date_decision = self.check_date(day, limits, closed_dates, today=today)
        if not date_decision.ok:
            return date_decision

        if request.start_time is not None or request.end_time is not None:
            interval = self._parse_interval(request.start_time, request.end_time)
            if isinstance(interval, Decision):
                return interval
            start, end = interval
            conflict = find_conflict(
                start,
                end,
                existing_bookings,
                equipment_id=request.equipment_id,
                day=day,
            )
            if conflict is not None:
                return Decision.reject(
                    ReasonCode.SLOT_UNAVAILABLE,
                    MSG_SLOT_UNAVAILABLE,
                    {
                        "booking_id": conflict.booking_id,
                        "booking_kind": conflict.kind,
                        "booking_status": conflict.status.value,
                    },
                )

        return self._check_quota(request.quota_snapshot, limits)

    def evaluate_loan_request(
        self,
        request: LoanRequestCandidate,
        limits: UserTypeLimits,
        closed_dates: ClosedDateRegistry,
        *,
        today: date,
    ) -> Decision:
        """
        Whole-day loan eligibility: the borrow date passes the date checks, the loan
        lasts between one day and the user's max_loan_days, the return date is not a
        closed date, and quota remains.
        """
        borrow_date = self._local_date(request.borrow_date)
        return_date = self._local_date(request.expected_return_date)
        date_decision = self.check_date(borrow_date, limits, closed_dates, today=today)
        if not date_decision.ok:
            return date_decision

        loan_days = (return_date - borrow_date).days
        if loan_days <= 0:
            return Decision.reject(ReasonCode.INVALID_DURATION, MSG_RETURN_BEFORE_BORROW, {"loan_days": loan_days})
        if loan_days > limits.max_loan_days:
            return Decision.reject(
                ReasonCode.INVALID_DURATION,
                MSG_LOAN_TOO_LONG.format(days=limits.max_loan_days),
                {"loan_days": loan_days, "max_loan_days": limits.max_loan_days},
            )

        closed = closed_dates.is_closed(return_date)
        if closed.closed:
            message = MSG_RETURN_CLOSED if not closed.reason else f"{MSG_RETURN_CLOSED}: {closed.reason}"
            return Decision.reject(
                ReasonCode.CLOSED_DATE,
                message,
                {"reason": closed.reason, "date_field": "expected_return_date"},
            )

        return self._check_quota(request.quota_snapshot, limits)

    def list_available_slots(
        self,
        equipment_id: int,
        day: date | datetime,
        limits: UserTypeLimits,
        closed_dates: ClosedDateRegistry,
        existing_bookings: Sequence[ExistingBooking],
        settings: SystemSettings,
        *,
        today: date,
    ) -> SlotListing:
        day = self._local_date(day)
        date_decision = self.check_date(day, limits, closed_dates, today=today)
        if not date_decision.ok:
            return SlotListing(slots=[], blocked_decision=date_decision)

        window = resolve_operating_window(settings)
        candidates = [TimeSlot(time=value) for value in generate_time_slots(window, self.slot_interval_minutes)]
        slots = annotate(
            candidates,
            existing_bookings,
            equipment_id=equipment_id,
            day=day,
            pickup_minutes=self.pickup_minutes,
        )
        return SlotListing(slots=slots)

    def _local_date(self, value: date | datetime) -> date:
        return to_local_date(value, self.timezone)

    def _check_quota(self, snapshot: QuotaSnapshot, limits: UserTypeLimits) -> Decision:
        quota = compute_quota(snapshot)
        if not quota.can_borrow:
            return Decision.reject(
                ReasonCode.QUOTA_EXCEEDED,
                MSG_QUOTA_EXCEEDED.format(
                    used=snapshot.current_borrowed_count + snapshot.pending_requests_count,
                    max_items=snapshot.max_items,
                ),
                {
                    "remaining_quota": quota.remaining_quota,
                    "max_items": snapshot.max_items,
                    "current_borrowed_count": snapshot.current_borrowed_count,
                    "pending_requests_count": snapshot.pending_requests_count,
                },
            )

        details: dict[str, Any] = {"remaining_quota": quota.remaining_quota}
        if limits.warning:
            details["warning"] = limits.warning
        return Decision.accept(details)

    def _parse_interval(self, start_time: Optional[str], end_time: Optional[str]) -> tuple[int, int] | Decision:
        if start_time is None or end_time is None:
            return Decision.reject(ReasonCode.INVALID_DURATION, MSG_TIME_REQUIRED)
        try:
            start = parse_hhmm(start_time)
            end = parse_hhmm(end_time)
        except ValueError:
            return Decision.reject(
                ReasonCode.INVALID_DURATION,
                MSG_TIME_FORMAT,
                {"start_time": start_time, "end_time": end_time},
            )

        duration = end - start
        if duration <= 0:
            return Decision.reject(ReasonCode.INVALID_DURATION, MSG_END_BEFORE_START, {"duration_minutes": duration})
        if duration < self.min_duration_minutes:
            return Decision.reject(
                ReasonCode.INVALID_DURATION,
                MSG_DURATION_TOO_SHORT.format(minutes=self.min_duration_minutes),
                {"duration_minutes": duration, "min_duration_minutes": self.min_duration_minutes},
            )
        if duration > self.max_duration_minutes:
            return Decision.reject(
                ReasonCode.INVALID_DURATION,
                MSG_DURATION_TOO_LONG.format(minutes=self.max_duration_minutes),
                {"duration_minutes": duration, "max_duration_minutes": self.max_duration_minutes},
            )
        return start, end


def _freeze(details: Optional[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    if details is None:
        return None
    return MappingProxyType(dict(details))
