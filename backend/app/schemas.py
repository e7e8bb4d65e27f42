from datetime import date, datetime, time
from typing import Any, Optional

from pydantic import BaseModel, Field, field_serializer, field_validator

from .domain.services import Decision, ReasonCode, SlotListing
from .domain.slots import BookingStatus, TimeSlot
from .models import LoanRequest, LoanRequestStatus, Reservation, ReservationStatus
from .utils.time import parse_hhmm

HHMM_PATTERN = r"^\d{1,2}:\d{2}$"


class ReservationValidate(BaseModel):
    equipment_id: int
    reservation_date: date
    start_time: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    end_time: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)


class ReservationCreate(BaseModel):
    equipment_id: int
    reservation_date: date
    start_time: str = Field(pattern=HHMM_PATTERN)
    end_time: str = Field(pattern=HHMM_PATTERN)
    purpose: Optional[str] = Field(default=None, min_length=5, max_length=200)

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_clock(cls, value: str) -> str:
        parse_hhmm(value)
        return value


class ReservationCancel(BaseModel):
    version: Optional[int] = Field(default=None, ge=1)


class DecisionRead(BaseModel):
    ok: bool
    reason_code: Optional[ReasonCode]
    message: str
    details: Optional[dict[str, Any]] = None

    @classmethod
    def from_domain(cls, decision: Decision) -> "DecisionRead":
        return cls(
            ok=decision.ok,
            reason_code=decision.reason_code,
            message=decision.message,
            details=dict(decision.details) if decision.details is not None else None,
        )


class TimeSlotRead(BaseModel):
    time: str
    available: bool
    booking_id: Optional[int] = None
    booking_status: Optional[BookingStatus] = None

    @classmethod
    def from_domain(cls, slot: TimeSlot) -> "TimeSlotRead":
        return cls(
            time=slot.time,
            available=slot.available,
            booking_id=slot.booking_id,
            booking_status=slot.booking_status,
        )


class SlotListingRead(BaseModel):
    equipment_id: int
    reservation_date: date
    slots: list[TimeSlotRead]
    blocked_decision: Optional[DecisionRead] = None

    @classmethod
    def from_domain(cls, *, equipment_id: int, day: date, listing: SlotListing) -> "SlotListingRead":
        return cls(
            equipment_id=equipment_id,
            reservation_date=day,
            slots=[TimeSlotRead.from_domain(slot) for slot in listing.slots],
            blocked_decision=(
                DecisionRead.from_domain(listing.blocked_decision) if listing.blocked_decision is not None else None
            ),
        )


class ReservationRead(BaseModel):
    reservation_id: int
    equipment_id: int
    user_id: int
    reservation_date: date
    start_time: time
    end_time: time
    purpose: Optional[str]
    status: ReservationStatus
    version: int
    created_at: datetime

    @field_serializer("start_time", "end_time")
    def _ser_time(self, value: time) -> str:
        return value.strftime("%H:%M")

    @classmethod
    def from_db(cls, *, reservation: Reservation) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            equipment_id=reservation.equipment_id,
            user_id=reservation.user_id,
            reservation_date=reservation.reservation_date,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            purpose=reservation.purpose,
            status=reservation.status,
            version=reservation.version,
            created_at=reservation.created_at,
        )


class LoanRequestValidate(BaseModel):
    equipment_id: int
    borrow_date: date
    expected_return_date: date


class LoanRequestRead(BaseModel):
    loan_request_id: int
    equipment_id: int
    user_id: int
    borrow_date: date
    expected_return_date: date
    status: LoanRequestStatus
    created_at: datetime

    @classmethod
    def from_db(cls, *, loan_request: LoanRequest) -> "LoanRequestRead":
        return cls(
            loan_request_id=loan_request.id,
            equipment_id=loan_request.equipment_id,
            user_id=loan_request.user_id,
            borrow_date=loan_request.borrow_date,
            expected_return_date=loan_request.expected_return_date,
            status=loan_request.status,
            created_at=loan_request.created_at,
        )
