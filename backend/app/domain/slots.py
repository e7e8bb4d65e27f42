from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import StrEnum
from typing import Iterable, Optional, Sequence

from ..utils.time import format_hhmm, parse_hhmm
from .policies import OperatingWindow

SLOT_INTERVAL_MINUTES = 30
PICKUP_WINDOW_MINUTES = 60


class BookingStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    READY = "ready"
    BORROWED = "borrowed"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    RETURNED = "returned"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


INACTIVE_BOOKING_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.REJECTED})


@dataclass(frozen=True)
class ExistingBooking:
    booking_id: Optional[int]
    equipment_id: int
    day: date
    start_minutes: int
    end_minutes: int
    status: BookingStatus
    kind: str = "reservation"

    @classmethod
    def from_hhmm(
        cls,
        *,
        equipment_id: int,
        day: date,
        start: str,
        end: str,
        status: BookingStatus = BookingStatus.APPROVED,
        booking_id: Optional[int] = None,
    ) -> "ExistingBooking":
        return cls(
            booking_id=booking_id,
            equipment_id=equipment_id,
            day=day,
            start_minutes=parse_hhmm(start),
            end_minutes=parse_hhmm(end),
            status=status,
        )

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_BOOKING_STATUSES


@dataclass(frozen=True)
class TimeSlot:
    time: str
    available: bool = True
    booking_id: Optional[int] = None
    booking_status: Optional[BookingStatus] = None


def generate_time_slots(window: OperatingWindow, interval_minutes: int = SLOT_INTERVAL_MINUTES) -> list[str]:
    if interval_minutes <= 0:
        raise ValueError("interval_minutes must be positive")
    lunch = window.lunch_break
    slots: list[str] = []
    for minutes in range(window.start_hour * 60, window.end_hour * 60, interval_minutes):
        if lunch is not None and lunch.covers(minutes):
            continue
        slots.append(format_hhmm(minutes))
    return slots


def intervals_overlap(start1: int, end1: int, start2: int, end2: int) -> bool:
    """Half-open overlap: [start1, end1) and [start2, end2) share at least one minute."""
    return start1 < end2 and start2 < end1


def find_conflict(
    candidate_start: int,
    candidate_end: int,
    existing_bookings: Iterable[ExistingBooking],
    *,
    equipment_id: Optional[int] = None,
    day: Optional[date] = None,
) -> Optional[ExistingBooking]:
    for booking in existing_bookings:
        if not booking.is_active:
            continue
        if equipment_id is not None and booking.equipment_id != equipment_id:
            continue
        if day is not None and booking.day != day:
            continue
        if intervals_overlap(candidate_start, candidate_end, booking.start_minutes, booking.end_minutes):
            return booking
    return None


def has_conflict(
    candidate_start: int,
    candidate_end: int,
    existing_bookings: Iterable[ExistingBooking],
    *,
    equipment_id: Optional[int] = None,
    day: Optional[date] = None,
) -> bool:
    return (
        find_conflict(candidate_start, candidate_end, existing_bookings, equipment_id=equipment_id, day=day)
        is not None
    )


def annotate(
    slots: Sequence[TimeSlot],
    existing_bookings: Sequence[ExistingBooking],
    *,
    equipment_id: int,
    day: date,
    pickup_minutes: int = PICKUP_WINDOW_MINUTES,
) -> list[TimeSlot]:
    """Mark each slot unavailable when its pickup window overlaps an active booking."""
    annotated: list[TimeSlot] = []
    for slot in slots:
        start = parse_hhmm(slot.time)
        conflict = find_conflict(
            start,
            start + pickup_minutes,
            existing_bookings,
            equipment_id=equipment_id,
            day=day,
        )
        if conflict is None:
            annotated.append(replace(slot, available=True, booking_id=None, booking_status=None))
        else:
            annotated.append(
                replace(slot, available=False, booking_id=conflict.booking_id, booking_status=conflict.status)
            )
    return annotated
