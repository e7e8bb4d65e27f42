from datetime import date

import pytest
from app.domain.policies import LunchBreak, OperatingWindow
from app.domain.slots import (
    BookingStatus,
    ExistingBooking,
    TimeSlot,
    annotate,
    find_conflict,
    generate_time_slots,
    has_conflict,
    intervals_overlap,
)

DAY = date(2025, 3, 3)


def test_generates_half_hour_grid_without_lunch() -> None:
    window = OperatingWindow(start_hour=8, end_hour=10)
    assert generate_time_slots(window) == ["08:00", "08:30", "09:00", "09:30"]


def test_lunch_break_removed_at_minute_precision() -> None:
    lunch = LunchBreak(enabled=True, start_minutes=11 * 60 + 30, end_minutes=12 * 60 + 30)
    window = OperatingWindow(start_hour=11, end_hour=13, lunch_break=lunch)
    assert generate_time_slots(window) == ["11:00", "12:30"]


def test_disabled_lunch_break_keeps_slots() -> None:
    lunch = LunchBreak(enabled=False, start_minutes=12 * 60, end_minutes=13 * 60)
    window = OperatingWindow(start_hour=12, end_hour=13, lunch_break=lunch)
    assert generate_time_slots(window) == ["12:00", "12:30"]


def test_rejects_non_positive_interval() -> None:
    with pytest.raises(ValueError):
        generate_time_slots(OperatingWindow(start_hour=8, end_hour=9), 0)


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ((60, 120), (120, 180), False),
        ((60, 121), (120, 180), True),
        ((0, 1440), (600, 660), True),
        ((600, 660), (540, 600), False),
    ],
)
def test_intervals_overlap(a: tuple[int, int], b: tuple[int, int], expected: bool) -> None:
    assert intervals_overlap(*a, *b) is expected
    assert intervals_overlap(*b, *a) is expected


def test_find_conflict_returns_first_active_overlap() -> None:
    bookings = [
        ExistingBooking.from_hhmm(equipment_id=1, day=DAY, start="09:00", end="11:00", status=BookingStatus.CANCELLED, booking_id=1),
        ExistingBooking.from_hhmm(equipment_id=1, day=DAY, start="10:00", end="11:00", status=BookingStatus.PENDING, booking_id=2),
    ]
    conflict = find_conflict(600, 660, bookings, equipment_id=1, day=DAY)
    assert conflict is not None
    assert conflict.booking_id == 2
    assert has_conflict(600, 660, bookings, equipment_id=2, day=DAY) is False


def test_full_day_loan_blocks_every_slot() -> None:
    loan = ExistingBooking(
        booking_id=3,
        equipment_id=1,
        day=DAY,
        start_minutes=0,
        end_minutes=24 * 60,
        status=BookingStatus.BORROWED,
        kind="loan",
    )
    slots = annotate([TimeSlot(time="08:00"), TimeSlot(time="16:30")], [loan], equipment_id=1, day=DAY)
    assert [slot.available for slot in slots] == [False, False]
    assert slots[0].booking_status == BookingStatus.BORROWED


def test_annotate_respects_pickup_window() -> None:
    booking = ExistingBooking.from_hhmm(equipment_id=1, day=DAY, start="14:00", end="15:00")
    slots = annotate(
        [TimeSlot(time="13:00"), TimeSlot(time="13:30")], [booking], equipment_id=1, day=DAY, pickup_minutes=30
    )
    assert [slot.available for slot in slots] == [True, True]
