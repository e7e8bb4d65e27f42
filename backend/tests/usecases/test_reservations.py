from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytest
from app.domain.closed_dates import ClosedDateEntry
from app.domain.errors import (
    CancelNotAllowedError,
    EquipmentNotFoundError,
    ReservationNotFoundError,
    VersionConflictError,
)
from app.domain.quota import QuotaSnapshot
from app.domain.repositories import BookingWriteResult, EligibilityRepositories
from app.domain.services import ReasonCode, ReservationEligibilityEngine
from app.domain.slots import BookingStatus, ExistingBooking
from app.domain.system_settings import SystemSettings
from app.infrastructure.snapshot_cache import SnapshotProvider
from app.models import Reservation, ReservationStatus, UserType
from app.usecases import reservations as uc

TODAY = date(2025, 2, 3)
DAY = TODAY + timedelta(days=2)


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FakeSettingsRepo:
    def __init__(self, settings: Optional[SystemSettings] = None) -> None:
        self.settings = settings or SystemSettings()

    async def fetch_settings(self) -> SystemSettings:
        return self.settings


class FakeClosedDateRepo:
    def __init__(self, entries: Optional[list[ClosedDateEntry]] = None) -> None:
        self.entries = entries or []

    async def fetch_closed_dates(self) -> list[ClosedDateEntry]:
        return self.entries


class FakeUserRepo:
    def __init__(self, user_type: Optional[UserType] = UserType.STUDENT) -> None:
        self.user_type = user_type

    async def get_user_type(self, user_id: int) -> Optional[UserType]:
        return self.user_type


class FakeEquipmentRepo:
    def __init__(self, exists: bool = True) -> None:
        self._exists = exists

    async def exists(self, equipment_id: int) -> bool:
        return self._exists


class FakeQuotaRepo:
    def __init__(self, borrowed: int = 0, pending: int = 0) -> None:
        self.borrowed = borrowed
        self.pending = pending

    async def fetch_quota_snapshot(self, user_id: int, max_items: int) -> QuotaSnapshot:
        return QuotaSnapshot(max_items=max_items, current_borrowed_count=self.borrowed, pending_requests_count=self.pending)


class FakeBookingRepo:
    """Serves `reads` in order for each fetch; create_atomic checks against `at_write`."""

    def __init__(self, reads: list[list[ExistingBooking]], at_write: Optional[list[ExistingBooking]] = None) -> None:
        self.reads = reads
        self.at_write = at_write or []
        self.fetch_calls = 0
        self.created: Optional[Reservation] = None

    async def fetch_for_equipment_on_date(self, equipment_id: int, day: date) -> list[ExistingBooking]:
        index = min(self.fetch_calls, len(self.reads) - 1)
        self.fetch_calls += 1
        return self.reads[index]

    async def create_atomic(
        self,
        *,
        equipment_id: int,
        user_id: int,
        day: date,
        start_time: time,
        end_time: time,
        purpose: Optional[str],
    ) -> BookingWriteResult:
        if self.at_write:
            return BookingWriteResult(reservation=None, conflict=self.at_write[0])
        now = _utc_now_naive()
        self.created = Reservation(
            id=1,
            equipment_id=equipment_id,
            user_id=user_id,
            reservation_date=day,
            start_time=start_time,
            end_time=end_time,
            purpose=purpose,
            status=ReservationStatus.PENDING,
            version=1,
            created_at=now,
            updated_at=now,
        )
        return BookingWriteResult(reservation=self.created)


def _repos(
    bookings: FakeBookingRepo,
    *,
    exists: bool = True,
    quota: Optional[FakeQuotaRepo] = None,
    closed: Optional[list[ClosedDateEntry]] = None,
) -> EligibilityRepositories:
    return EligibilityRepositories(
        settings=FakeSettingsRepo(),
        closed_dates=FakeClosedDateRepo(closed),
        users=FakeUserRepo(),
        equipment=FakeEquipmentRepo(exists),
        quota=quota or FakeQuotaRepo(),
        bookings=bookings,
    )


def _booking(start: str, end: str, booking_id: int = 50) -> ExistingBooking:
    return ExistingBooking.from_hhmm(
        equipment_id=9, day=DAY, start=start, end=end, status=BookingStatus.APPROVED, booking_id=booking_id
    )


@pytest.mark.asyncio
async def test_validate_accepts_free_interval() -> None:
    repos = _repos(FakeBookingRepo([[]]))
    decision = await uc.validate_reservation(
        repos,
        ReservationEligibilityEngine(),
        SnapshotProvider(),
        user_id=1,
        equipment_id=9,
        day=DAY,
        start_time="09:00",
        end_time="11:00",
        today=TODAY,
    )
    assert decision.ok
    assert decision.details is not None
    assert decision.details["remaining_quota"] == 3


@pytest.mark.asyncio
async def test_validate_uses_closed_dates_from_snapshot() -> None:
    repos = _repos(FakeBookingRepo([[]]), closed=[ClosedDateEntry(day=DAY, reason="สอบ")])
    decision = await uc.validate_reservation(
        repos,
        ReservationEligibilityEngine(),
        SnapshotProvider(),
        user_id=1,
        equipment_id=9,
        day=DAY,
        start_time=None,
        end_time=None,
        today=TODAY,
    )
    assert decision.reason_code == ReasonCode.CLOSED_DATE


@pytest.mark.asyncio
async def test_validate_raises_for_unknown_equipment() -> None:
    repos = _repos(FakeBookingRepo([[]]), exists=False)
    with pytest.raises(EquipmentNotFoundError):
        await uc.validate_reservation(
            repos,
            ReservationEligibilityEngine(),
            SnapshotProvider(),
            user_id=1,
            equipment_id=9,
            day=DAY,
            start_time=None,
            end_time=None,
            today=TODAY,
        )


@pytest.mark.asyncio
async def test_create_persists_when_accepted() -> None:
    bookings = FakeBookingRepo([[_booking("13:00", "15:00")]])
    decision, reservation = await uc.create_reservation(
        _repos(bookings),
        ReservationEligibilityEngine(),
        SnapshotProvider(),
        user_id=1,
        equipment_id=9,
        day=DAY,
        start_time="09:00",
        end_time="13:00",
        purpose="ถ่ายทำวิดีโอ",
        today=TODAY,
    )
    assert decision.ok
    assert reservation is bookings.created
    assert reservation is not None
    assert reservation.start_time == time(9, 0)
    assert reservation.end_time == time(13, 0)


@pytest.mark.asyncio
async def test_create_does_not_write_when_rejected() -> None:
    bookings = FakeBookingRepo([[]])
    decision, reservation = await uc.create_reservation(
        _repos(bookings, quota=FakeQuotaRepo(borrowed=3)),
        ReservationEligibilityEngine(),
        SnapshotProvider(),
        user_id=1,
        equipment_id=9,
        day=DAY,
        start_time="09:00",
        end_time="10:00",
        purpose=None,
        today=TODAY,
    )
    assert decision.reason_code == ReasonCode.QUOTA_EXCEEDED
    assert reservation is None
    assert bookings.created is None


@pytest.mark.asyncio
async def test_create_reevaluates_after_write_conflict() -> None:
    racing = _booking("10:00", "11:00", booking_id=77)
    bookings = FakeBookingRepo([[], [racing]], at_write=[racing])
    decision, reservation = await uc.create_reservation(
        _repos(bookings),
        ReservationEligibilityEngine(),
        SnapshotProvider(),
        user_id=1,
        equipment_id=9,
        day=DAY,
        start_time="09:00",
        end_time="11:00",
        purpose=None,
        today=TODAY,
    )
    assert reservation is None
    assert decision.reason_code == ReasonCode.SLOT_UNAVAILABLE
    assert decision.details is not None
    assert decision.details["booking_id"] == 77
    assert bookings.fetch_calls == 2


@pytest.mark.asyncio
async def test_create_reports_write_conflict_even_if_reread_misses_it() -> None:
    racing = _booking("10:00", "11:00", booking_id=78)
    bookings = FakeBookingRepo([[]], at_write=[racing])
    decision, reservation = await uc.create_reservation(
        _repos(bookings),
        ReservationEligibilityEngine(),
        SnapshotProvider(),
        user_id=1,
        equipment_id=9,
        day=DAY,
        start_time="09:00",
        end_time="11:00",
        purpose=None,
        today=TODAY,
    )
    assert reservation is None
    assert decision.reason_code == ReasonCode.SLOT_UNAVAILABLE
    assert decision.details is not None
    assert decision.details["booking_id"] == 78


class FakeResRepo:
    def __init__(self, reservation: Optional[Reservation]) -> None:
        self.reservation = reservation
        self.save_called = False

    async def get_for_user_for_update(self, reservation_id: int, user_id: int) -> Optional[Reservation]:
        return self.reservation

    async def list_by_user(self, user_id: int, status: Optional[ReservationStatus] = None) -> list[Reservation]:
        if self.reservation is None:
            return []
        if status is not None and self.reservation.status != status:
            return []
        return [self.reservation]

    async def save(self, reservation: Reservation) -> Reservation:
        self.save_called = True
        return reservation


def _reservation(status: ReservationStatus, version: int = 1) -> Reservation:
    now = _utc_now_naive()
    return Reservation(
        id=1,
        equipment_id=9,
        user_id=1,
        reservation_date=DAY,
        start_time=time(9, 0),
        end_time=time(10, 0),
        purpose=None,
        status=status,
        version=version,
        created_at=now,
        updated_at=now,
    )


@pytest.mark.asyncio
async def test_cancel_returns_existing_when_already_cancelled() -> None:
    reservation = _reservation(ReservationStatus.CANCELLED, version=5)
    repo = FakeResRepo(reservation)
    updated, previous = await uc.cancel_reservation(repo, reservation_id=1, user_id=1, version=1)
    assert updated is reservation
    assert previous == ReservationStatus.CANCELLED
    assert updated.version == 5
    assert repo.save_called is False


@pytest.mark.parametrize("status", [ReservationStatus.PENDING, ReservationStatus.APPROVED, ReservationStatus.READY])
@pytest.mark.asyncio
async def test_cancel_updates_active_reservation(status: ReservationStatus) -> None:
    repo = FakeResRepo(_reservation(status))
    updated, previous = await uc.cancel_reservation(repo, reservation_id=1, user_id=1, version=1)
    assert previous == status
    assert updated.status == ReservationStatus.CANCELLED
    assert updated.version == 2
    assert repo.save_called is True


@pytest.mark.asyncio
async def test_cancel_raises_on_version_conflict() -> None:
    repo = FakeResRepo(_reservation(ReservationStatus.PENDING, version=2))
    with pytest.raises(VersionConflictError):
        await uc.cancel_reservation(repo, reservation_id=1, user_id=1, version=1)


@pytest.mark.parametrize("status", [ReservationStatus.COMPLETED, ReservationStatus.EXPIRED])
@pytest.mark.asyncio
async def test_cancel_forbidden_for_finished_reservation(status: ReservationStatus) -> None:
    repo = FakeResRepo(_reservation(status))
    with pytest.raises(CancelNotAllowedError):
        await uc.cancel_reservation(repo, reservation_id=1, user_id=1, version=1)


@pytest.mark.asyncio
async def test_cancel_raises_when_missing() -> None:
    with pytest.raises(ReservationNotFoundError):
        await uc.cancel_reservation(FakeResRepo(None), reservation_id=1, user_id=1, version=1)


@pytest.mark.asyncio
async def test_list_user_reservations_filters_by_status() -> None:
    repo = FakeResRepo(_reservation(ReservationStatus.PENDING))
    assert len(await uc.list_user_reservations(repo, user_id=1)) == 1
    assert await uc.list_user_reservations(repo, user_id=1, status=ReservationStatus.CANCELLED) == []
