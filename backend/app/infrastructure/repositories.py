from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import List, Optional

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.closed_dates import ClosedDateEntry
from ..domain.quota import QuotaSnapshot
from ..domain.repositories import (
    BookingRepository,
    BookingWriteResult,
    ClosedDateRepository,
    EquipmentRepository,
    LoanRequestRepository,
    QuotaRepository,
    ReservationRepository,
    SettingsRepository,
    UserRepository,
)
from ..domain.slots import BookingStatus, ExistingBooking, find_conflict
from ..domain.system_settings import SystemSettings
from ..models import (
    ClosedDate,
    Equipment,
    LoanRequest,
    LoanRequestStatus,
    Reservation,
    ReservationStatus,
    SystemSettingsRecord,
    User,
    UserType,
)
from ..utils.time import time_to_minutes

logger = logging.getLogger(__name__)

# loans in custody or committed to a pickup occupy the whole day
BLOCKING_LOAN_STATUSES = (LoanRequestStatus.APPROVED, LoanRequestStatus.BORROWED, LoanRequestStatus.OVERDUE)
BORROWED_LOAN_STATUSES = (LoanRequestStatus.BORROWED, LoanRequestStatus.OVERDUE)
PENDING_LOAN_STATUSES = (LoanRequestStatus.PENDING, LoanRequestStatus.APPROVED)
PENDING_RESERVATION_STATUSES = (ReservationStatus.PENDING, ReservationStatus.APPROVED, ReservationStatus.READY)

_FULL_DAY_MINUTES = 24 * 60


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqlAlchemySettingsRepository(SettingsRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def fetch_settings(self) -> SystemSettings:
        stmt = select(SystemSettingsRecord).order_by(SystemSettingsRecord.id.desc()).limit(1)
        record = await self.session.scalar(stmt)
        if record is None:
            return SystemSettings()
        return SystemSettings.from_mapping(record.payload)


class SqlAlchemyClosedDateRepository(ClosedDateRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def fetch_closed_dates(self) -> list[ClosedDateEntry]:
        rows = await self.session.scalars(select(ClosedDate).order_by(ClosedDate.closed_on))
        return [
            ClosedDateEntry(
                day=row.closed_on,
                reason=row.reason,
                is_recurring=row.is_recurring,
                recurring_pattern=row.recurring_pattern,
            )
            for row in rows
        ]


class SqlAlchemyUserRepository(UserRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_user_type(self, user_id: int) -> UserType | None:
        return await self.session.scalar(select(User.user_type).where(User.id == user_id))


class SqlAlchemyEquipmentRepository(EquipmentRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, equipment_id: int) -> bool:
        return await self.session.scalar(select(Equipment.id).where(Equipment.id == equipment_id)) is not None


class SqlAlchemyQuotaRepository(QuotaRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def fetch_quota_snapshot(self, user_id: int, max_items: int) -> QuotaSnapshot:
        loan_stmt = (
            select(LoanRequest.status, func.count(LoanRequest.id))
            .where(LoanRequest.user_id == user_id)
            .group_by(LoanRequest.status)
        )
        loan_counts = {status: int(count) for status, count in (await self.session.execute(loan_stmt)).all()}
        borrowed = sum(loan_counts.get(status, 0) for status in BORROWED_LOAN_STATUSES)
        pending_loans = sum(loan_counts.get(status, 0) for status in PENDING_LOAN_STATUSES)

        reservation_stmt = select(func.count(Reservation.id)).where(
            Reservation.user_id == user_id,
            Reservation.status.in_(PENDING_RESERVATION_STATUSES),
        )
        pending_reservations = int(await self.session.scalar(reservation_stmt) or 0)

        return QuotaSnapshot(
            max_items=max_items,
            current_borrowed_count=borrowed,
            pending_requests_count=pending_loans + pending_reservations,
        )


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def fetch_for_equipment_on_date(self, equipment_id: int, day: date) -> List[ExistingBooking]:
        reservation_stmt: Select[tuple[Reservation]] = select(Reservation).where(
            Reservation.equipment_id == equipment_id,
            Reservation.reservation_date == day,
        )
        reservations = await self.session.scalars(reservation_stmt)
        bookings = [
            ExistingBooking(
                booking_id=reservation.id,
                equipment_id=reservation.equipment_id,
                day=reservation.reservation_date,
                start_minutes=time_to_minutes(reservation.start_time),
                end_minutes=time_to_minutes(reservation.end_time),
                status=BookingStatus(reservation.status.value),
            )
            for reservation in reservations
        ]

        loan_stmt: Select[tuple[LoanRequest]] = select(LoanRequest).where(
            LoanRequest.equipment_id == equipment_id,
            LoanRequest.borrow_date <= day,
            LoanRequest.expected_return_date >= day,
            LoanRequest.status.in_(BLOCKING_LOAN_STATUSES),
        )
        loans = await self.session.scalars(loan_stmt)
        bookings.extend(
            ExistingBooking(
                booking_id=loan.id,
                equipment_id=loan.equipment_id,
                day=day,
                start_minutes=0,
                end_minutes=_FULL_DAY_MINUTES,
                status=BookingStatus(loan.status.value),
                kind="loan",
            )
            for loan in loans
        )
        return bookings

    async def create_atomic(
        self,
        *,
        equipment_id: int,
        user_id: int,
        day: date,
        start_time: time,
        end_time: time,
        purpose: str | None,
    ) -> BookingWriteResult:
        """
        Insert a reservation only if no active booking overlaps it.
        Must run inside a transaction: the equipment row lock serializes concurrent writers
        for the same equipment until commit.
        """
        await self.session.scalar(select(Equipment.id).where(Equipment.id == equipment_id).with_for_update())
        existing = await self.fetch_for_equipment_on_date(equipment_id, day)
        conflict = find_conflict(
            time_to_minutes(start_time),
            time_to_minutes(end_time),
            existing,
            equipment_id=equipment_id,
            day=day,
        )
        if conflict is not None:
            logger.info(
                "write-time conflict for equipment %s on %s with %s %s",
                equipment_id,
                day,
                conflict.kind,
                conflict.booking_id,
            )
            return BookingWriteResult(reservation=None, conflict=conflict)

        now = _utc_now_naive()
        reservation = Reservation(
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
        self.session.add(reservation)
        await self.session.flush()
        return BookingWriteResult(reservation=reservation)


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_for_user_for_update(self, reservation_id: int, user_id: int) -> Optional[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.id == reservation_id, Reservation.user_id == user_id)
            .with_for_update()
        )
        return await self.session.scalar(stmt)

    async def list_by_user(
        self,
        user_id: int,
        status: ReservationStatus | None = None,
    ) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .where(Reservation.user_id == user_id)
            .order_by(Reservation.reservation_date.desc(), Reservation.start_time.desc())
        )
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        return list(await self.session.scalars(stmt))

    async def save(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation


class SqlAlchemyLoanRequestRepository(LoanRequestRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        *,
        equipment_id: int,
        user_id: int,
        borrow_date: date,
        expected_return_date: date,
    ) -> LoanRequest:
        now = _utc_now_naive()
        loan_request = LoanRequest(
            equipment_id=equipment_id,
            user_id=user_id,
            borrow_date=borrow_date,
            expected_return_date=expected_return_date,
            status=LoanRequestStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.session.add(loan_request)
        await self.session.flush()
        return loan_request
