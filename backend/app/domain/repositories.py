from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Optional, Protocol, Sequence

from ..models import LoanRequest, Reservation, ReservationStatus, UserType
from .closed_dates import ClosedDateEntry
from .quota import QuotaSnapshot
from .slots import ExistingBooking
from .system_settings import SystemSettings


@dataclass(frozen=True)
class BookingWriteResult:
    reservation: Optional[Reservation]
    conflict: Optional[ExistingBooking] = None

    @property
    def created(self) -> bool:
        return self.reservation is not None


class SettingsRepository(Protocol):
    async def fetch_settings(self) -> SystemSettings: ...


class ClosedDateRepository(Protocol):
    async def fetch_closed_dates(self) -> list[ClosedDateEntry]: ...


class UserRepository(Protocol):
    async def get_user_type(self, user_id: int) -> UserType | None: ...


class EquipmentRepository(Protocol):
    async def exists(self, equipment_id: int) -> bool: ...


class QuotaRepository(Protocol):
    async def fetch_quota_snapshot(self, user_id: int, max_items: int) -> QuotaSnapshot: ...


class BookingRepository(Protocol):
    async def fetch_for_equipment_on_date(self, equipment_id: int, day: date) -> Sequence[ExistingBooking]: ...

    async def create_atomic(
        self,
        *,
        equipment_id: int,
        user_id: int,
        day: date,
        start_time: time,
        end_time: time,
        purpose: str | None,
    ) -> BookingWriteResult: ...


class ReservationRepository(Protocol):
    async def get_for_user_for_update(self, reservation_id: int, user_id: int) -> Reservation | None: ...

    async def list_by_user(
        self,
        user_id: int,
        status: ReservationStatus | None = None,
    ) -> list[Reservation]: ...

    async def save(self, reservation: Reservation) -> Reservation: ...


@dataclass(frozen=True)
class EligibilityRepositories:
    """Collaborators needed to build the engine's input snapshot for one request."""

    settings: SettingsRepository
    closed_dates: ClosedDateRepository
    users: UserRepository
    equipment: EquipmentRepository
    quota: QuotaRepository
    bookings: BookingRepository


class LoanRequestRepository(Protocol):
    async def create(
        self,
        *,
        equipment_id: int,
        user_id: int,
        borrow_date: date,
        expected_return_date: date,
    ) -> LoanRequest: ...
