from datetime import date
from functools import lru_cache
from typing import AsyncIterator

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.repositories import EligibilityRepositories
from .domain.services import ReservationEligibilityEngine
from .infrastructure.repositories import (
    SqlAlchemyBookingRepository,
    SqlAlchemyClosedDateRepository,
    SqlAlchemyEquipmentRepository,
    SqlAlchemyQuotaRepository,
    SqlAlchemySettingsRepository,
    SqlAlchemyUserRepository,
)
from .infrastructure.snapshot_cache import SnapshotProvider
from .utils.time import local_today


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> int:
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header required")
    try:
        return int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid X-User-Id") from exc


@lru_cache
def get_engine() -> ReservationEligibilityEngine:
    settings = get_settings()
    return ReservationEligibilityEngine(
        min_duration_minutes=settings.min_duration_minutes,
        max_duration_minutes=settings.max_duration_minutes,
        slot_interval_minutes=settings.slot_interval_minutes,
        timezone=settings.timezone,
    )


@lru_cache
def get_snapshot_provider() -> SnapshotProvider:
    return SnapshotProvider(ttl_seconds=get_settings().snapshot_ttl_seconds)


def get_today() -> date:
    return local_today(get_settings().timezone)


def build_eligibility_repositories(session: AsyncSession) -> EligibilityRepositories:
    return EligibilityRepositories(
        settings=SqlAlchemySettingsRepository(session),
        closed_dates=SqlAlchemyClosedDateRepository(session),
        users=SqlAlchemyUserRepository(session),
        equipment=SqlAlchemyEquipmentRepository(session),
        quota=SqlAlchemyQuotaRepository(session),
        bookings=SqlAlchemyBookingRepository(session),
    )
