import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from typing import Optional

from ..domain.closed_dates import ClosedDateRegistry
from ..domain.errors import (
    CancelNotAllowedError,
    EquipmentNotFoundError,
    ReservationNotFoundError,
    VersionConflictError,
)
from ..domain.policies import UserTypeLimits, resolve_user_type_limits
from ..domain.quota import QuotaSnapshot
from ..domain.repositories import EligibilityRepositories, ReservationRepository
from ..domain.services import (
    MSG_SLOT_UNAVAILABLE,
    Decision,
    ReasonCode,
    ReservationEligibilityEngine,
    ReservationRequest,
)
from ..domain.slots import ExistingBooking
from ..domain.system_settings import SystemSettings
from ..infrastructure.snapshot_cache import SnapshotProvider
from ..models import Reservation, ReservationStatus, UserType
from ..utils.time import minutes_to_time, parse_hhmm

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.APPROVED, ReservationStatus.READY)


@dataclass(frozen=True)
class EligibilityInputs:
    settings: SystemSettings
    closed_dates: ClosedDateRegistry
    user_type: Optional[UserType]
    limits: UserTypeLimits
    quota_snapshot: QuotaSnapshot
    existing_bookings: list[ExistingBooking]


async def load_eligibility_inputs(
    repos: EligibilityRepositories,
    provider: SnapshotProvider,
    *,
    user_id: int,
    equipment_id: int,
    day: date,
) -> EligibilityInputs:
    if not await repos.equipment.exists(equipment_id):
        raise EquipmentNotFoundError(f"equipment {equipment_id} not found")
    config = await provider.get(repos.settings, repos.closed_dates)
    user_type = await repos.users.get_user_type(user_id)
    limits = resolve_user_type_limits(config.settings, user_type)
    quota_snapshot = await repos.quota.fetch_quota_snapshot(user_id, limits.max_items)
    bookings = list(await repos.bookings.fetch_for_equipment_on_date(equipment_id, day))
    return EligibilityInputs(
        settings=config.settings,
        closed_dates=config.closed_dates,
        user_type=user_type,
        limits=limits,
        quota_snapshot=quota_snapshot,
        existing_bookings=bookings,
    )


async def validate_reservation(
    repos: EligibilityRepositories,
    engine: ReservationEligibilityEngine,
    provider: SnapshotProvider,
    *,
    user_id: int,
    equipment_id: int,
    day: date,
    start_time: Optional[str],
    end_time: Optional[str],
    today: date,
) -> Decision:
    inputs = await load_eligibility_inputs(repos, provider, user_id=user_id, equipment_id=equipment_id, day=day)
    return _evaluate(
        engine, inputs, equipment_id=equipment_id, day=day, start_time=start_time, end_time=end_time, today=today
    )


async def create_reservation(
    repos: EligibilityRepositories,
    engine: ReservationEligibilityEngine,
    provider: SnapshotProvider,
    *,
    user_id: int,
    equipment_id: int,
    day: date,
    start_time: str,
    end_time: str,
    purpose: Optional[str],
    today: date,
) -> tuple[Decision, Optional[Reservation]]:
    """
    Evaluate the request and, when accepted, persist it with a conditional write.
    A conflict detected at write time is re-evaluated against fresh bookings so the
    caller sees the most specific rejection.
    """
    inputs = await load_eligibility_inputs(repos, provider, user_id=user_id, equipment_id=equipment_id, day=day)
    decision = _evaluate(
        engine, inputs, equipment_id=equipment_id, day=day, start_time=start_time, end_time=end_time, today=today
    )
    if not decision.ok:
        return decision, None

    result = await repos.bookings.create_atomic(
        equipment_id=equipment_id,
        user_id=user_id,
        day=day,
        start_time=minutes_to_time(parse_hhmm(start_time)),
        end_time=minutes_to_time(parse_hhmm(end_time)),
        purpose=purpose,
    )
    if result.reservation is not None:
        return decision, result.reservation

    logger.warning("stale availability for equipment %s on %s, re-evaluating", equipment_id, day)
    fresh_bookings = list(await repos.bookings.fetch_for_equipment_on_date(equipment_id, day))
    fresh_inputs = replace(inputs, existing_bookings=fresh_bookings)
    fresh = _evaluate(
        engine, fresh_inputs, equipment_id=equipment_id, day=day, start_time=start_time, end_time=end_time, today=today
    )
    if not fresh.ok:
        return fresh, None
    conflict = result.conflict
    return (
        Decision.reject(
            ReasonCode.SLOT_UNAVAILABLE,
            MSG_SLOT_UNAVAILABLE,
            {
                "booking_id": conflict.booking_id if conflict else None,
                "booking_kind": conflict.kind if conflict else None,
                "booking_status": conflict.status.value if conflict else None,
            },
        ),
        None,
    )


async def cancel_reservation(
    res_repo: ReservationRepository,
    *,
    reservation_id: int,
    user_id: int,
    version: int,
) -> tuple[Reservation, ReservationStatus]:
    """Cancel a reservation; returns the reservation and its status before the call."""
    reservation = await res_repo.get_for_user_for_update(reservation_id, user_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")
    previous_status = reservation.status
    # Idempotent: already cancelled returns as-is
    if reservation.status == ReservationStatus.CANCELLED:
        return reservation, previous_status
    if reservation.version != version:
        raise VersionConflictError("version mismatch")
    if reservation.status not in CANCELLABLE_STATUSES:
        raise CancelNotAllowedError(f"reservation is {reservation.status.value}")

    reservation.status = ReservationStatus.CANCELLED
    reservation.version += 1
    reservation.updated_at = datetime.now(timezone.utc).replace(tzinfo=None)
    updated = await res_repo.save(reservation)
    return updated, previous_status


async def list_user_reservations(
    res_repo: ReservationRepository,
    *,
    user_id: int,
    status: Optional[ReservationStatus] = None,
) -> list[Reservation]:
    return await res_repo.list_by_user(user_id, status)


def _evaluate(
    engine: ReservationEligibilityEngine,
    inputs: EligibilityInputs,
    *,
    equipment_id: int,
    day: date,
    start_time: Optional[str],
    end_time: Optional[str],
    today: date,
) -> Decision:
    request = ReservationRequest(
        equipment_id=equipment_id,
        day=day,
        user_type=inputs.user_type,
        quota_snapshot=inputs.quota_snapshot,
        start_time=start_time,
        end_time=end_time,
    )
    return engine.evaluate(request, inputs.limits, inputs.closed_dates, inputs.existing_bookings, today=today)
