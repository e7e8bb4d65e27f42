from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import build_eligibility_repositories, get_current_user_id, get_engine, get_session, get_snapshot_provider, get_today
from ..domain.errors import CancelNotAllowedError, EquipmentNotFoundError, ReservationNotFoundError, VersionConflictError
from ..domain.services import ReservationEligibilityEngine
from ..infrastructure.repositories import SqlAlchemyReservationRepository
from ..infrastructure.snapshot_cache import SnapshotProvider
from ..schemas import DecisionRead, ReservationCancel, ReservationCreate, ReservationRead, ReservationValidate
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="", tags=["reservations"])


@router.post("/reservations/validate", response_model=DecisionRead)
async def validate_reservation(
    payload: ReservationValidate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    engine: ReservationEligibilityEngine = Depends(get_engine),
    provider: SnapshotProvider = Depends(get_snapshot_provider),
    today: date = Depends(get_today),
) -> DecisionRead:
    repos = build_eligibility_repositories(session)
    try:
        decision = await reservation_usecase.validate_reservation(
            repos,
            engine,
            provider,
            user_id=user_id,
            equipment_id=payload.equipment_id,
            day=payload.reservation_date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            today=today,
        )
    except EquipmentNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="equipment not found")
    return DecisionRead.from_domain(decision)


@router.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    engine: ReservationEligibilityEngine = Depends(get_engine),
    provider: SnapshotProvider = Depends(get_snapshot_provider),
    today: date = Depends(get_today),
) -> ReservationRead:
    repos = build_eligibility_repositories(session)
    async with session.begin():
        try:
            decision, reservation = await reservation_usecase.create_reservation(
                repos,
                engine,
                provider,
                user_id=user_id,
                equipment_id=payload.equipment_id,
                day=payload.reservation_date,
                start_time=payload.start_time,
                end_time=payload.end_time,
                purpose=payload.purpose,
                today=today,
            )
        except EquipmentNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="equipment not found")

    if reservation is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=DecisionRead.from_domain(decision).model_dump(mode="json"),
        )

    try:
        emit_audit_log(
            action="reservation.created",
            initiator="user",
            reservation_id=reservation.id,
            equipment_id=reservation.equipment_id,
            user_id=reservation.user_id,
            reservation_date=reservation.reservation_date,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            status_from=None,
            status_to=reservation.status,
            version=reservation.version,
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")
    return ReservationRead.from_db(reservation=reservation)


@router.get("/me/reservations", response_model=List[ReservationRead])
async def list_my_reservations(
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> list[ReservationRead]:
    res_repo = SqlAlchemyReservationRepository(session)
    rows = await reservation_usecase.list_user_reservations(res_repo, user_id=user_id)
    return [ReservationRead.from_db(reservation=reservation) for reservation in rows]


@router.post("/me/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    payload: Optional[ReservationCancel] = Body(default=None),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
) -> ReservationRead:
    version = _extract_version(if_match, payload)
    res_repo = SqlAlchemyReservationRepository(session)
    async with session.begin():
        try:
            updated, status_from = await reservation_usecase.cancel_reservation(
                res_repo,
                reservation_id=reservation_id,
                user_id=user_id,
                version=version,
            )
        except ReservationNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")
        except VersionConflictError:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="version mismatch")
        except CancelNotAllowedError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))

    if status_from != updated.status:
        try:
            emit_audit_log(
                action="reservation.cancelled",
                initiator="user",
                reservation_id=updated.id,
                equipment_id=updated.equipment_id,
                user_id=updated.user_id,
                reservation_date=updated.reservation_date,
                start_time=updated.start_time,
                end_time=updated.end_time,
                status_from=status_from,
                status_to=updated.status,
                version=updated.version,
            )
        except RuntimeError:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")
    return ReservationRead.from_db(reservation=updated)


def _extract_version(if_match: Optional[str], payload: Optional[ReservationCancel]) -> int:
    """Version from the If-Match header (weak or strong ETag) or, failing that, the body."""
    if if_match is not None:
        raw = if_match.strip()
        if raw.startswith("W/"):
            raw = raw[2:]
        raw = raw.strip('"')
        try:
            version = int(raw)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid If-Match header")
        if version < 1:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
        return version

    if payload is not None and payload.version is not None:
        if payload.version < 1:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
        return payload.version
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version required")
