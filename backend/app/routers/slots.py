from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import build_eligibility_repositories, get_current_user_id, get_engine, get_session, get_snapshot_provider, get_today
from ..domain.errors import EquipmentNotFoundError
from ..domain.services import ReservationEligibilityEngine
from ..infrastructure.snapshot_cache import SnapshotProvider
from ..schemas import SlotListingRead
from ..usecases import slots as slot_usecase

router = APIRouter(prefix="/equipment", tags=["slots"], dependencies=[Depends(get_current_user_id)])


@router.get("/{equipment_id}/slots", response_model=SlotListingRead)
async def list_available_slots(
    equipment_id: int,
    day: date = Query(..., alias="date", description="Reservation date (YYYY-MM-DD)"),
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    engine: ReservationEligibilityEngine = Depends(get_engine),
    provider: SnapshotProvider = Depends(get_snapshot_provider),
    today: date = Depends(get_today),
) -> SlotListingRead:
    repos = build_eligibility_repositories(session)
    try:
        listing = await slot_usecase.list_available_slots(
            repos,
            engine,
            provider,
            user_id=user_id,
            equipment_id=equipment_id,
            day=day,
            today=today,
        )
    except EquipmentNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="equipment not found")
    return SlotListingRead.from_domain(equipment_id=equipment_id, day=day, listing=listing)
