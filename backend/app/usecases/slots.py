from datetime import date

from ..domain.repositories import EligibilityRepositories
from ..domain.services import ReservationEligibilityEngine, SlotListing
from ..infrastructure.snapshot_cache import SnapshotProvider
from .reservations import load_eligibility_inputs


async def list_available_slots(
    repos: EligibilityRepositories,
    engine: ReservationEligibilityEngine,
    provider: SnapshotProvider,
    *,
    user_id: int,
    equipment_id: int,
    day: date,
    today: date,
) -> SlotListing:
    inputs = await load_eligibility_inputs(repos, provider, user_id=user_id, equipment_id=equipment_id, day=day)
    return engine.list_available_slots(
        equipment_id,
        day,
        inputs.limits,
        inputs.closed_dates,
        inputs.existing_bookings,
        inputs.settings,
        today=today,
    )
