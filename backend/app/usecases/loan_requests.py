import logging
from datetime import date
from typing import Optional

from ..domain.errors import EquipmentNotFoundError
from ..domain.policies import resolve_user_type_limits
from ..domain.repositories import EligibilityRepositories, LoanRequestRepository
from ..domain.services import Decision, LoanRequestCandidate, ReservationEligibilityEngine
from ..infrastructure.snapshot_cache import SnapshotProvider
from ..models import LoanRequest

logger = logging.getLogger(__name__)


async def validate_loan_request(
    repos: EligibilityRepositories,
    engine: ReservationEligibilityEngine,
    provider: SnapshotProvider,
    *,
    user_id: int,
    equipment_id: int,
    borrow_date: date,
    expected_return_date: date,
    today: date,
) -> Decision:
    if not await repos.equipment.exists(equipment_id):
        raise EquipmentNotFoundError(f"equipment {equipment_id} not found")
    config = await provider.get(repos.settings, repos.closed_dates)
    user_type = await repos.users.get_user_type(user_id)
    limits = resolve_user_type_limits(config.settings, user_type)
    quota_snapshot = await repos.quota.fetch_quota_snapshot(user_id, limits.max_items)
    candidate = LoanRequestCandidate(
        equipment_id=equipment_id,
        borrow_date=borrow_date,
        expected_return_date=expected_return_date,
        user_type=user_type,
        quota_snapshot=quota_snapshot,
    )
    return engine.evaluate_loan_request(candidate, limits, config.closed_dates, today=today)


async def create_loan_request(
    repos: EligibilityRepositories,
    loan_repo: LoanRequestRepository,
    engine: ReservationEligibilityEngine,
    provider: SnapshotProvider,
    *,
    user_id: int,
    equipment_id: int,
    borrow_date: date,
    expected_return_date: date,
    today: date,
) -> tuple[Decision, Optional[LoanRequest]]:
    """Evaluate a loan request and store it as pending when accepted."""
    decision = await validate_loan_request(
        repos,
        engine,
        provider,
        user_id=user_id,
        equipment_id=equipment_id,
        borrow_date=borrow_date,
        expected_return_date=expected_return_date,
        today=today,
    )
    if not decision.ok:
        return decision, None
    loan_request = await loan_repo.create(
        equipment_id=equipment_id,
        user_id=user_id,
        borrow_date=borrow_date,
        expected_return_date=expected_return_date,
    )
    logger.info("loan request %s created for equipment %s by user %s", loan_request.id, equipment_id, user_id)
    return decision, loan_request
