from datetime import date

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import build_eligibility_repositories, get_current_user_id, get_engine, get_session, get_snapshot_provider, get_today
from ..domain.errors import EquipmentNotFoundError
from ..domain.services import ReservationEligibilityEngine
from ..infrastructure.repositories import SqlAlchemyLoanRequestRepository
from ..infrastructure.snapshot_cache import SnapshotProvider
from ..schemas import DecisionRead, LoanRequestRead, LoanRequestValidate
from ..usecases import loan_requests as loan_usecase

router = APIRouter(prefix="/loan-requests", tags=["loan-requests"])


@router.post("/validate", response_model=DecisionRead)
async def validate_loan_request(
    payload: LoanRequestValidate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    engine: ReservationEligibilityEngine = Depends(get_engine),
    provider: SnapshotProvider = Depends(get_snapshot_provider),
    today: date = Depends(get_today),
) -> DecisionRead:
    repos = build_eligibility_repositories(session)
    try:
        decision = await loan_usecase.validate_loan_request(
            repos,
            engine,
            provider,
            user_id=user_id,
            equipment_id=payload.equipment_id,
            borrow_date=payload.borrow_date,
            expected_return_date=payload.expected_return_date,
            today=today,
        )
    except EquipmentNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="equipment not found")
    return DecisionRead.from_domain(decision)


@router.post("", response_model=LoanRequestRead, status_code=status.HTTP_201_CREATED)
async def create_loan_request(
    payload: LoanRequestValidate,
    session: AsyncSession = Depends(get_session),
    user_id: int = Depends(get_current_user_id),
    engine: ReservationEligibilityEngine = Depends(get_engine),
    provider: SnapshotProvider = Depends(get_snapshot_provider),
    today: date = Depends(get_today),
) -> LoanRequestRead:
    repos = build_eligibility_repositories(session)
    loan_repo = SqlAlchemyLoanRequestRepository(session)
    async with session.begin():
        try:
            decision, loan_request = await loan_usecase.create_loan_request(
                repos,
                loan_repo,
                engine,
                provider,
                user_id=user_id,
                equipment_id=payload.equipment_id,
                borrow_date=payload.borrow_date,
                expected_return_date=payload.expected_return_date,
                today=today,
            )
        except EquipmentNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="equipment not found")

    if loan_request is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=DecisionRead.from_domain(decision).model_dump(mode="json"),
        )
    return LoanRequestRead.from_db(loan_request=loan_request)
