from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytest
from app.domain.closed_dates import ClosedDateEntry
from app.domain.errors import EquipmentNotFoundError
from app.domain.quota import QuotaSnapshot
from app.domain.repositories import EligibilityRepositories
from app.domain.services import MSG_RETURN_CLOSED, Decision, ReasonCode, ReservationEligibilityEngine
from app.domain.system_settings import SystemSettings
from app.infrastructure.snapshot_cache import SnapshotProvider
from app.models import LoanRequest, LoanRequestStatus, UserType
from app.usecases import loan_requests as uc

TODAY = date(2025, 2, 3)
BORROW = TODAY + timedelta(days=1)

LIMITS = SystemSettings.from_mapping(
    {
        "userTypeLimitsEnabled": True,
        "userTypeLimits": {
            "student": {"maxItems": 2, "maxDays": 7, "maxAdvanceBookingDays": 14, "isActive": True},
            "teacher": {"maxItems": 10, "maxDays": 30, "maxAdvanceBookingDays": 60, "isActive": True},
        },
    }
)


class FakeSettingsRepo:
    async def fetch_settings(self) -> SystemSettings:
        return LIMITS


class FakeClosedDateRepo:
    def __init__(self, entries: Optional[list[ClosedDateEntry]] = None) -> None:
        self.entries = entries or []

    async def fetch_closed_dates(self) -> list[ClosedDateEntry]:
        return self.entries


class FakeUserRepo:
    def __init__(self, user_type: Optional[UserType]) -> None:
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
        self.max_items_seen: Optional[int] = None

    async def fetch_quota_snapshot(self, user_id: int, max_items: int) -> QuotaSnapshot:
        self.max_items_seen = max_items
        return QuotaSnapshot(max_items=max_items, current_borrowed_count=self.borrowed, pending_requests_count=self.pending)


class FakeBookingRepo:
    async def fetch_for_equipment_on_date(self, equipment_id: int, day: date) -> list:  # pragma: no cover
        raise AssertionError("loan requests do not read the day's bookings")


class FakeLoanRequestRepo:
    def __init__(self) -> None:
        self.created: list[LoanRequest] = []

    async def create(
        self,
        *,
        equipment_id: int,
        user_id: int,
        borrow_date: date,
        expected_return_date: date,
    ) -> LoanRequest:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        loan_request = LoanRequest(
            id=len(self.created) + 1,
            equipment_id=equipment_id,
            user_id=user_id,
            borrow_date=borrow_date,
            expected_return_date=expected_return_date,
            status=LoanRequestStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.created.append(loan_request)
        return loan_request


def _repos(
    *,
    user_type: Optional[UserType] = UserType.STUDENT,
    exists: bool = True,
    quota: Optional[FakeQuotaRepo] = None,
    closed: Optional[list[ClosedDateEntry]] = None,
) -> EligibilityRepositories:
    return EligibilityRepositories(
        settings=FakeSettingsRepo(),
        closed_dates=FakeClosedDateRepo(closed),
        users=FakeUserRepo(user_type),
        equipment=FakeEquipmentRepo(exists),
        quota=quota or FakeQuotaRepo(),
        bookings=FakeBookingRepo(),
    )


async def _validate(repos: EligibilityRepositories, days: int) -> Decision:
    return await uc.validate_loan_request(
        repos,
        ReservationEligibilityEngine(),
        SnapshotProvider(),
        user_id=4,
        equipment_id=9,
        borrow_date=BORROW,
        expected_return_date=BORROW + timedelta(days=days),
        today=TODAY,
    )


@pytest.mark.asyncio
async def test_validate_uses_user_type_loan_limit() -> None:
    quota = FakeQuotaRepo()
    assert (await _validate(_repos(quota=quota), 7)).ok
    assert quota.max_items_seen == 2

    too_long = await _validate(_repos(), 8)
    assert too_long.reason_code == ReasonCode.INVALID_DURATION
    assert too_long.details is not None
    assert too_long.details["max_loan_days"] == 7

    assert (await _validate(_repos(user_type=UserType.TEACHER), 8)).ok


@pytest.mark.asyncio
async def test_validate_rejects_closed_return_date() -> None:
    closed = [ClosedDateEntry(day=BORROW + timedelta(days=2), reason="ปิดซ่อมบำรุง")]
    decision = await _validate(_repos(closed=closed), 2)
    assert decision.reason_code == ReasonCode.CLOSED_DATE
    assert decision.message == f"{MSG_RETURN_CLOSED}: ปิดซ่อมบำรุง"


@pytest.mark.asyncio
async def test_validate_unknown_equipment_raises() -> None:
    with pytest.raises(EquipmentNotFoundError):
        await _validate(_repos(exists=False), 2)


@pytest.mark.asyncio
async def test_create_stores_pending_request_when_accepted() -> None:
    loan_repo = FakeLoanRequestRepo()
    decision, loan_request = await uc.create_loan_request(
        _repos(quota=FakeQuotaRepo(borrowed=1)),
        loan_repo,
        ReservationEligibilityEngine(),
        SnapshotProvider(),
        user_id=4,
        equipment_id=9,
        borrow_date=BORROW,
        expected_return_date=BORROW + timedelta(days=3),
        today=TODAY,
    )
    assert decision.ok
    assert decision.details is not None
    assert decision.details["remaining_quota"] == 1
    assert loan_request is not None
    assert loan_request.status == LoanRequestStatus.PENDING
    assert loan_request.expected_return_date == BORROW + timedelta(days=3)
    assert loan_repo.created == [loan_request]


@pytest.mark.asyncio
async def test_create_does_not_store_rejected_request() -> None:
    loan_repo = FakeLoanRequestRepo()
    decision, loan_request = await uc.create_loan_request(
        _repos(quota=FakeQuotaRepo(borrowed=1, pending=1)),
        loan_repo,
        ReservationEligibilityEngine(),
        SnapshotProvider(),
        user_id=4,
        equipment_id=9,
        borrow_date=BORROW,
        expected_return_date=BORROW + timedelta(days=3),
        today=TODAY,
    )
    assert decision.reason_code == ReasonCode.QUOTA_EXCEEDED
    assert loan_request is None
    assert loan_repo.created == []
