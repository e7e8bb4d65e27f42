from dataclasses import dataclass


@dataclass(frozen=True)
class QuotaSnapshot:
    max_items: int
    current_borrowed_count: int = 0
    pending_requests_count: int = 0


@dataclass(frozen=True)
class QuotaStatus:
    remaining_quota: int
    can_borrow: bool


def compute_quota(snapshot: QuotaSnapshot) -> QuotaStatus:
    # counts may exceed max_items after an administrative override
    remaining = max(0, snapshot.max_items - snapshot.current_borrowed_count - snapshot.pending_requests_count)
    return QuotaStatus(remaining_quota=remaining, can_borrow=remaining > 0)
