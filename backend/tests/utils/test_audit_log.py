import json
from datetime import date, time
from typing import Any, List

import pytest
from app.models import ReservationStatus
from app.utils import audit_log
from app.utils.request_id import set_request_id


def test_emit_audit_log_outputs_json(monkeypatch) -> None:
    messages: List[str] = []

    class DummyLogger:
        def info(self, message: str) -> None:
            messages.append(message)

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    set_request_id("req-123")
    audit_log.emit_audit_log(
        action="reservation.created",
        initiator="user",
        reservation_id=1,
        equipment_id=3,
        user_id=4,
        reservation_date=date(2025, 3, 4),
        start_time=time(9, 0),
        end_time=time(11, 30),
        status_from=None,
        status_to=ReservationStatus.PENDING,
        version=1,
        extra={"purpose": "อบรม"},
    )
    set_request_id(None)
    assert len(messages) == 1
    payload = json.loads(messages[0])
    assert payload["action"] == "reservation.created"
    assert payload["initiator"] == "user"
    assert payload["request_id"] == "req-123"
    assert payload["reservation_date"] == "2025-03-04"
    assert payload["start_time"] == "09:00:00"
    assert payload["status_to"] == "pending"
    assert payload["purpose"] == "อบรม"
    assert "status_from" not in payload
    assert "timestamp" in payload


def test_emit_audit_log_raises_on_logger_failure(monkeypatch) -> None:
    class DummyLogger:
        def info(self, _: Any) -> None:
            raise ValueError("fail")

    monkeypatch.setattr(audit_log, "_audit_logger", DummyLogger())

    with pytest.raises(RuntimeError):
        audit_log.emit_audit_log(
            action="reservation.cancelled",
            initiator="user",
            reservation_id=1,
            equipment_id=3,
            user_id=4,
            reservation_date=date(2025, 3, 4),
            start_time=time(9, 0),
            end_time=time(11, 0),
            status_from=ReservationStatus.PENDING,
            status_to=ReservationStatus.CANCELLED,
            version=2,
        )
