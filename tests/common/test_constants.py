# tests/common/test_constants.py
"""
Тесты констант и иерархии ошибок.
"""

import pytest

from src.common.constants import (
    ComplianceItem,
    ComplianceStatus,
    EntityType,
    HubState,
    TypeMsg,
    WsMessageType,
)
from src.common.exceptions import (
    BroadcastFailure,
    DetectionFailure,
    DurableWriteFailure,
    NotFoundError,
    StorageUnavailable,
    TrackingError,
    ValidationError,
)


class TestEnums:
    """Строковые значения уходят в БД и клиентам как есть."""

    def test_type_msg_is_str_enum(self) -> None:
        assert TypeMsg.WARNING == "warning"
        assert isinstance(TypeMsg.INFO, str)

    def test_compliance_values(self) -> None:
        assert ComplianceItem.HARSH_ACCELERATION.value == "harsh_acceleration"
        assert ComplianceStatus.WARNING.value == "warning"
        assert EntityType.VEHICLE.value == "vehicle"

    def test_ws_message_types(self) -> None:
        assert [t.value for t in WsMessageType] == ["subscribed", "update", "pong"]
        assert {s.value for s in HubState} == {"empty", "active"}


class TestExceptions:
    """Тесты иерархии TrackingError."""

    @pytest.mark.parametrize(
        ("exc_class", "code"),
        [
            (TrackingError, "TRACKING_FAILED"),
            (ValidationError, "VALIDATION_ERROR"),
            (NotFoundError, "NOT_FOUND"),
            (StorageUnavailable, "STORAGE_UNAVAILABLE"),
            (DurableWriteFailure, "DURABLE_WRITE_FAILED"),
            (BroadcastFailure, "BROADCAST_FAILED"),
            (DetectionFailure, "DETECTION_FAILED"),
        ],
    )
    def test_default_codes(self, exc_class, code) -> None:
        exc = exc_class("сообщение")

        assert isinstance(exc, TrackingError)
        assert exc.error_code == code
        assert exc.details == {}
        assert str(exc) == "сообщение"

    def test_code_override_is_per_instance(self) -> None:
        exc = NotFoundError("нет ТС", error_code="VEHICLE_NOT_FOUND", details={"vehicle_uuid": "x"})

        assert exc.error_code == "VEHICLE_NOT_FOUND"
        assert exc.details == {"vehicle_uuid": "x"}
        assert NotFoundError("другое").error_code == "NOT_FOUND"

    def test_durable_write_counts(self) -> None:
        exc = DurableWriteFailure("db down", written=3, remaining=197, details={"vehicle_id": 42})

        assert (exc.written, exc.remaining) == (3, 197)
        assert exc.details == {"vehicle_id": 42}
