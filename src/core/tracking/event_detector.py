# src/core/tracking/event_detector.py
"""
Детектор резких ускорений/торможений по последовательности скоростей.
"""

from __future__ import annotations

from typing import Any, NamedTuple
from uuid import uuid4

from src.common.constants import ComplianceItem, ComplianceStatus, EntityType, TypeMsg
from src.common.exceptions import DetectionFailure
from src.common.logger import log_info
from src.core.tracking.clock import Clock, now_ms
from src.core.tracking.geo import (
    HARSH_ACCEL_THRESHOLD_M_S2,
    compute_acceleration,
    elapsed_seconds,
    is_harsh_acceleration,
)
from src.core.tracking.repository import ComplianceRepository
from src.core.tracking.storage import KeyValueStore, last_speed_key, last_ts_key
from src.infra.event_bus import DomainEvent, EventTypes
from src.shared.models.tracking import ComplianceEvent, GpsPoint


class MotionEvaluation(NamedTuple):
    acceleration: float  # м/с²
    harsh: bool


class HarshAccelerationDetector:
    """
    Хранит последнюю скорость и время по каждому ТС и сравнивает
    с ними новую точку.

    Оценка выполняется только если есть и предыдущая, и текущая скорость.
    Состояние перезаписывается после каждой точки со скоростью.
    """

    def __init__(
        self,
        store: KeyValueStore,
        compliance_repo: ComplianceRepository,
        event_bus: Any | None = None,
        *,
        threshold: float = HARSH_ACCEL_THRESHOLD_M_S2,
        state_ttl: int = 86_400,
        clock: Clock = now_ms,
    ) -> None:
        self._store = store
        self._compliance = compliance_repo
        self._event_bus = event_bus
        self._threshold = threshold
        self._state_ttl = state_ttl
        self._clock = clock

    async def evaluate(self, point: GpsPoint) -> MotionEvaluation | None:
        """
        Оценивает точку.

        Returns:
            Ускорение и признак резкого события, если оценка
            выполнялась, иначе None

        Raises:
            DetectionFailure: ошибка хранилища или записи события
        """
        try:
            return await self._evaluate(point)
        except DetectionFailure:
            raise
        except Exception as e:
            raise DetectionFailure(
                f"Ошибка детектора ускорений: {e}",
                details={"vehicle_id": point.vehicle_id},
            ) from e

    async def _evaluate(self, point: GpsPoint) -> MotionEvaluation | None:
        vehicle_id = point.vehicle_id
        result: MotionEvaluation | None = None

        raw_speed = await self._store.get(last_speed_key(vehicle_id))
        if raw_speed is not None and point.speed is not None:
            raw_ts = await self._store.get(last_ts_key(vehicle_id))
            previous_ts = int(raw_ts) if raw_ts is not None else None
            dt = elapsed_seconds(point.recorded_at, previous_ts)
            acceleration = compute_acceleration(float(raw_speed), point.speed, dt)
            result = MotionEvaluation(acceleration, is_harsh_acceleration(acceleration, self._threshold))

            if result.harsh:
                await self._record(point, float(raw_speed), acceleration, dt)

        if point.speed is not None:
            await self._store.set(last_speed_key(vehicle_id), str(point.speed), ttl=self._state_ttl)
            await self._store.set(last_ts_key(vehicle_id), str(point.recorded_at), ttl=self._state_ttl)

        return result

    async def _record(
        self,
        point: GpsPoint,
        previous_speed: float,
        acceleration: float,
        dt: float,
    ) -> None:
        now = self._clock()
        details = {
            "acceleration": round(acceleration, 3),
            "previous_speed": previous_speed,
            "speed": point.speed,
            "elapsed_seconds": dt,
            "latitude": point.latitude,
            "longitude": point.longitude,
        }
        event = ComplianceEvent(
            uuid=str(uuid4()),
            org_id=point.org_id,
            compliance_item=ComplianceItem.HARSH_ACCELERATION.value,
            entity_type=EntityType.VEHICLE.value,
            entity_id=point.vehicle_id,
            status=ComplianceStatus.WARNING.value,
            details=details,
            logged_at=point.recorded_at,
            created_at=now,
        )
        await self._compliance.insert_event(event)

        await log_info(
            f"Резкое ускорение ТС {point.vehicle_id}: {acceleration:.2f} м/с²",
            type_msg=TypeMsg.WARNING,
            extra={"vehicle_id": point.vehicle_id, "acceleration": acceleration},
        )

        if self._event_bus is not None:
            await self._event_bus.publish(
                DomainEvent(
                    event_type=EventTypes.HARSH_ACCELERATION,
                    payload={
                        "vehicle_uuid": point.vehicle_uuid,
                        "org_id": point.org_id,
                        "compliance_uuid": event.uuid,
                        **details,
                    },
                )
            )
