# src/core/tracking/service.py
"""
Оркестратор приёма GPS-точек.
"""

from __future__ import annotations

from typing import Any, Protocol

from src.common.exceptions import (
    DetectionFailure,
    NotFoundError,
    StorageUnavailable,
    ValidationError,
)
from src.common.logger import log_error, log_warning
from src.core.tracking.clock import Clock, now_ms
from src.core.tracking.event_detector import HarshAccelerationDetector
from src.core.tracking.geo import validate_coordinates
from src.core.tracking.latest_cache import LatestPositionCache
from src.core.tracking.repository import TrackingRepository, VehicleRepository
from src.core.tracking.write_buffer import WriteBuffer
from src.shared.models.tracking import (
    GpsPoint,
    HistoryPointDTO,
    IngestResult,
    PositionDTO,
    TrackingUpdateRequest,
    VehiclePositionDTO,
)


class Broadcaster(Protocol):
    async def publish(self, vehicle_uuid: str, payload: dict[str, Any]) -> None: ...


class TrackingIngestService:
    """
    Приём точки:
    1. Валидация координат
    2. Разрешение ТС в рамках организации
    3. Кэш последней позиции
    4. Буфер записи (+ сброс по лимиту)
    5. Сброс по интервалу
    6. Детектор резких ускорений
    7. Рассылка подписчикам

    Шаги 1, 2 и 4 обязательны: их ошибки возвращаются клиенту.
    Ошибки кэша, детектора и рассылки только логируются.
    """

    def __init__(
        self,
        vehicles: VehicleRepository,
        tracking: TrackingRepository,
        cache: LatestPositionCache | None,
        buffer: WriteBuffer,
        detector: HarshAccelerationDetector | None = None,
        broadcaster: Broadcaster | None = None,
        *,
        history_max_minutes: int = 10_080,
        history_max_rows: int = 1000,
        clock: Clock = now_ms,
    ) -> None:
        self._vehicles = vehicles
        self._tracking = tracking
        self._cache = cache
        self._buffer = buffer
        self._detector = detector
        self._broadcaster = broadcaster
        self._history_max_minutes = history_max_minutes
        self._history_max_rows = history_max_rows
        self._clock = clock

        # Статистика
        self._total_ingested = 0
        self._harsh_events = 0
        self._ingested_per_vehicle: dict[int, int] = {}

    async def ingest(self, org_id: int, request: TrackingUpdateRequest) -> IngestResult:
        """
        Принимает одну GPS-точку.

        Raises:
            ValidationError: координаты вне диапазона
            NotFoundError: ТС не найдено в организации
            DurableWriteFailure: точку не удалось ни буферизовать, ни записать
        """
        if not validate_coordinates(request.latitude, request.longitude):
            raise ValidationError(
                "Некорректные координаты",
                error_code="INVALID_COORDS",
                details={"latitude": request.latitude, "longitude": request.longitude},
            )

        vehicle_uuid = str(request.vehicle_uuid)
        vehicle_id = await self._vehicles.resolve_vehicle_id(org_id, vehicle_uuid)
        if vehicle_id is None:
            raise NotFoundError(
                "Транспортное средство не найдено",
                error_code="VEHICLE_NOT_FOUND",
                details={"vehicle_uuid": vehicle_uuid},
            )

        point = GpsPoint(
            vehicle_uuid=vehicle_uuid,
            vehicle_id=vehicle_id,
            org_id=org_id,
            latitude=request.latitude,
            longitude=request.longitude,
            accuracy=request.accuracy,
            speed=request.speed,
            heading=request.heading,
            recorded_at=request.recorded_at if request.recorded_at is not None else self._clock(),
        )

        if self._cache is not None:
            try:
                await self._cache.put(vehicle_id, point)
            except StorageUnavailable as e:
                await log_warning(
                    f"Кэш последней позиции недоступен: {e}",
                    extra={"vehicle_id": vehicle_id},
                )

        buffered = await self._buffer.append(vehicle_id, point)

        try:
            await self._buffer.maybe_flush(vehicle_id)
        except StorageUnavailable as e:
            await log_warning(
                f"Проверка интервала сброса пропущена: {e}",
                extra={"vehicle_id": vehicle_id},
            )

        await self._detect(point)
        await self._broadcast(point)

        self._total_ingested += 1
        self._ingested_per_vehicle[vehicle_id] = self._ingested_per_vehicle.get(vehicle_id, 0) + 1

        return IngestResult(buffered=buffered, vehicle_id=vehicle_id, recorded_at=point.recorded_at)

    async def _detect(self, point: GpsPoint) -> None:
        if self._detector is None:
            return
        try:
            evaluation = await self._detector.evaluate(point)
        except DetectionFailure as e:
            await log_error(
                f"Детектор событий: {e.message}",
                extra={"vehicle_id": point.vehicle_id, **e.details},
            )
            return
        if evaluation is not None and evaluation.harsh:
            self._harsh_events += 1

    async def _broadcast(self, point: GpsPoint) -> None:
        if self._broadcaster is None:
            return
        try:
            await self._broadcaster.publish(point.vehicle_uuid, point.to_public())
        except Exception as e:
            await log_error(
                f"Ошибка рассылки подписчикам: {e}",
                extra={"vehicle_id": point.vehicle_id},
            )

    async def get_fleet_positions(self, org_id: int) -> list[VehiclePositionDTO]:
        """Активные ТС организации с последней известной позицией."""
        vehicles = await self._vehicles.list_active_vehicles(org_id)

        latest: dict[int, GpsPoint | None] = {}
        if self._cache is not None and vehicles:
            try:
                latest = await self._cache.get_many([v["id"] for v in vehicles])
            except StorageUnavailable as e:
                await log_warning(f"Кэш последней позиции недоступен: {e}", extra={"org_id": org_id})

        result = []
        for vehicle in vehicles:
            point = latest.get(vehicle["id"])
            result.append(
                VehiclePositionDTO(
                    vehicle_uuid=vehicle["uuid"],
                    registration_number=vehicle.get("registration_number") or "",
                    last_seen=point.recorded_at if point else None,
                    position=PositionDTO(
                        latitude=point.latitude,
                        longitude=point.longitude,
                        speed=point.speed,
                    ) if point else None,
                )
            )
        return result

    async def get_history(
        self,
        org_id: int,
        vehicle_uuid: str,
        minutes: int = 60,
    ) -> list[HistoryPointDTO]:
        """
        История точек ТС за последние minutes минут (от новых к старым).

        Raises:
            ValidationError: minutes вне (0, history_max_minutes]
            NotFoundError: ТС не найдено в организации
        """
        if minutes <= 0 or minutes > self._history_max_minutes:
            raise ValidationError(
                f"minutes должно быть в диапазоне 1..{self._history_max_minutes}",
                error_code="INVALID_PARAM",
                details={"minutes": minutes},
            )

        vehicle_id = await self._vehicles.resolve_vehicle_id(org_id, vehicle_uuid)
        if vehicle_id is None:
            raise NotFoundError(
                "Транспортное средство не найдено",
                error_code="VEHICLE_NOT_FOUND",
                details={"vehicle_uuid": vehicle_uuid},
            )

        since = self._clock() - minutes * 60_000
        rows = await self._tracking.fetch_history(vehicle_id, org_id, since, self._history_max_rows)
        return [HistoryPointDTO(**row) for row in rows]

    def get_stats(self) -> dict[str, int]:
        """Статистика сервиса."""
        return {
            "total_ingested": self._total_ingested,
            "unique_vehicles": len(self._ingested_per_vehicle),
            "harsh_events": self._harsh_events,
        }
