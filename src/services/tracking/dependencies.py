# src/services/tracking/dependencies.py
"""
Dependency Injection для Tracking API.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, Request

from src.common.exceptions import NotFoundError, ValidationError
from src.core.tracking.event_detector import HarshAccelerationDetector
from src.core.tracking.latest_cache import LatestPositionCache
from src.core.tracking.repository import ComplianceRepository, TrackingRepository, VehicleRepository
from src.core.tracking.service import TrackingIngestService
from src.core.tracking.storage import KeyValueStore
from src.core.tracking.write_buffer import WriteBuffer
from src.infra.database import DatabaseManager
from src.infra.event_bus import EventBus
from src.services.realtime_ws.hub import HubRegistry


# Синглтоны
_vehicles: VehicleRepository | None = None
_tracking_service: TrackingIngestService | None = None


def build_tracking_service(
    db: DatabaseManager,
    store: KeyValueStore | None,
    event_bus: EventBus | None,
    registry: HubRegistry | None,
) -> TrackingIngestService:
    """
    Собирает конвейер приёма точек по настройкам.

    Без быстрого хранилища кэш и детектор отключены, а каждая точка
    пишется в БД напрямую.
    """
    from src.config import settings

    cfg = settings.tracking
    vehicles = VehicleRepository(db)
    tracking = TrackingRepository(db)

    cache = LatestPositionCache(store, ttl_seconds=cfg.LATEST_TTL) if store is not None else None
    buffer = WriteBuffer(
        store,
        tracking,
        max_points=cfg.BUFFER_MAX_POINTS,
        flush_interval_ms=cfg.BUFFER_FLUSH_INTERVAL_MS,
        retention_ttl=cfg.BUFFER_RETENTION_TTL,
    )
    detector = None
    if store is not None:
        detector = HarshAccelerationDetector(
            store,
            ComplianceRepository(db),
            event_bus,
            threshold=cfg.HARSH_ACCEL_THRESHOLD,
            state_ttl=cfg.MOTION_STATE_TTL,
        )

    return TrackingIngestService(
        vehicles,
        tracking,
        cache,
        buffer,
        detector,
        registry,
        history_max_minutes=cfg.HISTORY_MAX_MINUTES,
        history_max_rows=cfg.HISTORY_MAX_ROWS,
    )


def init_dependencies(
    db: DatabaseManager,
    store: KeyValueStore | None,
    event_bus: EventBus | None,
    registry: HubRegistry | None,
) -> None:
    """Инициализировать зависимости при старте приложения."""
    global _vehicles, _tracking_service
    _vehicles = VehicleRepository(db)
    _tracking_service = build_tracking_service(db, store, event_bus, registry)


def get_tracking_service() -> TrackingIngestService:
    """Получить сервис приёма точек."""
    if _tracking_service is None:
        raise RuntimeError("TrackingIngestService не инициализирован. Вызовите init_dependencies()")
    return _tracking_service


def get_vehicle_repository() -> VehicleRepository:
    if _vehicles is None:
        raise RuntimeError("VehicleRepository не инициализирован. Вызовите init_dependencies()")
    return _vehicles


async def get_org_id(
    x_org_id: str | None = Header(default=None, alias="X-Org-Id"),
    vehicles: VehicleRepository = Depends(get_vehicle_repository),
) -> int:
    """
    Внутренний id организации из заголовка X-Org-Id (uuid организации).

    Raises:
        ValidationError: заголовок отсутствует или не uuid (BAD_ORG)
        NotFoundError: организация не найдена (ORG_NOT_FOUND)
    """
    if not x_org_id:
        raise ValidationError("Не указана организация", error_code="BAD_ORG")
    try:
        org_uuid = str(UUID(x_org_id))
    except ValueError:
        raise ValidationError(
            "Некорректный идентификатор организации",
            error_code="BAD_ORG",
            details={"org": x_org_id},
        ) from None

    org_id = await vehicles.resolve_org_id(org_uuid)
    if org_id is None:
        raise NotFoundError(
            "Организация не найдена",
            error_code="ORG_NOT_FOUND",
            details={"org": org_uuid},
        )
    return org_id


def get_request_id(request: Request) -> str:
    """Идентификатор запроса, проставленный middleware."""
    return getattr(request.state, "request_id", "")


def cleanup_dependencies() -> None:
    """Очистить ресурсы при остановке приложения."""
    global _vehicles, _tracking_service
    _vehicles = None
    _tracking_service = None
