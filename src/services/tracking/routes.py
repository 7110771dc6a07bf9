# src/services/tracking/routes.py
"""
HTTP endpoints приёма и чтения телеметрии.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from src.config import settings
from src.core.tracking.clock import now_ms
from src.core.tracking.service import TrackingIngestService
from src.services.tracking.dependencies import get_org_id, get_request_id, get_tracking_service
from src.shared.models.common import ApiResponse
from src.shared.models.tracking import (
    BufferedResponse,
    HistoryResponse,
    TrackingUpdateRequest,
    VehiclesResponse,
)

router = APIRouter(prefix="/api/v1/tracking", tags=["Tracking"])


@router.post("", response_model=ApiResponse[BufferedResponse], summary="Принять GPS-точку")
async def ingest_point(
    body: TrackingUpdateRequest,
    org_id: int = Depends(get_org_id),
    request_id: str = Depends(get_request_id),
    service: TrackingIngestService = Depends(get_tracking_service),
) -> ApiResponse[BufferedResponse]:
    """
    Принять GPS-точку ТС.

    buffered: длина буфера после добавления (0, если буфер только что сброшен).
    """
    result = await service.ingest(org_id, body)
    return ApiResponse[BufferedResponse](
        data=BufferedResponse(buffered=result.buffered),
        timestamp=now_ms(),
        request_id=request_id,
    )


@router.get("/vehicles", response_model=ApiResponse[VehiclesResponse], summary="Позиции автопарка")
async def list_vehicle_positions(
    org_id: int = Depends(get_org_id),
    request_id: str = Depends(get_request_id),
    service: TrackingIngestService = Depends(get_tracking_service),
) -> ApiResponse[VehiclesResponse]:
    """Активные ТС организации с последней известной позицией."""
    vehicles = await service.get_fleet_positions(org_id)
    return ApiResponse[VehiclesResponse](
        data=VehiclesResponse(vehicles=vehicles),
        timestamp=now_ms(),
        request_id=request_id,
    )


@router.get(
    "/vehicle/{vehicle_uuid}/history",
    response_model=ApiResponse[HistoryResponse],
    summary="История точек ТС",
)
async def get_vehicle_history(
    vehicle_uuid: UUID,
    minutes: int = Query(default=settings.tracking.HISTORY_DEFAULT_MINUTES, description="Глубина истории, минут"),
    org_id: int = Depends(get_org_id),
    request_id: str = Depends(get_request_id),
    service: TrackingIngestService = Depends(get_tracking_service),
) -> ApiResponse[HistoryResponse]:
    points = await service.get_history(org_id, str(vehicle_uuid), minutes)
    return ApiResponse[HistoryResponse](
        data=HistoryResponse(points=points),
        timestamp=now_ms(),
        request_id=request_id,
    )
