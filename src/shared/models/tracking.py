# src/shared/models/tracking.py
"""
Модели телеметрии: GPS-точка, входящий запрос, ответы API.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class GpsPoint(BaseModel):
    """
    Одна GPS-точка транспортного средства.

    Неизменяема после создания: кэш, буфер, БД и рассылка получают
    копии в виде JSON.
    """

    model_config = ConfigDict(frozen=True)

    vehicle_uuid: str
    vehicle_id: int
    org_id: int
    latitude: float
    longitude: float
    accuracy: float | None = None
    speed: float | None = None  # м/с
    heading: float | None = None  # градусы
    recorded_at: int  # мс с эпохи

    def to_public(self) -> dict[str, Any]:
        """Представление для подписчиков (без внутренних id)."""
        return self.model_dump(exclude={"vehicle_id", "org_id"})


class TrackingUpdateRequest(BaseModel):
    """Входящее обновление геолокации."""

    vehicle_uuid: UUID
    latitude: float
    longitude: float
    accuracy: float | None = None
    speed: float | None = Field(default=None, description="м/с")
    heading: float | None = None
    recorded_at: int | None = Field(default=None, description="мс с эпохи")


class IngestResult(BaseModel):
    """Результат приёма точки."""

    buffered: int
    vehicle_id: int
    recorded_at: int


class BufferedResponse(BaseModel):
    """Тело ответа POST /tracking."""

    buffered: int


class PositionDTO(BaseModel):
    """Позиция для списка ТС организации."""

    latitude: float
    longitude: float
    speed: float | None = None


class VehiclePositionDTO(BaseModel):
    """Последняя известная позиция ТС."""

    vehicle_uuid: str
    registration_number: str = ""
    last_seen: int | None = None
    position: PositionDTO | None = None


class VehiclesResponse(BaseModel):
    vehicles: list[VehiclePositionDTO]


class HistoryPointDTO(BaseModel):
    """Точка истории из основного хранилища."""

    latitude: float
    longitude: float
    speed: float | None = None
    accuracy: float | None = None
    heading: float | None = None
    recorded_at: int


class HistoryResponse(BaseModel):
    points: list[HistoryPointDTO]


class ComplianceEvent(BaseModel):
    """Неизменяемая запись журнала соответствия."""

    model_config = ConfigDict(frozen=True)

    uuid: str
    org_id: int
    compliance_item: str
    entity_type: str
    entity_id: int
    status: str
    details: dict[str, Any] = Field(default_factory=dict)
    logged_at: int
    created_at: int
