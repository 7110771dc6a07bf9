# src/core/tracking/repository.py
"""
Репозитории основного хранилища (PostgreSQL).

- VehicleRepository: разрешение внешних идентификаторов во внутренние
- TrackingRepository: журнал GPS-точек (только вставка) и история
- ComplianceRepository: журнал событий соответствия
"""

from __future__ import annotations

import json
from typing import Any

from src.infra.database import DatabaseManager
from src.shared.models.tracking import ComplianceEvent, GpsPoint


class VehicleRepository:
    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def resolve_org_id(self, org_uuid: str) -> int | None:
        """Числовой id организации по её uuid."""
        return await self.db.fetchval(
            "SELECT id FROM organizations WHERE uuid = $1 LIMIT 1",
            org_uuid,
        )

    async def resolve_vehicle_id(self, org_id: int, vehicle_uuid: str) -> int | None:
        """
        Внутренний id активного ТС организации.

        Returns:
            id или None, если ТС не найдено, неактивно или принадлежит
            другой организации
        """
        return await self.db.fetchval(
            """
            SELECT id FROM vehicles
            WHERE uuid = $1 AND org_id = $2 AND is_active = TRUE
            LIMIT 1
            """,
            vehicle_uuid,
            org_id,
        )

    async def list_active_vehicles(self, org_id: int) -> list[dict[str, Any]]:
        """Активные ТС организации: id, uuid, registration_number."""
        rows = await self.db.fetch(
            """
            SELECT id, uuid::text AS uuid, registration_number
            FROM vehicles
            WHERE org_id = $1 AND is_active = TRUE
            ORDER BY id
            """,
            org_id,
        )
        return [dict(row) for row in rows]

    async def list_active_vehicle_ids(self) -> list[int]:
        """id всех активных ТС (для фонового сброса буферов)."""
        rows = await self.db.fetch("SELECT id FROM vehicles WHERE is_active = TRUE ORDER BY id")
        return [row["id"] for row in rows]


class TrackingRepository:
    INSERT_POINT = """
        INSERT INTO gps_tracking
            (vehicle_id, org_id, latitude, longitude, accuracy, speed, heading, recorded_at)
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
    """

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def insert_point(self, vehicle_id: int, point: GpsPoint) -> None:
        """Одна вставка на точку: многооператорные транзакции не используются."""
        await self.db.execute(
            self.INSERT_POINT,
            vehicle_id,
            point.org_id,
            point.latitude,
            point.longitude,
            point.accuracy,
            point.speed,
            point.heading,
            point.recorded_at,
        )

    async def fetch_history(
        self,
        vehicle_id: int,
        org_id: int,
        since_ms: int,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """Точки не старше since_ms, от новых к старым, не более limit."""
        rows = await self.db.fetch(
            """
            SELECT latitude, longitude, speed, accuracy, heading, recorded_at
            FROM gps_tracking
            WHERE vehicle_id = $1 AND org_id = $2 AND recorded_at >= $3
            ORDER BY recorded_at DESC
            LIMIT $4
            """,
            vehicle_id,
            org_id,
            since_ms,
            limit,
        )
        return [dict(row) for row in rows]


class ComplianceRepository:
    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def insert_event(self, event: ComplianceEvent) -> None:
        await self.db.execute(
            """
            INSERT INTO compliance_logs
                (uuid, org_id, compliance_item, entity_type, entity_id, status, details, logged_at, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9)
            """,
            event.uuid,
            event.org_id,
            event.compliance_item,
            event.entity_type,
            event.entity_id,
            event.status,
            json.dumps(event.details),
            event.logged_at,
            event.created_at,
        )
