# src/core/tracking/latest_cache.py
"""
Кэш последней известной позиции ТС.
"""

from __future__ import annotations

from pydantic import ValidationError as PydanticValidationError

from src.common.logger import log_warning
from src.core.tracking.storage import KeyValueStore, latest_key
from src.shared.models.tracking import GpsPoint


class LatestPositionCache:
    """
    Последняя принятая точка по каждому ТС с абсолютным TTL.

    put() всегда перезаписывает значение и сбрасывает TTL: побеждает
    последний вызов, а не точка с большей меткой времени.
    Отсутствие значения означает «позиция неизвестна или устарела».
    """

    def __init__(self, store: KeyValueStore, ttl_seconds: int = 300) -> None:
        self._store = store
        self._ttl = ttl_seconds

    async def put(self, vehicle_id: int, point: GpsPoint) -> None:
        await self._store.set(latest_key(vehicle_id), point.model_dump_json(), ttl=self._ttl)

    async def get(self, vehicle_id: int) -> GpsPoint | None:
        raw = await self._store.get(latest_key(vehicle_id))
        if raw is None:
            return None
        try:
            return GpsPoint.model_validate_json(raw)
        except PydanticValidationError as e:
            await log_warning(
                f"Повреждённая запись последней позиции: {e}",
                extra={"vehicle_id": vehicle_id},
            )
            return None

    async def get_many(self, vehicle_ids: list[int]) -> dict[int, GpsPoint | None]:
        """Последние позиции для списка ТС (для экрана автопарка)."""
        return {vehicle_id: await self.get(vehicle_id) for vehicle_id in vehicle_ids}
