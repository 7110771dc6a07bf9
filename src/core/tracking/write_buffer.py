# src/core/tracking/write_buffer.py
"""
Буфер записи GPS-точек.

Точки копятся в быстром хранилище и пачкой сбрасываются в PostgreSQL:
- по достижении лимита (сброс синхронно, внутри append)
- по истечении интервала (maybe_flush, вызывается на каждом приёме
  и фоновым воркером)

Порядок «сначала записать, потом очистить» гарантирует отсутствие потерь.
Уже записанные точки убираются из буфера даже при частичном сбое,
поэтому повторный сброс не создаёт дублей.
"""

from __future__ import annotations

import json

from pydantic import ValidationError as PydanticValidationError

from src.common.constants import TypeMsg
from src.common.exceptions import DurableWriteFailure, StorageUnavailable
from src.common.logger import log_error, log_info, log_warning
from src.core.tracking.clock import Clock, now_ms
from src.core.tracking.repository import TrackingRepository
from src.core.tracking.storage import KeyValueStore, buffer_key, last_flush_key
from src.shared.models.tracking import GpsPoint


class WriteBuffer:
    def __init__(
        self,
        store: KeyValueStore | None,
        repository: TrackingRepository,
        *,
        max_points: int = 200,
        flush_interval_ms: int = 300_000,
        retention_ttl: int = 86_400,
        clock: Clock = now_ms,
    ) -> None:
        self._store = store
        self._repository = repository
        self._max_points = max_points
        self._flush_interval_ms = flush_interval_ms
        self._retention_ttl = retention_ttl
        self._clock = clock

    async def read(self, vehicle_id: int) -> list[GpsPoint]:
        """Текущее содержимое буфера (пустой список, если буфера нет)."""
        if self._store is None:
            return []
        raw = await self._store.get(buffer_key(vehicle_id))
        if raw is None:
            return []
        try:
            return [GpsPoint.model_validate(item) for item in json.loads(raw)]
        except (ValueError, TypeError, PydanticValidationError) as e:
            await log_error(
                f"Повреждённый буфер точек, буфер сброшен: {e}",
                extra={"vehicle_id": vehicle_id},
            )
            await self._store.delete(buffer_key(vehicle_id))
            return []

    async def _save(self, vehicle_id: int, points: list[GpsPoint]) -> None:
        payload = json.dumps([p.model_dump() for p in points])
        await self._store.set(buffer_key(vehicle_id), payload, ttl=self._retention_ttl)

    async def append(self, vehicle_id: int, point: GpsPoint) -> int:
        """
        Добавляет точку в буфер ТС.

        Returns:
            Длина буфера после добавления; 0, если добавление вызвало
            сброс; 1 при прямой записи в БД (быстрое хранилище недоступно)

        Raises:
            DurableWriteFailure: сброс или прямая запись не удались
        """
        if self._store is None:
            return await self._write_direct(vehicle_id, point)

        try:
            points = await self.read(vehicle_id)
        except StorageUnavailable as e:
            await log_warning(
                f"Буфер недоступен, точка пишется напрямую в БД: {e}",
                extra={"vehicle_id": vehicle_id},
            )
            return await self._write_direct(vehicle_id, point)

        points.append(point)

        if len(points) >= self._max_points:
            # при сбое flush сам оставит в буфере незаписанный остаток
            await self.flush(vehicle_id, points)
            return 0

        try:
            await self._save(vehicle_id, points)
        except StorageUnavailable as e:
            await log_warning(
                f"Не удалось сохранить буфер, точка пишется напрямую в БД: {e}",
                extra={"vehicle_id": vehicle_id},
            )
            return await self._write_direct(vehicle_id, point)

        return len(points)

    async def _write_direct(self, vehicle_id: int, point: GpsPoint) -> int:
        try:
            await self._repository.insert_point(vehicle_id, point)
        except Exception as e:
            raise DurableWriteFailure(
                f"Прямая запись точки не удалась: {e}",
                written=0,
                remaining=1,
                details={"vehicle_id": vehicle_id},
            ) from e
        return 1

    async def maybe_flush(self, vehicle_id: int, now: int | None = None) -> int:
        """
        Сбрасывает буфер, если с прошлого сброса прошло не меньше интервала.

        Пустой буфер только обновляет отметку времени сброса.

        Returns:
            Количество записанных строк
        """
        if self._store is None:
            return 0

        now = self._clock() if now is None else now
        raw_marker = await self._store.get(last_flush_key(vehicle_id))
        last_flush = int(raw_marker) if raw_marker else 0

        if now - last_flush < self._flush_interval_ms:
            return 0

        points = await self.read(vehicle_id)
        if not points:
            await self._store.set(last_flush_key(vehicle_id), str(now), ttl=self._retention_ttl)
            return 0

        return await self.flush(vehicle_id, points)

    async def flush(self, vehicle_id: int, points: list[GpsPoint] | None = None) -> int:
        """
        Записывает точки в БД по одной, затем очищает буфер и ставит
        отметку сброса.

        Raises:
            DurableWriteFailure: часть точек не записана; в буфере остался
                только незаписанный остаток
        """
        if points is None:
            points = await self.read(vehicle_id)

        written = 0
        for point in points:
            try:
                await self._repository.insert_point(vehicle_id, point)
            except Exception as e:
                remaining = points[written:]
                await self._keep_remaining(vehicle_id, remaining)
                raise DurableWriteFailure(
                    f"Сброс буфера прерван: {e}",
                    written=written,
                    remaining=len(remaining),
                    details={"vehicle_id": vehicle_id},
                ) from e
            written += 1

        if self._store is not None:
            try:
                await self._store.delete(buffer_key(vehicle_id))
                await self._store.set(last_flush_key(vehicle_id), str(self._clock()), ttl=self._retention_ttl)
            except StorageUnavailable as e:
                # точки уже в БД; оставшийся буфер будет записан повторно
                await log_error(
                    f"Буфер ТС {vehicle_id} записан ({written} точек), но не очищен: {e}",
                    extra={"vehicle_id": vehicle_id, "written": written},
                )

        await log_info(
            f"Буфер ТС {vehicle_id} сброшен: {written} точек",
            type_msg=TypeMsg.DEBUG,
            extra={"vehicle_id": vehicle_id, "written": written},
        )
        return written

    async def _keep_remaining(self, vehicle_id: int, remaining: list[GpsPoint]) -> None:
        if self._store is None:
            return
        try:
            await self._save(vehicle_id, remaining)
        except StorageUnavailable as e:
            await log_error(
                f"Не удалось сохранить остаток буфера ({len(remaining)} точек): {e}",
                extra={"vehicle_id": vehicle_id},
            )
