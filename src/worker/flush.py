# src/worker/flush.py
"""
Фоновый сброс буферов по интервалу.

Приём точки проверяет интервал только для своего ТС. Воркер обходит
все активные ТС, чтобы буфер замолчавшего ТС и остатки после
неудачного сброса тоже попали в БД.
"""

from __future__ import annotations

from src.common.constants import TypeMsg
from src.common.exceptions import DurableWriteFailure, StorageUnavailable
from src.common.logger import log_error, log_info
from src.core.tracking.repository import VehicleRepository
from src.core.tracking.write_buffer import WriteBuffer
from src.infra.event_bus import DomainEvent, EventBus, EventTypes
from src.worker.base import BaseWorker


class FlushWorker(BaseWorker):
    """Вызывает maybe_flush для каждого активного ТС."""

    def __init__(
        self,
        vehicles: VehicleRepository,
        buffer: WriteBuffer,
        event_bus: EventBus | None = None,
        interval: float = 60.0,
    ) -> None:
        super().__init__(interval)
        self.vehicles = vehicles
        self.buffer = buffer
        self.event_bus = event_bus

    @property
    def name(self) -> str:
        return "FlushWorker"

    async def run_once(self) -> int:
        """
        Returns:
            Всего записанных строк за проход
        """
        vehicle_ids = await self.vehicles.list_active_vehicle_ids()

        total = 0
        failed = 0
        for vehicle_id in vehicle_ids:
            try:
                total += await self.buffer.maybe_flush(vehicle_id)
            except DurableWriteFailure as e:
                failed += 1
                await log_error(
                    f"Сброс буфера ТС {vehicle_id} не удался: {e.message}",
                    extra={"vehicle_id": vehicle_id, "written": e.written, "remaining": e.remaining},
                )
                await self._report_failure(vehicle_id, e)
            except StorageUnavailable as e:
                await log_error(f"Redis недоступен, проход прерван: {e.message}")
                break

        if total or failed:
            await log_info(
                f"Фоновый сброс: записано {total} точек, ошибок {failed}",
                type_msg=TypeMsg.INFO,
            )
        return total

    async def _report_failure(self, vehicle_id: int, error: DurableWriteFailure) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            DomainEvent(
                event_type=EventTypes.BUFFER_FLUSH_FAILED,
                payload={
                    "vehicle_id": vehicle_id,
                    "written": error.written,
                    "remaining": error.remaining,
                    "error": error.message,
                },
            )
        )
