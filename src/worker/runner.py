# src/worker/runner.py
"""
Запускалка фоновых воркеров.
"""

from __future__ import annotations

import asyncio

from src.worker.base import BaseWorker
from src.worker.flush import FlushWorker
from src.core.tracking.repository import TrackingRepository, VehicleRepository
from src.core.tracking.write_buffer import WriteBuffer
from src.infra.database import init_db, close_db, get_db
from src.infra.redis_client import init_redis, close_redis, get_redis
from src.infra.event_bus import init_event_bus, close_event_bus, get_event_bus
from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg
from src.config import settings


def build_flush_worker() -> FlushWorker:
    """Собирает FlushWorker из глобальных подключений и настроек."""
    db = get_db()
    cfg = settings.tracking
    buffer = WriteBuffer(
        get_redis(),
        TrackingRepository(db),
        max_points=cfg.BUFFER_MAX_POINTS,
        flush_interval_ms=cfg.BUFFER_FLUSH_INTERVAL_MS,
        retention_ttl=cfg.BUFFER_RETENTION_TTL,
    )
    event_bus = get_event_bus()
    return FlushWorker(
        VehicleRepository(db),
        buffer,
        event_bus=event_bus if event_bus.is_connected else None,
        interval=settings.timeouts.FLUSH_SWEEP_INTERVAL,
    )


async def run_workers(init_infra: bool = True) -> None:
    """
    Запускает FlushWorker.

    Args:
        init_infra: Если True, инициализирует инфраструктуру (БД, Redis, RabbitMQ).
                    При запуске через main.py в режиме 'all' передаётся False,
                    так как инфраструктура уже инициализирована.
    """
    await log_info("Запуск FlushWorker...", type_msg=TypeMsg.INFO)

    if init_infra:
        await log_info("Инициализация инфраструктуры для воркеров...", type_msg=TypeMsg.DEBUG)
        await init_db()
        await init_redis()
        try:
            await init_event_bus()
        except Exception as e:
            await log_error(f"RabbitMQ недоступен, события сбоев сброса не публикуются: {e}")

    workers: list[BaseWorker] = [
        build_flush_worker(),
    ]

    try:
        for worker in workers:
            await worker.start()

        await log_info(f"Запущено {len(workers)} воркеров", type_msg=TypeMsg.INFO)

        # Ждём завершения (Ctrl+C)
        while True:
            await asyncio.sleep(1)

    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки", type_msg=TypeMsg.INFO)
    finally:
        for worker in workers:
            await worker.stop()

        if init_infra:
            await close_event_bus()
            await close_redis()
            await close_db()

        await log_info("Воркеры остановлены", type_msg=TypeMsg.INFO)


def main() -> None:
    """Точка входа."""
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
