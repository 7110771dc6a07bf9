#!/usr/bin/env python3
# main.py
"""
Главная точка входа Fleet Tracking.
Запускает HTTP/WebSocket API, фоновый сброс буферов или всё вместе.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


VALID_MODES = ("tracking", "flush_worker", "all")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_tracking_service() -> None:
    """Запускает Fleet Tracking API. Инфраструктуру поднимает lifespan приложения."""
    import uvicorn

    await log_info(
        f"Запуск Fleet Tracking API на порту {settings.deployment.TRACKING_SERVICE_PORT}...",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "src.services.tracking.app:app",
        host="0.0.0.0",
        port=settings.deployment.TRACKING_SERVICE_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Fleet Tracking API: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_flush_worker() -> None:
    """Запускает FlushWorker со своими подключениями."""
    from src.worker.runner import run_workers

    await run_workers(init_infra=True)


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: tracking, flush_worker или all.
              Если None, берётся COMPONENT_MODE из настроек.
    """
    global _running_tasks

    setup_logging()
    setup_signal_handlers()

    if mode is None:
        mode = settings.system.COMPONENT_MODE

    if mode not in VALID_MODES:
        await log_error(f"Неизвестный режим: {mode}")
        print_usage()
        return

    await log_info(
        f"Fleet Tracking v{settings.system.VERSION}: запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    if mode == "tracking":
        _running_tasks = [asyncio.create_task(run_tracking_service())]
    elif mode == "flush_worker":
        _running_tasks = [asyncio.create_task(run_flush_worker())]
    else:
        _running_tasks = [
            asyncio.create_task(run_tracking_service()),
            asyncio.create_task(run_flush_worker()),
        ]

    try:
        results = await asyncio.gather(*_running_tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                await log_error(f"Компонент завершился с ошибкой: {result}")
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    finally:
        for task in _running_tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*_running_tasks, return_exceptions=True)
        _running_tasks.clear()
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
Fleet Tracking: приём GPS-телеметрии, буферизация и live-рассылка

Использование:
    python main.py [mode]

Режимы:
    tracking        HTTP/WebSocket API (:8090)
    flush_worker    фоновый сброс буферов в PostgreSQL
    all             оба компонента в одном процессе

Без аргумента режим берётся из COMPONENT_MODE (config.json / env).
    """)


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in VALID_MODES:
            mode = arg
        else:
            print(f"Неизвестный режим: {arg}")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
