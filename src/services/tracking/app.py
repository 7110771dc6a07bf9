# src/services/tracking/app.py
"""
FastAPI приложение Fleet Tracking.

Endpoints:
- POST /api/v1/tracking - принять GPS-точку
- GET /api/v1/tracking/vehicles - последние позиции автопарка
- GET /api/v1/tracking/vehicle/{vehicle_uuid}/history - история точек
- WS /ws/tracking?vehicle_uuid=... - live-подписка на ТС
- GET /health, GET /stats
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.common.constants import TypeMsg
from src.common.exceptions import (
    DurableWriteFailure,
    NotFoundError,
    StorageUnavailable,
    TrackingError,
    ValidationError,
)
from src.common.logger import log_error, log_info, log_warning
from src.config import settings
from src.infra.database import close_db, get_db, init_db
from src.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from src.infra.redis_client import close_redis, get_redis, init_redis
from src.services.realtime_ws.app import router as ws_router
from src.services.realtime_ws.hub import close_hub_registry, get_hub_registry, init_hub_registry
from src.services.tracking.dependencies import (
    cleanup_dependencies,
    get_tracking_service,
    init_dependencies,
)
from src.services.tracking.routes import router as tracking_router
from src.shared.models.common import ErrorResponse, HealthStatus

SERVICE_NAME = "fleet_tracking"

_started_at = time.monotonic()


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    await init_db()

    store = None
    try:
        await init_redis()
        store = get_redis()
    except StorageUnavailable as e:
        await log_warning(f"Redis недоступен, точки пишутся напрямую в БД: {e}")

    event_bus = None
    try:
        await init_event_bus()
        event_bus = get_event_bus()
    except Exception as e:
        await log_warning(f"RabbitMQ недоступен, доменные события не публикуются: {e}")

    registry = init_hub_registry()
    init_dependencies(get_db(), store, event_bus, registry)
    await log_info("Fleet Tracking запущен", type_msg=TypeMsg.INFO)

    yield

    cleanup_dependencies()
    await close_hub_registry()
    await close_event_bus()
    await close_redis()
    await close_db()
    await log_info("Fleet Tracking остановлен", type_msg=TypeMsg.INFO)


# === APP ===

app = FastAPI(
    title="Fleet Tracking",
    description="Приём GPS-телеметрии ТС, буферизация и live-рассылка.",
    version=settings.system.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.include_router(tracking_router)
app.include_router(ws_router)


# === REQUEST ID ===

@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get("X-Request-ID") or str(uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response


# === ERROR HANDLERS ===

def _status_for(exc: TrackingError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, StorageUnavailable):
        return 503
    return 500


def _error_response(request: Request, status_code: int, body: ErrorResponse) -> JSONResponse:
    body.request_id = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(TrackingError)
async def tracking_error_handler(request: Request, exc: TrackingError) -> JSONResponse:
    status_code = _status_for(exc)
    if status_code >= 500:
        await log_error(
            f"{exc.error_code}: {exc.message}",
            extra={"path": request.url.path, **exc.details},
        )
    details: dict[str, Any] = dict(exc.details)
    if isinstance(exc, DurableWriteFailure):
        details.update(written=exc.written, remaining=exc.remaining)
    return _error_response(
        request,
        status_code,
        ErrorResponse(error_code=exc.error_code, message=exc.message, details=details or None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(
        request,
        400,
        ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Некорректный запрос",
            details={"errors": jsonable_encoder(exc.errors())},
        ),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    await log_error(f"Необработанная ошибка: {exc}", extra={"path": request.url.path}, exc_info=True)
    return _error_response(
        request,
        500,
        ErrorResponse(error_code="TRACKING_FAILED", message="Внутренняя ошибка"),
    )


# === HEALTH CHECK ===

@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    db_ok = await get_db().health_check()
    redis_ok = get_redis().is_connected and await get_redis().health_check()
    bus_ok = await get_event_bus().health_check()

    dependencies = {
        "postgres": "up" if db_ok else "down",
        "redis": "up" if redis_ok else "down",
        "rabbitmq": "up" if bus_ok else "down",
    }
    if not db_ok:
        status = "unhealthy"
    elif not (redis_ok and bus_ok):
        status = "degraded"
    else:
        status = "healthy"

    return HealthStatus(
        service=SERVICE_NAME,
        status=status,
        version=settings.system.VERSION,
        uptime_seconds=round(time.monotonic() - _started_at, 1),
        dependencies=dependencies,
    )


# === STATS ===

@app.get("/stats", tags=["Stats"])
async def get_stats() -> dict[str, Any]:
    """Статистика приёма и рассылки."""
    return {
        "ingest": get_tracking_service().get_stats(),
        "broadcast": get_hub_registry().stats(),
    }


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.deployment.TRACKING_SERVICE_PORT)
