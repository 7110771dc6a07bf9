# src/common/exceptions.py
"""
Иерархия ошибок конвейера телеметрии.

Каждая ошибка несёт машиночитаемый error_code, который HTTP-слой
отдаёт клиенту в ErrorResponse.
"""

from __future__ import annotations

from typing import Any


class TrackingError(Exception):
    """Базовая ошибка конвейера телеметрии."""

    error_code: str = "TRACKING_FAILED"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.details = details or {}


class ValidationError(TrackingError):
    """Некорректные координаты или payload. Побочных эффектов нет."""

    error_code = "VALIDATION_ERROR"


class NotFoundError(TrackingError):
    """Неизвестная организация или транспортное средство."""

    error_code = "NOT_FOUND"


class StorageUnavailable(TrackingError):
    """Недоступно быстрое хранилище (кэш/буфер)."""

    error_code = "STORAGE_UNAVAILABLE"


class DurableWriteFailure(TrackingError):
    """Ошибка записи в основное хранилище. Буфер не очищается."""

    error_code = "DURABLE_WRITE_FAILED"

    def __init__(
        self,
        message: str,
        *,
        written: int = 0,
        remaining: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.written = written
        self.remaining = remaining


class BroadcastFailure(TrackingError):
    """Ошибка рассылки подписчикам. Только логируется."""

    error_code = "BROADCAST_FAILED"


class DetectionFailure(TrackingError):
    """Ошибка детектора событий. Только логируется."""

    error_code = "DETECTION_FAILED"
