# src/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели.
"""

from src.shared.models.common import (
    ApiResponse,
    ErrorResponse,
    HealthStatus,
)
from src.shared.models.tracking import (
    GpsPoint,
    TrackingUpdateRequest,
    IngestResult,
    VehiclePositionDTO,
    HistoryPointDTO,
)

__all__ = [
    # Common
    "ApiResponse",
    "ErrorResponse",
    "HealthStatus",
    # Tracking
    "GpsPoint",
    "TrackingUpdateRequest",
    "IngestResult",
    "VehiclePositionDTO",
    "HistoryPointDTO",
]
