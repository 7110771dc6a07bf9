# src/core/tracking/__init__.py
"""
Конвейер телеметрии ТС.
"""

from src.core.tracking.event_detector import HarshAccelerationDetector
from src.core.tracking.latest_cache import LatestPositionCache
from src.core.tracking.repository import (
    ComplianceRepository,
    TrackingRepository,
    VehicleRepository,
)
from src.core.tracking.service import TrackingIngestService
from src.core.tracking.write_buffer import WriteBuffer

__all__ = [
    "ComplianceRepository",
    "HarshAccelerationDetector",
    "LatestPositionCache",
    "TrackingIngestService",
    "TrackingRepository",
    "VehicleRepository",
    "WriteBuffer",
]
