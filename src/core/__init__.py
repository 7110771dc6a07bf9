# src/core/__init__.py
"""
Доменный слой (Core Domain).
Приём, буферизация и анализ GPS-телеметрии.
"""

from src.core.tracking import TrackingIngestService

__all__ = [
    "TrackingIngestService",
]
