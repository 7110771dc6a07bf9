# src/worker/__init__.py
"""
Фоновые воркеры конвейера телеметрии.
"""

from src.worker.base import BaseWorker
from src.worker.flush import FlushWorker

__all__ = ["BaseWorker", "FlushWorker"]
