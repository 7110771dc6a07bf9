# src/core/tracking/clock.py
"""Источник времени в миллисекундах (подменяется в тестах)."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)
