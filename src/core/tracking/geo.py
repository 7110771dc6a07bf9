# src/core/tracking/geo.py
"""
Геометрия и кинематика: валидация координат, расстояние по формуле
Haversine, проверка радиуса, ускорение между соседними замерами.

Чистые функции без состояния.
"""

from __future__ import annotations

import math
from numbers import Real
from typing import Any

EARTH_RADIUS_KM = 6371.0

# Минимальный интервал между замерами, чтобы не делить на ноль
MIN_ELAPSED_SECONDS = 0.001
# Интервал по умолчанию, если предыдущего времени нет
DEFAULT_ELAPSED_SECONDS = 1.0

HARSH_ACCEL_THRESHOLD_M_S2 = 5.0


def _is_number(value: Any) -> bool:
    # bool является подклассом int, но не координатой
    return isinstance(value, Real) and not isinstance(value, bool)


def validate_coordinates(lat: Any, lon: Any) -> bool:
    """Проверяет, что широта и долгота являются числами в допустимых диапазонах."""
    if not _is_number(lat) or not _is_number(lon):
        return False
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


def haversine_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Вычисляет расстояние между двумя точками (в км) по формуле Haversine.
    """
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def is_within_meters(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    meters: float,
) -> bool:
    """Точка 2 находится не дальше `meters` метров от точки 1."""
    return haversine_distance_km(lat1, lon1, lat2, lon2) * 1000 <= meters


def elapsed_seconds(current_ts_ms: int, previous_ts_ms: int | None) -> float:
    """
    Интервал между замерами в секундах.

    Без предыдущего времени 1 с; совпадающие или убывающие метки
    ограничиваются снизу 0.001 с.
    """
    if previous_ts_ms is None:
        return DEFAULT_ELAPSED_SECONDS
    return max((current_ts_ms - previous_ts_ms) / 1000, MIN_ELAPSED_SECONDS)


def compute_acceleration(prev_speed: float, cur_speed: float, delta_seconds: float) -> float:
    """Ускорение (м/с²) между двумя замерами скорости."""
    if delta_seconds <= 0:
        return 0.0
    return (cur_speed - prev_speed) / delta_seconds


def is_harsh_acceleration(
    accel_m_s2: float,
    threshold: float = HARSH_ACCEL_THRESHOLD_M_S2,
) -> bool:
    """Резкое ускорение/торможение: |a| >= порога."""
    return abs(accel_m_s2) >= threshold
