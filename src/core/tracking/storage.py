# src/core/tracking/storage.py
"""
Контракт быстрого key-value хранилища и схема ключей.

RedisClient удовлетворяет протоколу напрямую; в тестах подставляется
in-memory реализация.
"""

from __future__ import annotations

from typing import Protocol


class KeyValueStore(Protocol):
    """get/set/delete с TTL. Ошибки доступа поднимают StorageUnavailable."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool: ...

    async def delete(self, key: str) -> int: ...


def latest_key(vehicle_id: int) -> str:
    return f"tracking:vehicle:{vehicle_id}:latest"


def buffer_key(vehicle_id: int) -> str:
    return f"tracking:vehicle:{vehicle_id}:buffer"


def last_flush_key(vehicle_id: int) -> str:
    return f"tracking:vehicle:{vehicle_id}:last_flush"


def last_speed_key(vehicle_id: int) -> str:
    return f"tracking:vehicle:{vehicle_id}:last_speed"


def last_ts_key(vehicle_id: int) -> str:
    return f"tracking:vehicle:{vehicle_id}:last_ts"
