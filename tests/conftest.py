# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from src.common.exceptions import StorageUnavailable
from src.shared.models.tracking import GpsPoint


ORG_ID = 7
ORG_UUID = "3f0c6a8e-2b7d-4c1a-9e55-0d4b8f1a2c3d"
VEHICLE_ID = 42
VEHICLE_UUID = "b6a1f3e2-8c4d-4f7a-a1b2-c3d4e5f60718"


# =============================================================================
# ФЕЙКИ
# =============================================================================

class ManualClock:
    """Управляемые часы в миллисекундах."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class InMemoryKeyValueStore:
    """
    In-memory реализация KeyValueStore с TTL по управляемым часам.

    available=False имитирует недоступный Redis.
    """

    def __init__(self, clock: ManualClock) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, int | None]] = {}
        self.available = True
        self.set_calls = 0

    def _check(self) -> None:
        if not self.available:
            raise StorageUnavailable("Redis недоступен: connection refused")

    def _expired(self, key: str) -> bool:
        _, expires_at = self._data[key]
        return expires_at is not None and self._clock() >= expires_at

    async def get(self, key: str) -> str | None:
        self._check()
        if key not in self._data:
            return None
        if self._expired(key):
            del self._data[key]
            return None
        return self._data[key][0]

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        self._check()
        self.set_calls += 1
        expires_at = self._clock() + ttl * 1000 if ttl is not None else None
        self._data[key] = (value, expires_at)
        return True

    async def delete(self, key: str) -> int:
        self._check()
        return 1 if self._data.pop(key, None) is not None else 0

    def ttl_ms(self, key: str) -> int | None:
        """Оставшееся время жизни ключа (для проверок)."""
        _, expires_at = self._data[key]
        return None if expires_at is None else expires_at - self._clock()

    def raw(self, key: str) -> Any:
        return json.loads(self._data[key][0])


class FakeWebSocket:
    """Минимальный WebSocket: копит отправленные сообщения."""

    def __init__(self, *, fail: bool = False, delay: float = 0.0) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.fail = fail
        self.delay = delay

    async def send_json(self, message: dict[str, Any]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("connection reset by peer")
        self.sent.append(message)

    async def close(self, code: int = 1000) -> None:
        self.closed = True


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "PROJECT_NAME": "fleet_tracking_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "colored",
        "TRACKING_SERVICE_PORT": 8190,
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "fleet_tracking_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "DB_MIN_POOL_SIZE": 2,
        "DB_MAX_POOL_SIZE": 5,
        "DB_COMMAND_TIMEOUT": 10,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_PASSWORD": "",
        "REDIS_NAMESPACE": "fleet_test",
        "REDIS_MAX_CONNECTIONS": 10,
        "REDIS_SOCKET_TIMEOUT": 1.0,
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_PORT": 5672,
        "RABBITMQ_USER": "guest",
        "RABBITMQ_PASSWORD": "guest",
        "RABBITMQ_VHOST": "/",
        "RABBITMQ_EXCHANGE": "fleet.test",
        "RABBITMQ_PREFETCH_COUNT": 5,
        "LATEST_TTL": 120,
        "BUFFER_MAX_POINTS": 50,
        "BUFFER_FLUSH_INTERVAL_MS": 60000,
        "BUFFER_RETENTION_TTL": 3600,
        "MOTION_STATE_TTL": 3600,
        "HARSH_ACCEL_THRESHOLD": 4.0,
        "HISTORY_MAX_ROWS": 500,
        "HISTORY_MAX_MINUTES": 1440,
        "BROADCAST_SEND_TIMEOUT": 1.5,
        "BROADCAST_HUB_INBOX_SIZE": 100,
        "FLUSH_SWEEP_INTERVAL": 15,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ И ФЕЙКИ)
# =============================================================================

@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def kv_store(clock: ManualClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock)


@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


@pytest.fixture
def tracking_repo() -> AsyncMock:
    """Мок TrackingRepository: записывает вставленные точки."""
    repo = AsyncMock()
    repo.inserted = []

    async def insert_point(vehicle_id: int, point: GpsPoint) -> None:
        repo.inserted.append((vehicle_id, point))

    repo.insert_point = AsyncMock(side_effect=insert_point)
    repo.fetch_history = AsyncMock(return_value=[])
    return repo


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

def make_point(
    recorded_at: int = 1_700_000_000_000,
    *,
    speed: float | None = None,
    latitude: float = 50.4501,
    longitude: float = 30.5234,
    vehicle_id: int = VEHICLE_ID,
    vehicle_uuid: str = VEHICLE_UUID,
) -> GpsPoint:
    return GpsPoint(
        vehicle_uuid=vehicle_uuid,
        vehicle_id=vehicle_id,
        org_id=ORG_ID,
        latitude=latitude,
        longitude=longitude,
        accuracy=5.0,
        speed=speed,
        heading=90.0,
        recorded_at=recorded_at,
    )


@pytest.fixture
def sample_point() -> GpsPoint:
    """Пример GPS-точки."""
    return make_point(speed=12.5)


@pytest.fixture
def point_factory():
    """Фабрика GPS-точек."""
    return make_point


@pytest.fixture
def ws_factory():
    """Фабрика фейковых WebSocket-соединений."""
    return FakeWebSocket


@pytest.fixture
def ids() -> dict[str, Any]:
    """Идентификаторы тестовых организации и ТС."""
    return {
        "org_id": ORG_ID,
        "org_uuid": ORG_UUID,
        "vehicle_id": VEHICLE_ID,
        "vehicle_uuid": VEHICLE_UUID,
    }
