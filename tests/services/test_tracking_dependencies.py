# tests/services/test_tracking_dependencies.py
"""
Тесты сборки конвейера приёма точек.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.common.exceptions import NotFoundError, ValidationError
from src.services.realtime_ws.hub import HubRegistry
from src.services.tracking import dependencies
from src.services.tracking.dependencies import (
    build_tracking_service,
    cleanup_dependencies,
    get_org_id,
    get_tracking_service,
    init_dependencies,
)


class TestBuildTrackingService:
    def test_with_store(self, mock_db, kv_store, mock_event_bus) -> None:
        registry = HubRegistry()

        service = build_tracking_service(mock_db, kv_store, mock_event_bus, registry)

        assert service._cache is not None
        assert service._detector is not None
        assert service._broadcaster is registry

    def test_without_store(self, mock_db) -> None:
        """Без Redis: ни кэша, ни детектора, точки пишутся напрямую."""
        service = build_tracking_service(mock_db, None, None, None)

        assert service._cache is None
        assert service._detector is None

    @pytest.mark.asyncio
    async def test_without_store_writes_directly(self, mock_db, sample_point) -> None:
        service = build_tracking_service(mock_db, None, None, None)

        assert await service._buffer.append(42, sample_point) == 1
        mock_db.execute.assert_awaited_once()


class TestLifecycle:
    def test_init_and_cleanup(self, mock_db) -> None:
        init_dependencies(mock_db, None, None, None)
        assert get_tracking_service() is dependencies._tracking_service

        cleanup_dependencies()
        with pytest.raises(RuntimeError):
            get_tracking_service()


class TestGetOrgId:
    @pytest.mark.asyncio
    async def test_resolves_through_injected_repository(self, ids) -> None:
        vehicles = AsyncMock()
        vehicles.resolve_org_id = AsyncMock(return_value=ids["org_id"])

        org_id = await get_org_id(x_org_id=ids["org_uuid"], vehicles=vehicles)

        assert org_id == ids["org_id"]
        vehicles.resolve_org_id.assert_awaited_once_with(ids["org_uuid"])

    @pytest.mark.asyncio
    async def test_unknown_org(self, ids) -> None:
        vehicles = AsyncMock()
        vehicles.resolve_org_id = AsyncMock(return_value=None)

        with pytest.raises(NotFoundError) as exc_info:
            await get_org_id(x_org_id=ids["org_uuid"], vehicles=vehicles)

        assert exc_info.value.error_code == "ORG_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_bad_header_skips_lookup(self) -> None:
        vehicles = AsyncMock()

        with pytest.raises(ValidationError) as exc_info:
            await get_org_id(x_org_id="not-a-uuid", vehicles=vehicles)

        assert exc_info.value.error_code == "BAD_ORG"
        vehicles.resolve_org_id.assert_not_awaited()
