# tests/core/test_tracking_service.py
"""
Тесты оркестратора приёма GPS-точек.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.common.exceptions import (
    DetectionFailure,
    DurableWriteFailure,
    NotFoundError,
    ValidationError,
)
from src.core.tracking.event_detector import HarshAccelerationDetector, MotionEvaluation
from src.core.tracking.latest_cache import LatestPositionCache
from src.core.tracking.service import TrackingIngestService
from src.core.tracking.storage import buffer_key, latest_key
from src.core.tracking.write_buffer import WriteBuffer
from src.shared.models.tracking import TrackingUpdateRequest


@pytest.fixture
def vehicles(ids) -> AsyncMock:
    repo = AsyncMock()
    repo.resolve_vehicle_id = AsyncMock(return_value=ids["vehicle_id"])
    repo.list_active_vehicles = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def compliance_repo() -> AsyncMock:
    repo = AsyncMock()
    repo.insert_event = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def broadcaster() -> AsyncMock:
    hub = AsyncMock()
    hub.publish = AsyncMock(return_value=None)
    return hub


@pytest.fixture
def service(vehicles, tracking_repo, kv_store, compliance_repo, broadcaster, clock) -> TrackingIngestService:
    return TrackingIngestService(
        vehicles,
        tracking_repo,
        LatestPositionCache(kv_store),
        WriteBuffer(kv_store, tracking_repo, clock=clock),
        HarshAccelerationDetector(kv_store, compliance_repo, clock=clock),
        broadcaster,
        clock=clock,
    )


def make_request(ids, **overrides) -> TrackingUpdateRequest:
    data = {
        "vehicle_uuid": ids["vehicle_uuid"],
        "latitude": 50.4501,
        "longitude": 30.5234,
        "speed": 10.0,
        "recorded_at": 1_700_000_000_000,
    }
    data.update(overrides)
    return TrackingUpdateRequest(**data)


class TestIngest:
    """Тесты TrackingIngestService.ingest."""

    @pytest.mark.asyncio
    async def test_ingest_happy_path(self, service, kv_store, broadcaster, clock, ids) -> None:
        """Кэш, буфер и рассылка получают точку."""
        # первый приём без отметки сброса пишет точку сразу
        result = await service.ingest(ids["org_id"], make_request(ids))

        assert result.vehicle_id == ids["vehicle_id"]
        assert result.buffered == 1
        assert await kv_store.get(latest_key(ids["vehicle_id"])) is not None

        broadcaster.publish.assert_awaited_once()
        vehicle_uuid, payload = broadcaster.publish.await_args.args
        assert vehicle_uuid == ids["vehicle_uuid"]
        assert payload["latitude"] == 50.4501
        assert "vehicle_id" not in payload
        assert "org_id" not in payload

    @pytest.mark.asyncio
    async def test_first_point_flushed_immediately(self, service, tracking_repo, ids) -> None:
        await service.ingest(ids["org_id"], make_request(ids))

        assert len(tracking_repo.inserted) == 1

    @pytest.mark.asyncio
    async def test_points_buffered_within_interval(self, service, kv_store, tracking_repo, clock, ids) -> None:
        await service.ingest(ids["org_id"], make_request(ids))
        clock.advance(1000)
        second = await service.ingest(ids["org_id"], make_request(ids, recorded_at=1_700_000_001_000))

        assert second.buffered == 1
        assert len(tracking_repo.inserted) == 1
        assert len(kv_store.raw(buffer_key(ids["vehicle_id"]))) == 1

    @pytest.mark.asyncio
    async def test_recorded_at_defaults_to_clock(self, service, clock, ids) -> None:
        result = await service.ingest(ids["org_id"], make_request(ids, recorded_at=None))

        assert result.recorded_at == clock()

    @pytest.mark.asyncio
    async def test_invalid_coordinates(self, service, vehicles, kv_store, broadcaster, ids) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await service.ingest(ids["org_id"], make_request(ids, latitude=91.0))

        assert exc_info.value.error_code == "INVALID_COORDS"
        vehicles.resolve_vehicle_id.assert_not_awaited()
        assert kv_store.set_calls == 0
        broadcaster.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_vehicle_has_no_side_effects(
        self, service, vehicles, kv_store, tracking_repo, broadcaster, ids
    ) -> None:
        """ТС чужой организации: ни кэша, ни буфера, ни рассылки."""
        vehicles.resolve_vehicle_id.return_value = None

        with pytest.raises(NotFoundError) as exc_info:
            await service.ingest(99, make_request(ids))

        assert exc_info.value.error_code == "VEHICLE_NOT_FOUND"
        assert kv_store.set_calls == 0
        assert tracking_repo.inserted == []
        broadcaster.publish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cache_outage_falls_back_to_direct_write(
        self, service, kv_store, tracking_repo, broadcaster, ids
    ) -> None:
        """Без Redis точка всё равно сохраняется и рассылается."""
        kv_store.available = False

        result = await service.ingest(ids["org_id"], make_request(ids))

        assert result.buffered == 1
        assert len(tracking_repo.inserted) == 1
        broadcaster.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_durable_write_failure_propagates(self, service, kv_store, tracking_repo, ids) -> None:
        kv_store.available = False
        tracking_repo.insert_point.side_effect = OSError("connection lost")

        with pytest.raises(DurableWriteFailure):
            await service.ingest(ids["org_id"], make_request(ids))

    @pytest.mark.asyncio
    async def test_detector_failure_logged_only(
        self, vehicles, tracking_repo, kv_store, broadcaster, clock, ids
    ) -> None:
        detector = AsyncMock()
        detector.evaluate = AsyncMock(side_effect=DetectionFailure("boom"))
        service = TrackingIngestService(
            vehicles,
            tracking_repo,
            LatestPositionCache(kv_store),
            WriteBuffer(kv_store, tracking_repo, clock=clock),
            detector,
            broadcaster,
            clock=clock,
        )

        await service.ingest(ids["org_id"], make_request(ids))

        broadcaster.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_broadcast_failure_logged_only(self, service, broadcaster, ids) -> None:
        broadcaster.publish.side_effect = RuntimeError("hub stopped")

        result = await service.ingest(ids["org_id"], make_request(ids))

        assert result.vehicle_id == ids["vehicle_id"]

    @pytest.mark.asyncio
    async def test_stats(self, service, clock, ids) -> None:
        await service.ingest(ids["org_id"], make_request(ids, speed=10.0))
        clock.advance(1000)
        await service.ingest(ids["org_id"], make_request(ids, speed=20.0, recorded_at=1_700_000_001_000))

        assert service.get_stats() == {"total_ingested": 2, "unique_vehicles": 1, "harsh_events": 1}

    @pytest.mark.asyncio
    async def test_harsh_events_follow_detector_verdict(
        self, vehicles, tracking_repo, kv_store, broadcaster, clock, ids
    ) -> None:
        """Счётчик доверяет решению детектора, порог не пересчитывается."""
        detector = AsyncMock()
        detector.evaluate = AsyncMock(
            side_effect=[MotionEvaluation(0.5, harsh=True), MotionEvaluation(50.0, harsh=False), None]
        )
        service = TrackingIngestService(
            vehicles,
            tracking_repo,
            LatestPositionCache(kv_store),
            WriteBuffer(kv_store, tracking_repo, clock=clock),
            detector,
            broadcaster,
            clock=clock,
        )

        for _ in range(3):
            await service.ingest(ids["org_id"], make_request(ids))

        assert service.get_stats()["harsh_events"] == 1


class TestFleetPositions:
    """Тесты get_fleet_positions."""

    @pytest.mark.asyncio
    async def test_positions_from_cache(self, service, vehicles, ids) -> None:
        vehicles.list_active_vehicles.return_value = [
            {"id": ids["vehicle_id"], "uuid": ids["vehicle_uuid"], "registration_number": "AA1234BB"},
            {"id": 43, "uuid": "0e9a7c1d-5b3f-4e2a-8d6c-1f2e3d4c5b6a", "registration_number": None},
        ]
        await service.ingest(ids["org_id"], make_request(ids, speed=8.0))

        positions = await service.get_fleet_positions(ids["org_id"])

        assert positions[0].vehicle_uuid == ids["vehicle_uuid"]
        assert positions[0].last_seen == 1_700_000_000_000
        assert positions[0].position.speed == 8.0
        assert positions[1].position is None
        assert positions[1].last_seen is None
        assert positions[1].registration_number == ""

    @pytest.mark.asyncio
    async def test_positions_without_cache(self, service, vehicles, kv_store, ids) -> None:
        vehicles.list_active_vehicles.return_value = [
            {"id": ids["vehicle_id"], "uuid": ids["vehicle_uuid"], "registration_number": "AA1234BB"},
        ]
        kv_store.available = False

        positions = await service.get_fleet_positions(ids["org_id"])

        assert len(positions) == 1
        assert positions[0].position is None


class TestHistory:
    """Тесты get_history."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes", [0, -5, 10_081])
    async def test_minutes_out_of_range(self, service, tracking_repo, ids, minutes) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await service.get_history(ids["org_id"], ids["vehicle_uuid"], minutes)

        assert exc_info.value.error_code == "INVALID_PARAM"
        tracking_repo.fetch_history.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_history_window(self, service, tracking_repo, clock, ids) -> None:
        tracking_repo.fetch_history.return_value = [
            {"latitude": 50.0, "longitude": 30.0, "speed": 5.0, "accuracy": None,
             "heading": None, "recorded_at": clock() - 1000},
        ]

        points = await service.get_history(ids["org_id"], ids["vehicle_uuid"], 10_080)

        assert len(points) == 1
        assert points[0].speed == 5.0
        tracking_repo.fetch_history.assert_awaited_once_with(
            ids["vehicle_id"], ids["org_id"], clock() - 10_080 * 60_000, 1000
        )

    @pytest.mark.asyncio
    async def test_history_unknown_vehicle(self, service, vehicles, ids) -> None:
        vehicles.resolve_vehicle_id.return_value = None

        with pytest.raises(NotFoundError):
            await service.get_history(ids["org_id"], ids["vehicle_uuid"])
