# src/services/realtime_ws/app.py
"""
WebSocket endpoint live-трекинга ТС.

- /ws/tracking?vehicle_uuid=...: подписка на позиции одного ТС

Входящие сообщения:
- {"action": "ping"} -> {"type": "pong", "timestamp": ...}
Остальное игнорируется.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from src.common.constants import WsMessageType
from src.common.exceptions import BroadcastFailure
from src.common.logger import log_warning
from src.core.tracking.clock import now_ms
from src.services.realtime_ws.hub import get_hub_registry

router = APIRouter(tags=["Realtime"])


@router.websocket("/ws/tracking")
async def websocket_tracking(
    websocket: WebSocket,
    vehicle_uuid: str | None = Query(default=None),
) -> None:
    """WebSocket для подписчиков позиций ТС."""
    if not vehicle_uuid:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="vehicle_uuid is required")
        return

    await websocket.accept()
    registry = get_hub_registry()

    try:
        connection_id = await registry.subscribe(vehicle_uuid, websocket)
    except BroadcastFailure as e:
        await log_warning(f"Подписка не оформлена: {e.message}", extra={"vehicle_uuid": vehicle_uuid})
        return

    try:
        while True:
            raw = await websocket.receive_text()
            await _handle_client_message(vehicle_uuid, connection_id, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await registry.disconnect(vehicle_uuid, connection_id)


async def _handle_client_message(vehicle_uuid: str, connection_id: str, raw: str) -> None:
    """Обработать сообщение от клиента."""
    try:
        data = json.loads(raw)
    except ValueError:
        await log_warning("Невалидное сообщение от подписчика", extra={"vehicle_uuid": vehicle_uuid})
        return

    if isinstance(data, dict) and data.get("action") == "ping":
        await get_hub_registry().send_direct(
            vehicle_uuid,
            connection_id,
            {"type": WsMessageType.PONG.value, "timestamp": now_ms()},
        )
