# src/services/realtime_ws/hub.py
"""
Хабы live-рассылки позиций ТС.

На каждое ТС один VehicleHub: очередь команд + одна задача-обработчик.
Все операции одного ТС (подписка, рассылка, отключение) выполняются
строго по очереди, разные ТС друг от друга не зависят.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import Any, Callable
from uuid import uuid4

from src.common.constants import HubState, TypeMsg, WsMessageType
from src.common.exceptions import BroadcastFailure
from src.common.logger import log_error, log_info, log_warning
from src.core.tracking.clock import Clock, now_ms


def hub_key(vehicle_uuid: str) -> str:
    """Адрес хаба: SHA-256 внешнего id ТС."""
    return hashlib.sha256(vehicle_uuid.encode("utf-8")).hexdigest()


@dataclass
class SubscriberConnection:
    """Подписчик хаба. websocket должен поддерживать send_json() и close()."""
    websocket: Any
    connection_id: str = field(default_factory=lambda: uuid4().hex)
    connected_at: int = field(default_factory=now_ms)


@dataclass
class _Command:
    kind: str  # subscribe, update, direct, disconnect
    connection: SubscriberConnection | None = None
    connection_id: str | None = None
    message: dict[str, Any] | None = None
    done: asyncio.Future | None = None


def _resolve(command: _Command, result: Any) -> None:
    # ожидающий мог быть отменён (клиент отключился)
    if command.done is not None and not command.done.done():
        command.done.set_result(result)


class VehicleHub:
    """
    Хаб одного ТС.

    Состояния: EMPTY (нет подписчиков) и ACTIVE. Пустой хаб с пустой
    очередью останавливается и вызывает on_empty, после чего реестр
    забывает о нём.
    """

    def __init__(
        self,
        vehicle_uuid: str,
        *,
        send_timeout: float = 5.0,
        inbox_size: int = 1000,
        on_empty: Callable[[VehicleHub], None] | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.vehicle_uuid = vehicle_uuid
        self.key = hub_key(vehicle_uuid)
        self._send_timeout = send_timeout
        self._inbox_size = inbox_size
        self._on_empty = on_empty
        self._clock = clock

        self._inbox: asyncio.Queue[_Command] = asyncio.Queue()
        self._subscribers: dict[str, SubscriberConnection] = {}
        self._task: asyncio.Task | None = None
        self._stopped = False
        self._current: _Command | None = None

        # Статистика
        self.messages_sent = 0
        self.failed_sends = 0
        self.dropped_updates = 0

    @property
    def state(self) -> HubState:
        return HubState.ACTIVE if self._subscribers else HubState.EMPTY

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"vehicle-hub-{self.key[:12]}")

    async def subscribe(self, websocket: Any) -> str:
        """
        Регистрирует подписчика и отправляет ему подтверждение.

        Returns:
            connection_id

        Raises:
            BroadcastFailure: подтверждение не доставлено
        """
        connection = SubscriberConnection(websocket=websocket, connected_at=self._clock())
        return await self._request(_Command(kind="subscribe", connection=connection))

    def publish(self, payload: dict[str, Any]) -> bool:
        """
        Ставит обновление в очередь без ожидания доставки.

        Returns:
            False если очередь переполнена и обновление отброшено
        """
        if self._stopped:
            return False
        if self._inbox.qsize() >= self._inbox_size:
            self.dropped_updates += 1
            return False
        message = {
            "type": WsMessageType.UPDATE.value,
            "payload": payload,
            "timestamp": self._clock(),
        }
        self._inbox.put_nowait(_Command(kind="update", message=message))
        return True

    async def send_direct(self, connection_id: str, message: dict[str, Any]) -> None:
        """Сообщение одному подписчику в общем порядке очереди (pong и т.п.)."""
        await self._request(_Command(kind="direct", connection_id=connection_id, message=message))

    async def disconnect(self, connection_id: str) -> None:
        await self._request(_Command(kind="disconnect", connection_id=connection_id))

    async def join(self) -> None:
        """Ждёт обработки всех команд, поставленных в очередь."""
        await self._inbox.join()

    async def stop(self) -> None:
        """Останавливает хаб и закрывает всех подписчиков."""
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        pending = [self._current] if self._current is not None else []
        self._current = None
        while not self._inbox.empty():
            pending.append(self._inbox.get_nowait())
            self._inbox.task_done()
        for command in pending:
            if command.done is not None and not command.done.done():
                command.done.set_exception(BroadcastFailure("Хаб остановлен"))

        for connection in list(self._subscribers.values()):
            await self._close(connection)
        self._subscribers.clear()

    async def _request(self, command: _Command) -> Any:
        if self._stopped:
            raise BroadcastFailure("Хаб остановлен", details={"vehicle_uuid": self.vehicle_uuid})
        command.done = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait(command)
        return await command.done

    async def _run(self) -> None:
        while True:
            command = await self._inbox.get()
            self._current = command
            try:
                await self._handle(command)
            except Exception as e:
                await log_error(
                    f"Ошибка обработки команды хаба: {e}",
                    extra={"vehicle_uuid": self.vehicle_uuid, "command": command.kind},
                    exc_info=True,
                )
                if command.done is not None and not command.done.done():
                    command.done.set_exception(e)
            finally:
                self._inbox.task_done()
            self._current = None

            # Проверка и снятие с реестра без await между ними
            if not self._subscribers and self._inbox.empty():
                self._stopped = True
                if self._on_empty is not None:
                    self._on_empty(self)
                return

    async def _handle(self, command: _Command) -> None:
        match command.kind:
            case "subscribe":
                await self._handle_subscribe(command)
            case "update":
                await self._broadcast(command.message)
            case "direct":
                connection = self._subscribers.get(command.connection_id)
                if connection is not None and not await self._send(connection, command.message):
                    await self._drop(connection)
                _resolve(command, None)
            case "disconnect":
                self._subscribers.pop(command.connection_id, None)
                _resolve(command, None)

    async def _handle_subscribe(self, command: _Command) -> None:
        connection = command.connection
        if command.done.done():
            # подписчик ушёл, не дождавшись регистрации
            return
        self._subscribers[connection.connection_id] = connection
        ack = {
            "type": WsMessageType.SUBSCRIBED.value,
            "vehicle_uuid": self.vehicle_uuid,
            "timestamp": self._clock(),
        }
        if not await self._send(connection, ack):
            await self._drop(connection)
            if not command.done.done():
                command.done.set_exception(
                    BroadcastFailure(
                        "Не удалось подтвердить подписку",
                        details={"vehicle_uuid": self.vehicle_uuid},
                    )
                )
            return
        if command.done.done():
            self._subscribers.pop(connection.connection_id, None)
            return
        command.done.set_result(connection.connection_id)

    async def _broadcast(self, message: dict[str, Any]) -> None:
        connections = list(self._subscribers.values())
        if not connections:
            return

        results = await asyncio.gather(*(self._send(c, message) for c in connections))

        failed = [c for c, ok in zip(connections, results) if not ok]
        for connection in failed:
            await self._drop(connection)

    async def _send(self, connection: SubscriberConnection, message: dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(connection.websocket.send_json(message), timeout=self._send_timeout)
        except Exception as e:
            self.failed_sends += 1
            await log_warning(
                f"Ошибка отправки подписчику: {e!r}",
                extra={"vehicle_uuid": self.vehicle_uuid, "connection_id": connection.connection_id},
            )
            return False
        self.messages_sent += 1
        return True

    async def _drop(self, connection: SubscriberConnection) -> None:
        self._subscribers.pop(connection.connection_id, None)
        await self._close(connection)

    async def _close(self, connection: SubscriberConnection) -> None:
        try:
            await asyncio.wait_for(connection.websocket.close(), timeout=self._send_timeout)
        except Exception as e:
            await log_info(
                f"Соединение уже закрыто: {e!r}",
                type_msg=TypeMsg.DEBUG,
                extra={"connection_id": connection.connection_id},
            )


class HubRegistry:
    """
    Реестр хабов по адресу hub_key(vehicle_uuid).

    Хаб создаётся при первой подписке и удаляется, когда опустел.
    Рассылка по ТС без хаба ничего не делает.
    """

    def __init__(
        self,
        *,
        send_timeout: float = 5.0,
        inbox_size: int = 1000,
        clock: Clock = now_ms,
    ) -> None:
        self._send_timeout = send_timeout
        self._inbox_size = inbox_size
        self._clock = clock
        self._hubs: dict[str, VehicleHub] = {}

        # Счётчики остановленных хабов
        self._retired = {"messages_sent": 0, "failed_sends": 0, "dropped_updates": 0}

    def get_hub(self, vehicle_uuid: str) -> VehicleHub | None:
        return self._hubs.get(hub_key(vehicle_uuid))

    def _get_or_create(self, vehicle_uuid: str) -> VehicleHub:
        key = hub_key(vehicle_uuid)
        hub = self._hubs.get(key)
        if hub is None:
            hub = VehicleHub(
                vehicle_uuid,
                send_timeout=self._send_timeout,
                inbox_size=self._inbox_size,
                on_empty=self._forget,
                clock=self._clock,
            )
            self._hubs[key] = hub
            hub.start()
        return hub

    def _forget(self, hub: VehicleHub) -> None:
        if self._hubs.get(hub.key) is hub:
            del self._hubs[hub.key]
        self._retired["messages_sent"] += hub.messages_sent
        self._retired["failed_sends"] += hub.failed_sends
        self._retired["dropped_updates"] += hub.dropped_updates

    async def subscribe(self, vehicle_uuid: str, websocket: Any) -> str:
        """Подписывает соединение на ТС. Returns: connection_id."""
        hub = self._get_or_create(vehicle_uuid)
        return await hub.subscribe(websocket)

    async def publish(self, vehicle_uuid: str, payload: dict[str, Any]) -> None:
        """Fire-and-forget: ставит обновление в очередь хаба ТС, если он есть."""
        hub = self.get_hub(vehicle_uuid)
        if hub is None:
            return
        if not hub.publish(payload):
            await log_warning(
                "Очередь хаба переполнена, обновление отброшено",
                extra={"vehicle_uuid": vehicle_uuid},
            )

    async def send_direct(self, vehicle_uuid: str, connection_id: str, message: dict[str, Any]) -> None:
        hub = self.get_hub(vehicle_uuid)
        if hub is not None:
            await hub.send_direct(connection_id, message)

    async def disconnect(self, vehicle_uuid: str, connection_id: str) -> None:
        hub = self.get_hub(vehicle_uuid)
        if hub is not None:
            await hub.disconnect(connection_id)

    def stats(self) -> dict[str, int]:
        hubs = list(self._hubs.values())
        return {
            "hubs": len(hubs),
            "subscribers": sum(h.subscriber_count for h in hubs),
            "messages_sent": self._retired["messages_sent"] + sum(h.messages_sent for h in hubs),
            "failed_sends": self._retired["failed_sends"] + sum(h.failed_sends for h in hubs),
            "dropped_updates": self._retired["dropped_updates"] + sum(h.dropped_updates for h in hubs),
        }

    async def shutdown(self) -> None:
        """Останавливает все хабы."""
        hubs = list(self._hubs.values())
        self._hubs.clear()
        for hub in hubs:
            await hub.stop()
        if hubs:
            await log_info(f"Остановлено хабов рассылки: {len(hubs)}", type_msg=TypeMsg.INFO)


_registry: HubRegistry | None = None


def get_hub_registry() -> HubRegistry:
    """Возвращает глобальный реестр хабов."""
    global _registry
    if _registry is None:
        _registry = HubRegistry()
    return _registry


def init_hub_registry() -> HubRegistry:
    """Создаёт реестр хабов по настройкам рассылки."""
    global _registry
    from src.config import settings

    _registry = HubRegistry(
        send_timeout=settings.broadcast.SEND_TIMEOUT,
        inbox_size=settings.broadcast.HUB_INBOX_SIZE,
    )
    return _registry


async def close_hub_registry() -> None:
    """Останавливает все хабы и сбрасывает реестр."""
    global _registry
    if _registry is not None:
        await _registry.shutdown()
        _registry = None
