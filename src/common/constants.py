# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ComplianceItem(str, Enum):
    """Типы событий журнала соответствия."""
    HARSH_ACCELERATION = "harsh_acceleration"


class ComplianceStatus(str, Enum):
    """Уровни важности событий журнала соответствия."""
    OK = "ok"
    WARNING = "warning"
    VIOLATION = "violation"


class EntityType(str, Enum):
    """Типы сущностей, к которым привязываются события."""
    VEHICLE = "vehicle"


class HubState(str, Enum):
    """Состояния хаба рассылки."""
    EMPTY = "empty"
    ACTIVE = "active"


class WsMessageType(str, Enum):
    """Типы сообщений, отправляемых подписчикам."""
    SUBSCRIBED = "subscribed"
    UPDATE = "update"
    PONG = "pong"
