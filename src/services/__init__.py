# src/services/__init__.py
"""
Сервисы приложения.

- tracking: HTTP API приёма и чтения телеметрии
- realtime_ws: WebSocket live-рассылка позиций ТС
"""

__all__: list[str] = []
