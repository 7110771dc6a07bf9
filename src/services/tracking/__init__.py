# src/services/tracking/__init__.py
"""
Fleet Tracking API: приём GPS-телеметрии ТС.

Обеспечивает:
- Приём точек по HTTP с буферизацией в Redis
- Последние позиции автопарка и историю точек
- Live-подписку по WebSocket
"""
