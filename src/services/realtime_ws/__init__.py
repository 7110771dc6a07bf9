# src/services/realtime_ws/__init__.py
"""
Live-рассылка позиций ТС по WebSocket.

Обеспечивает:
- Хаб на каждое ТС (очередь + задача-обработчик)
- Подтверждение подписки и рассылку обновлений
- Отключение сбойных подписчиков
"""
