"""
HTTP-сервисы приложения.

Сервисы:
- subscriptions: REST API подписок (/api/subscriptions) и /health
"""

__all__: list[str] = []
