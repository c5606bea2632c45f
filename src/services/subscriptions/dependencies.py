# src/services/subscriptions/dependencies.py
"""
Dependency Injection для API подписок.
Компоненты создаются в lifespan и хранятся в app.state.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from src.core.subscriptions.service import SubscriptionService
from src.infra.database import DatabaseManager
from src.infra.redis_client import RedisClient
from src.infra.service_clients import AuthServiceClient


def _state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise RuntimeError(f"{name} не инициализирован. Проверьте lifespan приложения.")
    return value


def get_subscription_service(request: Request) -> SubscriptionService:
    return _state_attr(request, "subscription_service")


def get_auth_client(request: Request) -> AuthServiceClient:
    return _state_attr(request, "auth_client")


def get_db(request: Request) -> Optional[DatabaseManager]:
    return getattr(request.app.state, "db", None)


def get_redis(request: Request) -> Optional[RedisClient]:
    """Redis опционален: без него кэш и сессии просто не используются."""
    return getattr(request.app.state, "redis", None)
