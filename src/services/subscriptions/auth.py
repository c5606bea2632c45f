# src/services/subscriptions/auth.py
"""
Аутентификация запросов.
Bearer-токен проверяется в сервисе авторизации, результат кэшируется
в Redis на SESSION_TTL под хэшем токена.
"""

from __future__ import annotations

import hashlib
from typing import Annotated, Optional

from fastapi import Depends, Header
from redis.exceptions import RedisError

from src.common.exceptions import AuthenticationError, PermissionDenied
from src.common.logger import log_warning
from src.config import settings
from src.core.subscriptions.models import AuthContext
from src.infra.redis_client import RedisClient
from src.infra.service_clients import AuthServiceClient
from src.services.subscriptions.dependencies import get_auth_client, get_redis


def parse_bearer(authorization: Optional[str]) -> str:
    """
    Извлекает токен из заголовка Authorization.

    Raises:
        AuthenticationError: заголовок отсутствует или не Bearer
    """
    if not authorization:
        raise AuthenticationError("Требуется заголовок Authorization")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Ожидается Authorization: Bearer <token>")
    return token.strip()


def _session_key(token: str) -> str:
    return f"session:{hashlib.sha256(token.encode('utf-8')).hexdigest()}"


async def get_current_user(
    auth_client: Annotated[AuthServiceClient, Depends(get_auth_client)],
    redis: Annotated[Optional[RedisClient], Depends(get_redis)],
    authorization: Annotated[Optional[str], Header()] = None,
) -> AuthContext:
    token = parse_bearer(authorization)
    key = _session_key(token)

    if redis is not None:
        try:
            cached = await redis.get_model(key, AuthContext)
        except (RedisError, RuntimeError) as e:
            await log_warning(f"Кэш сессий недоступен: {e}")
            cached = None
        if cached is not None:
            return cached.model_copy(update={"token": token})

    context = await auth_client.validate(token)

    if redis is not None:
        try:
            # Сам токен в кэш не пишем
            await redis.set_model(
                key,
                context.model_copy(update={"token": ""}),
                ttl=settings.redis_ttl.SESSION_TTL,
            )
        except (RedisError, RuntimeError) as e:
            await log_warning(f"Кэш сессий недоступен: {e}")

    return context


async def require_staff(
    caller: Annotated[AuthContext, Depends(get_current_user)],
) -> AuthContext:
    """Пропускает только admin и manager."""
    if not caller.is_staff:
        raise PermissionDenied("Операция доступна только администраторам и менеджерам")
    return caller


CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
StaffUser = Annotated[AuthContext, Depends(require_staff)]
