# src/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними системами: PostgreSQL, Redis, HTTP-сервисы платформы.
"""

from src.infra.database import DatabaseManager, init_db, close_db
from src.infra.redis_client import RedisClient, init_redis, close_redis

__all__ = [
    "DatabaseManager",
    "init_db",
    "close_db",
    "RedisClient",
    "init_redis",
    "close_redis",
]
