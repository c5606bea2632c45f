# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Основной источник настроек: config/config.json.
Секреты и адреса сервисов переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "subscription_service"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "api"


class DeploymentSettings(BaseModel):
    """Адрес сервиса и адреса внешних сервисов платформы."""
    SUBSCRIPTIONS_SERVICE_HOST: str = "0.0.0.0"
    SUBSCRIPTIONS_SERVICE_PORT: int = 8092
    AUTH_SERVICE_URL: str = "http://auth_service:8080"
    ORDERS_SERVICE_URL: str = "http://order_service:8080"
    PAYMENTS_SERVICE_URL: str = "http://payment_service:8080"
    NOTIFICATIONS_SERVICE_URL: str = "http://notification_service:8080"
    SERVICE_TIMEOUT: float = 10.0
    # Токен, с которым планировщик ходит в сервис заказов
    SERVICE_AUTH_TOKEN: str = ""

    @field_validator("SERVICE_AUTH_TOKEN", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает сервисный токен из переменных окружения, если не задан."""
        if not v:
            return os.getenv("SERVICE_AUTH_TOKEN", "")
        return v


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "subscriptions"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 2
    DB_MAX_POOL_SIZE: int = 10
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = Field(3, ge=1)
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "subscriptions"
    REDIS_MAX_CONNECTIONS: int = 20

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(BaseModel):
    """Настройки TTL кэша."""
    SUBSCRIPTION_TTL: int = 300
    SESSION_TTL: int = 300
    SUBSCRIPTION_LOCK_TTL: int = 120


class SchedulerSettings(BaseModel):
    """Настройки ежедневного планировщика подписок."""
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_SECONDS: int = 86400
    SCHEDULER_RUN_ON_STARTUP: bool = True
    SCHEDULER_CONCURRENCY: int = 10
    HORIZON_DAYS: int = Field(4, ge=0)
    EXPIRING_NOTICE_DAYS: int = Field(3, ge=0)


class NotificationSettings(BaseModel):
    """Настройки отправки уведомлений."""
    NOTIFICATION_QUEUE_SIZE: int = 1000
    NOTIFICATION_LANGUAGE: str = "ru"
    NOTIFICATION_DELIVERY_TYPE: str = "push"


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса переопределяются из переменных окружения.
        """
        data = load_config_json()

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "subscription_service"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", False),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
                COMPONENT_MODE=os.getenv("COMPONENT_MODE", data.get("COMPONENT_MODE", "api")),
            ),
            deployment=DeploymentSettings(
                SUBSCRIPTIONS_SERVICE_HOST=data.get("SUBSCRIPTIONS_SERVICE_HOST", "0.0.0.0"),
                SUBSCRIPTIONS_SERVICE_PORT=int(
                    os.getenv("SERVER_PORT", data.get("SUBSCRIPTIONS_SERVICE_PORT", 8092))
                ),
                AUTH_SERVICE_URL=os.getenv(
                    "AUTH_SERVICE_URL", data.get("AUTH_SERVICE_URL", "http://auth_service:8080")
                ),
                ORDERS_SERVICE_URL=os.getenv(
                    "ORDERS_SERVICE_URL", data.get("ORDERS_SERVICE_URL", "http://order_service:8080")
                ),
                PAYMENTS_SERVICE_URL=os.getenv(
                    "PAYMENTS_SERVICE_URL", data.get("PAYMENTS_SERVICE_URL", "http://payment_service:8080")
                ),
                NOTIFICATIONS_SERVICE_URL=os.getenv(
                    "NOTIFICATIONS_SERVICE_URL",
                    data.get("NOTIFICATIONS_SERVICE_URL", "http://notification_service:8080"),
                ),
                SERVICE_TIMEOUT=data.get("SERVICE_TIMEOUT", 10.0),
                SERVICE_AUTH_TOKEN=os.getenv("SERVICE_AUTH_TOKEN", data.get("SERVICE_AUTH_TOKEN", "")),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=data.get("LOG_BACKUP_COUNT", 5),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "subscriptions")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 2),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 10),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 60),
                DB_RETRY_ATTEMPTS=data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=data.get("DB_RETRY_DELAY", 1.0),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", data.get("REDIS_PORT", 6379))),
                REDIS_DB=data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "subscriptions"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 20),
            ),
            redis_ttl=RedisTTLSettings(
                SUBSCRIPTION_TTL=data.get("SUBSCRIPTION_TTL", 300),
                SESSION_TTL=data.get("SESSION_TTL", 300),
                SUBSCRIPTION_LOCK_TTL=data.get("SUBSCRIPTION_LOCK_TTL", 120),
            ),
            scheduler=SchedulerSettings(
                SCHEDULER_ENABLED=data.get("SCHEDULER_ENABLED", True),
                SCHEDULER_INTERVAL_SECONDS=data.get("SCHEDULER_INTERVAL_SECONDS", 86400),
                SCHEDULER_RUN_ON_STARTUP=data.get("SCHEDULER_RUN_ON_STARTUP", True),
                SCHEDULER_CONCURRENCY=data.get("SCHEDULER_CONCURRENCY", 10),
                HORIZON_DAYS=data.get("HORIZON_DAYS", 4),
                EXPIRING_NOTICE_DAYS=data.get("EXPIRING_NOTICE_DAYS", 3),
            ),
            notifications=NotificationSettings(
                NOTIFICATION_QUEUE_SIZE=data.get("NOTIFICATION_QUEUE_SIZE", 1000),
                NOTIFICATION_LANGUAGE=data.get("NOTIFICATION_LANGUAGE", "ru"),
                NOTIFICATION_DELIVERY_TYPE=data.get("NOTIFICATION_DELIVERY_TYPE", "push"),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает настройки приложения.
    Перед чтением config.json подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


settings = get_settings()
