# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("SERVICE_AUTH_TOKEN", "test_service_token")

from src.common.constants import Frequency, SubscriptionStatus
from src.core.subscriptions.models import ScheduleSpec, Subscription, SubscriptionLog
from src.core.subscriptions.repository import UNSET


# Воскресенье, 1 июня 2025 (UTC)
FIXED_NOW = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture(scope="session")
def lang_dict_path(project_root: Path) -> Path:
    """Путь к файлу локализации."""
    return project_root / "config" / "lang_dict.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "subscription_service_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "COMPONENT_MODE": "scheduler",
        "SUBSCRIPTIONS_SERVICE_PORT": 9092,
        "ORDERS_SERVICE_URL": "http://orders.test",
        "SERVICE_TIMEOUT": 3.0,
        "LOG_LEVEL": "INFO",
        "LOG_TO_FILE": False,
        "DB_HOST": "db.test",
        "DB_PORT": 5433,
        "DB_NAME": "subscriptions_test",
        "REDIS_HOST": "redis.test",
        "REDIS_DB": 1,
        "REDIS_NAMESPACE": "subscriptions_test",
        "SUBSCRIPTION_TTL": 60,
        "SESSION_TTL": 30,
        "SUBSCRIPTION_LOCK_TTL": 15,
        "SCHEDULER_INTERVAL_SECONDS": 3600,
        "SCHEDULER_CONCURRENCY": 4,
        "HORIZON_DAYS": 5,
        "EXPIRING_NOTICE_DAYS": 2,
        "NOTIFICATION_QUEUE_SIZE": 10,
        "NOTIFICATION_LANGUAGE": "en",
    }


@pytest.fixture
def mock_lang_dict() -> dict[str, dict[str, str]]:
    """Мок словаря локализации для тестов."""
    return {
        "SUBSCRIPTION_CREATED_TITLE": {
            "ru": "Подписка оформлена",
            "en": "Subscription created",
        },
        "SUBSCRIPTION_CREATED_MESSAGE": {
            "ru": "Подписка действует с {start_date} по {end_date}.",
            "en": "Your subscription runs from {start_date} to {end_date}.",
        },
        "ONLY_RU": {
            "ru": "Только по-русски",
        },
    }


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    redis.acquire_lock = AsyncMock(return_value="lock-token")
    redis.release_lock = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def mock_notifier() -> AsyncMock:
    """Мок диспетчера уведомлений."""
    notifier = AsyncMock()
    notifier.notify = AsyncMock(return_value=True)
    return notifier


# =============================================================================
# РЕПОЗИТОРИЙ В ПАМЯТИ
# =============================================================================

class InMemorySubscriptionRepository:
    """
    Репозиторий подписок в памяти с той же семантикой записи,
    что и SubscriptionRepository: изменение одной строки либо None.
    """

    def __init__(self) -> None:
        self.rows: dict[str, Subscription] = {}
        self.logs: list[SubscriptionLog] = []
        self.writes = 0

    def put(self, subscription: Subscription) -> Subscription:
        self.rows[subscription.id] = subscription.model_copy(deep=True)
        return subscription

    def _copy(self, subscription: Optional[Subscription]) -> Optional[Subscription]:
        return subscription.model_copy(deep=True) if subscription else None

    def _touch(self, subscription: Subscription) -> Subscription:
        self.writes += 1
        subscription.updated_at = datetime.now(timezone.utc)
        return subscription.model_copy(deep=True)

    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        return self._copy(self.rows.get(subscription_id))

    async def list_by_client(self, user_id: str) -> list[Subscription]:
        return [self._copy(s) for s in self.rows.values() if s.user_id == user_id]

    def _filtered(self, criteria) -> list[Subscription]:
        return [
            s for s in self.rows.values()
            if (criteria.status is None or s.status == criteria.status)
            and (criteria.client_id is None or s.user_id == criteria.client_id)
            and (criteria.cleaner_id is None or s.cleaner_id == criteria.cleaner_id)
        ]

    async def list_filtered(self, criteria, limit: int = 100, offset: int = 0) -> list[Subscription]:
        return [self._copy(s) for s in self._filtered(criteria)[offset:offset + limit]]

    async def count_filtered(self, criteria) -> int:
        return len(self._filtered(criteria))

    async def list_active_with_cursor(self) -> list[Subscription]:
        return [
            self._copy(s) for s in self.rows.values()
            if s.status == SubscriptionStatus.ACTIVE and s.next_planned_date is not None
        ]

    async def list_ending_from(self, target: date, statuses) -> list[Subscription]:
        return [
            self._copy(s) for s in self.rows.values()
            if s.status in statuses and s.end_date >= target
        ]

    async def create(self, subscription: Subscription) -> Subscription:
        self.rows[subscription.id] = subscription.model_copy(deep=True)
        return subscription.model_copy(deep=True)

    async def advance(self, subscription_id: str, next_date: Optional[date], expected: Any = UNSET):
        row = self.rows.get(subscription_id)
        if row is None:
            return None
        is_active = row.status == SubscriptionStatus.ACTIVE
        if expected is not UNSET and (not is_active or row.next_planned_date != expected):
            return None
        if row.next_planned_date == next_date and not (next_date is None and is_active):
            return None
        row.next_planned_date = next_date
        if next_date is None and is_active:
            row.status = SubscriptionStatus.EXPIRED
        return self._touch(row)

    async def update_status(self, subscription_id: str, status, expected_status):
        row = self.rows.get(subscription_id)
        if row is None or row.status != expected_status:
            return None
        row.status = status
        return self._touch(row)

    async def record_occurrence(self, subscription_id: str, when: datetime):
        row = self.rows.get(subscription_id)
        if row is None:
            return None
        row.last_order_date = when
        return self._touch(row)

    async def update_schedule(self, subscription_id: str, schedule: ScheduleSpec, next_planned_date):
        row = self.rows.get(subscription_id)
        if row is None or row.status != SubscriptionStatus.ACTIVE:
            return None
        row.schedule = schedule
        row.next_planned_date = next_planned_date
        return self._touch(row)

    async def extend(self, subscription_id: str, current_end_date: date, new_end_date: date):
        row = self.rows.get(subscription_id)
        if row is None or row.status != SubscriptionStatus.ACTIVE or row.end_date != current_end_date:
            return None
        row.end_date = new_end_date
        return self._touch(row)

    async def add_log(self, entry: SubscriptionLog) -> None:
        self.logs.append(entry)


@pytest.fixture
def fake_repository() -> InMemorySubscriptionRepository:
    """Пустой репозиторий в памяти."""
    return InMemorySubscriptionRepository()


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Часы, всегда возвращающие FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def make_subscription() -> Callable[..., Subscription]:
    """Фабрика подписок: weekly Mon/Wed на июнь 2025."""

    def factory(**overrides: Any) -> Subscription:
        data: dict[str, Any] = {
            "user_id": "user-1",
            "order_id": "order-1",
            "start_date": date(2025, 6, 1),
            "end_date": date(2025, 6, 30),
            "schedule": ScheduleSpec(frequency=Frequency.WEEKLY, days_of_week=["Mon", "Wed"]),
            "price": 50.0,
            "status": SubscriptionStatus.ACTIVE,
            "next_planned_date": date(2025, 6, 2),
        }
        data.update(overrides)
        return Subscription(**data)

    return factory


@pytest.fixture
def sample_subscription(make_subscription: Callable[..., Subscription]) -> Subscription:
    """Пример активной подписки."""
    return make_subscription(id="sub-1")


@pytest.fixture
def sample_subscription_row(sample_subscription: Subscription) -> dict[str, Any]:
    """Строка таблицы subscriptions, соответствующая sample_subscription."""
    return {
        "id": sample_subscription.id,
        "user_id": sample_subscription.user_id,
        "order_id": sample_subscription.order_id,
        "cleaner_id": None,
        "start_date": sample_subscription.start_date,
        "end_date": sample_subscription.end_date,
        "frequency": "weekly",
        "days_of_week": ["Mon", "Wed"],
        "week_numbers": [],
        "price": 50,
        "status": "active",
        "last_order_date": None,
        "next_planned_date": sample_subscription.next_planned_date,
        "created_at": FIXED_NOW,
        "updated_at": FIXED_NOW,
    }


# =============================================================================
# УТИЛИТЫ
# =============================================================================

@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2), encoding="utf-8")
    return config_file


@pytest.fixture
def temp_lang_dict_file(tmp_path: Path, mock_lang_dict: dict[str, dict[str, str]]) -> Path:
    """Создаёт временный файл локализации."""
    lang_file = tmp_path / "lang_dict.json"
    lang_file.write_text(json.dumps(mock_lang_dict, ensure_ascii=False, indent=2), encoding="utf-8")
    return lang_file
