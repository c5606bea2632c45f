# src/core/subscriptions/models.py
"""
Модели данных подписок.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import Frequency, STAFF_ROLES, SubscriptionAction, SubscriptionStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleSpec(BaseModel):
    """
    Декларативное расписание подписки.

    Структурная корректность (дни недели, число номеров недель)
    проверяется в schedule.validate_schedule.
    """

    frequency: Frequency = Field(..., description="Периодичность")
    days_of_week: list[str] = Field(..., description="Дни недели: Mon..Sun")
    week_numbers: list[int] = Field(
        default_factory=list,
        description="Номера недель месяца 1..5 (игнорируются для weekly)",
    )


class Subscription(BaseModel):
    """Модель подписки на регулярную уборку."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID подписки")
    user_id: str = Field(..., description="ID клиента")
    order_id: str = Field(..., description="ID заказа-шаблона")
    cleaner_id: Optional[str] = Field(None, description="ID предпочитаемого клинера")

    start_date: date = Field(..., description="Дата начала (включительно)")
    end_date: date = Field(..., description="Дата окончания (включительно)")
    schedule: ScheduleSpec
    price: float = Field(..., gt=0, description="Стоимость одного визита")

    status: SubscriptionStatus = Field(SubscriptionStatus.ACTIVE, description="Статус подписки")
    last_order_date: Optional[datetime] = Field(None, description="Время создания последнего заказа")
    next_planned_date: Optional[date] = Field(None, description="Следующая плановая дата")

    created_at: datetime = Field(default_factory=utc_now, description="Время создания")
    updated_at: datetime = Field(default_factory=utc_now, description="Время обновления")

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        """Истёкшая и отменённая подписки больше не меняют статус."""
        return self.status in (SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED)


class SubscriptionCreateDTO(BaseModel):
    """DTO для создания подписки."""

    order_id: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    schedule: ScheduleSpec
    price: float
    cleaner_id: Optional[str] = None


class SubscriptionExtendDTO(BaseModel):
    """DTO для продления подписки."""

    end_date: date


class ScheduleUpdateDTO(BaseModel):
    """
    DTO для изменения расписания.
    Незаданные поля берутся из текущего расписания.
    """

    frequency: Optional[Frequency] = None
    days_of_week: Optional[list[str]] = None
    week_numbers: Optional[list[int]] = None

    def apply_to(self, current: ScheduleSpec) -> ScheduleSpec:
        return ScheduleSpec(
            frequency=self.frequency or current.frequency,
            days_of_week=self.days_of_week if self.days_of_week is not None else current.days_of_week,
            week_numbers=self.week_numbers if self.week_numbers is not None else current.week_numbers,
        )


class SubscriptionFilter(BaseModel):
    """Критерии выборки подписок. Все заданные поля объединяются через AND."""

    status: Optional[SubscriptionStatus] = None
    client_id: Optional[str] = None
    cleaner_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.status is None and self.client_id is None and self.cleaner_id is None


class SubscriptionLog(BaseModel):
    """Запись журнала действий над подпиской."""

    subscription_id: str
    client_id: str
    action: SubscriptionAction
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class AuthContext(BaseModel):
    """Аутентифицированный вызывающий и его токен для проброса во внешние сервисы."""

    user_id: str
    role: str
    token: str = ""

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class SubscriptionCreatedResponse(BaseModel):
    id: str


class SchedulerRunStats(BaseModel):
    """Счётчики одного прохода планировщика."""

    scanned: int = 0
    notified: int = 0
    materialized: int = 0
    order_failures: int = 0
    advanced: int = 0
    expired: int = 0
    skipped: int = 0
    errors: int = 0
