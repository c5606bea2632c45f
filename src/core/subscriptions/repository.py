# src/core/subscriptions/repository.py
"""
Репозиторий подписок в PostgreSQL.

Каждая запись изменяет одну строку одним UPDATE ... RETURNING, поэтому
операции атомарны без явных транзакций. Ошибки драйвера оборачиваются
в PersistenceError.
"""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import asyncpg

from src.common.constants import SubscriptionStatus, TypeMsg
from src.common.exceptions import PersistenceError
from src.common.logger import log_error, log_info
from src.core.subscriptions.models import (
    ScheduleSpec,
    Subscription,
    SubscriptionFilter,
    SubscriptionLog,
)
from src.infra.database import DatabaseManager

T = TypeVar("T")

# Маркер «ожидаемое значение курсора не задано» (None тоже валидное значение)
UNSET: Any = object()

_COLUMNS = """
    id, user_id, order_id, cleaner_id, start_date, end_date,
    frequency, days_of_week, week_numbers, price, status,
    last_order_date, next_planned_date, created_at, updated_at
"""


def _persistence(action: str) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Логирует ошибку хранилища и пробрасывает её как PersistenceError."""
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
                await log_error(f"Ошибка БД ({action}): {e}", extra={"operation": func.__name__})
                raise PersistenceError(f"Ошибка хранилища: {action}") from e
        return wrapper
    return decorator


class SubscriptionRepository:
    """Репозиторий подписок."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    @_persistence("получение подписки")
    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        row = await self._db.fetchrow(
            f"SELECT {_COLUMNS} FROM subscriptions WHERE id = $1",
            subscription_id,
        )
        return self._row_to_subscription(row) if row else None

    @_persistence("подписки клиента")
    async def list_by_client(self, user_id: str) -> list[Subscription]:
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM subscriptions
            WHERE user_id = $1
            ORDER BY created_at DESC
            """,
            user_id,
        )
        return [self._row_to_subscription(row) for row in rows]

    @_persistence("выборка по фильтру")
    async def list_filtered(
        self,
        criteria: SubscriptionFilter,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Subscription]:
        """
        Возвращает подписки, подходящие под все заданные критерии.

        Args:
            criteria: Фильтр (status, client_id, cleaner_id)
            limit: Максимальное количество
            offset: Смещение
        """
        where, params = self._build_where(criteria)
        params.extend([limit, offset])
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM subscriptions
            {where}
            ORDER BY created_at DESC
            LIMIT ${len(params) - 1} OFFSET ${len(params)}
            """,
            *params,
        )
        return [self._row_to_subscription(row) for row in rows]

    @_persistence("подсчёт по фильтру")
    async def count_filtered(self, criteria: SubscriptionFilter) -> int:
        where, params = self._build_where(criteria)
        return await self._db.fetchval(f"SELECT COUNT(*) FROM subscriptions {where}", *params)

    @_persistence("активные подписки")
    async def list_active_with_cursor(self) -> list[Subscription]:
        """Активные подписки с непустым next_planned_date (кандидаты на материализацию)."""
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM subscriptions
            WHERE status = $1 AND next_planned_date IS NOT NULL
            ORDER BY next_planned_date, id
            """,
            SubscriptionStatus.ACTIVE.value,
        )
        return [self._row_to_subscription(row) for row in rows]

    @_persistence("поиск по дате окончания")
    async def list_ending_from(
        self,
        target: date,
        statuses: Sequence[SubscriptionStatus],
    ) -> list[Subscription]:
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM subscriptions
            WHERE status = ANY($1::text[]) AND end_date >= $2
            ORDER BY id
            """,
            [status.value for status in statuses],
            target,
        )
        return [self._row_to_subscription(row) for row in rows]

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    @_persistence("создание подписки")
    async def create(self, subscription: Subscription) -> Subscription:
        row = await self._db.fetchrow(
            f"""
            INSERT INTO subscriptions (
                id, user_id, order_id, cleaner_id, start_date, end_date,
                frequency, days_of_week, week_numbers, price, status,
                last_order_date, next_planned_date, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
            RETURNING {_COLUMNS}
            """,
            subscription.id,
            subscription.user_id,
            subscription.order_id,
            subscription.cleaner_id,
            subscription.start_date,
            subscription.end_date,
            subscription.schedule.frequency.value,
            list(subscription.schedule.days_of_week),
            list(subscription.schedule.week_numbers),
            subscription.price,
            subscription.status.value,
            subscription.last_order_date,
            subscription.next_planned_date,
            subscription.created_at,
            subscription.updated_at,
        )
        await log_info(f"Подписка {subscription.id} создана", type_msg=TypeMsg.DEBUG)
        return self._row_to_subscription(row)

    @_persistence("сдвиг курсора")
    async def advance(
        self,
        subscription_id: str,
        next_date: Optional[date],
        expected: Any = UNSET,
    ) -> Optional[Subscription]:
        """
        Устанавливает next_planned_date; при None активная подписка истекает.

        Строка не меняется, если значение уже установлено, поэтому повторный
        вызов не трогает updated_at. При заданном expected обновление
        выполняется только для активной подписки с курсором, равным expected
        (compare-and-swap).

        Returns:
            Обновлённая подписка или None, если ни одна строка не изменилась
        """
        conditions = [
            "id = $1",
            "(next_planned_date IS DISTINCT FROM $2::date OR ($2::date IS NULL AND status = $3))",
        ]
        params: list[Any] = [
            subscription_id,
            next_date,
            SubscriptionStatus.ACTIVE.value,
            SubscriptionStatus.EXPIRED.value,
        ]
        if expected is not UNSET:
            conditions.append("status = $3")
            conditions.append("next_planned_date IS NOT DISTINCT FROM $5::date")
            params.append(expected)

        row = await self._db.fetchrow(
            f"""
            UPDATE subscriptions
            SET next_planned_date = $2::date,
                status = CASE WHEN $2::date IS NULL AND status = $3 THEN $4 ELSE status END,
                updated_at = NOW()
            WHERE {" AND ".join(conditions)}
            RETURNING {_COLUMNS}
            """,
            *params,
        )
        return self._row_to_subscription(row) if row else None

    @_persistence("смена статуса")
    async def update_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
        expected_status: SubscriptionStatus,
    ) -> Optional[Subscription]:
        """Меняет статус, только если текущий статус равен expected_status."""
        row = await self._db.fetchrow(
            f"""
            UPDATE subscriptions
            SET status = $2, updated_at = NOW()
            WHERE id = $1 AND status = $3
            RETURNING {_COLUMNS}
            """,
            subscription_id,
            status.value,
            expected_status.value,
        )
        return self._row_to_subscription(row) if row else None

    @_persistence("фиксация заказа")
    async def record_occurrence(self, subscription_id: str, when: datetime) -> Optional[Subscription]:
        row = await self._db.fetchrow(
            f"""
            UPDATE subscriptions
            SET last_order_date = $2, updated_at = NOW()
            WHERE id = $1
            RETURNING {_COLUMNS}
            """,
            subscription_id,
            when,
        )
        return self._row_to_subscription(row) if row else None

    @_persistence("изменение расписания")
    async def update_schedule(
        self,
        subscription_id: str,
        schedule: ScheduleSpec,
        next_planned_date: Optional[date],
    ) -> Optional[Subscription]:
        """Меняет расписание и курсор активной подписки."""
        row = await self._db.fetchrow(
            f"""
            UPDATE subscriptions
            SET frequency = $2, days_of_week = $3, week_numbers = $4,
                next_planned_date = $5, updated_at = NOW()
            WHERE id = $1 AND status = $6
            RETURNING {_COLUMNS}
            """,
            subscription_id,
            schedule.frequency.value,
            list(schedule.days_of_week),
            list(schedule.week_numbers),
            next_planned_date,
            SubscriptionStatus.ACTIVE.value,
        )
        return self._row_to_subscription(row) if row else None

    @_persistence("продление подписки")
    async def extend(
        self,
        subscription_id: str,
        current_end_date: date,
        new_end_date: date,
    ) -> Optional[Subscription]:
        """Переносит end_date активной подписки, если её end_date не менялся с момента чтения."""
        row = await self._db.fetchrow(
            f"""
            UPDATE subscriptions
            SET end_date = $3, updated_at = NOW()
            WHERE id = $1 AND end_date = $2 AND status = $4
            RETURNING {_COLUMNS}
            """,
            subscription_id,
            current_end_date,
            new_end_date,
            SubscriptionStatus.ACTIVE.value,
        )
        return self._row_to_subscription(row) if row else None

    @_persistence("запись журнала")
    async def add_log(self, entry: SubscriptionLog) -> None:
        await self._db.execute(
            """
            INSERT INTO subscription_logs (subscription_id, client_id, action, details, created_at)
            VALUES ($1, $2, $3, $4::jsonb, $5)
            """,
            entry.subscription_id,
            entry.client_id,
            entry.action.value,
            json.dumps(entry.details, ensure_ascii=False, default=str),
            entry.created_at,
        )

    # =========================================================================
    # ВСПОМОГАТЕЛЬНОЕ
    # =========================================================================

    @staticmethod
    def _build_where(criteria: SubscriptionFilter) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("status", criteria.status.value if criteria.status else None),
            ("user_id", criteria.client_id),
            ("cleaner_id", criteria.cleaner_id),
        ):
            if value is not None:
                params.append(value)
                clauses.append(f"{column} = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _row_to_subscription(self, row) -> Subscription:
        """Конвертирует строку БД в модель Subscription."""
        return Subscription(
            id=str(row["id"]),
            user_id=row["user_id"],
            order_id=row["order_id"],
            cleaner_id=row["cleaner_id"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            schedule=ScheduleSpec(
                frequency=row["frequency"],
                days_of_week=list(row["days_of_week"] or []),
                week_numbers=list(row["week_numbers"] or []),
            ),
            price=float(row["price"]),
            status=row["status"],
            last_order_date=row["last_order_date"],
            next_planned_date=row["next_planned_date"],
            created_at=row["created_at"] or datetime.now(timezone.utc),
            updated_at=row["updated_at"] or datetime.now(timezone.utc),
        )
