"""
Ежедневный планировщик подписок.

Каждый проход:
1. Уведомляет клиентов, у которых через EXPIRING_NOTICE_DAYS последняя уборка.
2. Создаёт заказы на даты внутри горизонта и сдвигает курсор подписок
   за горизонт; подписки без будущих дат истекают.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from redis.exceptions import RedisError

from src.common.constants import NotificationEvent, SubscriptionStatus, TypeMsg
from src.common.exceptions import CollaboratorUnavailable, PersistenceError
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.core.notifications.dispatcher import NotificationDispatcher
from src.core.subscriptions.models import SchedulerRunStats, Subscription, utc_now
from src.core.subscriptions.schedule import next_dates, to_utc_date
from src.core.subscriptions.service import SubscriptionService
from src.infra.redis_client import RedisClient
from src.infra.service_clients import OrderServiceClient
from src.worker.base import BaseWorker


class SubscriptionScheduler(BaseWorker):
    """Воркер материализации заказов по подпискам."""

    def __init__(
        self,
        service: SubscriptionService,
        orders: OrderServiceClient,
        redis: Optional[RedisClient] = None,
        notifier: Optional[NotificationDispatcher] = None,
        *,
        interval: float = 86400,
        run_on_startup: bool = True,
        horizon_days: int = 4,
        expiring_notice_days: int = 3,
        concurrency: int = 10,
        lock_ttl: int = 120,
        service_token: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Args:
            service: Сервис подписок
            orders: Клиент сервиса заказов
            redis: Redis для межпроцессных блокировок (опционально)
            notifier: Диспетчер уведомлений (опционально)
            interval: Период запуска в секундах
            run_on_startup: Выполнить проход сразу после старта
            horizon_days: Горизонт материализации в днях от сегодня
            expiring_notice_days: За сколько дней предупреждать о последней уборке
            concurrency: Максимум подписок, обрабатываемых одновременно
            lock_ttl: TTL блокировки подписки в секундах
            service_token: Токен для вызовов сервиса заказов
            clock: Источник текущего времени (UTC)
        """
        super().__init__(interval=interval, run_on_startup=run_on_startup)
        self._service = service
        self._orders = orders
        self._redis = redis
        self._notifier = notifier
        self.horizon_days = horizon_days
        self.expiring_notice_days = expiring_notice_days
        self.concurrency = max(1, concurrency)
        self.lock_ttl = lock_ttl
        self._service_token = service_token or None
        self._clock = clock

    @property
    def name(self) -> str:
        return "subscription_scheduler"

    async def run_once(self) -> SchedulerRunStats:
        """Один полный проход: уведомления, затем материализация."""
        today = to_utc_date(self._clock())
        stats = SchedulerRunStats()

        await log_info(f"Проход планировщика подписок за {today.isoformat()}", type_msg=TypeMsg.INFO)

        await self.notify_expiring(today, stats)
        await self.materialize(today, stats)

        await log_info(
            f"Проход планировщика завершён: {stats.model_dump()}",
            type_msg=TypeMsg.INFO,
            extra=stats.model_dump(),
        )
        return stats

    # =========================================================================
    # УВЕДОМЛЕНИЯ ОБ ОКОНЧАНИИ
    # =========================================================================

    async def notify_expiring(self, today: date, stats: SchedulerRunStats) -> None:
        """
        Уведомляет подписки, у которых target (today + expiring_notice_days)
        является последней датой расписания. Состояние не меняется.

        Подписка истекает, как только последняя дата попадает в горизонт,
        поэтому кандидатами считаются и активные, и уже истёкшие подписки.
        """
        target = today + timedelta(days=self.expiring_notice_days)
        try:
            candidates = await self._service.list_ending_from(target)
        except PersistenceError:
            stats.errors += 1
            return

        for subscription in candidates:
            if self.stopping:
                break
            if not self.is_final_occurrence(subscription, target):
                continue
            if self._notifier is not None:
                await self._notifier.notify(
                    NotificationEvent.EXPIRING_SOON,
                    subscription,
                    expiry_date=target,
                    days=self.expiring_notice_days,
                )
            stats.notified += 1

    @staticmethod
    def is_final_occurrence(subscription: Subscription, target: date) -> bool:
        if subscription.status == SubscriptionStatus.CANCELLED or target < subscription.start_date:
            return False
        return next_dates(subscription.schedule, target, subscription.end_date) == [target]

    # =========================================================================
    # МАТЕРИАЛИЗАЦИЯ
    # =========================================================================

    async def materialize(self, today: date, stats: SchedulerRunStats) -> None:
        """Обрабатывает все активные подписки с курсором, не более concurrency одновременно."""
        try:
            subscriptions = await self._service.list_active_with_cursor()
        except PersistenceError:
            stats.errors += 1
            return

        horizon = today + timedelta(days=self.horizon_days)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(subscription: Subscription) -> None:
            async with semaphore:
                if self.stopping:
                    stats.skipped += 1
                    return
                await self._process(subscription, today, horizon, stats)

        stats.scanned += len(subscriptions)
        await asyncio.gather(*(guarded(s) for s in subscriptions))

    async def _process(
        self,
        subscription: Subscription,
        today: date,
        horizon: date,
        stats: SchedulerRunStats,
    ) -> None:
        """Обрабатывает одну подписку под блокировкой; ошибки не выходят за пределы элемента."""
        lock_name = f"subscription:{subscription.id}"
        token = await self._acquire(lock_name)
        if token is False:
            stats.skipped += 1
            await log_info(f"Подписка {subscription.id} обрабатывается другим процессом", type_msg=TypeMsg.DEBUG)
            return

        try:
            await self.process_subscription(subscription, today, horizon, stats)
        except PersistenceError:
            stats.errors += 1
        except Exception as e:
            stats.errors += 1
            await log_error(
                f"Ошибка обработки подписки {subscription.id}: {e}",
                extra={"subscription_id": subscription.id},
                exc_info=True,
            )
        finally:
            if isinstance(token, str):
                await self._release(lock_name, token)

    async def process_subscription(
        self,
        subscription: Subscription,
        today: date,
        horizon: date,
        stats: SchedulerRunStats,
    ) -> None:
        """
        Создаёт заказ, если курсор попадает в [today, horizon], и переносит
        курсор на первую дату после горизонта.

        Неудачное создание заказа курсор не задерживает: дата считается
        использованной.
        """
        cursor = subscription.next_planned_date
        if cursor is None or cursor > horizon:
            stats.skipped += 1
            return

        if cursor in next_dates(subscription.schedule, today, horizon):
            await self._create_order(subscription, cursor, stats)
        else:
            await log_debug(f"Курсор подписки {subscription.id} ({cursor.isoformat()}) вне расписания, заказ не создаётся")

        future = next_dates(subscription.schedule, horizon + timedelta(days=1), subscription.end_date)
        next_date = future[0] if future else None

        updated = await self._service.advance_if_current(subscription, next_date)
        if updated is None:
            stats.skipped += 1
            await log_warning(f"Курсор подписки {subscription.id} уже сдвинут, пропуск")
            return

        if updated.status == SubscriptionStatus.EXPIRED:
            stats.expired += 1
        else:
            stats.advanced += 1

    async def _create_order(self, subscription: Subscription, due_date: date, stats: SchedulerRunStats) -> None:
        try:
            await self._orders.create_order_from_subscription(subscription, due_date, token=self._service_token)
        except CollaboratorUnavailable as e:
            stats.order_failures += 1
            await log_warning(
                f"Заказ по подписке {subscription.id} на {due_date.isoformat()} не создан: {e.message}",
                extra={"subscription_id": subscription.id},
            )
            return
        except Exception as e:
            # Ответ мог не разобраться уже после создания заказа, курсор всё равно сдвигается
            stats.order_failures += 1
            await log_error(
                f"Сбой создания заказа по подписке {subscription.id} на {due_date.isoformat()}: {e}",
                extra={"subscription_id": subscription.id},
                exc_info=True,
            )
            return

        stats.materialized += 1
        try:
            await self._service.record_occurrence(subscription.id, self._clock())
        except PersistenceError:
            await log_warning(f"Не удалось сохранить last_order_date подписки {subscription.id}")

    async def _acquire(self, lock_name: str) -> str | bool | None:
        """
        Returns:
            Токен блокировки, False если она занята, None если Redis не используется
        """
        if self._redis is None:
            return None
        try:
            token = await self._redis.acquire_lock(lock_name, self.lock_ttl)
        except (RedisError, RuntimeError) as e:
            # Без Redis остаётся защита compare-and-swap в БД
            await log_warning(f"Блокировка {lock_name} недоступна: {e}")
            return None
        return token if token is not None else False

    async def _release(self, lock_name: str, token: str) -> None:
        try:
            if not await self._redis.release_lock(lock_name, token):
                await log_warning(f"Блокировка {lock_name} истекла до освобождения")
        except (RedisError, RuntimeError) as e:
            await log_warning(f"Не удалось освободить блокировку {lock_name}: {e}")
