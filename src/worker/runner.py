"""
Запускалка планировщика подписок.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from src.core.notifications.dispatcher import NotificationDispatcher
from src.core.subscriptions.repository import SubscriptionRepository
from src.core.subscriptions.service import SubscriptionService
from src.infra.database import DatabaseManager, init_db, close_db
from src.infra.redis_client import RedisClient, init_redis, close_redis
from src.infra.service_clients import (
    NotificationServiceClient,
    OrderServiceClient,
    PaymentServiceClient,
    create_service_clients,
)
from src.worker.subscription_scheduler import SubscriptionScheduler
from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg
from src.config import settings


def build_dispatcher(client: NotificationServiceClient) -> NotificationDispatcher:
    return NotificationDispatcher(
        client,
        queue_size=settings.notifications.NOTIFICATION_QUEUE_SIZE,
        language=settings.notifications.NOTIFICATION_LANGUAGE,
        delivery_type=settings.notifications.NOTIFICATION_DELIVERY_TYPE,
    )


def build_service(
    db: DatabaseManager,
    redis: Optional[RedisClient],
    notifier: Optional[NotificationDispatcher],
    payments: Optional[PaymentServiceClient],
) -> SubscriptionService:
    return SubscriptionService(
        SubscriptionRepository(db),
        redis=redis,
        notifier=notifier,
        payments=payments,
        cache_ttl=settings.redis_ttl.SUBSCRIPTION_TTL,
        horizon_days=settings.scheduler.HORIZON_DAYS,
    )


def build_scheduler(
    service: SubscriptionService,
    orders: OrderServiceClient,
    redis: Optional[RedisClient],
    notifier: Optional[NotificationDispatcher],
) -> SubscriptionScheduler:
    """Создаёт планировщик с параметрами из секции scheduler конфига."""
    return SubscriptionScheduler(
        service,
        orders,
        redis=redis,
        notifier=notifier,
        interval=settings.scheduler.SCHEDULER_INTERVAL_SECONDS,
        run_on_startup=settings.scheduler.SCHEDULER_RUN_ON_STARTUP,
        horizon_days=settings.scheduler.HORIZON_DAYS,
        expiring_notice_days=settings.scheduler.EXPIRING_NOTICE_DAYS,
        concurrency=settings.scheduler.SCHEDULER_CONCURRENCY,
        lock_ttl=settings.redis_ttl.SUBSCRIPTION_LOCK_TTL,
        service_token=settings.deployment.SERVICE_AUTH_TOKEN,
    )


async def run_scheduler(stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Запускает планировщик подписок отдельным процессом.

    Args:
        stop_event: Событие остановки (из обработчика сигналов main.py).
                    Без него работает до отмены задачи.
    """
    await log_info("Запуск планировщика подписок...", type_msg=TypeMsg.INFO)

    db = await init_db()
    redis = await init_redis()
    clients = create_service_clients()
    dispatcher = build_dispatcher(clients["notifications"])
    service = build_service(db, redis, dispatcher, clients["payments"])
    scheduler = build_scheduler(service, clients["orders"], redis, dispatcher)

    try:
        await dispatcher.start()
        await scheduler.start()

        if stop_event is None:
            stop_event = asyncio.Event()
        await stop_event.wait()

    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка планировщика: {e}", exc_info=True)
    finally:
        await scheduler.stop()
        await dispatcher.stop()
        for client in clients.values():
            await client.close()
        await close_redis(redis)
        await close_db(db)
        await log_info("Планировщик подписок остановлен", type_msg=TypeMsg.INFO)


def main() -> None:
    """Точка входа."""
    try:
        asyncio.run(run_scheduler())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
