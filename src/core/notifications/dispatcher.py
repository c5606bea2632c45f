# src/core/notifications/dispatcher.py
"""
Диспетчер уведомлений о подписках.

События кладутся в ограниченную asyncio.Queue и отправляются фоновой задачей.
Вызывающий код никогда не ждёт сервис уведомлений: при переполнении
очереди событие отбрасывается с предупреждением.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

from src.common.constants import NotificationEvent, TypeMsg
from src.common.exceptions import CollaboratorUnavailable
from src.common.localization import get_text
from src.common.logger import log_error, log_info, log_warning
from src.core.subscriptions.models import Subscription
from src.infra.service_clients import NotificationServiceClient


# Префиксы ключей lang_dict.json для каждого события
_TEXT_KEYS: dict[NotificationEvent, str] = {
    NotificationEvent.CREATED: "SUBSCRIPTION_CREATED",
    NotificationEvent.EXTENDED: "SUBSCRIPTION_EXTENDED",
    NotificationEvent.CANCELLED: "SUBSCRIPTION_CANCELLED",
    NotificationEvent.EXPIRING_SOON: "SUBSCRIPTION_EXPIRING",
    NotificationEvent.EXPIRED: "SUBSCRIPTION_EXPIRED",
}


@dataclass
class NotificationData:
    """Готовое к отправке уведомление."""
    user_id: str
    event: NotificationEvent
    title: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)


class NotificationDispatcher:
    """Очередь уведомлений с фоновым отправителем."""

    def __init__(
        self,
        client: NotificationServiceClient,
        queue_size: int = 1000,
        language: str = "ru",
        delivery_type: str = "push",
    ) -> None:
        """
        Args:
            client: Клиент сервиса уведомлений
            queue_size: Ёмкость очереди
            language: Язык текстов уведомлений
            delivery_type: Канал доставки (push, email, ...)
        """
        self._client = client
        self._queue: asyncio.Queue[NotificationData] = asyncio.Queue(maxsize=queue_size)
        self._language = language
        self._delivery_type = delivery_type
        self._consumer: Optional[asyncio.Task] = None
        self.dropped = 0
        self.sent = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def build(self, event: NotificationEvent, subscription: Subscription, **params: Any) -> NotificationData:
        """Формирует текст уведомления по шаблонам локализации."""
        key = _TEXT_KEYS[event]
        text_params = {
            "start_date": subscription.start_date.isoformat(),
            "end_date": subscription.end_date.isoformat(),
            **{k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in params.items()},
        }
        return NotificationData(
            user_id=subscription.user_id,
            event=event,
            title=get_text(f"{key}_TITLE", self._language),
            message=get_text(f"{key}_MESSAGE", self._language, **text_params),
            metadata={"subscription_id": subscription.id, **text_params},
        )

    async def notify(self, event: NotificationEvent, subscription: Subscription, **params: Any) -> bool:
        """
        Ставит уведомление в очередь без ожидания.

        Returns:
            False, если очередь переполнена и событие отброшено
        """
        data = self.build(event, subscription, **params)
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull:
            self.dropped += 1
            await log_warning(
                f"Очередь уведомлений переполнена, событие {event.value} отброшено",
                extra={"subscription_id": subscription.id, "user_id": subscription.user_id},
            )
            return False
        return True

    async def start(self) -> None:
        if self._consumer is not None:
            return
        self._consumer = asyncio.create_task(self._consume(), name="notification-dispatcher")
        await log_info("Диспетчер уведомлений запущен", type_msg=TypeMsg.DEBUG)

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Даёт очереди дослаться в пределах drain_timeout и останавливает отправителя."""
        if self._consumer is None:
            return

        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            await log_warning(f"Не отправлено уведомлений при остановке: {self._queue.qsize()}")

        self._consumer.cancel()
        await asyncio.gather(self._consumer, return_exceptions=True)
        self._consumer = None
        await log_info("Диспетчер уведомлений остановлен", type_msg=TypeMsg.DEBUG)

    async def _consume(self) -> None:
        while True:
            data = await self._queue.get()
            try:
                await self._deliver(data)
            finally:
                self._queue.task_done()

    async def _deliver(self, data: NotificationData) -> None:
        try:
            await self._client.send_event(
                user_id=data.user_id,
                event_type=data.event.value,
                payload={"title": data.title, "message": data.message, "metadata": data.metadata},
                delivery_type=self._delivery_type,
            )
            self.sent += 1
        except CollaboratorUnavailable as e:
            self.failed += 1
            await log_warning(
                f"Уведомление {data.event.value} не доставлено: {e.message}",
                extra={"user_id": data.user_id},
            )
        except Exception as e:
            self.failed += 1
            await log_error(
                f"Ошибка отправки уведомления {data.event.value}: {e}",
                extra={"user_id": data.user_id},
                exc_info=True,
            )
