# src/infra/service_clients.py
"""
HTTP-клиенты внешних сервисов платформы: авторизация, заказы, платежи, уведомления.

Сетевые ошибки и ответы 5xx превращаются в CollaboratorUnavailable.
Повторных попыток клиенты не делают: планировщик сам решает, что делать с отказом.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

import httpx

from src.common.constants import TypeMsg
from src.common.exceptions import AuthenticationError, CollaboratorUnavailable
from src.common.logger import log_info, log_warning
from src.core.subscriptions.models import AuthContext, Subscription


class BaseServiceClient:
    """Обёртка над httpx.AsyncClient с единым маппингом ошибок."""

    service_name: str = "service"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self.client.aclose()

    @staticmethod
    def _auth_headers(token: str | None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        token: str | None = None,
    ) -> Any:
        try:
            response = await self.client.request(
                method,
                path,
                json=json,
                params=params,
                headers=self._auth_headers(token),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            await log_warning(
                f"{self.service_name}: {method} {path} вернул {e.response.status_code}",
                extra={"service": self.service_name, "status_code": e.response.status_code},
            )
            raise
        except httpx.HTTPError as e:
            await log_warning(
                f"{self.service_name}: {method} {path} недоступен: {e!r}",
                extra={"service": self.service_name},
            )
            raise CollaboratorUnavailable(self.service_name, f"{self.service_name} недоступен") from e

        if not response.content:
            return {}
        return response.json()

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        """Как _request, но любой неуспешный статус тоже считается отказом сервиса."""
        try:
            return await self._request(method, path, **kwargs)
        except httpx.HTTPStatusError as e:
            raise CollaboratorUnavailable(
                self.service_name,
                f"{self.service_name} ответил статусом {e.response.status_code}",
                details={"status_code": e.response.status_code},
            ) from e


class AuthServiceClient(BaseServiceClient):
    """Проверка токенов в сервисе авторизации."""

    service_name = "auth_service"

    async def validate(self, token: str) -> AuthContext:
        """
        Проверяет токен и возвращает пользователя.

        Raises:
            AuthenticationError: токен отклонён (401/403)
            CollaboratorUnavailable: сервис авторизации недоступен
        """
        try:
            data = await self._request("GET", "/api/auth/validate", token=token)
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise AuthenticationError("Недействительный токен") from e
            raise CollaboratorUnavailable(self.service_name, "Сервис авторизации вернул ошибку") from e

        user_id = data.get("user_id") or data.get("userId")
        role = data.get("role")
        if not user_id or not role:
            raise AuthenticationError("Сервис авторизации не вернул пользователя")
        return AuthContext(user_id=str(user_id), role=str(role), token=token)


class OrderServiceClient(BaseServiceClient):
    """Сервис заказов: чтение заказа-шаблона и создание заказов по подписке."""

    service_name = "order_service"

    async def get_order(self, order_id: str, token: str | None = None) -> dict[str, Any]:
        return await self._call("GET", f"/orders/{order_id}", token=token)

    async def create_order(self, payload: dict[str, Any], token: str | None = None) -> dict[str, Any]:
        return await self._call("POST", "/orders", json=payload, token=token)

    async def create_order_from_subscription(
        self,
        subscription: Subscription,
        due_date: date,
        token: str | None = None,
    ) -> dict[str, Any]:
        """
        Создаёт заказ на due_date по шаблону подписки.
        Адрес, тип услуги и список услуг копируются из заказа-шаблона.
        """
        template = await self.get_order(subscription.order_id, token=token)

        payload: dict[str, Any] = {
            "order_id": subscription.order_id,
            "client_id": template.get("client_id", subscription.user_id),
            "user_id": subscription.user_id,
            "address": template.get("address"),
            "service_type": template.get("service_type"),
            "service_ids": template.get("service_ids", []),
            "cleaner_id": subscription.cleaner_id or template.get("cleaner_id"),
            "comment": template.get("comment", ""),
            "date": due_date.isoformat(),
            "source": "subscription",
            "subscription_id": subscription.id,
        }
        created = await self.create_order(payload, token=token)

        await log_info(
            f"Заказ по подписке {subscription.id} на {due_date.isoformat()} создан",
            type_msg=TypeMsg.DEBUG,
            extra={"order": created.get("id")},
        )
        return created


class PaymentServiceClient(BaseServiceClient):
    """Списание оплаты за визиты подписки."""

    service_name = "payment_service"

    async def charge_subscription(
        self,
        order_id: str,
        user_id: str,
        amount: float,
        token: str | None = None,
    ) -> dict[str, Any]:
        return await self._call(
            "POST",
            "/payments",
            json={"order_id": order_id, "user_id": user_id, "amount": round(amount, 2)},
            token=token,
        )


class NotificationServiceClient(BaseServiceClient):
    """Отправка уведомлений пользователю."""

    service_name = "notification_service"

    async def send_event(
        self,
        user_id: str,
        event_type: str,
        payload: dict[str, Any],
        delivery_type: str = "push",
    ) -> None:
        """
        Отправляет событие подписки.

        Args:
            user_id: Получатель
            event_type: Тип события (subscription_created, ...)
            payload: title, message и произвольные metadata
        """
        await self.send(
            user_id=user_id,
            title=payload.get("title", event_type),
            message=payload.get("message", ""),
            notification_type=event_type,
            metadata=payload.get("metadata"),
            delivery_type=delivery_type,
        )

    async def send(
        self,
        user_id: str,
        title: str,
        message: str,
        notification_type: str,
        metadata: dict[str, Any] | None = None,
        delivery_type: str = "push",
        role: str = "user",
    ) -> None:
        await self._call(
            "POST",
            "/api/notifications/send",
            json={
                "user_id": user_id,
                "role": role,
                "title": title,
                "message": message,
                "type": notification_type,
                "delivery_type": delivery_type,
                "metadata": metadata or {},
            },
        )


def create_service_clients() -> dict[str, BaseServiceClient]:
    """Создаёт клиенты всех внешних сервисов по адресам из конфигурации."""
    from src.config import settings

    timeout = settings.deployment.SERVICE_TIMEOUT
    return {
        "auth": AuthServiceClient(settings.deployment.AUTH_SERVICE_URL, timeout),
        "orders": OrderServiceClient(settings.deployment.ORDERS_SERVICE_URL, timeout),
        "payments": PaymentServiceClient(settings.deployment.PAYMENTS_SERVICE_URL, timeout),
        "notifications": NotificationServiceClient(settings.deployment.NOTIFICATIONS_SERVICE_URL, timeout),
    }
