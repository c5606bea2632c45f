# src/common/exceptions.py
"""
Иерархия исключений сервиса подписок.
HTTP-слой сопоставляет каждому классу свой статус-код.
"""

from __future__ import annotations

from typing import Any


class SubscriptionServiceError(Exception):
    """Базовое исключение сервиса."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SubscriptionServiceError):
    """Некорректные входные данные (расписание, даты, цена)."""

    status_code = 400
    error_code = "validation_error"


class AuthenticationError(SubscriptionServiceError):
    """Токен отсутствует или не прошёл проверку."""

    status_code = 401
    error_code = "unauthorized"


class PaymentRequired(SubscriptionServiceError):
    """Платёж за продление не прошёл."""

    status_code = 402
    error_code = "payment_required"


class PermissionDenied(SubscriptionServiceError):
    """Недостаточно прав для операции."""

    status_code = 403
    error_code = "forbidden"


class NotFoundError(SubscriptionServiceError):
    """Подписка не найдена."""

    status_code = 404
    error_code = "not_found"


class InvalidStatusTransition(SubscriptionServiceError):
    """Переход из терминального статуса запрещён."""

    status_code = 409
    error_code = "invalid_status_transition"


class CollaboratorUnavailable(SubscriptionServiceError):
    """Внешний сервис (заказы, платежи, уведомления, авторизация) недоступен."""

    status_code = 502
    error_code = "collaborator_unavailable"

    def __init__(
        self,
        service: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.service = service


class PersistenceError(SubscriptionServiceError):
    """Ошибка хранилища."""

    status_code = 500
    error_code = "persistence_error"
