# src/shared/models/common.py
"""
Общие модели ответов HTTP API.
"""

from __future__ import annotations

from datetime import date
from typing import Generic, TypeVar, Any, Literal

from pydantic import BaseModel, Field


T = TypeVar("T")


class PaginationParams(BaseModel):
    """Страница выборки подписок."""

    page: int = Field(default=1, ge=1, description="Номер страницы, с единицы")
    page_size: int = Field(default=20, ge=1, le=100, description="Подписок на странице")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class PaginatedResponse(BaseModel, Generic[T]):
    """Страница результатов с общим количеством."""

    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int

    @classmethod
    def create(
        cls,
        items: list[T],
        total: int,
        pagination: PaginationParams,
    ) -> "PaginatedResponse[T]":
        # ceil без float
        total_pages = -(-total // pagination.page_size)
        return cls(
            items=items,
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=total_pages,
        )


class ErrorResponse(BaseModel):
    """
    Тело ответа с ошибкой.
    error_code совпадает с SubscriptionServiceError.error_code.
    """

    error_code: str
    message: str
    details: dict[str, Any] | None = None


class ExtendResponse(BaseModel):
    """Ответ на продление подписки."""

    message: str
    new_cleanings: int = Field(..., description="Сколько визитов добавило продление")
    end_date: date


class CancelResponse(BaseModel):
    """Ответ на отмену подписки."""

    message: str
    id: str
    status: str


class HealthStatus(BaseModel):
    """Ответ /health."""

    service: str
    status: Literal["healthy", "degraded"] = "healthy"
    version: str | None = None
    uptime_seconds: float | None = None
    scheduler: str | None = Field(None, description="running / stopped, если планировщик в этом процессе")
    # {"postgres": "healthy", "redis": "unhealthy"}
    dependencies: dict[str, str] = Field(default_factory=dict)
