"""
Модели ответов HTTP API.
"""

from src.shared.models.common import (
    PaginationParams,
    PaginatedResponse,
    ErrorResponse,
    ExtendResponse,
    CancelResponse,
    HealthStatus,
)

__all__ = [
    "PaginationParams",
    "PaginatedResponse",
    "ErrorResponse",
    "ExtendResponse",
    "CancelResponse",
    "HealthStatus",
]
