# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class UserRole(str, Enum):
    """Роли пользователей платформы."""
    USER = "user"
    CLEANER = "cleaner"
    MANAGER = "manager"
    ADMIN = "admin"


# Роли, которым доступен просмотр чужих подписок
STAFF_ROLES: frozenset[str] = frozenset({UserRole.ADMIN.value, UserRole.MANAGER.value})


class SubscriptionStatus(str, Enum):
    """Статусы подписки."""
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Frequency(str, Enum):
    """Периодичность расписания."""
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    TRIWEEKLY = "triweekly"
    MONTHLY = "monthly"


# Сокращения дней недели в порядке date.weekday()
WEEKDAYS: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# Требуемое количество номеров недель для каждой периодичности
WEEK_NUMBERS_REQUIRED: dict[Frequency, int] = {
    Frequency.BIWEEKLY: 2,
    Frequency.TRIWEEKLY: 3,
    Frequency.MONTHLY: 1,
}

MIN_WEEK_NUMBER = 1
MAX_WEEK_NUMBER = 5


class SubscriptionAction(str, Enum):
    """Действия в журнале подписки."""
    CREATED = "created"
    EXTENDED = "extended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SCHEDULE_UPDATED = "schedule_updated"


class NotificationEvent(str, Enum):
    """Типы событий для сервиса уведомлений."""
    CREATED = "subscription_created"
    EXTENDED = "subscription_extended"
    CANCELLED = "subscription_cancelled"
    EXPIRING_SOON = "subscription_expiring"
    EXPIRED = "subscription_expired"
