"""
Домен подписок.
Расписание, жизненный цикл и хранение подписок на регулярную уборку.
"""

from src.core.subscriptions.models import (
    AuthContext,
    ScheduleSpec,
    ScheduleUpdateDTO,
    SchedulerRunStats,
    Subscription,
    SubscriptionCreateDTO,
    SubscriptionExtendDTO,
    SubscriptionFilter,
    SubscriptionLog,
)
from src.core.subscriptions.schedule import next_dates, validate_schedule
from src.core.subscriptions.state_machine import SubscriptionStateMachine
from src.core.subscriptions.repository import SubscriptionRepository
from src.core.subscriptions.service import SubscriptionService

__all__ = [
    "AuthContext",
    "ScheduleSpec",
    "ScheduleUpdateDTO",
    "SchedulerRunStats",
    "Subscription",
    "SubscriptionCreateDTO",
    "SubscriptionExtendDTO",
    "SubscriptionFilter",
    "SubscriptionLog",
    "next_dates",
    "validate_schedule",
    "SubscriptionStateMachine",
    "SubscriptionRepository",
    "SubscriptionService",
]
