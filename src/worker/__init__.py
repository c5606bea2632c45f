"""
Фоновые воркеры: ежедневный планировщик подписок.
"""

from src.worker.base import BaseWorker
from src.worker.subscription_scheduler import SubscriptionScheduler

__all__ = ["BaseWorker", "SubscriptionScheduler"]
