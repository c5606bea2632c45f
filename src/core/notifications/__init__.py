"""
Домен уведомлений.
Асинхронная доставка уведомлений о подписках.
"""

from src.core.notifications.dispatcher import NotificationData, NotificationDispatcher

__all__ = [
    "NotificationData",
    "NotificationDispatcher",
]
