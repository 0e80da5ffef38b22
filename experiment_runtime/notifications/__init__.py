"""
Participant reminders.
"""

from .manager import (
    InMemoryNotificationBackend,
    NotificationBackend,
    NotificationManager,
    next_daily_trigger,
)

__all__ = [
    "InMemoryNotificationBackend",
    "NotificationBackend",
    "NotificationManager",
    "next_daily_trigger",
]
