"""
Notifications Module (``procurement_modules.notifications``).

Role- or actor-addressed messages produced by lifecycle transitions, and
their delivery outbox.
"""

from procurement_modules.notifications.models import (
    Notification,
    NotificationPriority,
    NotificationType,
    OutboxEntry,
    OutboxStatus,
)

__all__ = [
    "Notification",
    "NotificationPriority",
    "NotificationType",
    "OutboxEntry",
    "OutboxStatus",
]
