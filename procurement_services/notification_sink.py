"""
NotificationSink -- the delivery collaborator contract.

Delivery is at-least-once: the outbox may publish a notification again
after a crash between publish and bookkeeping, so sinks must tolerate
duplicates (notification ids are stable).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.logging_config import get_logger
from procurement_modules.notifications.models import Notification

logger = get_logger("services.notification_sink")


@dataclass(frozen=True)
class Ack:
    """Acknowledgement of a published notification."""

    notification_id: str
    delivered_at: datetime
    channel: str


@runtime_checkable
class NotificationSink(Protocol):
    def publish(self, notification: Notification) -> Ack:
        """Publish one notification; may raise DeliveryError."""
        ...


class LoggingNotificationSink:
    """Default sink: publishes each notification as a structured log record."""

    channel = "log"

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()

    def publish(self, notification: Notification) -> Ack:
        logger.info(
            "notification_published",
            extra={
                "notification_id": notification.id,
                "notification_type": notification.notification_type.value,
                "recipient_role": notification.recipient_role,
                "recipient_id": notification.recipient_id,
                "department": notification.department,
                "reference": notification.reference,
                "priority": notification.priority.value,
                "title": notification.title,
            },
        )
        return Ack(
            notification_id=notification.id,
            delivered_at=self._clock.now_utc(),
            channel=self.channel,
        )
