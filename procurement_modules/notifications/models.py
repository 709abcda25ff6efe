"""
Notification Domain Models.

Notifications are created only as side effects of lifecycle transitions.
The notification document itself changes in exactly one way afterwards:
its recipient marks it read.  Delivery bookkeeping lives in a separate
outbox entry so that publishing never rewrites the notification.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from procurement_kernel.logging_config import get_logger
from procurement_modules._serialization import parse_ts, ts
from procurement_modules.actors import Actor

logger = get_logger("modules.notifications.models")


class NotificationType(Enum):
    """What the notification is about."""
    INFO = "info"
    PRICE_SETTING = "price_setting"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    PRODUCTS_AVAILABLE = "products_available"


class NotificationPriority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class OutboxStatus(Enum):
    """Delivery state of a notification."""
    PENDING = "pending"
    DELIVERED = "delivered"
    DEAD = "dead"


@dataclass(frozen=True)
class Notification:
    """A message to a role (optionally within a department) or one actor."""
    id: str
    notification_type: NotificationType
    title: str
    message: str
    created_at: datetime
    recipient_role: str | None = None
    recipient_id: str | None = None
    department: str | None = None
    reference: str | None = None
    priority: NotificationPriority = NotificationPriority.NORMAL
    read: bool = False
    read_at: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.recipient_role is None and self.recipient_id is None:
            raise ValueError(f"Notification {self.id} needs a recipient role or id")

    def is_addressed_to(self, actor: Actor) -> bool:
        if self.recipient_id is not None:
            return actor.actor_id == self.recipient_id
        if actor.role != self.recipient_role:
            return False
        return self.department is None or actor.department == self.department

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.notification_type.value,
            "title": self.title,
            "message": self.message,
            "created_at": ts(self.created_at),
            "recipient_role": self.recipient_role,
            "recipient_id": self.recipient_id,
            "department": self.department,
            "reference": self.reference,
            "priority": self.priority.value,
            "read": self.read,
            "read_at": ts(self.read_at),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], version: int = 0) -> Notification:
        return cls(
            id=doc["id"],
            notification_type=NotificationType(doc["type"]),
            title=doc["title"],
            message=doc["message"],
            created_at=parse_ts(doc["created_at"]),
            recipient_role=doc.get("recipient_role"),
            recipient_id=doc.get("recipient_id"),
            department=doc.get("department"),
            reference=doc.get("reference"),
            priority=NotificationPriority(doc.get("priority", "normal")),
            read=bool(doc.get("read", False)),
            read_at=parse_ts(doc.get("read_at")),
            version=version,
        )


@dataclass(frozen=True)
class OutboxEntry:
    """Delivery bookkeeping for one notification."""
    notification_id: str
    status: OutboxStatus
    attempts: int
    created_at: datetime
    updated_at: datetime
    last_error: str | None = None
    version: int = 0

    def to_document(self) -> dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "created_at": ts(self.created_at),
            "updated_at": ts(self.updated_at),
            "last_error": self.last_error,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], version: int = 0) -> OutboxEntry:
        return cls(
            notification_id=doc["notification_id"],
            status=OutboxStatus(doc["status"]),
            attempts=int(doc["attempts"]),
            created_at=parse_ts(doc["created_at"]),
            updated_at=parse_ts(doc["updated_at"]),
            last_error=doc.get("last_error"),
            version=version,
        )
