"""
NotificationService -- transactional outbox for transition notifications.

Responsibility:
    Creates notifications inside the owning transition's store transaction
    (one ``notifications`` record plus one ``outbox`` entry), and publishes
    them to the NotificationSink only after that transaction committed.

Architecture position:
    Services -- called by the TransitionRunner (create during the body,
    dispatch after commit) and by operational tooling (``retry_pending``).

Invariants enforced:
    - A notification exists only if its transition committed: both records
      are written in the transition's transaction.
    - Delivery failure never rolls back the transition: DeliveryError is
      recorded on the outbox entry and the entry stays ``pending``.
    - After ``max_delivery_attempts`` failures the entry becomes ``dead``
      and is no longer retried.
    - The notification document is never rewritten by delivery.

Failure modes:
    - DeliveryError from the sink: recorded, logged, retried later.
    - CollaboratorUnavailable / ConcurrentModification while booking the
      outcome: logged; the entry stays pending and the next retry re-publishes
      (sinks tolerate duplicates).
    - CollaboratorUnavailable while reading the outbox entry after commit:
      logged and counted as failed; the transition still reports success and
      ``retry_pending`` picks the entry up.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from procurement_config.schema import EngineConfig
from procurement_kernel.domain.clock import Clock
from procurement_kernel.exceptions import (
    CollaboratorUnavailable,
    ConcurrentModification,
    DeliveryError,
)
from procurement_kernel.logging_config import get_logger
from procurement_modules.notifications.models import (
    Notification,
    NotificationPriority,
    NotificationType,
    OutboxEntry,
    OutboxStatus,
)
from procurement_services.entity_store import NOTIFICATIONS, OUTBOX, EntityStore
from procurement_services.notification_sink import NotificationSink
from procurement_services.sequence_service import SequenceService

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class DispatchReport:
    """Outcome of one dispatch pass."""

    delivered: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()
    dead: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()


class NotificationService:
    """
    Contract:
        ``create`` must run inside a store transaction; ``dispatch`` and
        ``retry_pending`` run outside any transition and open one store
        transaction per outbox entry.
    """

    def __init__(
        self,
        store: EntityStore,
        clock: Clock,
        config: EngineConfig,
        sink: NotificationSink,
        sequences: SequenceService,
    ):
        self._store = store
        self._clock = clock
        self._config = config
        self._sink = sink
        self._sequences = sequences

    def create(
        self,
        notification_type: NotificationType,
        title: str,
        message: str,
        *,
        recipient_role: str | None = None,
        recipient_id: str | None = None,
        department: str | None = None,
        reference: str | None = None,
        priority: NotificationPriority = NotificationPriority.NORMAL,
    ) -> Notification:
        """Persist a notification and its pending outbox entry."""
        now = self._clock.now_utc()
        notification = Notification(
            id=self._sequences.next_id(SequenceService.NOTIFICATION),
            notification_type=notification_type,
            title=title,
            message=message,
            created_at=now,
            recipient_role=recipient_role,
            recipient_id=recipient_id,
            department=department,
            reference=reference,
            priority=priority,
        )
        self._store.create(NOTIFICATIONS, notification.id, notification.to_document())
        entry = OutboxEntry(
            notification_id=notification.id,
            status=OutboxStatus.PENDING,
            attempts=0,
            created_at=now,
            updated_at=now,
        )
        self._store.create(OUTBOX, notification.id, entry.to_document())
        logger.info(
            "notification_created",
            extra={
                "notification_id": notification.id,
                "notification_type": notification_type.value,
                "recipient_role": recipient_role,
                "recipient_id": recipient_id,
                "reference": reference,
            },
        )
        return notification

    def dispatch(self, notification_ids: Iterable[str]) -> DispatchReport:
        """Publish the given pending notifications."""
        delivered: list[str] = []
        failed: list[str] = []
        dead: list[str] = []
        skipped: list[str] = []

        for notification_id in notification_ids:
            outcome = self._dispatch_one(notification_id)
            {
                OutboxStatus.DELIVERED: delivered,
                OutboxStatus.PENDING: failed,
                OutboxStatus.DEAD: dead,
                None: skipped,
            }[outcome].append(notification_id)

        return DispatchReport(
            delivered=tuple(delivered),
            failed=tuple(failed),
            dead=tuple(dead),
            skipped=tuple(skipped),
        )

    def retry_pending(self) -> DispatchReport:
        """Re-publish every outbox entry still pending."""
        pending = self._store.query(
            OUTBOX, lambda doc: doc["status"] == OutboxStatus.PENDING.value
        )
        report = self.dispatch(r.id for r in pending)
        logger.info(
            "notification_retry_pass",
            extra={
                "pending": len(pending),
                "delivered": len(report.delivered),
                "failed": len(report.failed),
                "dead": len(report.dead),
            },
        )
        return report

    def outbox_entry(self, notification_id: str) -> OutboxEntry:
        record = self._store.get(OUTBOX, notification_id)
        return OutboxEntry.from_document(record.data, record.version)

    def _dispatch_one(self, notification_id: str) -> OutboxStatus | None:
        try:
            loaded = self._load_pending(notification_id)
        except CollaboratorUnavailable:
            # The owning transition already committed; the entry stays pending.
            logger.warning(
                "notification_outbox_read_failed",
                extra={"notification_id": notification_id},
                exc_info=True,
            )
            return OutboxStatus.PENDING
        if loaded is None:
            return None
        entry, notification = loaded

        attempts = entry.attempts + 1
        try:
            self._sink.publish(notification)
        except DeliveryError as exc:
            exhausted = attempts >= self._config.notifications.max_delivery_attempts
            status = OutboxStatus.DEAD if exhausted else OutboxStatus.PENDING
            logger.warning(
                "notification_delivery_failed",
                extra={
                    "notification_id": notification_id,
                    "attempts": attempts,
                    "outbox_status": status.value,
                    "reason": exc.reason,
                },
            )
            self._book(entry, status, attempts, exc.reason)
            return status

        self._book(entry, OutboxStatus.DELIVERED, attempts, None)
        logger.info(
            "notification_delivered",
            extra={"notification_id": notification_id, "attempts": attempts},
        )
        return OutboxStatus.DELIVERED

    def _load_pending(self, notification_id: str) -> tuple[OutboxEntry, Notification] | None:
        entry_record = self._store.find(OUTBOX, notification_id)
        if entry_record is None:
            return None
        entry = OutboxEntry.from_document(entry_record.data, entry_record.version)
        if entry.status != OutboxStatus.PENDING:
            return None
        record = self._store.get(NOTIFICATIONS, notification_id)
        return entry, Notification.from_document(record.data, record.version)

    def _book(
        self,
        entry: OutboxEntry,
        status: OutboxStatus,
        attempts: int,
        last_error: str | None,
    ) -> None:
        patch = {
            "status": status.value,
            "attempts": attempts,
            "last_error": last_error,
            "updated_at": self._clock.now_utc().isoformat(),
        }
        try:
            with self._store.transaction():
                self._store.update(OUTBOX, entry.notification_id, patch, entry.version)
        except (CollaboratorUnavailable, ConcurrentModification):
            # Entry stays pending; the next retry pass re-publishes it.
            logger.warning(
                "notification_outbox_update_failed",
                extra={"notification_id": entry.notification_id, "outbox_status": status.value},
                exc_info=True,
            )
