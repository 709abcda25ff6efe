"""
InboxService -- reading notifications addressed to an actor.

A notification is addressed to an actor by id, or by role (scoped to a
department when the notification names one).  Marking read is a
transition of its own so it is traced and locked like any other write;
marking an already-read notification is a no-op, not an error.
"""

from __future__ import annotations

from dataclasses import replace

from procurement_kernel.logging_config import get_logger
from procurement_modules.actors import Actor
from procurement_modules.notifications.models import Notification
from procurement_services.entity_store import NOTIFICATIONS, lock_key
from procurement_services.repositories import Repositories
from procurement_services.sequence_service import sequence_sort_key
from procurement_services.transition_runner import (
    TransitionContext,
    TransitionResult,
    TransitionRunner,
)

logger = get_logger("services.inbox")

ENTITY = "notification"


def _state(notification: Notification) -> str:
    return "read" if notification.read else "unread"


class InboxService:
    def __init__(self, runner: TransitionRunner, repositories: Repositories):
        self._runner = runner
        self._repos = repositories

    def list_for(self, actor: Actor, *, unread_only: bool = False) -> list[Notification]:
        """Notifications addressed to ``actor``, newest first."""
        found = [
            n
            for n in self._repos.notifications.list()
            if n.is_addressed_to(actor) and not (unread_only and n.read)
        ]
        found.sort(key=lambda n: (n.created_at, sequence_sort_key(n.id)), reverse=True)
        return found

    def mark_read(
        self,
        notification_id: str,
        actor: Actor,
        *,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        def body(ctx: TransitionContext) -> TransitionResult:
            notification = self._repos.notifications.get(notification_id)
            state = _state(notification)
            if not notification.is_addressed_to(actor):
                raise ctx.refuse(
                    "is_recipient",
                    f"notification is not addressed to {actor.actor_id}",
                    entity_type=ENTITY,
                    entity_id=notification_id,
                    current_state=state,
                )
            if notification.read:
                return ctx.result(ENTITY, notification_id, state, state)
            self._repos.notifications.save(replace(notification, read=True, read_at=ctx.now))
            logger.debug("notification_marked_read", extra={"notification_id": notification_id})
            return ctx.result(ENTITY, notification_id, state, "read")

        return self._runner.run(
            "mark_notification_read",
            actor=actor,
            entity_type=ENTITY,
            entity_id=notification_id,
            lock_keys=[lock_key(NOTIFICATIONS, notification_id)],
            payload={},
            body=body,
            idempotency_key=idempotency_key,
        )
