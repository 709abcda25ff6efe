"""
TransitionRunner -- the single execution path of every lifecycle transition.

Responsibility:
    Wraps a transition body in the guarantees every transition shares:

        lock entity keys (sorted, bounded wait)
          -> open store transaction
            -> idempotency check (same key + payload: replay, else conflict)
            -> body: load, check guards, write with expected versions,
               create derived records and notifications
            -> record idempotency entry
          -> commit (all writes or none)
        -> publish notifications from the outbox (failures queued)
        -> emit one ``lifecycle_transition`` trace record

Architecture position:
    Services -- imperative shell.  Lifecycle services (orders, purchases,
    pricing, stock, inbox) build a body and hand it to ``run``.

Invariants enforced:
    - Atomicity: a body that raises leaves no write behind.
    - Idempotency: a keyed transition applies its effects at most once.
    - Notification delivery happens strictly after commit and never turns
      a committed transition into a failure.

Failure modes:
    - GuardViolation / InsufficientStock / InvalidQuantity from the body.
    - IdempotencyConflict when a key is reused with another payload.
    - EntityLockTimeout, ConcurrentModification, CollaboratorUnavailable
      (retryable; see ``procurement_services.retry``).

Audit relevance:
    The ``lifecycle_transition`` record carries transition, entity, actor,
    outcome, states and duration for every attempt, applied or refused.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from procurement_config.schema import EngineConfig
from procurement_kernel.domain.clock import Clock
from procurement_kernel.domain.values import validate_quantity
from procurement_kernel.domain.workflow import Transition, Workflow
from procurement_kernel.exceptions import (
    GuardViolation,
    IdempotencyConflict,
    InvalidQuantity,
    ProcurementKernelError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.utils.hashing import hash_payload
from procurement_kernel.utils.idempotency import generate_idempotency_key
from procurement_modules.actors import Actor
from procurement_modules.notifications.models import (
    Notification,
    NotificationPriority,
    NotificationType,
)
from procurement_services.capabilities import require_capability
from procurement_services.entity_locks import EntityLockManager
from procurement_services.entity_store import TRANSITION_LOG, EntityStore
from procurement_services.notification_service import NotificationService
from procurement_services.sequence_service import SequenceService

logger = get_logger("services.transition_runner")


@dataclass(frozen=True)
class TransitionResult:
    """What a transition did, as returned to the caller and replayed on retry."""

    transition: str
    entity_type: str
    entity_id: str
    from_state: str | None
    to_state: str | None
    created_ids: tuple[str, ...] = ()
    movement_ids: tuple[str, ...] = ()
    notification_ids: tuple[str, ...] = ()
    replayed: bool = False

    def to_document(self) -> dict[str, Any]:
        return {
            "transition": self.transition,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "from_state": self.from_state,
            "to_state": self.to_state,
            "created_ids": list(self.created_ids),
            "movement_ids": list(self.movement_ids),
            "notification_ids": list(self.notification_ids),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], *, replayed: bool = False) -> TransitionResult:
        return cls(
            transition=doc["transition"],
            entity_type=doc["entity_type"],
            entity_id=doc["entity_id"],
            from_state=doc.get("from_state"),
            to_state=doc.get("to_state"),
            created_ids=tuple(doc.get("created_ids", ())),
            movement_ids=tuple(doc.get("movement_ids", ())),
            notification_ids=tuple(doc.get("notification_ids", ())),
            replayed=replayed,
        )


@dataclass
class TransitionContext:
    """Per-attempt state handed to a transition body."""

    transition: str
    actor: Actor
    now: datetime
    store: EntityStore
    config: EngineConfig
    sequences: SequenceService
    notifications: NotificationService
    movement_ids: list[str] = field(default_factory=list)
    notification_ids: list[str] = field(default_factory=list)

    def next_id(self, kind: str) -> str:
        return self.sequences.next_id(kind)

    def require(
        self,
        capability: str,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        current_state: str | None = None,
    ) -> None:
        require_capability(
            self.config,
            self.actor,
            capability,
            transition=self.transition,
            entity_type=entity_type,
            entity_id=entity_id,
            current_state=current_state,
        )

    def authorize(
        self,
        workflow: Workflow,
        action: str,
        *,
        entity_type: str,
        entity_id: str,
        current_state: str,
        to_state: str | None = None,
    ) -> Transition:
        """Check the capability of ``action`` and that it may fire from ``current_state``."""
        candidates = [t for t in workflow.transitions if t.action == action]
        capability = next(
            (t.required_capability for t in candidates if t.required_capability), None
        )
        if capability is not None:
            self.require(
                capability,
                entity_type=entity_type,
                entity_id=entity_id,
                current_state=current_state,
            )
        for t in candidates:
            if t.from_state == current_state and (to_state is None or t.to_state == to_state):
                return t
        raise self.refuse(
            "valid_source_state",
            f"cannot {action} a {entity_type} in state '{current_state}'",
            entity_type=entity_type,
            entity_id=entity_id,
            current_state=current_state,
        )

    def quantity(
        self,
        value: Any,
        unit: str,
        *,
        allow_zero: bool = False,
        entity_type: str | None = None,
        entity_id: str | None = None,
        current_state: str | None = None,
    ) -> Decimal:
        """Validate a quantity for its unit; InvalidQuantity names this transition and the entity state."""
        try:
            return validate_quantity(
                value, unit, self.config.fractional_units, allow_zero=allow_zero
            )
        except InvalidQuantity as exc:
            raise InvalidQuantity(
                value,
                unit,
                exc.reason,
                transition=self.transition,
                entity_type=entity_type,
                entity_id=entity_id,
                current_state=current_state,
            ) from exc

    def refuse(
        self,
        guard: str,
        reason: str,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        current_state: str | None = None,
    ) -> GuardViolation:
        """Build the GuardViolation for a failed guard of this transition."""
        return GuardViolation(
            self.transition,
            guard,
            reason,
            entity_type=entity_type,
            entity_id=entity_id,
            current_state=current_state,
        )

    def notify(
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
        notification = self.notifications.create(
            notification_type,
            title,
            message,
            recipient_role=recipient_role,
            recipient_id=recipient_id,
            department=department,
            reference=reference,
            priority=priority,
        )
        self.notification_ids.append(notification.id)
        return notification

    def result(
        self,
        entity_type: str,
        entity_id: str,
        from_state: str | None,
        to_state: str | None,
        created_ids: Iterable[str] = (),
    ) -> TransitionResult:
        return TransitionResult(
            transition=self.transition,
            entity_type=entity_type,
            entity_id=entity_id,
            from_state=from_state,
            to_state=to_state,
            created_ids=tuple(created_ids),
            movement_ids=tuple(self.movement_ids),
            notification_ids=tuple(self.notification_ids),
        )


TransitionBody = Callable[[TransitionContext], TransitionResult]


class TransitionRunner:
    """
    Contract:
        ``run`` executes ``body`` once under the declared entity locks and a
        single store transaction, or replays the recorded result of an
        earlier application of the same idempotency key.

    Non-goals:
        Does NOT retry.  Callers wrap ``run`` in ``run_with_retry`` when they
        want retries on retryable errors.
    """

    def __init__(
        self,
        store: EntityStore,
        clock: Clock,
        config: EngineConfig,
        locks: EntityLockManager,
        sequences: SequenceService,
        notifications: NotificationService,
    ):
        self._store = store
        self._clock = clock
        self._config = config
        self._locks = locks
        self._sequences = sequences
        self._notifications = notifications

    def run(
        self,
        transition: str,
        *,
        actor: Actor,
        entity_type: str,
        entity_id: str | None,
        lock_keys: Iterable[str],
        payload: dict[str, Any],
        body: TransitionBody,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        scoped_key = (
            generate_idempotency_key(transition, entity_id or entity_type, idempotency_key)
            if idempotency_key
            else None
        )
        payload_hash = hash_payload({
            "transition": transition,
            "entity_id": entity_id,
            "actor_id": actor.actor_id,
            "payload": payload,
        })
        correlation_id = LogContext.get_all().get("correlation_id") or uuid4().hex
        started = time.perf_counter()

        with LogContext.bind(
            correlation_id=correlation_id,
            actor_id=actor.actor_id,
            transition=transition,
            entity_id=entity_id,
            idempotency_key=scoped_key,
        ):
            try:
                with self._locks.hold(lock_keys):
                    with self._store.transaction():
                        result = self._replay(scoped_key, payload_hash)
                        if result is None:
                            ctx = TransitionContext(
                                transition=transition,
                                actor=actor,
                                now=self._clock.now_utc(),
                                store=self._store,
                                config=self._config,
                                sequences=self._sequences,
                                notifications=self._notifications,
                            )
                            result = body(ctx)
                            if scoped_key is not None:
                                self._record(scoped_key, payload_hash, actor, ctx.now, result)
            except ProcurementKernelError as exc:
                self._trace(transition, entity_id, started, outcome="refused", error=exc)
                raise
            except Exception:
                logger.error(
                    "lifecycle_transition_crashed",
                    extra={"transition": transition, "entity_id": entity_id},
                    exc_info=True,
                )
                raise

            if not result.replayed and result.notification_ids:
                self._notifications.dispatch(result.notification_ids)

            self._trace(
                transition,
                result.entity_id,
                started,
                outcome="replayed" if result.replayed else "applied",
                result=result,
            )
        return result

    def _replay(self, scoped_key: str | None, payload_hash: str) -> TransitionResult | None:
        if scoped_key is None:
            return None
        prior = self._store.find(TRANSITION_LOG, scoped_key)
        if prior is None:
            return None
        if prior.data["payload_hash"] != payload_hash:
            raise IdempotencyConflict(scoped_key, prior.data["payload_hash"], payload_hash)
        return TransitionResult.from_document(prior.data["result"], replayed=True)

    def _record(
        self,
        scoped_key: str,
        payload_hash: str,
        actor: Actor,
        now: datetime,
        result: TransitionResult,
    ) -> None:
        self._store.create(
            TRANSITION_LOG,
            scoped_key,
            {
                "idempotency_key": scoped_key,
                "payload_hash": payload_hash,
                "actor_id": actor.actor_id,
                "recorded_at": now.isoformat(),
                "result": replace(result, replayed=False).to_document(),
            },
        )

    def _trace(
        self,
        transition: str,
        entity_id: str | None,
        started: float,
        *,
        outcome: str,
        result: TransitionResult | None = None,
        error: ProcurementKernelError | None = None,
    ) -> None:
        extra: dict[str, Any] = {
            "trace_type": "lifecycle_transition",
            "outcome": outcome,
            "entity": entity_id,
            "duration_ms": round((time.perf_counter() - started) * 1000, 3),
        }
        if result is not None:
            extra.update({
                "entity_type": result.entity_type,
                "from_state": result.from_state,
                "to_state": result.to_state,
                "created_ids": list(result.created_ids),
                "movement_count": len(result.movement_ids),
                "notification_count": len(result.notification_ids),
            })
        if error is not None:
            extra.update({
                "error_code": error.code,
                "error_message": str(error),
                "guard": getattr(error, "guard", None),
                "current_state": getattr(error, "current_state", None),
            })
            logger.warning("lifecycle_transition", extra=extra)
            return
        logger.info("lifecycle_transition", extra=extra)
