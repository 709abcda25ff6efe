"""
OrderService -- submission, revision and review of vendor orders.

Responsibility:
    The order-side transitions: ``submit``, ``revise``, ``approve``,
    ``reject`` and ``cancel``.  Each one runs through the TransitionRunner,
    so capability checks, locking, idempotency and tracing are shared with
    every other transition.

Invariants enforced:
    - Only the configured vendor role submits orders, with at least one
      line, one line per product, quantities valid for their unit and a
      positive total.
    - ``Order.total`` equals the sum of its line totals on every write.
    - Status changes follow ORDER_WORKFLOW; anything else is a
      GuardViolation carrying the current state.

Failure modes:
    - GuardViolation, InvalidQuantity, EntityNotFound.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from procurement_kernel.domain.values import ZERO, sum_totals, to_decimal
from procurement_kernel.logging_config import get_logger
from procurement_modules.actors import Actor
from procurement_modules.notifications.models import NotificationType
from procurement_modules.orders.models import Order, OrderComment, OrderLine, OrderStatus
from procurement_modules.orders.workflows import (
    ACTOR_IS_CREATOR,
    CREATED_BY_VENDOR,
    ORDER_WORKFLOW,
    VALID_LINES,
)
from procurement_services.entity_store import ORDERS, lock_key
from procurement_services.repositories import Repositories
from procurement_services.sequence_service import SequenceService
from procurement_services.transition_runner import (
    TransitionContext,
    TransitionResult,
    TransitionRunner,
)

logger = get_logger("services.orders")

ENTITY = "order"


@dataclass(frozen=True)
class LineRequest:
    """One requested product as supplied by the vendor."""

    product_ref: str
    quantity: Any
    unit: str
    unit_price: Any

    @classmethod
    def coerce(cls, value: LineRequest | Mapping[str, Any]) -> LineRequest:
        if isinstance(value, LineRequest):
            return value
        return cls(
            product_ref=value.get("product_ref", ""),
            quantity=value.get("quantity"),
            unit=value.get("unit", ""),
            unit_price=value.get("unit_price"),
        )

    def payload(self) -> dict[str, Any]:
        return {
            "product_ref": self.product_ref,
            "quantity": str(self.quantity),
            "unit": self.unit,
            "unit_price": str(self.unit_price),
        }


class OrderService:
    """
    Contract:
        Every public method fires one transition and returns its
        TransitionResult; the entity is read back through the repositories.
    """

    def __init__(self, runner: TransitionRunner, repositories: Repositories):
        self._runner = runner
        self._repos = repositories

    # ------------------------------------------------------------------
    # submit / revise
    # ------------------------------------------------------------------

    def submit(
        self,
        actor: Actor,
        *,
        title: str,
        department: str,
        lines: Iterable[LineRequest | Mapping[str, Any]],
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        requested = [LineRequest.coerce(line) for line in lines]

        def body(ctx: TransitionContext) -> TransitionResult:
            ctx.require("order.submit", entity_type=ENTITY)
            if actor.role != ctx.config.vendor_role:
                raise ctx.refuse(
                    CREATED_BY_VENDOR.name,
                    f"orders are submitted by role '{ctx.config.vendor_role}', not '{actor.role}'",
                    entity_type=ENTITY,
                )
            if not title or not title.strip():
                raise ctx.refuse(VALID_LINES.name, "order title is required", entity_type=ENTITY)
            if not department or not department.strip():
                raise ctx.refuse(VALID_LINES.name, "department is required", entity_type=ENTITY)
            order_lines = self._build_lines(ctx, requested, entity_id=None)

            order = Order(
                id=ctx.next_id(SequenceService.ORDER),
                title=title.strip(),
                department=department.strip(),
                created_by=actor.actor_id,
                created_by_role=actor.role,
                lines=order_lines,
                created_at=ctx.now,
                updated_at=ctx.now,
            )
            self._repos.orders.add(order)
            logger.info(
                "order_submitted",
                extra={
                    "order_id": order.id,
                    "department": order.department,
                    "line_count": len(order.lines),
                    "total": str(order.total),
                },
            )
            return ctx.result(ENTITY, order.id, None, OrderStatus.PENDING.value, created_ids=(order.id,))

        return self._runner.run(
            "submit_order",
            actor=actor,
            entity_type=ENTITY,
            entity_id=None,
            lock_keys=[SequenceService.counter_lock_key(SequenceService.ORDER)],
            payload={
                "title": title,
                "department": department,
                "lines": [line.payload() for line in requested],
            },
            body=body,
            idempotency_key=idempotency_key,
        )

    def revise(
        self,
        order_id: str,
        actor: Actor,
        *,
        lines: Iterable[LineRequest | Mapping[str, Any]],
        title: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """Replace the lines (and optionally the title) of a pending order."""
        requested = [LineRequest.coerce(line) for line in lines]

        def body(ctx: TransitionContext) -> TransitionResult:
            order = self._repos.orders.get(order_id)
            state = order.status.value
            ctx.authorize(ORDER_WORKFLOW, "revise", entity_type=ENTITY, entity_id=order_id, current_state=state)
            if order.created_by != actor.actor_id:
                raise ctx.refuse(
                    ACTOR_IS_CREATOR.name,
                    f"order was submitted by {order.created_by}",
                    entity_type=ENTITY,
                    entity_id=order_id,
                    current_state=state,
                )
            revised = replace(
                order,
                title=title.strip() if title and title.strip() else order.title,
                lines=self._build_lines(ctx, requested, entity_id=order_id, current_state=state),
                updated_at=ctx.now,
            )
            self._repos.orders.save(revised)
            logger.info(
                "order_revised",
                extra={"order_id": order_id, "line_count": len(revised.lines), "total": str(revised.total)},
            )
            return ctx.result(ENTITY, order_id, state, state)

        return self._runner.run(
            "revise_order",
            actor=actor,
            entity_type=ENTITY,
            entity_id=order_id,
            lock_keys=[lock_key(ORDERS, order_id)],
            payload={"title": title, "lines": [line.payload() for line in requested]},
            body=body,
            idempotency_key=idempotency_key,
        )

    def _build_lines(
        self,
        ctx: TransitionContext,
        requested: list[LineRequest],
        *,
        entity_id: str | None,
        current_state: str | None = None,
    ) -> tuple[OrderLine, ...]:
        def refuse(reason: str):
            return ctx.refuse(
                VALID_LINES.name,
                reason,
                entity_type=ENTITY,
                entity_id=entity_id,
                current_state=current_state,
            )

        if not requested:
            raise refuse("an order needs at least one line")

        seen: set[str] = set()
        built: list[OrderLine] = []
        for number, line in enumerate(requested, start=1):
            product_ref = (line.product_ref or "").strip()
            if not product_ref:
                raise refuse(f"line {number} has no product")
            if product_ref in seen:
                raise refuse(f"product {product_ref} appears on more than one line")
            seen.add(product_ref)

            quantity = ctx.quantity(
                line.quantity, line.unit, entity_type=ENTITY, entity_id=entity_id, current_state=current_state,
            )
            try:
                unit_price = to_decimal(line.unit_price)
            except ValueError as exc:
                raise refuse(f"line {number} has an invalid unit price: {exc}") from exc
            if unit_price < ZERO:
                raise refuse(f"line {number} has a negative unit price")

            built.append(
                OrderLine(
                    line_number=number,
                    product_ref=product_ref,
                    quantity=quantity,
                    unit=line.unit,
                    unit_price=unit_price,
                )
            )

        if sum_totals(line.line_total for line in built) <= ZERO:
            raise refuse("order total must be positive")
        return tuple(built)

    # ------------------------------------------------------------------
    # approve / reject / cancel
    # ------------------------------------------------------------------

    def approve(
        self,
        order_id: str,
        actor: Actor,
        *,
        comment: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        def body(ctx: TransitionContext) -> TransitionResult:
            order = self._repos.orders.get(order_id)
            state = order.status.value
            ctx.authorize(ORDER_WORKFLOW, "approve", entity_type=ENTITY, entity_id=order_id, current_state=state)
            approved = replace(
                order,
                status=OrderStatus.APPROVED,
                approved_by=actor.actor_id,
                approved_at=ctx.now,
                updated_at=ctx.now,
                comments=self._with_comment(order, actor, comment, ctx),
            )
            self._repos.orders.save(approved)
            ctx.notify(
                NotificationType.INFO,
                "Order approved",
                f"Order {order_id} ({order.title}) from {order.department} is ready for purchasing.",
                recipient_role=ctx.config.notifications.purchasing_role,
                reference=order_id,
            )
            return ctx.result(ENTITY, order_id, state, approved.status.value)

        return self._run_review("approve_order", order_id, actor, comment, body, idempotency_key)

    def reject(
        self,
        order_id: str,
        actor: Actor,
        *,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        def body(ctx: TransitionContext) -> TransitionResult:
            order = self._repos.orders.get(order_id)
            state = order.status.value
            ctx.authorize(ORDER_WORKFLOW, "reject", entity_type=ENTITY, entity_id=order_id, current_state=state)
            rejected = replace(
                order,
                status=OrderStatus.REJECTED,
                rejected_by=actor.actor_id,
                rejected_at=ctx.now,
                updated_at=ctx.now,
                comments=self._with_comment(order, actor, reason, ctx),
            )
            self._repos.orders.save(rejected)
            message = f"Order {order_id} ({order.title}) was rejected."
            if reason:
                message = f"{message} Reason: {reason}"
            ctx.notify(
                NotificationType.INFO,
                "Order rejected",
                message,
                recipient_id=order.created_by,
                reference=order_id,
            )
            return ctx.result(ENTITY, order_id, state, rejected.status.value)

        return self._run_review("reject_order", order_id, actor, reason, body, idempotency_key)

    def cancel(
        self,
        order_id: str,
        actor: Actor,
        *,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """Cancel an approved order before any purchase was made for it."""

        def body(ctx: TransitionContext) -> TransitionResult:
            order = self._repos.orders.get(order_id)
            state = order.status.value
            ctx.authorize(ORDER_WORKFLOW, "cancel", entity_type=ENTITY, entity_id=order_id, current_state=state)
            cancelled = replace(
                order,
                status=OrderStatus.CANCELLED,
                cancelled_by=actor.actor_id,
                cancelled_at=ctx.now,
                updated_at=ctx.now,
                comments=self._with_comment(order, actor, reason, ctx),
            )
            self._repos.orders.save(cancelled)
            ctx.notify(
                NotificationType.INFO,
                "Order cancelled",
                f"Order {order_id} ({order.title}) was cancelled.",
                recipient_id=order.created_by,
                reference=order_id,
            )
            return ctx.result(ENTITY, order_id, state, cancelled.status.value)

        return self._run_review("cancel_order", order_id, actor, reason, body, idempotency_key)

    @staticmethod
    def _with_comment(
        order: Order,
        actor: Actor,
        text: str | None,
        ctx: TransitionContext,
    ) -> tuple[OrderComment, ...]:
        if not text or not text.strip():
            return order.comments
        return order.comments + (OrderComment(author=actor.actor_id, text=text.strip(), created_at=ctx.now),)

    def _run_review(self, transition, order_id, actor, text, body, idempotency_key) -> TransitionResult:
        return self._runner.run(
            transition,
            actor=actor,
            entity_type=ENTITY,
            entity_id=order_id,
            lock_keys=[
                lock_key(ORDERS, order_id),
                SequenceService.counter_lock_key(SequenceService.NOTIFICATION),
            ],
            payload={"text": text},
            body=body,
            idempotency_key=idempotency_key,
        )
