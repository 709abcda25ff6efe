"""
PurchaseService -- processing approved orders and receiving deliveries.

Responsibility:
    ``process`` turns an approved order into a scheduled Purchase carrying
    the supplier's confirmed prices.  ``deliver`` books the received counts:
    stock is incremented, a pending Bon is opened for pricing, and both the
    purchase and its order are closed, all in one transaction.  ``cancel``
    drops a scheduled purchase so the order can be processed again.

Architecture position:
    Services -- imperative shell over the purchase and order workflows.

Invariants enforced:
    - An order has at most one active (scheduled or delivered) purchase.
    - Received quantities never exceed ordered quantities; a partial
      receipt needs an explicit discrepancy acknowledgment when the
      configuration requires one.
    - A delivered purchase leaves exactly one receive movement per received
      product, so repeating a delivery can never double the stock.

Failure modes:
    - GuardViolation, InvalidQuantity, EntityNotFound.
    - ConcurrentModification when the order or an item changed underneath.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from datetime import date
from typing import Any

from procurement_kernel.domain.values import ZERO, to_decimal
from procurement_kernel.logging_config import get_logger
from procurement_modules.actors import Actor
from procurement_modules.bons.models import Bon, BonProduct
from procurement_modules.notifications.models import NotificationType
from procurement_modules.orders.models import OrderStatus
from procurement_modules.orders.workflows import (
    NO_ACTIVE_PURCHASE,
    ORDER_WORKFLOW,
    PURCHASE_DELIVERED,
)
from procurement_modules.purchases.models import (
    Purchase,
    PurchaseLine,
    PurchaseStatus,
    ReceivedLine,
)
from procurement_modules.purchases.workflows import (
    CONFIRMED_PRICES,
    DISCREPANCY_ACKNOWLEDGED,
    PURCHASE_WORKFLOW,
    RECEIPT_WITHIN_ORDERED,
)
from procurement_services.entity_store import INVENTORY, ORDERS, PURCHASES, lock_key
from procurement_services.repositories import Repositories
from procurement_services.sequence_service import SequenceService
from procurement_services.stock_service import StockService
from procurement_services.transition_runner import (
    TransitionContext,
    TransitionResult,
    TransitionRunner,
)

logger = get_logger("services.purchases")

ORDER = "order"
PURCHASE = "purchase"


def _as_date(value: date | str | None) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


class PurchaseService:
    """
    Contract:
        ``process`` keys on the order, ``deliver`` and ``cancel`` on the
        purchase.  Each returns the TransitionResult of one transition.
    """

    def __init__(self, runner: TransitionRunner, repositories: Repositories, stock: StockService):
        self._runner = runner
        self._repos = repositories
        self._stock = stock

    # ------------------------------------------------------------------
    # process
    # ------------------------------------------------------------------

    def process(
        self,
        order_id: str,
        actor: Actor,
        *,
        supplier: str,
        expected_delivery_date: date | str,
        confirmed_prices: Mapping[str, Any],
        notes: str = "",
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """Create the Purchase of an approved order and move it to processing."""

        def body(ctx: TransitionContext) -> TransitionResult:
            order = self._repos.orders.get(order_id)
            state = order.status.value
            ctx.authorize(
                ORDER_WORKFLOW,
                "process",
                entity_type=ORDER,
                entity_id=order_id,
                current_state=state,
            )

            def refuse(guard: str, reason: str):
                return ctx.refuse(guard, reason, entity_type=ORDER, entity_id=order_id, current_state=state)

            active = [
                p
                for p in self._repos.purchases.list(lambda doc: doc["order_id"] == order_id)
                if p.is_active
            ]
            if active:
                raise refuse(NO_ACTIVE_PURCHASE.name, f"order already has purchase {active[0].id}")
            if not supplier or not supplier.strip():
                raise refuse(CONFIRMED_PRICES.name, "a supplier is required")
            try:
                delivery_date = _as_date(expected_delivery_date)
            except ValueError as exc:
                raise refuse(CONFIRMED_PRICES.name, f"invalid expected delivery date: {exc}") from exc
            if delivery_date is None:
                raise refuse(CONFIRMED_PRICES.name, "an expected delivery date is required")

            unknown = sorted(set(confirmed_prices) - {line.product_ref for line in order.lines})
            if unknown:
                raise refuse(CONFIRMED_PRICES.name, f"prices given for products not on the order: {', '.join(unknown)}")

            lines = []
            for line in order.lines:
                raw = confirmed_prices.get(line.product_ref)
                if raw is None:
                    raise refuse(CONFIRMED_PRICES.name, f"no confirmed price for {line.product_ref}")
                try:
                    price = to_decimal(raw)
                except ValueError as exc:
                    raise refuse(CONFIRMED_PRICES.name, f"invalid price for {line.product_ref}: {exc}") from exc
                if price <= ZERO:
                    raise refuse(CONFIRMED_PRICES.name, f"confirmed price of {line.product_ref} must be positive")
                lines.append(
                    PurchaseLine(
                        product_ref=line.product_ref,
                        quantity=line.quantity,
                        unit=line.unit,
                        unit_price=price,
                    )
                )

            purchase = Purchase(
                id=ctx.next_id(SequenceService.PURCHASE),
                order_id=order_id,
                supplier=supplier.strip(),
                lines=tuple(lines),
                expected_delivery_date=delivery_date,
                created_by=actor.actor_id,
                created_at=ctx.now,
                notes=notes,
            )
            self._repos.purchases.add(purchase)
            self._repos.orders.save(
                replace(
                    order,
                    status=OrderStatus.PROCESSING,
                    processed_by=actor.actor_id,
                    processed_at=ctx.now,
                    updated_at=ctx.now,
                    purchase_id=purchase.id,
                    supplier=purchase.supplier,
                    expected_delivery_date=delivery_date,
                    confirmed_total=purchase.total,
                )
            )
            ctx.notify(
                NotificationType.INFO,
                "Order processed",
                f"Order {order_id} ({order.title}) was ordered from {purchase.supplier}; "
                f"delivery expected {delivery_date.isoformat()}.",
                recipient_role=ctx.config.notifications.department_role,
                department=order.department,
                reference=order_id,
            )
            logger.info(
                "purchase_created",
                extra={
                    "purchase_id": purchase.id,
                    "order_id": order_id,
                    "supplier": purchase.supplier,
                    "total": str(purchase.total),
                },
            )
            return ctx.result(ORDER, order_id, state, OrderStatus.PROCESSING.value, created_ids=(purchase.id,))

        return self._runner.run(
            "process_order",
            actor=actor,
            entity_type=ORDER,
            entity_id=order_id,
            lock_keys=[
                lock_key(ORDERS, order_id),
                SequenceService.counter_lock_key(SequenceService.PURCHASE),
                SequenceService.counter_lock_key(SequenceService.NOTIFICATION),
            ],
            payload={
                "supplier": supplier,
                "expected_delivery_date": str(expected_delivery_date),
                "confirmed_prices": {k: str(v) for k, v in confirmed_prices.items()},
                "notes": notes,
            },
            body=body,
            idempotency_key=idempotency_key,
        )

    # ------------------------------------------------------------------
    # deliver
    # ------------------------------------------------------------------

    def deliver(
        self,
        purchase_id: str,
        actor: Actor,
        *,
        received_quantities: Mapping[str, Any] | None = None,
        acknowledge_discrepancy: bool = False,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """Book the delivery of a scheduled purchase.

        ``received_quantities`` maps product_ref to the counted quantity;
        ``None`` means everything arrived as ordered, and a product left
        out of the mapping counts as not received.
        """
        # Pre-read for the lock set only; the body re-reads under the locks.
        preview = self._repos.purchases.get(purchase_id)

        def body(ctx: TransitionContext) -> TransitionResult:
            purchase = self._repos.purchases.get(purchase_id)
            state = purchase.status.value
            ctx.authorize(
                PURCHASE_WORKFLOW,
                "deliver",
                entity_type=PURCHASE,
                entity_id=purchase_id,
                current_state=state,
            )

            def refuse(guard: str, reason: str):
                return ctx.refuse(guard, reason, entity_type=PURCHASE, entity_id=purchase_id, current_state=state)

            order = self._repos.orders.get(purchase.order_id)
            if order.status != OrderStatus.PROCESSING or order.purchase_id != purchase_id:
                raise ctx.refuse(
                    PURCHASE_DELIVERED.name,
                    f"order {order.id} is not waiting for purchase {purchase_id}",
                    entity_type=ORDER,
                    entity_id=order.id,
                    current_state=order.status.value,
                )

            received = self._received_lines(ctx, purchase, received_quantities, refuse)
            if all(line.received_quantity == ZERO for line in received):
                raise refuse(RECEIPT_WITHIN_ORDERED.name, "nothing was received")
            discrepancy = any(line.has_discrepancy for line in received)
            if (
                discrepancy
                and ctx.config.require_discrepancy_acknowledgment
                and not acknowledge_discrepancy
            ):
                short = ", ".join(
                    f"{line.product_ref} ({line.received_quantity}/{line.ordered_quantity})"
                    for line in received
                    if line.has_discrepancy
                )
                raise refuse(DISCREPANCY_ACKNOWLEDGED.name, f"partial receipt must be acknowledged: {short}")

            bon_products = []
            for line in received:
                if line.received_quantity == ZERO:
                    continue
                self._stock.receive(
                    ctx,
                    line.product_ref,
                    line.received_quantity,
                    line.unit,
                    reference=purchase_id,
                )
                bon_products.append(
                    BonProduct(
                        product_ref=line.product_ref,
                        quantity=line.received_quantity,
                        unit=line.unit,
                        purchase_price=purchase.line_for(line.product_ref).unit_price,
                    )
                )

            bon = self._repos.bons.add(
                Bon(
                    id=ctx.next_id(SequenceService.BON),
                    purchase_id=purchase_id,
                    order_id=order.id,
                    products=tuple(bon_products),
                    created_at=ctx.now,
                )
            )
            self._repos.purchases.save(
                replace(
                    purchase,
                    status=PurchaseStatus.DELIVERED,
                    received_lines=received,
                    received_by=actor.actor_id,
                    received_at=ctx.now,
                    discrepancy_acknowledged=discrepancy and acknowledge_discrepancy,
                    bon_id=bon.id,
                    notes=notes if notes is not None else purchase.notes,
                )
            )
            self._repos.orders.save(
                replace(
                    order,
                    status=OrderStatus.RECEIVED,
                    received_by=actor.actor_id,
                    delivered_at=ctx.now,
                    updated_at=ctx.now,
                )
            )
            ctx.notify(
                NotificationType.PRICE_SETTING,
                "Pricing required",
                f"Purchase {purchase_id} was delivered; bon {bon.id} needs selling prices "
                f"for {len(bon.products)} product(s).",
                recipient_role=ctx.config.notifications.auditor_role,
                reference=bon.id,
            )
            logger.info(
                "purchase_delivered",
                extra={
                    "purchase_id": purchase_id,
                    "order_id": order.id,
                    "bon_id": bon.id,
                    "discrepancy": discrepancy,
                    "received_total": str(replace(purchase, received_lines=received).received_total),
                },
            )
            return ctx.result(
                PURCHASE,
                purchase_id,
                state,
                PurchaseStatus.DELIVERED.value,
                created_ids=(bon.id,),
            )

        lock_keys = [
            lock_key(PURCHASES, purchase_id),
            lock_key(ORDERS, preview.order_id),
            SequenceService.counter_lock_key(SequenceService.BON),
            SequenceService.counter_lock_key(SequenceService.MOVEMENT),
            SequenceService.counter_lock_key(SequenceService.NOTIFICATION),
        ]
        lock_keys.extend(lock_key(INVENTORY, line.product_ref) for line in preview.lines)

        return self._runner.run(
            "deliver_purchase",
            actor=actor,
            entity_type=PURCHASE,
            entity_id=purchase_id,
            lock_keys=lock_keys,
            payload={
                "received_quantities": (
                    None
                    if received_quantities is None
                    else {k: str(v) for k, v in received_quantities.items()}
                ),
                "acknowledge_discrepancy": acknowledge_discrepancy,
                "notes": notes,
            },
            body=body,
            idempotency_key=idempotency_key,
        )

    @staticmethod
    def _received_lines(ctx, purchase, received_quantities, refuse) -> tuple[ReceivedLine, ...]:
        if received_quantities is not None:
            unknown = sorted(set(received_quantities) - {line.product_ref for line in purchase.lines})
            if unknown:
                raise refuse(RECEIPT_WITHIN_ORDERED.name, f"products not on the purchase: {', '.join(unknown)}")

        received = []
        for line in purchase.lines:
            if received_quantities is None:
                quantity = line.quantity
            else:
                quantity = ctx.quantity(
                    received_quantities.get(line.product_ref, 0),
                    line.unit,
                    allow_zero=True,
                    entity_type=PURCHASE,
                    entity_id=purchase.id,
                    current_state=purchase.status.value,
                )
            if quantity > line.quantity:
                raise refuse(
                    RECEIPT_WITHIN_ORDERED.name,
                    f"received {quantity} of {line.product_ref} but only {line.quantity} were ordered",
                )
            received.append(
                ReceivedLine(
                    product_ref=line.product_ref,
                    ordered_quantity=line.quantity,
                    received_quantity=quantity,
                    unit=line.unit,
                )
            )
        return tuple(received)

    # ------------------------------------------------------------------
    # cancel
    # ------------------------------------------------------------------

    def cancel(
        self,
        purchase_id: str,
        actor: Actor,
        *,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """Cancel a scheduled purchase; its order stays processing and may be re-processed."""
        preview = self._repos.purchases.get(purchase_id)

        def body(ctx: TransitionContext) -> TransitionResult:
            purchase = self._repos.purchases.get(purchase_id)
            state = purchase.status.value
            ctx.authorize(
                PURCHASE_WORKFLOW,
                "cancel",
                entity_type=PURCHASE,
                entity_id=purchase_id,
                current_state=state,
            )
            self._repos.purchases.save(
                replace(
                    purchase,
                    status=PurchaseStatus.CANCELLED,
                    cancelled_by=actor.actor_id,
                    cancelled_at=ctx.now,
                    cancellation_reason=reason,
                )
            )
            order = self._repos.orders.get(purchase.order_id)
            if order.purchase_id == purchase_id:
                order = self._repos.orders.save(
                    replace(
                        order,
                        purchase_id=None,
                        previous_purchase_ids=order.previous_purchase_ids + (purchase_id,),
                        confirmed_total=None,
                        updated_at=ctx.now,
                    )
                )
            message = f"Purchase {purchase_id} for order {order.id} was cancelled."
            if reason:
                message = f"{message} Reason: {reason}"
            ctx.notify(
                NotificationType.INFO,
                "Purchase cancelled",
                message,
                recipient_role=ctx.config.notifications.department_role,
                department=order.department,
                reference=order.id,
            )
            return ctx.result(PURCHASE, purchase_id, state, PurchaseStatus.CANCELLED.value)

        return self._runner.run(
            "cancel_purchase",
            actor=actor,
            entity_type=PURCHASE,
            entity_id=purchase_id,
            lock_keys=[
                lock_key(PURCHASES, purchase_id),
                lock_key(ORDERS, preview.order_id),
                SequenceService.counter_lock_key(SequenceService.NOTIFICATION),
            ],
            payload={"reason": reason},
            body=body,
            idempotency_key=idempotency_key,
        )
