"""
StockService -- inventory levels and the append-only stock ledger.

Responsibility:
    Every change of a quantity on hand goes through ``_book``: the
    inventory item is written with its expected version and exactly one
    StockMovement is appended in the same transaction.  Public transitions
    are ``adjust`` (warehouse corrections), ``issue`` (sale of a sellable
    product) and ``set_threshold``; ``receive`` is called by the delivery
    transition.

Invariants enforced:
    - quantity >= 0 for every item: a decrement larger than the quantity on
      hand raises InsufficientStock and is never clamped.
    - For each product, the signed sum of its movements equals its quantity
      on hand.
    - A product is issued only when a ready-for-sale bon prices it.
    - A product keeps one unit for its whole life.

Audit relevance:
    Low-stock and out-of-stock alerts go to the warehouse role after every
    decrement that leaves the item at or below its threshold.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any

from procurement_kernel.domain.values import ZERO, to_decimal
from procurement_kernel.exceptions import InsufficientStock
from procurement_kernel.logging_config import get_logger
from procurement_modules.actors import Actor
from procurement_modules.bons.models import Bon, BonStatus
from procurement_modules.inventory.models import (
    InventoryItem,
    MovementType,
    StockLevel,
    StockMovement,
)
from procurement_modules.notifications.models import NotificationPriority, NotificationType
from procurement_services.entity_store import INVENTORY, STOCK_MOVEMENTS, lock_key
from procurement_services.repositories import Repositories
from procurement_services.sequence_service import SequenceService, sequence_sort_key
from procurement_services.transition_runner import (
    TransitionContext,
    TransitionResult,
    TransitionRunner,
)

logger = get_logger("services.stock")

ENTITY = "inventory"


def ready_bons_for(repos: Repositories, product_ref: str) -> list[Bon]:
    """Ready-for-sale bons pricing ``product_ref``, latest first."""
    bons = repos.bons.list(lambda doc: doc["status"] == BonStatus.READY_FOR_SALE.value)
    sellable = [b for b in bons if b.is_sellable(product_ref)]
    sellable.sort(key=lambda b: (b.ready_at or b.created_at, sequence_sort_key(b.id)), reverse=True)
    return sellable


class StockService:
    """
    Contract:
        ``receive`` runs inside an enclosing transition body; ``adjust``,
        ``issue`` and ``set_threshold`` are transitions of their own.
    """

    def __init__(self, runner: TransitionRunner, repositories: Repositories):
        self._runner = runner
        self._repos = repositories

    # ------------------------------------------------------------------
    # Ledger primitive
    # ------------------------------------------------------------------

    def _book(
        self,
        ctx: TransitionContext,
        item: InventoryItem,
        movement_type: MovementType,
        quantity: Decimal,
        *,
        exists: bool,
        reference: str | None = None,
        reason: str | None = None,
    ) -> InventoryItem:
        """Apply one signed movement to ``item`` and append it to the ledger."""
        signed = quantity if movement_type.is_inbound else -quantity
        new_quantity = item.quantity + signed
        if new_quantity < ZERO:
            raise InsufficientStock(ctx.transition, item.product_ref, quantity, item.quantity)

        updated = replace(item, quantity=new_quantity, last_updated=ctx.now)
        if exists:
            updated = self._repos.inventory.save(updated)
        else:
            updated = self._repos.inventory.add(updated)

        movement = StockMovement(
            id=ctx.next_id(SequenceService.MOVEMENT),
            product_ref=item.product_ref,
            movement_type=movement_type,
            quantity=signed,
            unit=item.unit,
            date=ctx.now,
            actor=ctx.actor.actor_id,
            reference=reference,
            reason=reason,
        )
        ctx.store.create(STOCK_MOVEMENTS, movement.id, movement.to_document())
        ctx.movement_ids.append(movement.id)
        logger.info(
            "stock_movement_recorded",
            extra={
                "movement_id": movement.id,
                "product_ref": item.product_ref,
                "movement_type": movement_type.value,
                "quantity": str(signed),
                "quantity_on_hand": str(new_quantity),
            },
        )
        return updated

    def _alert(self, ctx: TransitionContext, item: InventoryItem) -> None:
        level = item.stock_level
        if level == StockLevel.OK:
            return
        if level == StockLevel.OUT:
            ctx.notify(
                NotificationType.OUT_OF_STOCK,
                "Out of stock",
                f"{item.product_ref} is out of stock.",
                recipient_role=ctx.config.notifications.warehouse_role,
                reference=item.product_ref,
                priority=NotificationPriority.HIGH,
            )
        else:
            ctx.notify(
                NotificationType.LOW_STOCK,
                "Low stock",
                f"{item.product_ref} is low: {item.quantity} {item.unit} left "
                f"(threshold {item.threshold}).",
                recipient_role=ctx.config.notifications.warehouse_role,
                reference=item.product_ref,
            )
        logger.warning(
            "stock_alert_raised",
            extra={
                "product_ref": item.product_ref,
                "stock_level": level.value,
                "quantity_on_hand": str(item.quantity),
                "threshold": str(item.threshold),
            },
        )

    def _load_or_new(
        self,
        ctx: TransitionContext,
        product_ref: str,
        unit: str | None,
    ) -> tuple[InventoryItem, bool]:
        item = self._repos.inventory.find(product_ref)
        if item is not None:
            if unit is not None and unit != item.unit:
                raise ctx.refuse(
                    "unit_matches",
                    f"{product_ref} is stocked in '{item.unit}', not '{unit}'",
                    entity_type=ENTITY,
                    entity_id=product_ref,
                    current_state=item.stock_level.value,
                )
            return item, True
        if not unit:
            raise ctx.refuse(
                "item_exists",
                f"{product_ref} is not stocked and no unit was given",
                entity_type=ENTITY,
                entity_id=product_ref,
            )
        new_item = InventoryItem(
            product_ref=product_ref,
            quantity=ZERO,
            unit=unit,
            threshold=ctx.config.default_low_stock_threshold,
            last_updated=ctx.now,
        )
        return new_item, False

    # ------------------------------------------------------------------
    # Inside the delivery transition
    # ------------------------------------------------------------------

    def receive(
        self,
        ctx: TransitionContext,
        product_ref: str,
        quantity: Decimal,
        unit: str,
        *,
        reference: str,
    ) -> InventoryItem:
        """Book received goods, creating the item on first receipt."""
        item, exists = self._load_or_new(ctx, product_ref, unit)
        return self._book(
            ctx,
            item,
            MovementType.RECEIVE,
            quantity,
            exists=exists,
            reference=reference,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def adjust(
        self,
        product_ref: str,
        delta: Any,
        actor: Actor,
        *,
        reason: str,
        unit: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """Correct the quantity on hand by a signed ``delta``.

        A positive delta on a product not yet stocked creates the item and
        needs ``unit``.
        """

        def body(ctx: TransitionContext) -> TransitionResult:
            ctx.require("stock.adjust", entity_type=ENTITY, entity_id=product_ref)
            if not reason or not reason.strip():
                raise ctx.refuse("reason_given", "an adjustment needs a reason", entity_type=ENTITY, entity_id=product_ref)
            try:
                amount = to_decimal(delta)
            except ValueError as exc:
                raise ctx.refuse("non_zero_delta", str(exc), entity_type=ENTITY, entity_id=product_ref) from exc
            if amount == ZERO:
                raise ctx.refuse("non_zero_delta", "adjustment delta must not be zero", entity_type=ENTITY, entity_id=product_ref)

            item, exists = self._load_or_new(ctx, product_ref, unit)
            before = item.stock_level.value if exists else None
            quantity = ctx.quantity(
                abs(amount), item.unit, entity_type=ENTITY, entity_id=product_ref, current_state=before,
            )
            movement_type = MovementType.ADJUSTMENT_IN if amount > ZERO else MovementType.ADJUSTMENT_OUT
            updated = self._book(ctx, item, movement_type, quantity, exists=exists, reason=reason.strip())
            if movement_type == MovementType.ADJUSTMENT_OUT:
                self._alert(ctx, updated)
            return ctx.result(ENTITY, product_ref, before, updated.stock_level.value)

        return self._runner.run(
            "adjust_stock",
            actor=actor,
            entity_type=ENTITY,
            entity_id=product_ref,
            lock_keys=self._lock_keys(product_ref),
            payload={"delta": str(delta), "reason": reason, "unit": unit},
            body=body,
            idempotency_key=idempotency_key,
        )

    def issue(
        self,
        product_ref: str,
        quantity: Any,
        actor: Actor,
        *,
        reference: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """Take sold goods out of stock."""

        def body(ctx: TransitionContext) -> TransitionResult:
            ctx.require("sale.issue", entity_type=ENTITY, entity_id=product_ref)
            item = self._repos.inventory.find(product_ref)
            if item is None:
                raise ctx.refuse("item_exists", f"{product_ref} is not stocked", entity_type=ENTITY, entity_id=product_ref)
            before = item.stock_level.value
            if not ready_bons_for(self._repos, product_ref):
                raise ctx.refuse(
                    "product_sellable",
                    f"{product_ref} has no ready-for-sale bon with a selling price",
                    entity_type=ENTITY,
                    entity_id=product_ref,
                    current_state=before,
                )
            amount = ctx.quantity(
                quantity, item.unit, entity_type=ENTITY, entity_id=product_ref, current_state=before,
            )
            updated = self._book(ctx, item, MovementType.ISSUE, amount, exists=True, reference=reference)
            self._alert(ctx, updated)
            return ctx.result(ENTITY, product_ref, before, updated.stock_level.value)

        return self._runner.run(
            "issue_to_sale",
            actor=actor,
            entity_type=ENTITY,
            entity_id=product_ref,
            lock_keys=self._lock_keys(product_ref),
            payload={"quantity": str(quantity), "reference": reference},
            body=body,
            idempotency_key=idempotency_key,
        )

    def set_threshold(
        self,
        product_ref: str,
        threshold: Any,
        actor: Actor,
        *,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        def body(ctx: TransitionContext) -> TransitionResult:
            ctx.require("stock.threshold", entity_type=ENTITY, entity_id=product_ref)
            item = self._repos.inventory.find(product_ref)
            if item is None:
                raise ctx.refuse("item_exists", f"{product_ref} is not stocked", entity_type=ENTITY, entity_id=product_ref)
            before = item.stock_level.value
            try:
                value = to_decimal(threshold)
            except ValueError as exc:
                raise ctx.refuse("valid_threshold", str(exc), entity_type=ENTITY, entity_id=product_ref, current_state=before) from exc
            if value < ZERO:
                raise ctx.refuse(
                    "valid_threshold",
                    "threshold must not be negative",
                    entity_type=ENTITY,
                    entity_id=product_ref,
                    current_state=before,
                )
            updated = self._repos.inventory.save(replace(item, threshold=value, last_updated=ctx.now))
            logger.info(
                "stock_threshold_set",
                extra={"product_ref": product_ref, "threshold": str(value)},
            )
            return ctx.result(ENTITY, product_ref, before, updated.stock_level.value)

        return self._runner.run(
            "set_threshold",
            actor=actor,
            entity_type=ENTITY,
            entity_id=product_ref,
            lock_keys=[lock_key(INVENTORY, product_ref)],
            payload={"threshold": str(threshold)},
            body=body,
            idempotency_key=idempotency_key,
        )

    @staticmethod
    def _lock_keys(product_ref: str) -> list[str]:
        return [
            lock_key(INVENTORY, product_ref),
            SequenceService.counter_lock_key(SequenceService.MOVEMENT),
            SequenceService.counter_lock_key(SequenceService.NOTIFICATION),
        ]
