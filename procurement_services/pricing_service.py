"""
PricingService -- selling prices on bons.

The auditor prices each product of a pending bon.  When the last product
is priced the bon becomes ``ready_for_sale`` and the cashier role is told
which products are now available.  Re-pricing a product is allowed while
the bon is still pending; a ready bon is closed to pricing.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from procurement_kernel.domain.values import ZERO, to_decimal
from procurement_kernel.logging_config import get_logger
from procurement_modules.actors import Actor
from procurement_modules.bons.models import BonStatus
from procurement_modules.bons.workflows import (
    BON_WORKFLOW,
    POSITIVE_SELLING_PRICE,
    PRODUCT_IN_BON,
)
from procurement_modules.notifications.models import NotificationType
from procurement_services.entity_store import BONS, lock_key
from procurement_services.repositories import Repositories
from procurement_services.sequence_service import SequenceService
from procurement_services.transition_runner import (
    TransitionContext,
    TransitionResult,
    TransitionRunner,
)

logger = get_logger("services.pricing")

ENTITY = "bon"


class PricingService:
    def __init__(self, runner: TransitionRunner, repositories: Repositories):
        self._runner = runner
        self._repos = repositories

    def set_price(
        self,
        bon_id: str,
        product_ref: str,
        selling_price: Any,
        actor: Actor,
        *,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        def body(ctx: TransitionContext) -> TransitionResult:
            bon = self._repos.bons.get(bon_id)
            state = bon.status.value
            ctx.authorize(BON_WORKFLOW, "set_price", entity_type=ENTITY, entity_id=bon_id, current_state=state)

            def refuse(guard: str, reason: str):
                return ctx.refuse(guard, reason, entity_type=ENTITY, entity_id=bon_id, current_state=state)

            product = bon.product(product_ref)
            if product is None:
                raise refuse(PRODUCT_IN_BON.name, f"{product_ref} is not on bon {bon_id}")
            try:
                price = to_decimal(selling_price)
            except ValueError as exc:
                raise refuse(POSITIVE_SELLING_PRICE.name, str(exc)) from exc
            if price <= ZERO:
                raise refuse(POSITIVE_SELLING_PRICE.name, "selling price must be greater than zero")

            priced = replace(
                product,
                selling_price=price,
                ready_for_sale=True,
                priced_by=actor.actor_id,
                priced_at=ctx.now,
            )
            updated = replace(
                bon,
                products=tuple(priced if p.product_ref == product_ref else p for p in bon.products),
            )
            if updated.all_priced:
                updated = replace(updated, status=BonStatus.READY_FOR_SALE, ready_at=ctx.now)
            self._repos.bons.save(updated)

            logger.info(
                "bon_product_priced",
                extra={
                    "bon_id": bon_id,
                    "product_ref": product_ref,
                    "selling_price": str(price),
                    "margin": str(priced.margin),
                    "priced_count": updated.priced_count,
                    "product_count": len(updated.products),
                },
            )
            if updated.status == BonStatus.READY_FOR_SALE:
                names = ", ".join(p.product_ref for p in updated.products)
                ctx.notify(
                    NotificationType.PRODUCTS_AVAILABLE,
                    "Products available",
                    f"Bon {bon_id} is ready for sale: {names}.",
                    recipient_role=ctx.config.notifications.cashier_role,
                    reference=bon_id,
                )
            return ctx.result(ENTITY, bon_id, state, updated.status.value)

        return self._runner.run(
            "set_selling_price",
            actor=actor,
            entity_type=ENTITY,
            entity_id=bon_id,
            lock_keys=[
                lock_key(BONS, bon_id),
                SequenceService.counter_lock_key(SequenceService.NOTIFICATION),
            ],
            payload={"product_ref": product_ref, "selling_price": str(selling_price)},
            body=body,
            idempotency_key=idempotency_key,
        )
