"""
Display projection (``procurement_modules.display``).

``derive_display_state`` maps the canonical status of an entity to the
label, badge color class and progress percentage every presentation
surface shows.  It is a pure function of the entity: no store access, no
clock, no side effects, and it is never consulted by the engine.
"""

from __future__ import annotations

from dataclasses import dataclass

from procurement_modules.bons.models import Bon, BonStatus
from procurement_modules.inventory.models import InventoryItem, StockLevel
from procurement_modules.orders.models import Order, OrderStatus
from procurement_modules.purchases.models import Purchase, PurchaseStatus


@dataclass(frozen=True)
class DisplayState:
    label: str
    color_class: str
    progress_percent: int


_ORDER_STATES: dict[OrderStatus, DisplayState] = {
    OrderStatus.PENDING: DisplayState("Pending approval", "bg-yellow-100 text-yellow-800", 25),
    OrderStatus.APPROVED: DisplayState("Approved", "bg-green-100 text-green-800", 50),
    OrderStatus.PROCESSING: DisplayState("Processing", "bg-blue-100 text-blue-800", 75),
    OrderStatus.RECEIVED: DisplayState("Received", "bg-purple-100 text-purple-800", 100),
    OrderStatus.REJECTED: DisplayState("Rejected", "bg-red-100 text-red-800", 0),
    OrderStatus.CANCELLED: DisplayState("Cancelled", "bg-gray-100 text-gray-800", 0),
}

_PURCHASE_STATES: dict[PurchaseStatus, DisplayState] = {
    PurchaseStatus.SCHEDULED: DisplayState("Scheduled", "bg-blue-100 text-blue-800", 50),
    PurchaseStatus.DELIVERED: DisplayState("Delivered", "bg-purple-100 text-purple-800", 100),
    PurchaseStatus.CANCELLED: DisplayState("Cancelled", "bg-gray-100 text-gray-800", 0),
}

_STOCK_STATES: dict[StockLevel, DisplayState] = {
    StockLevel.OK: DisplayState("In stock", "bg-green-100 text-green-800", 100),
    StockLevel.LOW: DisplayState("Low stock", "bg-yellow-100 text-yellow-800", 50),
    StockLevel.OUT: DisplayState("Out of stock", "bg-red-100 text-red-800", 0),
}


def _bon_display(bon: Bon) -> DisplayState:
    total = len(bon.products)
    percent = 100 if total == 0 else (bon.priced_count * 100) // total
    if bon.status == BonStatus.READY_FOR_SALE:
        return DisplayState("Ready for sale", "bg-green-100 text-green-800", 100)
    return DisplayState(
        f"Pricing {bon.priced_count}/{total}",
        "bg-yellow-50 text-yellow-700",
        percent,
    )


def derive_display_state(entity: Order | Purchase | Bon | InventoryItem) -> DisplayState:
    """Label, color class and progress for any lifecycle entity.

    Raises:
        TypeError: for objects that have no display projection.
    """
    if isinstance(entity, Order):
        return _ORDER_STATES[entity.status]
    if isinstance(entity, Purchase):
        return _PURCHASE_STATES[entity.status]
    if isinstance(entity, Bon):
        return _bon_display(entity)
    if isinstance(entity, InventoryItem):
        return _STOCK_STATES[entity.stock_level]
    raise TypeError(f"No display state for {type(entity).__name__}")
