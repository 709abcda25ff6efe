"""Drive orders through the lifecycle for tests that need a later state."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

DEFAULT_LINES = (
    {"product_ref": "tomato", "quantity": "10", "unit": "kg", "unit_price": "2.50"},
    {"product_ref": "olive-oil", "quantity": "4", "unit": "bottle", "unit_price": "8.00"},
)

DEFAULT_PRICES = {"tomato": "2.40", "olive-oil": "7.50"}


class LifecycleFlow:
    def __init__(self, engine, vendor, head, purchasing, warehouse, auditor):
        self.engine = engine
        self.vendor = vendor
        self.head = head
        self.purchasing = purchasing
        self.warehouse = warehouse
        self.auditor = auditor

    def submitted(self, lines=DEFAULT_LINES, title="Weekly produce") -> str:
        result = self.engine.submit_order(
            self.vendor, title=title, department="Kitchen", lines=lines
        )
        return result.entity_id

    def approved(self, lines=DEFAULT_LINES) -> str:
        order_id = self.submitted(lines)
        self.engine.approve_order(order_id, self.head)
        return order_id

    def processing(self, lines=DEFAULT_LINES, prices=None) -> tuple[str, str]:
        """Return (order_id, purchase_id)."""
        order_id = self.approved(lines)
        if prices is None:
            prices = {line["product_ref"]: DEFAULT_PRICES.get(line["product_ref"], "1.00") for line in lines}
        result = self.engine.process_order(
            order_id,
            self.purchasing,
            supplier="Green Farms",
            expected_delivery_date=date(2025, 1, 8),
            confirmed_prices=prices,
        )
        return order_id, result.created_ids[0]

    def delivered(self, lines=DEFAULT_LINES, received=None, acknowledge=False) -> tuple[str, str, str]:
        """Return (order_id, purchase_id, bon_id)."""
        order_id, purchase_id = self.processing(lines)
        result = self.engine.deliver_purchase(
            purchase_id,
            self.warehouse,
            received_quantities=received,
            acknowledge_discrepancy=acknowledge,
        )
        return order_id, purchase_id, result.created_ids[0]

    def priced(self, lines=DEFAULT_LINES, price=Decimal("5.00")) -> tuple[str, str, str]:
        order_id, purchase_id, bon_id = self.delivered(lines)
        for product in self.engine.get_bon(bon_id).products:
            self.engine.set_selling_price(bon_id, product.product_ref, price, self.auditor)
        return order_id, purchase_id, bon_id
