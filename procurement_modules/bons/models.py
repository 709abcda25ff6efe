"""
Bon (pricing voucher) Domain Models.

A Bon lists the products received by one delivery.  The auditor sets a
selling price per product; once every product is priced the Bon is ready
for sale and its products become sellable at the cashier.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from procurement_kernel.domain.values import ZERO
from procurement_kernel.logging_config import get_logger
from procurement_modules._serialization import dec, parse_dec, parse_ts, ts

logger = get_logger("modules.bons.models")


class BonStatus(Enum):
    """Bon lifecycle states."""
    PENDING = "pending"
    READY_FOR_SALE = "ready_for_sale"


@dataclass(frozen=True)
class BonProduct:
    """A received product awaiting (or carrying) its selling price."""
    product_ref: str
    quantity: Decimal
    unit: str
    purchase_price: Decimal
    selling_price: Decimal = ZERO
    ready_for_sale: bool = False
    priced_by: str | None = None
    priced_at: datetime | None = None

    @property
    def margin(self) -> Decimal:
        return self.selling_price - self.purchase_price

    def to_document(self) -> dict[str, Any]:
        return {
            "product_ref": self.product_ref,
            "quantity": dec(self.quantity),
            "unit": self.unit,
            "purchase_price": dec(self.purchase_price),
            "selling_price": dec(self.selling_price),
            "ready_for_sale": self.ready_for_sale,
            "priced_by": self.priced_by,
            "priced_at": ts(self.priced_at),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> BonProduct:
        return cls(
            product_ref=doc["product_ref"],
            quantity=parse_dec(doc["quantity"]),
            unit=doc["unit"],
            purchase_price=parse_dec(doc["purchase_price"]),
            selling_price=parse_dec(doc.get("selling_price", "0")),
            ready_for_sale=bool(doc.get("ready_for_sale", False)),
            priced_by=doc.get("priced_by"),
            priced_at=parse_ts(doc.get("priced_at")),
        )


@dataclass(frozen=True)
class Bon:
    """Pricing voucher for one delivered purchase."""
    id: str
    purchase_id: str
    order_id: str
    products: tuple[BonProduct, ...]
    created_at: datetime
    status: BonStatus = BonStatus.PENDING
    ready_at: datetime | None = None
    version: int = 0

    def product(self, product_ref: str) -> BonProduct | None:
        for p in self.products:
            if p.product_ref == product_ref:
                return p
        return None

    @property
    def all_priced(self) -> bool:
        return all(p.ready_for_sale for p in self.products)

    @property
    def priced_count(self) -> int:
        return sum(1 for p in self.products if p.ready_for_sale)

    def is_sellable(self, product_ref: str) -> bool:
        """Bon ready for sale AND product ready AND selling price > 0."""
        p = self.product(product_ref)
        return (
            self.status == BonStatus.READY_FOR_SALE
            and p is not None
            and p.ready_for_sale
            and p.selling_price > ZERO
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "order_id": self.order_id,
            "products": [p.to_document() for p in self.products],
            "created_at": ts(self.created_at),
            "status": self.status.value,
            "ready_at": ts(self.ready_at),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], version: int = 0) -> Bon:
        return cls(
            id=doc["id"],
            purchase_id=doc["purchase_id"],
            order_id=doc["order_id"],
            products=tuple(BonProduct.from_document(d) for d in doc["products"]),
            created_at=parse_ts(doc["created_at"]),
            status=BonStatus(doc["status"]),
            ready_at=parse_ts(doc.get("ready_at")),
            version=version,
        )
