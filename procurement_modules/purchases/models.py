"""
Purchase Domain Models.

The supplier-facing commitment made from an approved order, and what the
warehouse actually received against it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from procurement_kernel.domain.values import ZERO, line_total, sum_totals
from procurement_kernel.logging_config import get_logger
from procurement_modules._serialization import (
    day,
    dec,
    parse_day,
    parse_dec,
    parse_ts,
    ts,
)

logger = get_logger("modules.purchases.models")


class PurchaseStatus(Enum):
    """Purchase lifecycle states."""
    SCHEDULED = "scheduled"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PurchaseLine:
    """An order line with the price confirmed by the supplier."""
    product_ref: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    line_total: Decimal = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "line_total", line_total(self.quantity, self.unit_price))

    def to_document(self) -> dict[str, Any]:
        return {
            "product_ref": self.product_ref,
            "quantity": dec(self.quantity),
            "unit": self.unit,
            "unit_price": dec(self.unit_price),
            "line_total": dec(self.line_total),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> PurchaseLine:
        return cls(
            product_ref=doc["product_ref"],
            quantity=parse_dec(doc["quantity"]),
            unit=doc["unit"],
            unit_price=parse_dec(doc["unit_price"]),
        )


@dataclass(frozen=True)
class ReceivedLine:
    """What the warehouse counted for one purchase line."""
    product_ref: str
    ordered_quantity: Decimal
    received_quantity: Decimal
    unit: str

    @property
    def shortfall(self) -> Decimal:
        return self.ordered_quantity - self.received_quantity

    @property
    def has_discrepancy(self) -> bool:
        return self.received_quantity != self.ordered_quantity

    def to_document(self) -> dict[str, Any]:
        return {
            "product_ref": self.product_ref,
            "ordered_quantity": dec(self.ordered_quantity),
            "received_quantity": dec(self.received_quantity),
            "unit": self.unit,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> ReceivedLine:
        return cls(
            product_ref=doc["product_ref"],
            ordered_quantity=parse_dec(doc["ordered_quantity"]),
            received_quantity=parse_dec(doc["received_quantity"]),
            unit=doc["unit"],
        )


@dataclass(frozen=True)
class Purchase:
    """A scheduled acquisition from a supplier for one order."""
    id: str
    order_id: str
    supplier: str
    lines: tuple[PurchaseLine, ...]
    expected_delivery_date: date
    created_by: str
    created_at: datetime
    status: PurchaseStatus = PurchaseStatus.SCHEDULED
    notes: str = ""
    received_lines: tuple[ReceivedLine, ...] = ()
    received_by: str | None = None
    received_at: datetime | None = None
    discrepancy_acknowledged: bool = False
    bon_id: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    version: int = 0
    total: Decimal = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "total", sum_totals(line.line_total for line in self.lines))

    @property
    def is_active(self) -> bool:
        """Scheduled or delivered; a cancelled purchase frees its order."""
        return self.status != PurchaseStatus.CANCELLED

    @property
    def received_total(self) -> Decimal:
        prices = {line.product_ref: line.unit_price for line in self.lines}
        return sum_totals(
            r.received_quantity * prices.get(r.product_ref, ZERO) for r in self.received_lines
        )

    def line_for(self, product_ref: str) -> PurchaseLine | None:
        for line in self.lines:
            if line.product_ref == product_ref:
                return line
        return None

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "supplier": self.supplier,
            "lines": [line.to_document() for line in self.lines],
            "total": dec(self.total),
            "expected_delivery_date": day(self.expected_delivery_date),
            "created_by": self.created_by,
            "created_at": ts(self.created_at),
            "status": self.status.value,
            "notes": self.notes,
            "received_lines": [r.to_document() for r in self.received_lines],
            "received_by": self.received_by,
            "received_at": ts(self.received_at),
            "discrepancy_acknowledged": self.discrepancy_acknowledged,
            "bon_id": self.bon_id,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": ts(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], version: int = 0) -> Purchase:
        return cls(
            id=doc["id"],
            order_id=doc["order_id"],
            supplier=doc["supplier"],
            lines=tuple(PurchaseLine.from_document(d) for d in doc["lines"]),
            expected_delivery_date=parse_day(doc["expected_delivery_date"]),
            created_by=doc["created_by"],
            created_at=parse_ts(doc["created_at"]),
            status=PurchaseStatus(doc["status"]),
            notes=doc.get("notes", ""),
            received_lines=tuple(ReceivedLine.from_document(d) for d in doc.get("received_lines", ())),
            received_by=doc.get("received_by"),
            received_at=parse_ts(doc.get("received_at")),
            discrepancy_acknowledged=bool(doc.get("discrepancy_acknowledged", False)),
            bon_id=doc.get("bon_id"),
            cancelled_by=doc.get("cancelled_by"),
            cancelled_at=parse_ts(doc.get("cancelled_at")),
            cancellation_reason=doc.get("cancellation_reason"),
            version=version,
        )
