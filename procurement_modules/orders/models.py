"""
Order Domain Models (``procurement_modules.orders.models``).

Responsibility
--------------
Frozen value objects for a vendor order: its lines, comments, and the
actor/timestamp stamps each transition leaves behind.

Invariants
----------
- ``OrderLine.line_total == quantity * unit_price`` (computed, never given).
- ``Order.total == sum(line.line_total)`` (computed on every construction,
  so every write of an Order carries a consistent total).
- All monetary fields use ``Decimal`` -- never ``float``.
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

logger = get_logger("modules.orders.models")


class OrderStatus(Enum):
    """Order lifecycle states."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    RECEIVED = "received"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class OrderLine:
    """A requested product on an order."""
    line_number: int
    product_ref: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    line_total: Decimal = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "line_total", line_total(self.quantity, self.unit_price))

    def to_document(self) -> dict[str, Any]:
        return {
            "line_number": self.line_number,
            "product_ref": self.product_ref,
            "quantity": dec(self.quantity),
            "unit": self.unit,
            "unit_price": dec(self.unit_price),
            "line_total": dec(self.line_total),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> OrderLine:
        return cls(
            line_number=int(doc["line_number"]),
            product_ref=doc["product_ref"],
            quantity=parse_dec(doc["quantity"]),
            unit=doc["unit"],
            unit_price=parse_dec(doc["unit_price"]),
        )


@dataclass(frozen=True)
class OrderComment:
    """A free-text remark attached to an order (e.g. a rejection reason)."""
    author: str
    text: str
    created_at: datetime

    def to_document(self) -> dict[str, Any]:
        return {"author": self.author, "text": self.text, "created_at": ts(self.created_at)}

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> OrderComment:
        return cls(author=doc["author"], text=doc["text"], created_at=parse_ts(doc["created_at"]))


@dataclass(frozen=True)
class Order:
    """A vendor's request for goods, from submission to reception."""
    id: str
    title: str
    department: str
    created_by: str
    created_by_role: str
    lines: tuple[OrderLine, ...]
    created_at: datetime
    status: OrderStatus = OrderStatus.PENDING
    comments: tuple[OrderComment, ...] = ()
    updated_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    processed_by: str | None = None
    processed_at: datetime | None = None
    received_by: str | None = None
    delivered_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    purchase_id: str | None = None
    previous_purchase_ids: tuple[str, ...] = ()
    supplier: str | None = None
    expected_delivery_date: date | None = None
    confirmed_total: Decimal | None = None
    version: int = 0
    total: Decimal = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "total", sum_totals(line.line_total for line in self.lines))

    def line_for(self, product_ref: str) -> OrderLine | None:
        for line in self.lines:
            if line.product_ref == product_ref:
                return line
        return None

    @property
    def has_positive_total(self) -> bool:
        return self.total > ZERO

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "department": self.department,
            "created_by": self.created_by,
            "created_by_role": self.created_by_role,
            "lines": [line.to_document() for line in self.lines],
            "total": dec(self.total),
            "status": self.status.value,
            "comments": [c.to_document() for c in self.comments],
            "created_at": ts(self.created_at),
            "updated_at": ts(self.updated_at),
            "approved_by": self.approved_by,
            "approved_at": ts(self.approved_at),
            "rejected_by": self.rejected_by,
            "rejected_at": ts(self.rejected_at),
            "processed_by": self.processed_by,
            "processed_at": ts(self.processed_at),
            "received_by": self.received_by,
            "delivered_at": ts(self.delivered_at),
            "cancelled_by": self.cancelled_by,
            "cancelled_at": ts(self.cancelled_at),
            "purchase_id": self.purchase_id,
            "previous_purchase_ids": list(self.previous_purchase_ids),
            "supplier": self.supplier,
            "expected_delivery_date": day(self.expected_delivery_date),
            "confirmed_total": dec(self.confirmed_total),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], version: int = 0) -> Order:
        return cls(
            id=doc["id"],
            title=doc["title"],
            department=doc["department"],
            created_by=doc["created_by"],
            created_by_role=doc["created_by_role"],
            lines=tuple(OrderLine.from_document(d) for d in doc["lines"]),
            created_at=parse_ts(doc["created_at"]),
            status=OrderStatus(doc["status"]),
            comments=tuple(OrderComment.from_document(d) for d in doc.get("comments", ())),
            updated_at=parse_ts(doc.get("updated_at")),
            approved_by=doc.get("approved_by"),
            approved_at=parse_ts(doc.get("approved_at")),
            rejected_by=doc.get("rejected_by"),
            rejected_at=parse_ts(doc.get("rejected_at")),
            processed_by=doc.get("processed_by"),
            processed_at=parse_ts(doc.get("processed_at")),
            received_by=doc.get("received_by"),
            delivered_at=parse_ts(doc.get("delivered_at")),
            cancelled_by=doc.get("cancelled_by"),
            cancelled_at=parse_ts(doc.get("cancelled_at")),
            purchase_id=doc.get("purchase_id"),
            previous_purchase_ids=tuple(doc.get("previous_purchase_ids", ())),
            supplier=doc.get("supplier"),
            expected_delivery_date=parse_day(doc.get("expected_delivery_date")),
            confirmed_total=parse_dec(doc.get("confirmed_total")),
            version=version,
        )
