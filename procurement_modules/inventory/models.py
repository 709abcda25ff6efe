"""
Inventory Domain Models (``procurement_modules.inventory.models``).

Responsibility
--------------
The on-hand quantity per product and the append-only stock ledger that
explains it.

Invariants
----------
- ``InventoryItem.quantity`` is never negative (checked on construction).
- ``StockMovement.quantity`` is signed: positive for ``receive`` and
  ``adjustment-in``, negative for ``issue`` and ``adjustment-out``.
- Per product, the sum of movement quantities equals the item quantity;
  ``StockService`` writes both in one store transaction.
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

logger = get_logger("modules.inventory.models")


class MovementType(Enum):
    """Stock ledger entry categories."""
    RECEIVE = "receive"
    ISSUE = "issue"
    ADJUSTMENT_IN = "adjustment-in"
    ADJUSTMENT_OUT = "adjustment-out"

    @property
    def is_inbound(self) -> bool:
        return self in (MovementType.RECEIVE, MovementType.ADJUSTMENT_IN)


class StockLevel(Enum):
    """Alert level of an inventory item."""
    OK = "ok"
    LOW = "low"
    OUT = "out"


@dataclass(frozen=True)
class InventoryItem:
    """On-hand stock of one product."""
    product_ref: str
    quantity: Decimal
    unit: str
    threshold: Decimal
    last_updated: datetime
    version: int = 0

    def __post_init__(self) -> None:
        if self.quantity < ZERO:
            raise ValueError(
                f"Inventory quantity cannot be negative: {self.product_ref}={self.quantity}"
            )

    @property
    def stock_level(self) -> StockLevel:
        if self.quantity == ZERO:
            return StockLevel.OUT
        if self.quantity <= self.threshold:
            return StockLevel.LOW
        return StockLevel.OK

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.threshold

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity == ZERO

    def to_document(self) -> dict[str, Any]:
        return {
            "product_ref": self.product_ref,
            "quantity": dec(self.quantity),
            "unit": self.unit,
            "threshold": dec(self.threshold),
            "last_updated": ts(self.last_updated),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], version: int = 0) -> InventoryItem:
        return cls(
            product_ref=doc["product_ref"],
            quantity=parse_dec(doc["quantity"]),
            unit=doc["unit"],
            threshold=parse_dec(doc["threshold"]),
            last_updated=parse_ts(doc["last_updated"]),
            version=version,
        )


@dataclass(frozen=True)
class StockMovement:
    """One append-only stock ledger entry."""
    id: str
    product_ref: str
    movement_type: MovementType
    quantity: Decimal
    unit: str
    date: datetime
    actor: str
    reference: str | None = None
    reason: str | None = None

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "product_ref": self.product_ref,
            "type": self.movement_type.value,
            "quantity": dec(self.quantity),
            "unit": self.unit,
            "date": ts(self.date),
            "actor": self.actor,
            "reference": self.reference,
            "reason": self.reason,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> StockMovement:
        return cls(
            id=doc["id"],
            product_ref=doc["product_ref"],
            movement_type=MovementType(doc["type"]),
            quantity=parse_dec(doc["quantity"]),
            unit=doc["unit"],
            date=parse_ts(doc["date"]),
            actor=doc["actor"],
            reference=doc.get("reference"),
            reason=doc.get("reason"),
        )
