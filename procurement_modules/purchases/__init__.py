"""
Purchases Module (``procurement_modules.purchases``).

The purchase created when Purchasing processes an approved order, carrying
the supplier's confirmed prices and, once delivered, the received counts.
"""

from procurement_modules.purchases.models import (
    Purchase,
    PurchaseLine,
    PurchaseStatus,
    ReceivedLine,
)
from procurement_modules.purchases.workflows import PURCHASE_WORKFLOW

__all__ = ["Purchase", "PurchaseLine", "PurchaseStatus", "ReceivedLine", "PURCHASE_WORKFLOW"]
