"""
Inventory Module (``procurement_modules.inventory``).

Stock on hand per product and the stock ledger of receive, issue and
adjustment movements.
"""

from procurement_modules.inventory.models import (
    InventoryItem,
    MovementType,
    StockLevel,
    StockMovement,
)

__all__ = ["InventoryItem", "MovementType", "StockLevel", "StockMovement"]
