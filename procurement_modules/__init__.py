"""
Procurement Modules.

The nouns and state machines of the procurement lifecycle.  Each module
contains frozen domain models and, where the entity has a lifecycle, its
workflow declaration:

- Orders: vendor requests, approval, processing, reception
- Purchases: supplier commitments with confirmed prices, deliveries
- Bons: pricing vouchers gating what may be sold
- Inventory: stock on hand and the stock movement ledger
- Notifications: role- and actor-addressed messages and their outbox

Behavior lives in ``procurement_services``; these modules hold no I/O.
"""

from procurement_modules import bons, inventory, notifications, orders, purchases

__all__ = ["bons", "inventory", "notifications", "orders", "purchases"]
