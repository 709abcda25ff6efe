"""
Lifecycle Invariants Contract.

These invariants are structural law for the procurement lifecycle. They
are enforced by the transition runner, the lifecycle services, and the
store-level append-only guards. No EngineConfig value may switch them off.

This module exists solely to declare these invariants explicitly and to
name them in reconciliation findings.
"""

from enum import Enum, unique


@unique
class LifecycleInvariant(str, Enum):
    """Non-configurable invariants enforced by the engine.

    Configuration may influence *who* can fire a transition, but never
    *whether* these rules apply.
    """

    ORDER_TOTAL = "order_total"
    """Order total equals the sum of its line totals after every write.
    Enforced by the order model constructors."""

    STOCK_LEDGER_BALANCE = "stock_ledger_balance"
    """Per product, the sum of StockMovement quantities equals the
    InventoryItem quantity. Enforced by StockService, which writes both
    in the same store transaction."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """InventoryItem quantity is never negative. Decrements beyond the
    quantity on hand raise InsufficientStock instead of clamping."""

    STATE_GRAPH = "state_graph"
    """Statuses move only along the workflow graphs in
    procurement_modules.*.workflows."""

    SINGLE_ACTIVE_PURCHASE = "single_active_purchase"
    """An Order references at most one non-cancelled Purchase."""

    APPEND_ONLY = "append_only"
    """StockMovement and transition log records are never updated or
    deleted. Enforced at the store boundary (procurement_kernel.db.immutability
    for the SQL store)."""

    IDEMPOTENCY = "idempotency"
    """A transition repeated under the same idempotency key and payload
    applies its effects once. Enforced by the transition runner."""


ALL_LIFECYCLE_INVARIANTS: frozenset[LifecycleInvariant] = frozenset(LifecycleInvariant)
