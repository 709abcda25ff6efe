"""
EngineConfig schema.

The human-authored, reviewable configuration of the lifecycle engine: who
may fire which transition, default thresholds, unit rules, id formats, and
notification routing.  YAML files are parsed into these frozen types by
``procurement_config.loader``; services only ever see an ``EngineConfig``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# Every capability a transition can require.
KNOWN_CAPABILITIES: frozenset[str] = frozenset({
    "order.submit",
    "order.revise",
    "order.approve",
    "order.reject",
    "order.cancel",
    "purchase.process",
    "purchase.cancel",
    "purchase.deliver",
    "bon.set_price",
    "stock.adjust",
    "stock.threshold",
    "sale.issue",
})

# Grants every known capability.
WILDCARD = "*"


@dataclass(frozen=True)
class RoleBinding:
    """Capabilities granted to one role."""

    role: str
    capabilities: frozenset[str]


@dataclass(frozen=True)
class IdFormat:
    """Prefixes of the human-readable ids, rendered as ``<prefix>-<year>-<seq>``."""

    order: str = "PO"
    purchase: str = "PUR"
    bon: str = "BON"
    movement: str = "MV"
    notification: str = "NTF"
    sequence_width: int = 3


@dataclass(frozen=True)
class NotificationRouting:
    """Recipient roles of transition notifications and delivery retry limits."""

    purchasing_role: str = "Purchasing"
    department_role: str = "DepartmentHead"
    auditor_role: str = "Auditor"
    warehouse_role: str = "Warehouse"
    cashier_role: str = "Cashier"
    max_delivery_attempts: int = 5


@dataclass(frozen=True)
class EngineConfig:
    """Complete, validated engine configuration."""

    config_id: str
    version: int
    role_bindings: tuple[RoleBinding, ...]
    vendor_role: str = "Vendor"
    default_low_stock_threshold: Decimal = Decimal("10")
    fractional_units: frozenset[str] = frozenset({"kg", "g", "l", "L", "ml"})
    lock_timeout_seconds: float = 5.0
    require_discrepancy_acknowledgment: bool = True
    id_format: IdFormat = field(default_factory=IdFormat)
    notifications: NotificationRouting = field(default_factory=NotificationRouting)
    checksum: str = ""

    def capabilities_for(self, role: str) -> frozenset[str]:
        """Capabilities of ``role``; unknown roles have none."""
        for binding in self.role_bindings:
            if binding.role == role:
                if WILDCARD in binding.capabilities:
                    return KNOWN_CAPABILITIES
                return binding.capabilities
        return frozenset()

    @property
    def roles(self) -> tuple[str, ...]:
        return tuple(b.role for b in self.role_bindings)
