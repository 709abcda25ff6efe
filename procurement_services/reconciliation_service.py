"""
ReconciliationService -- read-only checks of the lifecycle invariants.

Architecture: procurement_services -- imperative shell.
    Reads raw documents from the EntityStore and checks the cross-entity
    rules the transitions are meant to keep: order totals, the stock
    ledger balance, non-negative stock, the single active purchase per
    order, and the links between orders, purchases and bons.

Findings name the LifecycleInvariant they break.  The service never
repairs anything; it reports.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.values import ZERO, decimal_to_str, sum_totals
from procurement_kernel.invariants import LifecycleInvariant
from procurement_kernel.logging_config import get_logger
from procurement_modules.bons.workflows import BON_WORKFLOW
from procurement_modules.orders.workflows import ORDER_WORKFLOW
from procurement_modules.purchases.workflows import PURCHASE_WORKFLOW
from procurement_services.entity_store import (
    BONS,
    INVENTORY,
    ORDERS,
    PURCHASES,
    STOCK_MOVEMENTS,
    EntityStore,
)

logger = get_logger("services.reconciliation")


class CheckSeverity(str, Enum):
    """Severity level of a reconciliation finding."""

    ERROR = "error"
    WARNING = "warning"


class CheckStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"       # At least one ERROR finding
    WARNING = "warning"     # Warnings only, no errors


@dataclass(frozen=True)
class ReconciliationFinding:
    """One broken rule, located on one entity."""

    invariant: LifecycleInvariant
    severity: CheckSeverity
    message: str
    entity_type: str
    entity_id: str
    details: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class ReconciliationReport:
    status: CheckStatus
    findings: tuple[ReconciliationFinding, ...] = ()
    checks_performed: tuple[str, ...] = ()
    entities_checked: int = 0

    @property
    def is_clean(self) -> bool:
        return len(self.findings) == 0

    def for_invariant(self, invariant: LifecycleInvariant) -> tuple[ReconciliationFinding, ...]:
        return tuple(f for f in self.findings if f.invariant == invariant)

    @classmethod
    def from_findings(
        cls,
        findings: tuple[ReconciliationFinding, ...],
        checks_performed: tuple[str, ...],
        entities_checked: int,
    ) -> ReconciliationReport:
        """Factory that derives status from findings."""
        if any(f.severity == CheckSeverity.ERROR for f in findings):
            status = CheckStatus.FAILED
        elif findings:
            status = CheckStatus.WARNING
        else:
            status = CheckStatus.PASSED
        return cls(
            status=status,
            findings=findings,
            checks_performed=checks_performed,
            entities_checked=entities_checked,
        )


def _dec(value: Any) -> Decimal:
    return ZERO if value is None else Decimal(str(value))


class ReconciliationService:
    """
    Contract:
        ``run()`` performs every check over the whole store and returns a
        ReconciliationReport.

    Non-goals:
        - Does NOT modify any data (read-only).
        - Does NOT lock: run it against a quiescent store, or accept that
          a transition in flight may show up as a transient finding.
    """

    CHECKS = (
        "order_totals",
        "stock_ledger",
        "purchase_links",
        "known_states",
    )

    def __init__(self, store: EntityStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    def run(self) -> ReconciliationReport:
        orders = {r.id: r.data for r in self._store.query(ORDERS)}
        purchases = {r.id: r.data for r in self._store.query(PURCHASES)}
        bons = {r.id: r.data for r in self._store.query(BONS)}
        items = {r.id: r.data for r in self._store.query(INVENTORY)}
        movements = [r.data for r in self._store.query(STOCK_MOVEMENTS)]

        findings: list[ReconciliationFinding] = []
        findings.extend(self._check_order_totals(orders))
        findings.extend(self._check_stock_ledger(items, movements))
        findings.extend(self._check_purchase_links(orders, purchases, bons))
        findings.extend(self._check_known_states(orders, purchases, bons))

        report = ReconciliationReport.from_findings(
            tuple(findings),
            self.CHECKS,
            len(orders) + len(purchases) + len(bons) + len(items),
        )
        log = logger.warning if findings else logger.info
        log(
            "reconciliation_completed",
            extra={
                "status": report.status.value,
                "finding_count": len(findings),
                "entities_checked": report.entities_checked,
                "as_of": self._clock.now_utc(),
            },
        )
        return report

    # -----------------------------------------------------------------
    # Checks
    # -----------------------------------------------------------------

    @staticmethod
    def _check_order_totals(orders: dict[str, dict]) -> list[ReconciliationFinding]:
        findings = []
        for order_id, doc in orders.items():
            expected = sum_totals(
                _dec(line["quantity"]) * _dec(line["unit_price"]) for line in doc["lines"]
            )
            stored = _dec(doc.get("total"))
            if stored != expected:
                findings.append(ReconciliationFinding(
                    invariant=LifecycleInvariant.ORDER_TOTAL,
                    severity=CheckSeverity.ERROR,
                    message=f"order total {stored} differs from line sum {expected}",
                    entity_type="order",
                    entity_id=order_id,
                    details={"stored": decimal_to_str(stored), "expected": decimal_to_str(expected)},
                ))
        return findings

    @staticmethod
    def _check_stock_ledger(
        items: dict[str, dict],
        movements: list[dict],
    ) -> list[ReconciliationFinding]:
        findings = []
        balances: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for movement in movements:
            balances[movement["product_ref"]] += _dec(movement["quantity"])

        for product_ref in sorted(set(items) | set(balances)):
            on_hand = _dec(items[product_ref]["quantity"]) if product_ref in items else ZERO
            ledger = balances.get(product_ref, ZERO)
            if on_hand < ZERO:
                findings.append(ReconciliationFinding(
                    invariant=LifecycleInvariant.NON_NEGATIVE_STOCK,
                    severity=CheckSeverity.ERROR,
                    message=f"quantity on hand is negative ({on_hand})",
                    entity_type="inventory",
                    entity_id=product_ref,
                ))
            if on_hand != ledger:
                findings.append(ReconciliationFinding(
                    invariant=LifecycleInvariant.STOCK_LEDGER_BALANCE,
                    severity=CheckSeverity.ERROR,
                    message=f"on hand {on_hand} but movements sum to {ledger}",
                    entity_type="inventory",
                    entity_id=product_ref,
                    details={"on_hand": decimal_to_str(on_hand), "ledger": decimal_to_str(ledger)},
                ))
        return findings

    @staticmethod
    def _check_purchase_links(
        orders: dict[str, dict],
        purchases: dict[str, dict],
        bons: dict[str, dict],
    ) -> list[ReconciliationFinding]:
        findings = []
        active_by_order: dict[str, list[str]] = defaultdict(list)
        for purchase_id, doc in purchases.items():
            if doc["status"] != "cancelled":
                active_by_order[doc["order_id"]].append(purchase_id)
            if doc["order_id"] not in orders:
                findings.append(ReconciliationFinding(
                    invariant=LifecycleInvariant.STATE_GRAPH,
                    severity=CheckSeverity.ERROR,
                    message=f"purchase references missing order {doc['order_id']}",
                    entity_type="purchase",
                    entity_id=purchase_id,
                ))
            if doc["status"] == "delivered" and doc.get("bon_id") not in bons:
                findings.append(ReconciliationFinding(
                    invariant=LifecycleInvariant.STATE_GRAPH,
                    severity=CheckSeverity.ERROR,
                    message="delivered purchase has no bon",
                    entity_type="purchase",
                    entity_id=purchase_id,
                ))

        for order_id, active in sorted(active_by_order.items()):
            if len(active) > 1:
                findings.append(ReconciliationFinding(
                    invariant=LifecycleInvariant.SINGLE_ACTIVE_PURCHASE,
                    severity=CheckSeverity.ERROR,
                    message=f"order has {len(active)} active purchases",
                    entity_type="order",
                    entity_id=order_id,
                    details={"purchase_ids": sorted(active)},
                ))

        for order_id, doc in orders.items():
            purchase_id = doc.get("purchase_id")
            if doc["status"] in ("processing", "received") and purchase_id is None:
                # A cancelled purchase leaves its order processing without one.
                if doc["status"] == "received":
                    findings.append(ReconciliationFinding(
                        invariant=LifecycleInvariant.STATE_GRAPH,
                        severity=CheckSeverity.ERROR,
                        message="received order has no purchase",
                        entity_type="order",
                        entity_id=order_id,
                    ))
                continue
            if purchase_id is None:
                continue
            purchase = purchases.get(purchase_id)
            if purchase is None or purchase["order_id"] != order_id:
                findings.append(ReconciliationFinding(
                    invariant=LifecycleInvariant.STATE_GRAPH,
                    severity=CheckSeverity.ERROR,
                    message=f"order references purchase {purchase_id} that does not point back",
                    entity_type="order",
                    entity_id=order_id,
                ))
            elif doc["status"] == "received" and purchase["status"] != "delivered":
                findings.append(ReconciliationFinding(
                    invariant=LifecycleInvariant.STATE_GRAPH,
                    severity=CheckSeverity.ERROR,
                    message=f"received order but purchase {purchase_id} is {purchase['status']}",
                    entity_type="order",
                    entity_id=order_id,
                ))
        return findings

    @staticmethod
    def _check_known_states(
        orders: dict[str, dict],
        purchases: dict[str, dict],
        bons: dict[str, dict],
    ) -> list[ReconciliationFinding]:
        findings = []
        for entity_type, workflow, docs in (
            ("order", ORDER_WORKFLOW, orders),
            ("purchase", PURCHASE_WORKFLOW, purchases),
            ("bon", BON_WORKFLOW, bons),
        ):
            for entity_id, doc in docs.items():
                if doc["status"] not in workflow.states:
                    findings.append(ReconciliationFinding(
                        invariant=LifecycleInvariant.STATE_GRAPH,
                        severity=CheckSeverity.WARNING,
                        message=f"unknown {entity_type} status '{doc['status']}'",
                        entity_type=entity_type,
                        entity_id=entity_id,
                    ))
        return findings
