"""
Property-based tests of the lifecycle invariants.

Boundaries fuzzed here:
- Order lines: any mix of weighed and counted products, any prices
- Stock: random sequences of adjustments and sales against one product
- Idempotency: a repeated key never changes stock twice
- Sellability: every bon status, product readiness and selling price,
  zero and negative prices included

Each example builds a fresh engine inside the test body; function-scoped
fixtures are not reset between hypothesis examples.
"""

from datetime import UTC, datetime
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from procurement_config import DEFAULT_CONFIG_PATH, load_engine_config
from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.exceptions import InsufficientStock
from procurement_modules.actors import Actor
from procurement_modules.bons.models import Bon, BonProduct, BonStatus
from procurement_modules.inventory.models import StockLevel
from procurement_services.entity_store import BONS
from procurement_services.lifecycle_engine import ProcurementLifecycleEngine

from support.memory_store import InMemoryEntityStore
from support.scenarios import LifecycleFlow
from support.sinks import RecordingSink

CONFIG = load_engine_config(DEFAULT_CONFIG_PATH)

VENDOR = Actor("vendor-1", "Vendor", department="Kitchen")
HEAD = Actor("head-1", "DepartmentHead", department="Kitchen")
PURCHASING = Actor("buyer-1", "Purchasing")
WAREHOUSE = Actor("store-1", "Warehouse")
AUDITOR = Actor("audit-1", "Auditor")
CASHIER = Actor("cash-1", "Cashier")

FUZZ_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)


def _fresh_engine(store=None):
    clock = DeterministicClock()
    return ProcurementLifecycleEngine(
        store if store is not None else InMemoryEntityStore(),
        clock=clock,
        config=CONFIG,
        sink=RecordingSink(clock),
        retry_backoff=0,
    )


prices = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("999.99"), places=2)
weights = st.decimals(min_value=Decimal("0.001"), max_value=Decimal("500"), places=3)
counts = st.integers(min_value=1, max_value=200)


@st.composite
def order_line(draw, product_ref):
    if draw(st.booleans()):
        quantity, unit = draw(weights), "kg"
    else:
        quantity, unit = draw(counts), "piece"
    return {"product_ref": product_ref, "quantity": str(quantity), "unit": unit, "unit_price": str(draw(prices))}


@st.composite
def order_lines(draw):
    size = draw(st.integers(min_value=1, max_value=8))
    return [draw(order_line(f"product-{i}")) for i in range(size)]


stock_ops = st.lists(
    st.tuples(
        st.sampled_from(["in", "out", "sell"]),
        st.decimals(min_value=Decimal("0.1"), max_value=Decimal("30"), places=1),
    ),
    min_size=1,
    max_size=25,
)


class TestOrderTotals:
    @FUZZ_SETTINGS
    @given(lines=order_lines())
    def test_total_is_sum_of_lines(self, lines):
        engine = _fresh_engine()
        order_id = engine.submit_order(VENDOR, title="Fuzzed", department="Kitchen", lines=lines).entity_id

        order = engine.get_order(order_id)
        expected = sum(
            (Decimal(line["quantity"]) * Decimal(line["unit_price"]) for line in lines),
            Decimal("0"),
        )
        assert order.total == expected
        assert [line.product_ref for line in order.lines] == [line["product_ref"] for line in lines]
        assert engine.reconcile().is_clean

    @FUZZ_SETTINGS
    @given(lines=order_lines(), data=st.data())
    def test_revision_recomputes_total(self, lines, data):
        engine = _fresh_engine()
        order_id = engine.submit_order(VENDOR, title="Fuzzed", department="Kitchen", lines=lines).entity_id
        revised = data.draw(order_lines())

        engine.revise_order(order_id, VENDOR, lines=revised)

        expected = sum(
            (Decimal(line["quantity"]) * Decimal(line["unit_price"]) for line in revised),
            Decimal("0"),
        )
        assert engine.get_order(order_id).total == expected


class TestStockLedger:
    @FUZZ_SETTINGS
    @given(ops=stock_ops)
    def test_ledger_balances_and_stock_stays_non_negative(self, ops):
        engine = _fresh_engine()
        LifecycleFlow(engine, VENDOR, HEAD, PURCHASING, WAREHOUSE, AUDITOR).priced()
        on_hand = Decimal("10")

        for op, amount in ops:
            try:
                if op == "in":
                    engine.adjust_stock("tomato", amount, WAREHOUSE, reason="count")
                elif op == "out":
                    engine.adjust_stock("tomato", -amount, WAREHOUSE, reason="count")
                else:
                    engine.issue_to_sale("tomato", amount, CASHIER)
            except InsufficientStock:
                assert op != "in"
                assert amount > on_hand
                continue
            on_hand += amount if op == "in" else -amount

        item = engine.get_inventory_item("tomato")
        assert item.quantity == on_hand
        assert item.quantity >= 0
        movements = engine.list_stock_movements("tomato")
        assert sum((m.quantity for m in movements), Decimal("0")) == on_hand
        expected_level = (
            StockLevel.OUT if on_hand == 0 else StockLevel.LOW if on_hand <= item.threshold else StockLevel.OK
        )
        assert item.stock_level == expected_level
        assert engine.reconcile().is_clean

    @FUZZ_SETTINGS
    @given(
        amount=st.decimals(min_value=Decimal("0.1"), max_value=Decimal("10"), places=1),
        repeats=st.integers(min_value=2, max_value=5),
    )
    def test_keyed_sale_applies_once(self, amount, repeats):
        engine = _fresh_engine()
        LifecycleFlow(engine, VENDOR, HEAD, PURCHASING, WAREHOUSE, AUDITOR).priced()

        results = [
            engine.issue_to_sale("tomato", amount, CASHIER, idempotency_key="sale-1")
            for _ in range(repeats)
        ]

        assert [r.replayed for r in results] == [False] + [True] * (repeats - 1)
        assert engine.get_inventory_item("tomato").quantity == Decimal("10") - amount


selling_prices = st.one_of(
    st.just(Decimal("0")),
    st.decimals(min_value=Decimal("-50"), max_value=Decimal("50"), places=2),
)


@st.composite
def bon_product(draw, product_ref):
    return BonProduct(
        product_ref=product_ref,
        quantity=Decimal("5"),
        unit="kg",
        purchase_price=Decimal("2"),
        selling_price=draw(selling_prices),
        ready_for_sale=draw(st.booleans()),
    )


class TestSellability:
    @FUZZ_SETTINGS
    @given(
        status=st.sampled_from(BonStatus),
        tomato=bon_product("tomato"),
        basil=st.none() | bon_product("basil"),
        asked=st.sampled_from(["tomato", "basil", "rice"]),
    )
    def test_sellable_iff_bon_ready_product_ready_and_priced(self, status, tomato, basil, asked):
        bon = Bon(
            id="BON-2025-001",
            purchase_id="PUR-2025-001",
            order_id="PO-2025-001",
            products=(tomato,) if basil is None else (tomato, basil),
            created_at=datetime(2025, 1, 1, 12, tzinfo=UTC),
            status=status,
        )
        product = bon.product(asked)
        expected = (
            status == BonStatus.READY_FOR_SALE
            and product is not None
            and product.ready_for_sale
            and product.selling_price > 0
        )

        assert bon.is_sellable(asked) == expected

        store = InMemoryEntityStore()
        store.create(BONS, bon.id, bon.to_document())
        assert _fresh_engine(store).is_sellable(asked) == expected
