"""
Racing transitions on one engine.

Threads start together behind a barrier.  Whatever the interleaving,
exactly one of two conflicting transitions applies, ids stay unique and
stock never goes below zero.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

from procurement_kernel.exceptions import GuardViolation, InsufficientStock
from procurement_modules.actors import Actor
from procurement_services.entity_store import TRANSITION_LOG

from support.scenarios import DEFAULT_LINES


def _race(count, action):
    barrier = Barrier(count)

    def run(i):
        barrier.wait(timeout=5)
        try:
            return action(i)
        except (GuardViolation, InsufficientStock) as exc:
            return exc

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(run, range(count)))


def test_approve_and_reject_race(engine, flow, head):
    order_id = flow.submitted()

    def decide(i):
        if i % 2:
            return engine.reject_order(order_id, head, reason="over budget")
        return engine.approve_order(order_id, head)

    outcomes = _race(2, decide)
    applied = [o for o in outcomes if not isinstance(o, Exception)]
    refused = [o for o in outcomes if isinstance(o, GuardViolation)]
    assert len(applied) == 1
    assert len(refused) == 1
    assert refused[0].guard == "valid_source_state"
    assert engine.get_order(order_id).status.value == applied[0].to_state
    assert engine.get_order(order_id).version == 2


def test_parallel_submits_get_unique_ids(engine, vendor):
    outcomes = _race(
        10,
        lambda i: engine.submit_order(vendor, title=f"Order {i}", department="Kitchen", lines=DEFAULT_LINES),
    )
    ids = sorted(o.entity_id for o in outcomes)
    assert ids == [f"PO-2025-{n:03d}" for n in range(1, 11)]


def test_parallel_sales_never_oversell(engine, flow, cashier):
    flow.priced()

    outcomes = _race(8, lambda i: engine.issue_to_sale("olive-oil", "1", cashier, reference=f"r-{i}"))

    sold = [o for o in outcomes if not isinstance(o, Exception)]
    refused = [o for o in outcomes if isinstance(o, InsufficientStock)]
    assert len(sold) == 4
    assert len(refused) == 4
    assert engine.get_inventory_item("olive-oil").quantity == Decimal("0")
    assert engine.reconcile().is_clean


def test_same_idempotency_key_from_many_threads(engine, flow, head, sink, store):
    order_id = flow.submitted()

    outcomes = _race(5, lambda i: engine.approve_order(order_id, head, idempotency_key="double-click"))

    assert sum(1 for o in outcomes if not o.replayed) == 1
    assert sum(1 for o in outcomes if o.replayed) == 4
    assert store.count(TRANSITION_LOG) == 1
    assert len(sink.published) == 1


def test_independent_orders_do_not_block_each_other(engine, vendor, head):
    order_ids = [
        engine.submit_order(vendor, title=f"Order {i}", department="Kitchen", lines=DEFAULT_LINES).entity_id
        for i in range(6)
    ]
    heads = [Actor(f"head-{i}", "DepartmentHead") for i in range(6)]

    outcomes = _race(6, lambda i: engine.approve_order(order_ids[i], heads[i]))

    assert all(o.to_state == "approved" for o in outcomes)
    notification_ids = sorted(n for o in outcomes for n in o.notification_ids)
    assert len(set(notification_ids)) == 6
