"""
Keyed transitions apply once.

A repeat with the same key and payload replays the recorded result; the
same key with a different payload is refused.
"""

from decimal import Decimal

import pytest

from procurement_kernel.exceptions import GuardViolation, IdempotencyConflict
from procurement_services.entity_store import ORDERS, STOCK_MOVEMENTS, TRANSITION_LOG

from support.scenarios import DEFAULT_LINES


class TestReplay:
    def test_repeat_approve_replays(self, engine, flow, head, sink, store):
        order_id = flow.submitted()
        first = engine.approve_order(order_id, head, idempotency_key="click-1")
        second = engine.approve_order(order_id, head, idempotency_key="click-1")

        assert not first.replayed
        assert second.replayed
        assert (second.from_state, second.to_state) == ("pending", "approved")
        assert second.notification_ids == first.notification_ids
        assert len(sink.published) == 1
        assert store.count(TRANSITION_LOG) == 1
        assert engine.get_order(order_id).version == 2

    def test_repeat_submit_creates_one_order(self, engine, vendor, store):
        kwargs = dict(title="Weekly produce", department="Kitchen", lines=DEFAULT_LINES, idempotency_key="form-7")
        first = engine.submit_order(vendor, **kwargs)
        second = engine.submit_order(vendor, **kwargs)
        assert second.entity_id == first.entity_id
        assert second.replayed
        assert store.count(ORDERS) == 1

    def test_repeat_delivery_does_not_double_stock(self, engine, flow, warehouse, store):
        _, purchase_id = flow.processing()
        engine.deliver_purchase(purchase_id, warehouse, idempotency_key="rcv-1")
        replay = engine.deliver_purchase(purchase_id, warehouse, idempotency_key="rcv-1")

        assert replay.replayed
        assert replay.created_ids == ("BON-2025-001",)
        assert engine.get_inventory_item("tomato").quantity == Decimal("10")
        assert store.count(STOCK_MOVEMENTS) == 2

    def test_repeat_issue_sells_once(self, engine, flow, cashier):
        flow.priced()
        engine.issue_to_sale("tomato", "2", cashier, reference="receipt-1", idempotency_key="sale-1")
        engine.issue_to_sale("tomato", "2", cashier, reference="receipt-1", idempotency_key="sale-1")
        assert engine.get_inventory_item("tomato").quantity == Decimal("8")

    def test_key_is_scoped_to_the_entity(self, engine, flow, head):
        first = flow.submitted()
        second = flow.submitted()
        engine.approve_order(first, head, idempotency_key="k")
        result = engine.approve_order(second, head, idempotency_key="k")
        assert not result.replayed
        assert engine.get_order(second).status.value == "approved"

    def test_replay_is_traced(self, engine, flow, head, captured_logs):
        order_id = flow.submitted()
        engine.approve_order(order_id, head, idempotency_key="click-1")
        engine.approve_order(order_id, head, idempotency_key="click-1")
        outcomes = [
            r["outcome"]
            for r in captured_logs()
            if r["message"] == "lifecycle_transition" and r.get("transition") == "approve_order"
        ]
        assert outcomes == ["applied", "replayed"]


class TestConflict:
    def test_same_key_different_payload(self, engine, flow, head):
        order_id = flow.submitted()
        engine.approve_order(order_id, head, comment="ok", idempotency_key="click-1")
        with pytest.raises(IdempotencyConflict) as exc_info:
            engine.approve_order(order_id, head, comment="changed my mind", idempotency_key="click-1")
        assert exc_info.value.idempotency_key == f"approve_order:{order_id}:click-1"
        assert exc_info.value.code == "IDEMPOTENCY_CONFLICT"

    def test_same_key_different_actor(self, engine, flow, head, admin):
        order_id = flow.submitted()
        engine.approve_order(order_id, head, idempotency_key="click-1")
        with pytest.raises(IdempotencyConflict):
            engine.approve_order(order_id, admin, idempotency_key="click-1")

    def test_refused_transition_records_nothing(self, engine, flow, vendor, head, store):
        order_id = flow.submitted()
        with pytest.raises(GuardViolation):
            engine.approve_order(order_id, vendor, idempotency_key="click-1")
        assert store.count(TRANSITION_LOG) == 0
        result = engine.approve_order(order_id, head, idempotency_key="click-1")
        assert not result.replayed
