"""
The shared transition path: atomicity, retries, locks and tracing.
"""

import threading

import pytest

from procurement_kernel.exceptions import (
    CollaboratorUnavailable,
    ConcurrentModification,
    EntityLockTimeout,
    GuardViolation,
)
from procurement_kernel.logging_config import LogContext
from procurement_modules.orders.models import OrderStatus
from procurement_services.entity_locks import EntityLockManager
from procurement_services.entity_store import NOTIFICATIONS, ORDERS, SEQUENCES
from procurement_services.lifecycle_engine import ProcurementLifecycleEngine
from procurement_services.notification_service import NotificationService
from procurement_services.retry import run_with_retry
from procurement_services.sequence_service import SequenceService
from procurement_services.transition_runner import TransitionRunner


def _traces(captured_logs, transition=None):
    return [
        r
        for r in captured_logs()
        if r["message"] == "lifecycle_transition"
        and (transition is None or r.get("transition") == transition)
    ]


@pytest.fixture
def runner(store, deterministic_clock, engine_config, sink):
    sequences = SequenceService(store, deterministic_clock, engine_config.id_format)
    notifications = NotificationService(store, deterministic_clock, engine_config, sink, sequences)
    return TransitionRunner(
        store,
        deterministic_clock,
        engine_config,
        EntityLockManager(timeout_seconds=0.2),
        sequences,
        notifications,
    )


class TestAtomicity:
    def test_failed_commit_is_retried(self, engine, flow, head, store, sink):
        order_id = flow.submitted()
        store.fail_next("commit")
        engine.approve_order(order_id, head)

        assert store.rollbacks >= 1
        assert engine.get_order(order_id).status == OrderStatus.APPROVED
        # the rolled-back attempt did not consume a notification id
        assert sink.ids() == ["NTF-2025-001"]

    def test_unavailable_store_leaves_nothing_behind(self, engine, flow, head, store, sink):
        order_id = flow.submitted()
        store.fail_next("commit", times=3)
        with pytest.raises(CollaboratorUnavailable):
            engine.approve_order(order_id, head)

        assert engine.get_order(order_id).status == OrderStatus.PENDING
        assert store.count(NOTIFICATIONS) == 0
        assert sink.published == []

    def test_failure_midway_through_delivery_rolls_back_everything(self, engine, flow, warehouse, store):
        order_id, purchase_id = flow.processing()
        store.fail_next("create", times=3)
        with pytest.raises(CollaboratorUnavailable):
            engine.deliver_purchase(purchase_id, warehouse)

        assert engine.get_order(order_id).status == OrderStatus.PROCESSING
        assert engine.list_inventory() == []
        assert engine.list_stock_movements() == []
        assert engine.list_bons() == []

    def test_unexpected_error_rolls_back_and_is_logged(self, runner, head, store, captured_logs):
        def body(ctx):
            store.create(ORDERS, "PO-X", {"status": "pending"})
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            runner.run(
                "broken",
                actor=head,
                entity_type="order",
                entity_id="PO-X",
                lock_keys=[],
                payload={},
                body=body,
            )
        assert store.count(ORDERS) == 0
        assert any(r["message"] == "lifecycle_transition_crashed" for r in captured_logs())


class TestStaleVersions:
    def test_stale_write_is_retried_against_the_fresh_version(self, engine, flow, head, store, sink, captured_logs):
        order_id = flow.submitted()
        store.race_next_update(ORDERS)

        result = engine.approve_order(order_id, head)

        assert (result.from_state, result.to_state) == ("pending", "approved")
        order = engine.get_order(order_id)
        assert order.status == OrderStatus.APPROVED
        # submit, the other writer, the approval
        assert order.version == 3
        assert sink.ids() == ["NTF-2025-001"]
        retries = [r for r in captured_logs() if r["message"] == "transition_retry"]
        assert [r["error_code"] for r in retries] == ["CONCURRENT_MODIFICATION"]

    def test_stale_writes_past_the_retry_limit_reach_the_caller(self, engine, flow, head, store, sink):
        order_id = flow.submitted()
        store.race_next_update(ORDERS, times=3)

        with pytest.raises(ConcurrentModification) as exc_info:
            engine.approve_order(order_id, head)

        assert (exc_info.value.collection, exc_info.value.entity_id) == (ORDERS, order_id)
        assert (exc_info.value.expected_version, exc_info.value.actual_version) == (3, 4)
        assert engine.get_order(order_id).status == OrderStatus.PENDING
        assert store.count(NOTIFICATIONS) == 0
        assert store.find(SEQUENCES, "notification:2025") is None
        assert sink.published == []

    def test_single_attempt_surfaces_the_conflict(self, store, deterministic_clock, engine_config, sink, flow, head):
        engine = ProcurementLifecycleEngine(
            store, clock=deterministic_clock, config=engine_config, sink=sink, retry_attempts=1, retry_backoff=0,
        )
        order_id = flow.submitted()
        store.race_next_update(ORDERS)

        with pytest.raises(ConcurrentModification):
            engine.approve_order(order_id, head)
        assert engine.approve_order(order_id, head).to_state == "approved"


class TestLocks:
    def test_lock_timeout(self, runner, head):
        held = threading.Event()
        release = threading.Event()
        locks = runner._locks

        def holder():
            with locks.hold(["orders/PO-1"]):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            held.wait(5)
            with pytest.raises(EntityLockTimeout) as exc_info:
                runner.run(
                    "approve_order",
                    actor=head,
                    entity_type="order",
                    entity_id="PO-1",
                    lock_keys=["orders/PO-1"],
                    payload={},
                    body=lambda ctx: pytest.fail("body must not run"),
                )
            assert exc_info.value.lock_key == "orders/PO-1"
            assert exc_info.value.retryable
        finally:
            release.set()
            thread.join()

    def test_locks_are_reentrant_and_released(self):
        locks = EntityLockManager(timeout_seconds=0.1)
        with locks.hold(["b", "a", "a"]) as keys:
            assert keys == ("a", "b")
            with locks.hold(["a"]):
                pass
        acquired = []

        def other_thread():
            with locks.hold(["a"]) as keys:
                acquired.append(keys)

        thread = threading.Thread(target=other_thread)
        thread.start()
        thread.join()
        assert acquired == [("a",)]


class TestRetry:
    def test_retries_only_retryable_errors(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise CollaboratorUnavailable("entity_store", "update")
            return "ok"

        assert run_with_retry(flaky, attempts=3, backoff_base=0, sleep=lambda s: None) == "ok"
        assert len(calls) == 3

    def test_guard_violation_is_not_retried(self):
        calls = []

        def refused():
            calls.append(1)
            raise GuardViolation("t", "g", "no")

        with pytest.raises(GuardViolation):
            run_with_retry(refused, attempts=5, sleep=lambda s: None)
        assert len(calls) == 1

    def test_backoff_doubles(self):
        delays = []

        def always():
            raise CollaboratorUnavailable("entity_store", "commit")

        with pytest.raises(CollaboratorUnavailable):
            run_with_retry(always, attempts=3, backoff_base=0.1, sleep=delays.append)
        assert delays == [0.1, 0.2]

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            run_with_retry(lambda: None, attempts=0)


class TestTracing:
    def test_applied_transition_trace(self, engine, flow, head, captured_logs):
        order_id = flow.submitted()
        engine.approve_order(order_id, head)

        [trace] = _traces(captured_logs, "approve_order")
        assert trace["level"] == "INFO"
        assert trace["outcome"] == "applied"
        assert trace["actor_id"] == "head-1"
        assert trace["entity_id"] == order_id
        assert trace["from_state"] == "pending"
        assert trace["to_state"] == "approved"
        assert trace["notification_count"] == 1
        assert "duration_ms" in trace
        assert trace["correlation_id"]

    def test_refused_transition_trace(self, engine, flow, vendor, captured_logs):
        order_id = flow.submitted()
        with pytest.raises(GuardViolation):
            engine.approve_order(order_id, vendor)

        [trace] = _traces(captured_logs, "approve_order")
        assert trace["level"] == "WARNING"
        assert trace["outcome"] == "refused"
        assert trace["error_code"] == "GUARD_VIOLATION"
        assert trace["guard"] == "has_capability"
        assert trace["current_state"] == "pending"

    def test_caller_correlation_id_is_kept(self, engine, flow, head, captured_logs):
        order_id = flow.submitted()
        with LogContext.bind(correlation_id="req-42"):
            engine.approve_order(order_id, head)
        [trace] = _traces(captured_logs, "approve_order")
        assert trace["correlation_id"] == "req-42"

    def test_context_is_restored_after_the_transition(self, engine, flow, head):
        order_id = flow.submitted()
        engine.approve_order(order_id, head)
        assert "transition" not in LogContext.get_all()


def test_sequences_are_per_kind(engine, flow, store):
    flow.delivered()
    counters = {r.id: r.data["value"] for r in store.query(SEQUENCES)}
    assert counters == {
        "order:2025": 1,
        "purchase:2025": 1,
        "bon:2025": 1,
        "movement:2025": 2,
        "notification:2025": 3,
    }
