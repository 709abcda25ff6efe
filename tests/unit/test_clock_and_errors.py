"""Tests for the injectable clock and the typed error hierarchy."""

from datetime import UTC, datetime

import pytest

from procurement_kernel.domain.clock import DeterministicClock, SystemClock
from procurement_kernel.exceptions import (
    CollaboratorUnavailable,
    ConcurrentModification,
    DeliveryError,
    EntityLockTimeout,
    EntityNotFound,
    GuardViolation,
    IdempotencyConflict,
    ImmutabilityViolation,
    InsufficientStock,
    InvalidQuantity,
    ProcurementKernelError,
    TransitionError,
)
from procurement_kernel.invariants import ALL_LIFECYCLE_INVARIANTS, LifecycleInvariant


class TestDeterministicClock:
    def test_default_time(self):
        assert DeterministicClock().now() == datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def test_advance_and_tick(self):
        clock = DeterministicClock()
        clock.advance(60)
        assert clock.now().minute == 1
        before = clock.now()
        assert clock.tick() > before

    def test_negative_advance_refused(self):
        with pytest.raises(ValueError):
            DeterministicClock().advance(-1)

    def test_system_clock_is_utc(self):
        assert SystemClock().now_utc().tzinfo is not None


class TestErrorHierarchy:
    @pytest.mark.parametrize(
        "exc,code,retryable",
        [
            (GuardViolation("t", "g", "r"), "GUARD_VIOLATION", False),
            (InsufficientStock("t", "p", 5, 2), "INSUFFICIENT_STOCK", False),
            (InvalidQuantity(-1, "kg", "neg"), "INVALID_QUANTITY", False),
            (IdempotencyConflict("k", "a" * 64, "b" * 64), "IDEMPOTENCY_CONFLICT", False),
            (EntityNotFound("orders", "x"), "ENTITY_NOT_FOUND", False),
            (ImmutabilityViolation("stockMovements", "x", "r"), "IMMUTABILITY_VIOLATION", False),
            (ConcurrentModification("orders", "x", 1, 2), "CONCURRENT_MODIFICATION", True),
            (EntityLockTimeout("orders/x", 0.5), "ENTITY_LOCK_TIMEOUT", True),
            (CollaboratorUnavailable("entity_store", "update"), "COLLABORATOR_UNAVAILABLE", True),
            (DeliveryError("n", "offline"), "DELIVERY_ERROR", True),
        ],
    )
    def test_codes_and_retry_flags(self, exc, code, retryable):
        assert isinstance(exc, ProcurementKernelError)
        assert exc.code == code
        assert exc.retryable is retryable

    def test_transition_errors(self):
        for exc in (GuardViolation("t", "g", "r"), InsufficientStock("t", "p", 1, 0)):
            assert isinstance(exc, TransitionError)

    def test_insufficient_stock_reports_on_hand(self):
        exc = InsufficientStock("issue_to_sale", "tomato", 5, 2)
        assert exc.current_state == "on_hand=2"
        assert "tomato" in str(exc)

    def test_guard_violation_message(self):
        exc = GuardViolation(
            "approve_order", "valid_source_state", "not pending",
            entity_type="order", entity_id="PO-2025-001", current_state="approved",
        )
        assert "approve_order" in str(exc)
        assert "PO-2025-001" in str(exc)
        assert "approved" in str(exc)

    def test_invalid_quantity_names_transition(self):
        exc = InvalidQuantity("1.5", "piece", "whole", transition="submit_order")
        assert str(exc).startswith("Transition 'submit_order'")


def test_invariants_declared():
    assert len(ALL_LIFECYCLE_INVARIANTS) == len(LifecycleInvariant)
    assert LifecycleInvariant.STOCK_LEDGER_BALANCE.value == "stock_ledger_balance"
